from simpeaks.buffers import DataType
from simpeaks.config import EngineSettings

ENV_VARS = ["SIMPEAKS_MAX_SIZE_X", "SIMPEAKS_MAX_SIZE_Y", "SIMPEAKS_MAX_PEAKS", "SIMPEAKS_DATA_TYPE",
            "SIMPEAKS_MAX_BUFFERS", "SIMPEAKS_MAX_MEMORY", "SIMPEAKS_SEED", "SIMPEAKS_LOG_LEVEL",
            "SIMPEAKS_LOG_FORMAT", "SIMPEAKS_PRESETS_DIR"]


def _clear_env(monkeypatch):
    # setenv first so monkeypatch restores the previous state even for keys dotenv adds later
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


def test_defaults_without_env(monkeypatch, tmp_path):
    _clear_env(monkeypatch)
    s = EngineSettings.from_env(env_file=str(tmp_path / "missing.env"))
    assert s.max_size_x == 1024
    assert s.max_size_y == 1024
    assert s.max_peaks == 10
    assert s.data_type == DataType.FLOAT64
    assert s.seed is None
    assert s.log_format == "human"


def test_values_from_environment(monkeypatch, tmp_path):
    _clear_env(monkeypatch)
    monkeypatch.setenv("SIMPEAKS_MAX_SIZE_X", "256")
    monkeypatch.setenv("SIMPEAKS_DATA_TYPE", "UInt16")
    monkeypatch.setenv("SIMPEAKS_SEED", "42")
    monkeypatch.setenv("SIMPEAKS_LOG_FORMAT", "json")
    monkeypatch.setenv("SIMPEAKS_PRESETS_DIR", str(tmp_path / "presets"))
    s = EngineSettings.from_env(env_file=str(tmp_path / "missing.env"))
    assert s.max_size_x == 256
    assert s.data_type == DataType.UINT16
    assert s.seed == 42
    assert s.log_format == "json"
    assert s.presets_dir == tmp_path / "presets"
    assert s.to_dict()["data_type"] == "UINT16"


def test_malformed_values_fall_back(monkeypatch, tmp_path):
    _clear_env(monkeypatch)
    monkeypatch.setenv("SIMPEAKS_MAX_PEAKS", "lots")
    monkeypatch.setenv("SIMPEAKS_DATA_TYPE", "bogus")
    monkeypatch.setenv("SIMPEAKS_LOG_FORMAT", "xml")
    s = EngineSettings.from_env(env_file=str(tmp_path / "missing.env"))
    assert s.max_peaks == 10
    assert s.data_type == DataType.FLOAT64
    assert s.log_format == "human"


def test_dotenv_file_is_loaded(monkeypatch, tmp_path):
    _clear_env(monkeypatch)
    env_file = tmp_path / ".env"
    env_file.write_text("SIMPEAKS_MAX_PEAKS=3\nSIMPEAKS_MAX_MEMORY=4096\n", encoding="utf-8")
    s = EngineSettings.from_env(env_file=str(env_file))
    assert s.max_peaks == 3
    assert s.max_memory == 4096
