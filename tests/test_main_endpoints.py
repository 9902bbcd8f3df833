import json
from fastapi.testclient import TestClient

from app.main import app, get_controller


client = TestClient(app)

GAUSSIAN_2D = {
    "size_x": 32,
    "size_y": 32,
    "peaks": [{"shape": "gaussian", "pos_x": 10, "pos_y": 20, "fwhm_x": 4, "fwhm_y": 4, "amplitude": 50}],
}


def _acquire_one(c0=3.0):
    res = client.post("/configure", json={
        "config": {"size_x": 64, "size_y": 1, "background_x": {"kind": "polynomial", "c0": c0}},
        "settings": {"image_mode": "single", "acquire_period": 0},
    })
    assert res.json()["ok"] is True
    res = client.post("/acquire", json={"acquire": 1})
    assert res.json()["ok"] is True
    assert get_controller().wait_until_idle(5.0)


def test_index():
    res = client.get("/")
    assert res.status_code == 200
    data = res.json()
    assert data["ok"] is True
    assert data["name"] == "Simulated Peak Detector"
    assert "max_size_x" in data["settings"]


def test_default_config():
    data = client.get("/default_config").json()
    assert data["ok"] is True
    assert "size_x" in data["config"]
    assert "peaks" in data["config"]


def test_params_get_and_set():
    res = client.post("/params", json={"name": "acquire_period", "value": 0.5})
    data = res.json()
    assert data["ok"] is True
    assert data["value"] == 0.5
    params = client.get("/params").json()["params"]
    assert params["acquire_period"] == 0.5
    assert isinstance(params["peak_shape"], list)

    data = client.post("/params", json={"name": "peak_amplitude", "value": 12, "index": 1}).json()
    assert data["ok"] is True
    assert client.get("/params").json()["params"]["peak_amplitude"][1] == 12.0


def test_params_errors():
    data = client.post("/params", json={"name": "no_such_param", "value": 1}).json()
    assert data["ok"] is False
    assert "no_such_param" in data["error"]
    data = client.post("/params", json={"name": "peak_amplitude", "value": 1, "index": 999}).json()
    assert data["ok"] is False
    data = client.post("/params", content="not json").json()
    assert data["ok"] is False


def test_configure_returns_applied_config():
    data = client.post("/configure", json={"config": GAUSSIAN_2D}).json()
    assert data["ok"] is True
    assert data["config"]["size_x"] == 32
    assert data["config"]["peaks"][0]["shape"] == "gaussian"
    assert client.post("/configure", json={}).json()["ok"] is False


def test_acquire_status_and_live_frame():
    _acquire_one(c0=3.0)
    status = client.get("/status").json()
    assert status["ok"] is True
    assert status["state"] == "IDLE"
    assert status["array_counter"] >= 1
    assert "array_counter" in status["report"]

    data = client.get("/live_frame").json()
    assert data["ok"] is True
    assert data["image_b64"].startswith("data:image/png;base64,")
    assert data["last"]["dims"] == [64]
    assert data["last"]["stats"]["max"] == 3.0


def test_stop_while_idle():
    data = client.post("/acquire", json={"acquire": 0}).json()
    assert data["ok"] is True
    assert data["acquiring"] is False


def test_preview_composes_synchronously():
    res = client.post("/preview", json={"config": GAUSSIAN_2D, "seed": 5, "colormap": "viridis"})
    data = res.json()
    assert data["ok"] is True
    assert data["width"] == 32 and data["height"] == 32
    assert data["seed_used"] == 5
    assert data["stats"]["argmax"] == {"x": 10, "y": 20}
    assert abs(data["stats"]["max"] - 50.0) < 1e-9
    assert data["image_b64"].startswith("data:image/png;base64,")
    assert "total_s" in data["timings"]


def test_presets_round_trip():
    res = client.post("/save_preset", json={"name": "unit test/preset", "config": GAUSSIAN_2D})
    data = res.json()
    assert data["ok"] is True
    assert data["name"] == "unit_test_preset"
    assert "unit_test_preset" in client.get("/presets").json()["presets"]
    got = client.get("/get_preset", params={"name": "unit_test_preset"}).json()
    assert got["ok"] is True
    assert got["config"]["size_x"] == 32
    assert client.get("/get_preset", params={"name": "missing_preset_xyz"}).json()["ok"] is False
    assert client.post("/save_preset", json={"name": "", "config": {}}).json()["ok"] is False


def test_ws_live_pushes_last_frame():
    _acquire_one(c0=1.0)
    with client.websocket_connect("/ws/live") as ws:
        msg = json.loads(ws.receive_text())
    assert msg["ok"] is True
    assert msg["last"]["unique_id"] >= 1
    assert msg["last"]["stats"]["max"] == 1.0


def test_app_shutdown_stops_controller():
    import app.main as main_module

    with TestClient(app) as c:
        assert c.get("/").json()["ok"] is True
        ctrl = get_controller()
    assert main_module._controller is None
    assert not ctrl._thread.is_alive()
    assert get_controller() is not ctrl
