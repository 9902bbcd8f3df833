import base64
import numpy as np
import cv2

from app import frame_encoder


def test_to_uint8_stretches_to_full_range():
    img = frame_encoder.to_uint8(np.arange(100, dtype=np.float64).reshape(10, 10))
    assert img.dtype == np.uint8
    assert img.shape == (10, 10)
    assert img.min() == 0
    assert img.max() == 255


def test_to_uint8_flat_and_non_finite():
    assert not frame_encoder.to_uint8(np.zeros((3, 3))).any()
    img = frame_encoder.to_uint8(np.array([0.0, np.nan, 10.0, np.inf]))
    assert img.shape == (1, 4)
    assert img[0, 1] == 0
    assert img[0, 3] == 0


def test_1d_frames_render_as_strip():
    img = frame_encoder.render_preview(np.linspace(0, 1, 50))
    assert img.shape == (frame_encoder.STRIP_HEIGHT, 50)
    colored = frame_encoder.render_preview(np.linspace(0, 1, 50), "inferno")
    assert colored.shape == (frame_encoder.STRIP_HEIGHT, 50, 3)


def test_encode_png_b64_decodes():
    frame = np.random.RandomState(0).uniform(size=(12, 20))
    b64 = frame_encoder.encode_png_b64(frame)
    prefix = "data:image/png;base64,"
    assert b64.startswith(prefix)
    raw = np.frombuffer(base64.b64decode(b64[len(prefix):]), dtype=np.uint8)
    img = cv2.imdecode(raw, cv2.IMREAD_UNCHANGED)
    assert img.shape == (12, 20)


def test_save_png_and_npy(tmp_path):
    frame = np.arange(30, dtype=np.int32).reshape(5, 6)
    png = tmp_path / "out" / "frame.png"
    npy = tmp_path / "out" / "frame.npy"
    frame_encoder.save_png(str(png), frame)
    frame_encoder.save_npy(str(npy), frame)
    assert png.exists()
    back = np.load(str(npy))
    assert back.dtype == np.int32
    np.testing.assert_array_equal(back, frame)
