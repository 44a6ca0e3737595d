"""Shared fixtures and synthetic-image helpers."""

from pathlib import Path

import numpy as np
import pytest

from stereovo.frontend.stereo_camera import StereoRig

FOCAL = 400.0
BASELINE = 0.1


def camera_matrix(width: int = 160, height: int = 120) -> np.ndarray:
    return np.array(
        [[FOCAL, 0.0, width / 2], [0.0, FOCAL, height / 2], [0.0, 0.0, 1.0]]
    )


def make_rig(width: int = 160, height: int = 120) -> StereoRig:
    """Rectified rig: right camera BASELINE metres along +x, no distortion."""
    K = camera_matrix(width, height)
    return StereoRig(
        K1=K,
        K2=K,
        dist1=None,
        dist2=None,
        R=np.eye(3),
        T=np.array([-BASELINE, 0.0, 0.0]),
    )


def corner_image(size: int = 40, value: int = 200) -> np.ndarray:
    """Dark image with a bright quadrant whose corner sits at (size/2, size/2)."""
    image = np.zeros((size, size), dtype=np.uint8)
    image[size // 2 :, size // 2 :] = value
    return image


def textured_image(
    height: int, width: int, seed: int = 0, block: int = 4
) -> np.ndarray:
    """Random blocks with per-pixel noise; rich in distinct corners."""
    rng = np.random.default_rng(seed)
    blocks = rng.integers(
        30, 226, size=(height // block + 1, width // block + 1), dtype=np.int64
    )
    image = np.kron(blocks, np.ones((block, block), dtype=np.int64))[:height, :width]
    image = image + rng.integers(-12, 13, size=image.shape)
    return np.clip(image, 0, 255).astype(np.uint8)


def write_euroc_sensor(
    path: Path, intrinsics: list[float], distortion: list[float], T_BS: np.ndarray
) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    data = ", ".join(f"{v:.10f}" for v in np.asarray(T_BS, dtype=float).ravel())
    path.write_text(
        "sensor_type: camera\n"
        "T_BS:\n"
        "  cols: 4\n"
        "  rows: 4\n"
        f"  data: [{data}]\n"
        "rate_hz: 20\n"
        "resolution: [752, 480]\n"
        "camera_model: pinhole\n"
        f"intrinsics: [{', '.join(str(v) for v in intrinsics)}]\n"
        "distortion_model: radial-tangential\n"
        f"distortion_coefficients: [{', '.join(str(v) for v in distortion)}]\n"
    )
    return path


@pytest.fixture
def rig() -> StereoRig:
    return make_rig()


def stereo_pair(
    base: np.ndarray, offset: int, disparity: int = 8, width: int = 160, height: int = 120
) -> tuple[np.ndarray, np.ndarray]:
    """Crop a rectified pair viewing a fronto-parallel textured plane.

    The right crop starts `disparity` columns further along, so every
    scene point appears `disparity` pixels further left in the right image.
    """
    left = base[5 : 5 + height, offset : offset + width]
    right = base[5 : 5 + height, offset + disparity : offset + disparity + width]
    return np.ascontiguousarray(left), np.ascontiguousarray(right)
