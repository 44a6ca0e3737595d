"""Tests for StereoRig calibration loading and camera models."""

from pathlib import Path

import numpy as np
import pytest

from conftest import BASELINE, camera_matrix, write_euroc_sensor
from stereovo.frontend.pose import SE3
from stereovo.frontend.stereo_camera import (
    CameraIntrinsics,
    DistortionCoeffs,
    StereoRig,
)

EUROC_INTRINSICS = [458.654, 457.296, 367.215, 248.375]
EUROC_DISTORTION = [-0.28340811, 0.07395907, 0.00019359, 1.76187114e-05]


@pytest.fixture
def euroc_calibration(tmp_path: Path) -> tuple[Path, Path]:
    T_BS0 = np.eye(4)
    T_BS1 = np.eye(4)
    T_BS1[:3, 3] = [0.11, 0.0, 0.0]
    cam0 = write_euroc_sensor(
        tmp_path / "cam0" / "sensor.yaml", EUROC_INTRINSICS, EUROC_DISTORTION, T_BS0
    )
    cam1 = write_euroc_sensor(
        tmp_path / "cam1" / "sensor.yaml",
        [457.587, 456.134, 379.999, 255.238],
        [-0.28368365, 0.07451284, -0.00010473, -3.55590700e-05],
        T_BS1,
    )
    return cam0, cam1


class TestStereoRig:
    def test_projection_matrices(self, rig):
        K = camera_matrix()

        np.testing.assert_allclose(rig.P1, K @ np.hstack([np.eye(3), np.zeros((3, 1))]))
        np.testing.assert_allclose(rig.P2[:, 3], K @ np.array([-BASELINE, 0.0, 0.0]))
        np.testing.assert_allclose(rig.P2[:, :3], K)
        assert rig.baseline == pytest.approx(BASELINE)

    def test_second_camera_projection_matches_P2(self):
        R = SE3.from_rvec_tvec([0.0, 0.05, 0.01], np.zeros(3)).rotation
        K = camera_matrix()
        rig = StereoRig(K, K, None, None, R, np.array([-BASELINE, 0.01, 0.0]))
        X = np.array([[0.3, -0.2, 3.0], [-0.5, 0.1, 6.0]])

        homogeneous = (rig.P2 @ np.hstack([X, np.ones((2, 1))]).T).T
        expected = homogeneous[:, :2] / homogeneous[:, 2:]

        np.testing.assert_allclose(rig.project(X, camera=2), expected, atol=1e-9)

    def test_matrices_are_read_only(self, rig):
        with pytest.raises(ValueError):
            rig.P1[0, 0] = 1.0
        with pytest.raises(ValueError):
            rig.camera_matrix[0, 0] = 1.0

    def test_rejects_malformed_matrices(self):
        with pytest.raises(ValueError, match="K1"):
            StereoRig(np.eye(2), np.eye(3), None, None, np.eye(3), np.zeros(3))
        with pytest.raises(ValueError, match="T"):
            StereoRig(np.eye(3), np.eye(3), None, None, np.eye(3), np.zeros(4))
        with pytest.raises(ValueError, match="distortion"):
            StereoRig(np.eye(3), np.eye(3), [0.1, 0.2], None, np.eye(3), np.zeros(3))

    def test_invalid_camera_index(self, rig):
        with pytest.raises(ValueError, match="camera must be 1 or 2"):
            rig.project(np.array([[0.0, 0.0, 1.0]]), camera=3)

    def test_undistort_without_distortion_is_identity(self, rig):
        points = np.array([[10.0, 20.0], [150.5, 99.25]])

        np.testing.assert_array_equal(rig.undistort_points(points), points)

    def test_undistort_inverts_projection(self, euroc_calibration):
        rig = StereoRig.from_euroc(*map(str, euroc_calibration))
        X = np.array([[0.5, -0.3, 3.0], [-0.8, 0.4, 6.0], [0.0, 0.0, 2.0]])

        distorted = rig.project(X, camera=1)
        ideal = (X[:, :2] / X[:, 2:]) * np.array(EUROC_INTRINSICS[:2]) + np.array(
            EUROC_INTRINSICS[2:]
        )

        np.testing.assert_allclose(rig.undistort_points(distorted), ideal, atol=1e-3)

    def test_triangulate_with_undistortion(self, euroc_calibration):
        rig = StereoRig.from_euroc(*map(str, euroc_calibration))
        X = np.array([[0.3, 0.1, 4.0]])

        left = rig.project(X, camera=1)[0]
        right = rig.project(X, camera=2)[0]

        np.testing.assert_allclose(
            rig.triangulate(left, right, undistort=True), X[0], rtol=1e-3
        )


class TestCalibrationLoading:
    def test_from_euroc(self, euroc_calibration):
        rig = StereoRig.from_euroc(*map(str, euroc_calibration))

        K = CameraIntrinsics(*EUROC_INTRINSICS).to_matrix()
        np.testing.assert_allclose(rig.camera_matrix, K)
        np.testing.assert_allclose(rig.distortion[:4], EUROC_DISTORTION)
        assert rig.distortion[4] == 0.0
        np.testing.assert_allclose(rig.rotation, np.eye(3), atol=1e-12)
        np.testing.assert_allclose(rig.translation, [-0.11, 0.0, 0.0], atol=1e-12)
        assert rig.baseline == pytest.approx(0.11)

    def test_from_euroc_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError, match="Calibration file not found"):
            StereoRig.from_euroc(str(tmp_path / "a.yaml"), str(tmp_path / "b.yaml"))

    def test_from_euroc_invalid_intrinsics(self, tmp_path: Path):
        bad = write_euroc_sensor(tmp_path / "bad.yaml", [1.0, 2.0], EUROC_DISTORTION, np.eye(4))

        with pytest.raises(ValueError, match="Invalid intrinsics"):
            StereoRig.from_euroc(str(bad), str(bad))

    def test_from_yaml(self, tmp_path: Path):
        path = tmp_path / "rig.yaml"
        path.write_text(
            "K1: [[400, 0, 80], [0, 400, 60], [0, 0, 1]]\n"
            "K2: [400, 0, 80, 0, 400, 60, 0, 0, 1]\n"
            "D1: [0.01, -0.002, 0.0, 0.0]\n"
            "R: [[1, 0, 0], [0, 1, 0], [0, 0, 1]]\n"
            "T: [-0.2, 0, 0]\n"
        )

        rig = StereoRig.from_yaml(str(path))

        np.testing.assert_allclose(rig.camera_matrix, camera_matrix())
        np.testing.assert_allclose(rig.distortion, [0.01, -0.002, 0.0, 0.0, 0.0])
        assert rig.baseline == pytest.approx(0.2)

    def test_from_yaml_missing_keys(self, tmp_path: Path):
        path = tmp_path / "rig.yaml"
        path.write_text("K1: [400, 0, 80, 0, 400, 60, 0, 0, 1]\n")

        with pytest.raises(ValueError, match="Missing rig calibration keys"):
            StereoRig.from_yaml(str(path))

    def test_from_yaml_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            StereoRig.from_yaml(str(tmp_path / "missing.yaml"))


class TestDistortionCoeffs:
    def test_from_list(self):
        assert DistortionCoeffs.from_list([0.1, 0.2, 0.3, 0.4]).k3 == 0.0
        assert DistortionCoeffs.from_list([0.1, 0.2, 0.3, 0.4, 0.5]).k3 == 0.5

        with pytest.raises(ValueError, match="4 or 5"):
            DistortionCoeffs.from_list([0.1])

    def test_to_array(self):
        coeffs = DistortionCoeffs(k1=0.1, p2=0.4)
        np.testing.assert_array_equal(coeffs.to_array(), [0.1, 0.0, 0.0, 0.4, 0.0])
