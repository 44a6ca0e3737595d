"""Calibrated stereo rig: projection matrices, undistortion, triangulation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np
import yaml

from .pose import SE3
from .triangulation import triangulate


@dataclass(frozen=True)
class CameraIntrinsics:
    """Camera intrinsic parameters (pinhole model)."""

    fx: float  # Focal length x (pixels)
    fy: float  # Focal length y (pixels)
    cx: float  # Principal point x (pixels)
    cy: float  # Principal point y (pixels)

    def to_matrix(self) -> np.ndarray:
        """Return 3x3 camera intrinsic matrix K."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )


@dataclass(frozen=True)
class DistortionCoeffs:
    """Radial-tangential distortion coefficients in OpenCV order."""

    k1: float = 0.0  # Radial distortion coefficient 1
    k2: float = 0.0  # Radial distortion coefficient 2
    p1: float = 0.0  # Tangential distortion coefficient 1
    p2: float = 0.0  # Tangential distortion coefficient 2
    k3: float = 0.0  # Radial distortion coefficient 3

    @classmethod
    def from_list(cls, values) -> DistortionCoeffs:
        """Build from 4 (k1, k2, p1, p2) or 5 (+ k3) coefficients."""
        values = [float(v) for v in values]
        if len(values) not in (4, 5):
            raise ValueError(
                f"Expected 4 or 5 distortion coefficients, got {len(values)}"
            )
        return cls(*values)

    def to_array(self) -> np.ndarray:
        """Return distortion coefficients as (5,) array for OpenCV."""
        return np.array(
            [self.k1, self.k2, self.p1, self.p2, self.k3], dtype=np.float64
        )


def _readonly(array, shape: tuple[int, ...], name: str) -> np.ndarray:
    out = np.array(array, dtype=np.float64).reshape(-1)
    expected = int(np.prod(shape))
    if out.size != expected:
        raise ValueError(f"{name} must have {expected} values, got {out.size}")
    out = out.reshape(shape)
    out.flags.writeable = False
    return out


def _distortion_array(values) -> np.ndarray:
    if values is None:
        return _readonly(np.zeros(5), (5,), "distortion")
    coeffs = DistortionCoeffs.from_list(np.ravel(values))
    return _readonly(coeffs.to_array(), (5,), "distortion")


class StereoRig:
    """A calibrated two-camera rig with camera 1 as the reference.

    Camera 1 projects with P1 = K1 [I | 0]; camera 2 with P2 = K2 [R | T],
    where (R, T) maps points from the camera 1 frame into the camera 2
    frame. All matrices are read-only once the rig is built.
    """

    def __init__(
        self,
        K1: np.ndarray,
        K2: np.ndarray,
        dist1: np.ndarray | None,
        dist2: np.ndarray | None,
        R: np.ndarray,
        T: np.ndarray,
    ) -> None:
        """Initialize stereo rig.

        Args:
            K1: 3x3 intrinsics of the reference camera
            K2: 3x3 intrinsics of the second camera
            dist1: 5 distortion coefficients of camera 1 (None = no distortion)
            dist2: 5 distortion coefficients of camera 2 (None = no distortion)
            R: 3x3 rotation from the camera 1 frame to the camera 2 frame
            T: 3 translation from the camera 1 frame to the camera 2 frame
        """
        self._K1 = _readonly(K1, (3, 3), "K1")
        self._K2 = _readonly(K2, (3, 3), "K2")
        self._dist1 = _distortion_array(dist1)
        self._dist2 = _distortion_array(dist2)
        self._R = _readonly(R, (3, 3), "R")
        self._T = _readonly(T, (3,), "T")

        RT1 = np.hstack([np.eye(3), np.zeros((3, 1))])
        RT2 = np.hstack([self._R, self._T.reshape(3, 1)])
        self._P1 = _readonly(self._K1 @ RT1, (3, 4), "P1")
        self._P2 = _readonly(self._K2 @ RT2, (3, 4), "P2")

    @classmethod
    def from_euroc(cls, cam0_yaml_path: str, cam1_yaml_path: str) -> StereoRig:
        """Build a rig from EuRoC sensor.yaml calibration files.

        Args:
            cam0_yaml_path: Path to the reference (left) camera sensor.yaml
            cam1_yaml_path: Path to the second (right) camera sensor.yaml

        Raises:
            FileNotFoundError: If calibration files don't exist
            ValueError: If calibration data is invalid
        """
        intrinsics0, distortion0, T_BS0 = _load_euroc_calibration(cam0_yaml_path)
        intrinsics1, distortion1, T_BS1 = _load_euroc_calibration(cam1_yaml_path)

        # T_cam1_cam0 = inv(T_BS_cam1) @ T_BS_cam0
        T_cam1_cam0 = np.linalg.inv(T_BS1) @ T_BS0

        return cls(
            K1=intrinsics0.to_matrix(),
            K2=intrinsics1.to_matrix(),
            dist1=distortion0.to_array(),
            dist2=distortion1.to_array(),
            R=T_cam1_cam0[:3, :3],
            T=T_cam1_cam0[:3, 3],
        )

    @classmethod
    def from_yaml(cls, yaml_path: str) -> StereoRig:
        """Build a rig from a compact YAML file.

        Expected keys: K1, K2 (9 values or 3x3 nested lists), D1, D2
        (4 or 5 values, optional), R (3x3) and T (3 values).

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If a key is missing or malformed
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Rig calibration file not found: {yaml_path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        missing = [key for key in ("K1", "K2", "R", "T") if key not in data]
        if missing:
            raise ValueError(f"Missing rig calibration keys {missing} in {yaml_path}")

        return cls(
            K1=data["K1"],
            K2=data["K2"],
            dist1=data.get("D1"),
            dist2=data.get("D2"),
            R=data["R"],
            T=data["T"],
        )

    def triangulate(
        self,
        point1: np.ndarray,
        point2: np.ndarray,
        undistort: bool = False,
    ) -> np.ndarray:
        """Triangulate a correspondence into the camera 1 frame.

        Args:
            point1: (x, y) pixel in camera 1
            point2: (x, y) pixel in camera 2
            undistort: Remove lens distortion from both pixels first

        Raises:
            GeometryError: If the triangulation is degenerate
        """
        if undistort:
            point1 = self.undistort_points(np.asarray(point1).reshape(1, 2), camera=1)[0]
            point2 = self.undistort_points(np.asarray(point2).reshape(1, 2), camera=2)[0]
        return triangulate(self._P1, self._P2, point1, point2)

    def undistort_points(self, points: np.ndarray, camera: int = 1) -> np.ndarray:
        """Map raw pixels to ideal (distortion-free) pixels of the same camera.

        Args:
            points: Nx2 pixel coordinates
            camera: 1 or 2

        Returns:
            Nx2 undistorted pixel coordinates
        """
        K, dist = self._camera(camera)
        points = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        if len(points) == 0 or not dist.any():
            return points.copy()

        undistorted = cv2.undistortPoints(points.reshape(-1, 1, 2), K, dist, P=K)
        return undistorted.reshape(-1, 2)

    def project(self, points_3d: np.ndarray, camera: int = 1) -> np.ndarray:
        """Project camera 1 frame points into a camera, with distortion.

        Args:
            points_3d: Nx3 points in the camera 1 frame
            camera: 1 or 2

        Returns:
            Nx2 pixel coordinates
        """
        K, dist = self._camera(camera)
        points_3d = np.asarray(points_3d, dtype=np.float64).reshape(-1, 3)
        if len(points_3d) == 0:
            return np.empty((0, 2), dtype=np.float64)

        if camera == 1:
            extrinsics = SE3.identity()
        else:
            extrinsics = SE3(np.array(self._R), np.array(self._T))
        rvec, tvec = extrinsics.to_rvec_tvec()

        projected, _ = cv2.projectPoints(points_3d.reshape(-1, 1, 3), rvec, tvec, K, dist)
        return projected.reshape(-1, 2)

    def _camera(self, camera: int) -> tuple[np.ndarray, np.ndarray]:
        if camera == 1:
            return np.array(self._K1), np.array(self._dist1)
        if camera == 2:
            return np.array(self._K2), np.array(self._dist2)
        raise ValueError(f"camera must be 1 or 2, got {camera}")

    @property
    def P1(self) -> np.ndarray:
        """Return the 3x4 projection matrix of the reference camera."""
        return self._P1

    @property
    def P2(self) -> np.ndarray:
        """Return the 3x4 projection matrix of the second camera."""
        return self._P2

    @property
    def camera_matrix(self) -> np.ndarray:
        """Return the reference camera's 3x3 intrinsics."""
        return self._K1

    @property
    def distortion(self) -> np.ndarray:
        """Return the reference camera's 5 distortion coefficients."""
        return self._dist1

    @property
    def rotation(self) -> np.ndarray:
        return self._R

    @property
    def translation(self) -> np.ndarray:
        return self._T

    @property
    def baseline(self) -> float:
        """Return the distance between the camera centres."""
        return float(np.linalg.norm(self._T))


def _load_euroc_calibration(
    yaml_path: str,
) -> tuple[CameraIntrinsics, DistortionCoeffs, np.ndarray]:
    """Parse an EuRoC sensor.yaml calibration file.

    Returns:
        Tuple of (intrinsics, distortion, T_BS) where T_BS is the 4x4
        camera-to-body transform

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If file format is invalid
    """
    path = Path(yaml_path)
    if not path.exists():
        raise FileNotFoundError(f"Calibration file not found: {yaml_path}")

    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    # Intrinsics [fu, fv, cu, cv]
    intrinsics_list = data.get("intrinsics")
    if intrinsics_list is None or len(intrinsics_list) != 4:
        raise ValueError(f"Invalid intrinsics in {yaml_path}")

    intrinsics = CameraIntrinsics(*[float(v) for v in intrinsics_list])

    distortion_list = data.get("distortion_coefficients")
    if distortion_list is None or len(distortion_list) not in (4, 5):
        raise ValueError(f"Invalid distortion coefficients in {yaml_path}")

    distortion = DistortionCoeffs.from_list(distortion_list)

    T_BS_data = (data.get("T_BS") or {}).get("data")
    if T_BS_data is None or len(T_BS_data) != 16:
        raise ValueError(f"Invalid T_BS transform in {yaml_path}")

    T_BS = np.array(T_BS_data, dtype=np.float64).reshape(4, 4)

    return intrinsics, distortion, T_BS
