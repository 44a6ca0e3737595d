"""Stereo visual frontend: corners, left-right matching, triangulation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from ..config import VOConfig
from ..errors import GeometryError
from .corner_detector import CornerDetector, FeatureMap
from .stereo_camera import StereoRig
from .tracker import Correspondence, Tracker

logger = logging.getLogger(__name__)


@dataclass
class StereoFrame:
    """Output of stereo frontend processing for a single frame.

    Attributes:
        timestamp_ns: Frame timestamp in nanoseconds
        left: Corner map of the left (reference) image
        right: Corner map of the right image
        matches: Left-right correspondences that triangulated successfully
        points_3d: Nx3 points in the left camera frame, aligned with matches
        num_degenerate: Matches dropped because triangulation was degenerate
    """

    timestamp_ns: int
    left: FeatureMap
    right: FeatureMap
    matches: list[Correspondence]
    points_3d: np.ndarray
    num_degenerate: int = 0
    _point_index: dict[tuple[int, int], int] = field(
        default_factory=dict, init=False, repr=False
    )

    def __post_init__(self) -> None:
        self._point_index = {
            match.first.coord: i for i, match in enumerate(self.matches)
        }

    def point_for(self, row: int, col: int) -> np.ndarray | None:
        """Return the 3D point triangulated for a left feature, if any."""
        index = self._point_index.get((row, col))
        if index is None:
            return None
        return self.points_3d[index]

    @property
    def num_features_left(self) -> int:
        return len(self.left)

    @property
    def num_features_right(self) -> int:
        return len(self.right)

    @property
    def num_matches(self) -> int:
        return len(self.matches)

    @property
    def num_3d_points(self) -> int:
        return len(self.points_3d)


class StereoFrontend:
    """Stereo visual frontend for feature extraction and 3D reconstruction.

    Orchestrates the stereo processing pipeline:
    1. Detect Harris corners in both images
    2. Match corners between images (SAD, mutual nearest neighbour)
    3. Triangulate matched corners to 3D in the left camera frame

    Example:
        >>> frontend = StereoFrontend.from_dataset_path("data/euroc/MH_01_easy/mav0")
        >>> frame = frontend.process_frame(left_img, right_img, timestamp_ns)
        >>> print(f"Reconstructed {frame.num_3d_points} 3D points")
    """

    def __init__(
        self,
        rig: StereoRig,
        detector: CornerDetector | None = None,
        tracker: Tracker | None = None,
        undistort: bool = True,
        min_depth: float = 0.1,
        max_depth: float = 40.0,
    ) -> None:
        """Initialize stereo frontend with components.

        Args:
            rig: Calibrated stereo rig
            detector: Corner detector. Uses defaults if None.
            tracker: Left-right matcher. Uses defaults if None.
            undistort: Remove lens distortion before triangulating
            min_depth: Points closer than this (left camera z) are dropped
            max_depth: Points farther than this are dropped
        """
        self._rig = rig
        self._detector = detector or CornerDetector()
        self._tracker = tracker or Tracker()
        self._undistort = undistort
        self._min_depth = min_depth
        self._max_depth = max_depth

    @classmethod
    def from_dataset_path(
        cls,
        dataset_path: str,
        config: VOConfig | None = None,
    ) -> StereoFrontend:
        """Create StereoFrontend from an EuRoC dataset path.

        Loads calibration from cam0/sensor.yaml and cam1/sensor.yaml.

        Raises:
            FileNotFoundError: If calibration files don't exist
        """
        path = Path(dataset_path)
        rig = StereoRig.from_euroc(
            str(path / "cam0" / "sensor.yaml"),
            str(path / "cam1" / "sensor.yaml"),
        )
        return cls.from_config(rig, config or VOConfig())

    @classmethod
    def from_config(cls, rig: StereoRig, config: VOConfig) -> StereoFrontend:
        return cls(
            rig=rig,
            detector=CornerDetector.from_config(config.detector),
            tracker=Tracker.from_config(config.tracker),
        )

    def process_frame(
        self,
        left: np.ndarray,
        right: np.ndarray,
        timestamp_ns: int,
    ) -> StereoFrame:
        """Process a stereo image pair through the full pipeline.

        Args:
            left: Left camera image (grayscale)
            right: Right camera image (grayscale, same size)
            timestamp_ns: Frame timestamp in nanoseconds

        Returns:
            StereoFrame containing all processing results

        Raises:
            InputError: If a frame is malformed or the sizes differ
            InsufficientDataError: If either image has no corners
        """
        left_map = self._detector.detect(left)
        right_map = self._detector.detect(right)

        candidates = self._tracker.track(left_map, right_map)

        matches = []
        points = []
        num_degenerate = 0
        for match in candidates:
            try:
                point = self._rig.triangulate(
                    match.first.point, match.second.point, undistort=self._undistort
                )
            except GeometryError as exc:
                logger.debug("Dropping stereo match: %s", exc)
                num_degenerate += 1
                continue

            if not self._min_depth <= point[2] <= self._max_depth:
                continue

            matches.append(match)
            points.append(point)

        points_3d = (
            np.array(points, dtype=np.float64) if points else np.empty((0, 3))
        )

        logger.debug(
            "Stereo frame %d: %d/%d corners, %d matches, %d points",
            timestamp_ns,
            len(left_map),
            len(right_map),
            len(candidates),
            len(points_3d),
        )

        return StereoFrame(
            timestamp_ns=timestamp_ns,
            left=left_map,
            right=right_map,
            matches=matches,
            points_3d=points_3d,
            num_degenerate=num_degenerate,
        )

    @property
    def rig(self) -> StereoRig:
        """Return the stereo rig used by this frontend."""
        return self._rig

    @property
    def baseline(self) -> float:
        """Return stereo baseline in rig units."""
        return self._rig.baseline
