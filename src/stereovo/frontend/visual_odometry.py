"""Frame-to-frame stereo visual odometry pipeline."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from ..config import VOConfig
from ..errors import InsufficientDataError
from .motion_estimator import MotionEstimator, MotionResult
from .pose import SE3
from .stereo_frontend import StereoFrame, StereoFrontend
from .tracker import Correspondence, Tracker

logger = logging.getLogger(__name__)


class TrackingStatus(Enum):
    """Status of visual odometry tracking."""

    OK = "OK"
    INITIALIZING = "INITIALIZING"
    LOST = "LOST"


@dataclass
class VOTiming:
    """Timing breakdown for a single frame."""

    stereo_ms: float = 0.0
    tracking_ms: float = 0.0
    motion_ms: float = 0.0
    total_ms: float = 0.0


@dataclass
class VOFrame:
    """Output of visual odometry for a single frame.

    Attributes:
        pose: T_world_camera of the left camera; the world frame is the
            left camera at the first frame. Unchanged from the previous
            frame when tracking is lost.
        motion: Motion estimate against the previous frame, if one was made
    """

    frame_id: int
    timestamp_ns: int
    stereo_frame: StereoFrame | None
    pose: SE3
    tracking_status: TrackingStatus
    motion: MotionResult | None = None
    num_temporal_matches: int = 0
    num_correspondences: int = 0
    timing: VOTiming = field(default_factory=VOTiming)

    @property
    def position(self) -> np.ndarray:
        """Return camera position in world frame."""
        return self.pose.position

    @property
    def num_inliers(self) -> int:
        return self.motion.num_inliers if self.motion is not None else 0

    @property
    def is_tracking_ok(self) -> bool:
        return self.tracking_status == TrackingStatus.OK


class VisualOdometry:
    """Frame-to-frame stereo visual odometry.

    Orchestrates the full VO pipeline:
    1. Stereo processing (corners, left-right matching, triangulation)
    2. Temporal tracking of left corners from the previous frame
    3. 3D-2D correspondences: previous 3D points vs. current left pixels
    4. Motion estimation (preemptive RANSAC + refinement)
    """

    def __init__(
        self,
        stereo_frontend: StereoFrontend,
        tracker: Tracker | None = None,
        motion_estimator: MotionEstimator | None = None,
        min_inliers: int = 10,
        enable_timing: bool = True,
    ) -> None:
        """Initialize visual odometry pipeline.

        Args:
            stereo_frontend: Stereo processing stage
            tracker: Temporal matcher. Uses defaults if None.
            motion_estimator: Motion estimator. Uses defaults if None.
            min_inliers: Estimates supported by fewer refinement inliers
                are rejected and the frame is reported LOST
            enable_timing: Record per-stage timings
        """
        self._stereo_frontend = stereo_frontend
        self._tracker = tracker or Tracker()
        self._motion_estimator = motion_estimator or MotionEstimator()
        self._min_inliers = min_inliers
        self._enable_timing = enable_timing

        self._trajectory: list[SE3] = []
        self._frame_id: int = 0
        self._prev_frame: StereoFrame | None = None
        self._prev_pose: SE3 | None = None

    @classmethod
    def from_dataset_path(
        cls,
        dataset_path: str,
        config: VOConfig | None = None,
    ) -> VisualOdometry:
        """Create VisualOdometry from an EuRoC dataset path."""
        config = config or VOConfig()
        return cls(
            stereo_frontend=StereoFrontend.from_dataset_path(dataset_path, config),
            tracker=Tracker.from_config(config.tracker),
            motion_estimator=MotionEstimator.from_config(config.ransac),
        )

    def process_frame(
        self,
        left: np.ndarray,
        right: np.ndarray,
        timestamp_ns: int,
    ) -> VOFrame:
        """Process a stereo frame through the full VO pipeline.

        Raises:
            InputError: If the images are malformed
        """
        timing = VOTiming()
        t_start = time.perf_counter()

        frame_id = self._frame_id
        self._frame_id += 1

        # Stage 1: Stereo processing
        t0 = time.perf_counter()
        try:
            stereo_frame = self._stereo_frontend.process_frame(left, right, timestamp_ns)
        except InsufficientDataError as exc:
            logger.warning("Frame %d: stereo processing failed: %s", frame_id, exc)
            return self._lost(frame_id, timestamp_ns, None, timing, t_start)
        timing.stereo_ms = self._elapsed_ms(t0)

        # Stage 2: Initialization (first usable frame)
        if self._prev_frame is None:
            return self._initialize(frame_id, stereo_frame, timing, t_start)

        # Stage 3: Temporal tracking
        t0 = time.perf_counter()
        try:
            temporal_matches = self._tracker.track(self._prev_frame.left, stereo_frame.left)
        except InsufficientDataError as exc:
            logger.warning("Frame %d: temporal tracking failed: %s", frame_id, exc)
            return self._lost(frame_id, timestamp_ns, stereo_frame, timing, t_start)
        timing.tracking_ms = self._elapsed_ms(t0)

        # Stage 4: 3D-2D correspondences
        points_3d, points_2d = self._find_correspondences(self._prev_frame, temporal_matches)

        # Stage 5: Motion estimation
        t0 = time.perf_counter()
        try:
            motion = self._motion_estimator.estimate_motion(
                points_3d, points_2d, self._stereo_frontend.rig
            )
        except InsufficientDataError as exc:
            logger.warning("Frame %d: motion estimation failed: %s", frame_id, exc)
            motion = None
        timing.motion_ms = self._elapsed_ms(t0)

        if motion is not None and motion.num_inliers < self._min_inliers:
            logger.warning(
                "Frame %d: only %d inliers (need %d)",
                frame_id,
                motion.num_inliers,
                self._min_inliers,
            )
            motion = None

        if motion is None:
            frame = self._lost(frame_id, timestamp_ns, stereo_frame, timing, t_start)
        else:
            # motion.pose maps previous-camera points into the current camera
            current_pose = self._prev_pose @ motion.pose.inverse()
            logger.debug(
                "Frame %d: moved %.3f m, rotated %.2f deg",
                frame_id,
                float(np.linalg.norm(motion.pose.translation)),
                np.degrees(current_pose.rotation_angle_to(self._prev_pose)),
            )
            timing.total_ms = self._elapsed_ms(t_start)
            frame = VOFrame(
                frame_id=frame_id,
                timestamp_ns=timestamp_ns,
                stereo_frame=stereo_frame,
                pose=current_pose,
                tracking_status=TrackingStatus.OK,
                motion=motion,
                timing=timing,
            )
            # Only a frame with a known pose becomes the next reference
            self._prev_frame = stereo_frame
            self._prev_pose = current_pose
            self._trajectory.append(current_pose)

        frame.num_temporal_matches = len(temporal_matches)
        frame.num_correspondences = len(points_3d)
        return frame

    def _initialize(
        self,
        frame_id: int,
        stereo_frame: StereoFrame,
        timing: VOTiming,
        t_start: float,
    ) -> VOFrame:
        """Initialize VO with the first usable frame."""
        initial_pose = SE3.identity()

        self._prev_frame = stereo_frame
        self._prev_pose = initial_pose
        self._trajectory.append(initial_pose)

        logger.info(
            "VO initialized at frame %d with %d 3D points",
            frame_id,
            stereo_frame.num_3d_points,
        )

        timing.total_ms = self._elapsed_ms(t_start)
        return VOFrame(
            frame_id=frame_id,
            timestamp_ns=stereo_frame.timestamp_ns,
            stereo_frame=stereo_frame,
            pose=initial_pose,
            tracking_status=TrackingStatus.INITIALIZING,
            timing=timing,
        )

    def _lost(
        self,
        frame_id: int,
        timestamp_ns: int,
        stereo_frame: StereoFrame | None,
        timing: VOTiming,
        t_start: float,
    ) -> VOFrame:
        pose = self._prev_pose if self._prev_pose is not None else SE3.identity()
        if self._prev_pose is not None:
            self._trajectory.append(pose)

        timing.total_ms = self._elapsed_ms(t_start)
        return VOFrame(
            frame_id=frame_id,
            timestamp_ns=timestamp_ns,
            stereo_frame=stereo_frame,
            pose=pose,
            tracking_status=TrackingStatus.LOST,
            timing=timing,
        )

    @staticmethod
    def _find_correspondences(
        prev_frame: StereoFrame,
        temporal_matches: list[Correspondence],
    ) -> tuple[np.ndarray, np.ndarray]:
        """Pair previous-frame 3D points with current-frame pixels.

        A temporal match contributes when its previous-frame corner was
        triangulated; the lookup is keyed by corner coordinates.
        """
        points_3d = []
        points_2d = []
        for match in temporal_matches:
            point = prev_frame.point_for(*match.first.coord)
            if point is None:
                continue
            points_3d.append(point)
            points_2d.append(match.second.point)

        if not points_3d:
            return np.empty((0, 3), dtype=np.float64), np.empty((0, 2), dtype=np.float64)

        return (
            np.array(points_3d, dtype=np.float64),
            np.array(points_2d, dtype=np.float64),
        )

    def _elapsed_ms(self, t0: float) -> float:
        if not self._enable_timing:
            return 0.0
        return (time.perf_counter() - t0) * 1000

    def get_trajectory(self) -> list[SE3]:
        """Return all estimated camera poses."""
        return self._trajectory.copy()

    def get_trajectory_positions(self) -> np.ndarray:
        """Return camera positions as an Nx3 array."""
        if len(self._trajectory) == 0:
            return np.empty((0, 3), dtype=np.float64)
        return np.array([p.position for p in self._trajectory], dtype=np.float64)

    @property
    def is_initialized(self) -> bool:
        return self._prev_frame is not None

    @property
    def num_frames(self) -> int:
        return self._frame_id

    @property
    def current_pose(self) -> SE3 | None:
        if len(self._trajectory) == 0:
            return None
        return self._trajectory[-1]

    def reset(self) -> None:
        """Reset VO to its initial state."""
        self._trajectory.clear()
        self._frame_id = 0
        self._prev_frame = None
        self._prev_pose = None
