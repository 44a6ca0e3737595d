"""Tests for the frame-to-frame visual odometry pipeline."""

from pathlib import Path

import numpy as np
import pytest

from conftest import FOCAL, make_rig, stereo_pair, textured_image, write_euroc_sensor
from stereovo.config import VOConfig
from stereovo.errors import InsufficientDataError
from stereovo.frontend.corner_detector import CornerDetector
from stereovo.frontend.motion_estimator import MotionEstimator
from stereovo.frontend.stereo_frontend import StereoFrontend
from stereovo.frontend.visual_odometry import TrackingStatus, VisualOdometry

# Plane depth for a disparity of 8 px
DEPTH = FOCAL * 0.1 / 8
# Image shift per frame and the camera translation that causes it
STEP_PX = 2
STEP_M = STEP_PX * DEPTH / FOCAL


@pytest.fixture
def scene() -> np.ndarray:
    return textured_image(130, 240, seed=21)


@pytest.fixture
def vo() -> VisualOdometry:
    frontend = StereoFrontend(make_rig(), detector=CornerDetector(bucket_capacity=1000))
    return VisualOdometry(
        frontend, motion_estimator=MotionEstimator(num_hypotheses=100, seed=0)
    )


class FlakyMotionEstimator(MotionEstimator):
    """Estimator that fails once when asked to."""

    fail_next = False

    def estimate_motion(self, points_3d, points_2d, rig):
        if self.fail_next:
            self.fail_next = False
            raise InsufficientDataError("Forced estimate failure")
        return super().estimate_motion(points_3d, points_2d, rig)


def frame_at(scene: np.ndarray, index: int) -> tuple[np.ndarray, np.ndarray]:
    """Stereo pair after the rig has moved index steps along +x."""
    return stereo_pair(scene, offset=20 + STEP_PX * index)


class TestVisualOdometry:
    def test_first_frame_initializes(self, vo, scene):
        result = vo.process_frame(*frame_at(scene, 0), timestamp_ns=0)

        assert result.tracking_status == TrackingStatus.INITIALIZING
        np.testing.assert_array_equal(result.pose.to_matrix(), np.eye(4))
        assert vo.is_initialized
        assert result.stereo_frame.num_3d_points > 0

    def test_lateral_motion(self, vo, scene):
        results = [vo.process_frame(*frame_at(scene, k), timestamp_ns=k) for k in range(4)]

        for result in results[1:]:
            assert result.tracking_status == TrackingStatus.OK
            assert result.is_tracking_ok
            assert result.num_inliers >= 10
            assert result.num_correspondences >= result.num_inliers

        np.testing.assert_allclose(
            vo.get_trajectory_positions(),
            [[k * STEP_M, 0.0, 0.0] for k in range(4)],
            atol=5e-3,
        )
        assert results[-1].pose.rotation_angle_to(results[0].pose) < 1e-2

    def test_motion_is_relative_to_previous_frame(self, vo, scene):
        vo.process_frame(*frame_at(scene, 0), timestamp_ns=0)
        result = vo.process_frame(*frame_at(scene, 1), timestamp_ns=1)

        # Points move towards -x in the camera that moved towards +x
        np.testing.assert_allclose(
            result.motion.hypothesis.tvec, [-STEP_M, 0.0, 0.0], atol=5e-3
        )

    def test_lost_before_initialization(self, vo, scene):
        left, _ = frame_at(scene, 0)
        flat = np.full_like(left, 100)

        result = vo.process_frame(flat, flat, timestamp_ns=0)

        assert result.tracking_status == TrackingStatus.LOST
        assert result.stereo_frame is None
        np.testing.assert_array_equal(result.position, np.zeros(3))
        assert not vo.is_initialized
        assert vo.get_trajectory() == []
        assert vo.current_pose is None

    def test_lost_frame_keeps_pose(self, vo, scene):
        vo.process_frame(*frame_at(scene, 0), timestamp_ns=0)
        tracked = vo.process_frame(*frame_at(scene, 1), timestamp_ns=1)

        left, _ = frame_at(scene, 2)
        flat = np.full_like(left, 100)
        lost = vo.process_frame(flat, flat, timestamp_ns=2)

        assert lost.tracking_status == TrackingStatus.LOST
        assert lost.motion is None
        np.testing.assert_array_equal(lost.position, tracked.position)

        # The next good frame is tracked against the last good one
        recovered = vo.process_frame(*frame_at(scene, 3), timestamp_ns=3)
        assert recovered.tracking_status == TrackingStatus.OK
        np.testing.assert_allclose(recovered.position, [3 * STEP_M, 0.0, 0.0], atol=5e-3)
        assert len(vo.get_trajectory()) == 4

    def test_failed_estimate_keeps_reference_frame(self, scene):
        frontend = StereoFrontend(make_rig(), detector=CornerDetector(bucket_capacity=1000))
        estimator = FlakyMotionEstimator(num_hypotheses=100, seed=0)
        vo = VisualOdometry(frontend, motion_estimator=estimator)

        vo.process_frame(*frame_at(scene, 0), timestamp_ns=0)
        tracked = vo.process_frame(*frame_at(scene, 1), timestamp_ns=1)

        estimator.fail_next = True
        lost = vo.process_frame(*frame_at(scene, 2), timestamp_ns=2)

        assert lost.tracking_status == TrackingStatus.LOST
        assert lost.stereo_frame is not None
        assert lost.num_temporal_matches > 0
        np.testing.assert_array_equal(lost.position, tracked.position)

        # Frame 3 is estimated against frame 1, covering both steps
        recovered = vo.process_frame(*frame_at(scene, 3), timestamp_ns=3)
        assert recovered.tracking_status == TrackingStatus.OK
        np.testing.assert_allclose(
            recovered.motion.hypothesis.tvec, [-2 * STEP_M, 0.0, 0.0], atol=5e-3
        )
        np.testing.assert_allclose(recovered.position, [3 * STEP_M, 0.0, 0.0], atol=5e-3)

    def test_too_few_inliers_is_lost(self, scene):
        frontend = StereoFrontend(make_rig(), detector=CornerDetector(bucket_capacity=1000))
        vo = VisualOdometry(
            frontend,
            motion_estimator=MotionEstimator(num_hypotheses=20, seed=0),
            min_inliers=100_000,
        )

        vo.process_frame(*frame_at(scene, 0), timestamp_ns=0)
        result = vo.process_frame(*frame_at(scene, 1), timestamp_ns=1)

        assert result.tracking_status == TrackingStatus.LOST
        np.testing.assert_array_equal(result.position, np.zeros(3))
        assert result.num_temporal_matches > 0

    def test_timing(self, vo, scene):
        vo.process_frame(*frame_at(scene, 0), timestamp_ns=0)
        result = vo.process_frame(*frame_at(scene, 1), timestamp_ns=1)

        assert result.timing.total_ms >= result.timing.motion_ms >= 0.0
        assert result.timing.stereo_ms > 0.0

    def test_reset(self, vo, scene):
        vo.process_frame(*frame_at(scene, 0), timestamp_ns=0)
        vo.process_frame(*frame_at(scene, 1), timestamp_ns=1)

        vo.reset()

        assert vo.num_frames == 0
        assert not vo.is_initialized
        assert vo.get_trajectory_positions().shape == (0, 3)

    def test_from_dataset_path(self, tmp_path: Path, scene):
        T_BS1 = np.eye(4)
        T_BS1[0, 3] = 0.1
        for cam, T_BS in (("cam0", np.eye(4)), ("cam1", T_BS1)):
            write_euroc_sensor(
                tmp_path / cam / "sensor.yaml", [400.0, 400.0, 80.0, 60.0], [0, 0, 0, 0], T_BS
            )
        config = VOConfig.from_dict(
            {"detector": {"bucket_capacity": 1000}, "ransac": {"num_hypotheses": 50, "seed": 1}}
        )

        vo = VisualOdometry.from_dataset_path(str(tmp_path), config)
        vo.process_frame(*frame_at(scene, 0), timestamp_ns=0)
        result = vo.process_frame(*frame_at(scene, 1), timestamp_ns=1)

        assert result.is_tracking_ok
        np.testing.assert_allclose(result.position, [STEP_M, 0.0, 0.0], atol=5e-3)
        assert vo.num_frames == 2
