"""Stereo visual odometry frontend.

Components:
- CornerDetector: streaming Harris corners with bucketed suppression
- Tracker: SAD patch matching with mutual consistency
- StereoRig / triangulate: calibrated rig and DLT triangulation
- MotionEstimator: preemptive RANSAC + damped Gauss-Newton refinement
- StereoFrontend: per-frame stereo processing
- VisualOdometry: frame-to-frame pipeline
"""

from .corner_detector import CornerDetector, Feature, FeatureMap
from .motion_estimator import MotionEstimator, MotionHypothesis, MotionResult
from .pose import SE3
from .stereo_camera import CameraIntrinsics, DistortionCoeffs, StereoRig
from .stereo_frontend import StereoFrame, StereoFrontend
from .tracker import Correspondence, Tracker
from .triangulation import triangulate
from .visual_odometry import TrackingStatus, VisualOdometry, VOFrame, VOTiming

__all__ = [
    # Pose
    "SE3",
    # Corners
    "CornerDetector",
    "Feature",
    "FeatureMap",
    # Tracking
    "Tracker",
    "Correspondence",
    # Camera / triangulation
    "StereoRig",
    "CameraIntrinsics",
    "DistortionCoeffs",
    "triangulate",
    # Motion
    "MotionEstimator",
    "MotionHypothesis",
    "MotionResult",
    # Pipeline
    "StereoFrontend",
    "StereoFrame",
    "VisualOdometry",
    "VOFrame",
    "VOTiming",
    "TrackingStatus",
]
