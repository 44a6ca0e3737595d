"""stereovo - Stereo visual odometry front end in Python."""

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .config import DetectorConfig, RansacConfig, TrackerConfig, VOConfig
from .dataset_reader import DatasetReader, StereoPair
from .errors import GeometryError, InputError, InsufficientDataError, StereoVOError
from .frontend import (
    SE3,
    CornerDetector,
    Correspondence,
    Feature,
    FeatureMap,
    MotionEstimator,
    MotionHypothesis,
    MotionResult,
    StereoFrame,
    StereoFrontend,
    StereoRig,
    Tracker,
    TrackingStatus,
    VisualOdometry,
    VOFrame,
    triangulate,
)

__all__ = [
    "__version__",
    # Dataset
    "DatasetReader",
    "StereoPair",
    # Configuration
    "VOConfig",
    "DetectorConfig",
    "TrackerConfig",
    "RansacConfig",
    # Errors
    "StereoVOError",
    "InputError",
    "GeometryError",
    "InsufficientDataError",
    # Pose
    "SE3",
    # Frontend
    "CornerDetector",
    "Feature",
    "FeatureMap",
    "Tracker",
    "Correspondence",
    "StereoRig",
    "triangulate",
    "MotionEstimator",
    "MotionHypothesis",
    "MotionResult",
    "StereoFrontend",
    "StereoFrame",
    # Visual Odometry
    "VisualOdometry",
    "VOFrame",
    "TrackingStatus",
]
