"""Streaming Harris corner detection with bucketed non-maximum suppression.

The detector makes a single pass over the frame. Gradient products for at
most five image rows are kept in a circular buffer; every time a fifth row
arrives the buffered rows are smoothed with the separable [1, 4, 6, 4, 1]
kernel and the Harris response for the centre row is written out.

Coordinate bookkeeping:
    gradients exist for image rows/cols 1 .. N-2 (buffer column = col - 1),
    smoothing consumes two more on each side, so strength[i, j] is the
    response at image pixel (i + 3, j + 3) and the strength grid has shape
    (H - 6, W - 6).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

import numpy as np

from ..errors import InputError

if TYPE_CHECKING:
    from ..config import DetectorConfig

logger = logging.getLogger(__name__)

GAUSSIAN_WEIGHTS = (1, 4, 6, 4, 1)
KERNEL_SIZE = len(GAUSSIAN_WEIGHTS)
KERNEL_RADIUS = KERNEL_SIZE // 2

# Gradient margin (1) plus smoothing radius (2)
STRENGTH_OFFSET = 1 + KERNEL_RADIUS

# Features carry an 11x11 appearance patch
PATCH_RADIUS = 5
MIN_FRAME_SIZE = 2 * PATCH_RADIUS + 1


@dataclass(frozen=True)
class Feature:
    """A scored corner at an integer image location.

    Attributes:
        strength: Harris response at the corner
        row: Image row
        col: Image column
        match_cost: SAD cost of the match this feature took part in, or None
            for a freshly detected feature
    """

    strength: float
    row: int
    col: int
    match_cost: int | None = None

    @property
    def coord(self) -> tuple[int, int]:
        """Return (row, col)."""
        return (self.row, self.col)

    @property
    def point(self) -> tuple[float, float]:
        """Return the pixel position as (x, y) = (col, row)."""
        return (float(self.col), float(self.row))

    def with_match_cost(self, cost: int) -> Feature:
        """Return a copy of this feature carrying a match cost."""
        return replace(self, match_cost=int(cost))


@dataclass(frozen=True)
class FeatureMap:
    """Detector output for one frame. Immutable once built.

    Attributes:
        strengths: (H-6)x(W-6) Harris responses, offset by 3 from the image
        features: HxW uint8 grid, 1 where a feature was accepted
        image: HxW int32 source intensities (used for patch comparison)
        keypoints: Accepted features in row-major order
    """

    strengths: np.ndarray
    features: np.ndarray
    image: np.ndarray
    keypoints: tuple[Feature, ...] = ()

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def points(self) -> np.ndarray:
        """Return Nx2 array of keypoint (x, y) coordinates."""
        if len(self.keypoints) == 0:
            return np.empty((0, 2), dtype=np.float64)
        return np.array([kp.point for kp in self.keypoints], dtype=np.float64)

    def __len__(self) -> int:
        """Return number of accepted features."""
        return len(self.keypoints)

    def strength_at(self, row: int, col: int) -> float:
        """Return the Harris response at an image coordinate."""
        i, j = row - STRENGTH_OFFSET, col - STRENGTH_OFFSET
        if not (0 <= i < self.strengths.shape[0] and 0 <= j < self.strengths.shape[1]):
            raise InputError(f"No strength value at image pixel ({row}, {col})")
        return float(self.strengths[i, j])

    def has_feature(self, row: int, col: int) -> bool:
        return bool(self.features[row, col])

    def feature_at(self, row: int, col: int) -> Feature:
        """Build the Feature for an image coordinate.

        Raises:
            InputError: If the coordinate is within PATCH_RADIUS of the border
        """
        if (
            row < PATCH_RADIUS
            or row >= self.height - PATCH_RADIUS
            or col < PATCH_RADIUS
            or col >= self.width - PATCH_RADIUS
        ):
            raise InputError(
                f"Feature ({row}, {col}) must be at least {PATCH_RADIUS} pixels "
                f"from the border of a {self.height}x{self.width} image"
            )
        return Feature(strength=self.strength_at(row, col), row=row, col=col)


class _DerivativeBuffer:
    """Circular buffer of gradient products for the last five image rows."""

    def __init__(self, width: int) -> None:
        shape = (KERNEL_SIZE, width - 2)
        self.ixx = np.zeros(shape, dtype=np.int64)
        self.iyy = np.zeros(shape, dtype=np.int64)
        self.ixy = np.zeros(shape, dtype=np.int64)
        self.rows_buffered = 0

    @staticmethod
    def slot(row: int) -> int:
        return (row - 1) % KERNEL_SIZE

    def push(self, image: np.ndarray, row: int) -> None:
        """Store gradient products for an interior image row.

        Overwrites the oldest buffered row once five are held.
        """
        ix = image[row + 1, 1:-1].astype(np.int64) - image[row - 1, 1:-1]
        iy = image[row, 2:].astype(np.int64) - image[row, :-2]

        slot = self.slot(row)
        self.ixx[slot] = ix * ix
        self.iyy[slot] = iy * iy
        self.ixy[slot] = ix * iy
        self.rows_buffered = min(self.rows_buffered + 1, KERNEL_SIZE)

    @property
    def is_full(self) -> bool:
        return self.rows_buffered == KERNEL_SIZE


class _GaussianAccumulator:
    """Per-column smoothing sums for the row being finalized."""

    def __init__(self, width: int) -> None:
        self.gxx = np.zeros(width - 2, dtype=np.int64)
        self.gyy = np.zeros(width - 2, dtype=np.int64)
        self.gxy = np.zeros(width - 2, dtype=np.int64)

    def smooth(
        self, buffer: _DerivativeBuffer, center_row: int
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Smooth the buffered rows around center_row.

        Returns:
            (Gxx, Gyy, Gxy), each of length W-6, unnormalized
        """
        self.gxx[:] = 0
        self.gyy[:] = 0
        self.gxy[:] = 0

        # Vertical pass over the five buffered rows
        for k, weight in enumerate(GAUSSIAN_WEIGHTS):
            slot = buffer.slot(center_row - KERNEL_RADIUS + k)
            self.gxx += weight * buffer.ixx[slot]
            self.gyy += weight * buffer.iyy[slot]
            self.gxy += weight * buffer.ixy[slot]

        return (
            _smooth_horizontal(self.gxx),
            _smooth_horizontal(self.gyy),
            _smooth_horizontal(self.gxy),
        )


def _smooth_horizontal(values: np.ndarray) -> np.ndarray:
    n_out = len(values) - KERNEL_SIZE + 1
    out = np.zeros(n_out, dtype=np.int64)
    for k, weight in enumerate(GAUSSIAN_WEIGHTS):
        out += weight * values[k : k + n_out]
    return out


def _as_intensity_grid(frame: np.ndarray) -> np.ndarray:
    image = np.asarray(frame)

    if image.ndim != 2:
        raise InputError(
            f"Frame must be a 2-D grayscale grid, got shape {image.shape}"
        )

    height, width = image.shape
    if height < MIN_FRAME_SIZE or width < MIN_FRAME_SIZE:
        raise InputError(
            f"Frame must be at least {MIN_FRAME_SIZE}x{MIN_FRAME_SIZE}, "
            f"got {height}x{width}"
        )

    if not np.issubdtype(image.dtype, np.number) or np.issubdtype(
        image.dtype, np.complexfloating
    ):
        raise InputError(f"Frame must hold real intensities, got {image.dtype}")

    if np.issubdtype(image.dtype, np.floating):
        if not np.isfinite(image).all():
            raise InputError("Frame contains non-finite intensities")
        image = np.rint(image)

    if image.size and (image.min() < 0 or image.max() > 255):
        raise InputError("Frame intensities must lie in [0, 255]")

    grid = image.astype(np.int32)
    grid.flags.writeable = False
    return grid


class CornerDetector:
    """Harris corner detector with spatially bucketed output.

    The strength grid is divided into row_buckets x col_buckets cells and
    each cell keeps at most bucket_capacity of its strongest local maxima,
    which bounds the feature count and spreads features over the frame.

    Each call to detect() owns its buffers, so one detector can be shared
    between threads and repeated calls on the same frame give identical
    results.

    Example:
        >>> detector = CornerDetector()
        >>> feature_map = detector.detect(grayscale_image)
        >>> print(f"Detected {len(feature_map)} corners")
    """

    def __init__(
        self,
        harris_k: float = 0.06,
        window_size: int = 5,
        row_buckets: int = 5,
        col_buckets: int = 10,
        bucket_capacity: int = 100,
    ) -> None:
        """Initialize detector.

        Args:
            harris_k: Constant in det(M) - k * trace(M)^2. The smoothing sums
                are not divided by the kernel weight total, so k applies to
                the unnormalized second-moment matrix.
            window_size: Side of the square non-max suppression window (odd)
            row_buckets: Number of bucket rows
            col_buckets: Number of bucket columns
            bucket_capacity: Maximum features kept per bucket
        """
        if window_size < 3 or window_size % 2 == 0:
            raise ValueError(f"window_size must be an odd number >= 3, got {window_size}")
        if row_buckets < 1 or col_buckets < 1:
            raise ValueError("Bucket grid must have at least one row and column")
        if bucket_capacity < 1:
            raise ValueError(f"bucket_capacity must be positive, got {bucket_capacity}")

        self._k = harris_k
        self._radius = window_size // 2
        self._row_buckets = row_buckets
        self._col_buckets = col_buckets
        self._bucket_capacity = bucket_capacity

    @classmethod
    def from_config(cls, config: DetectorConfig) -> CornerDetector:
        """Create a detector from a DetectorConfig."""
        return cls(
            harris_k=config.harris_k,
            window_size=config.window_size,
            row_buckets=config.row_buckets,
            col_buckets=config.col_buckets,
            bucket_capacity=config.bucket_capacity,
        )

    def detect(self, frame: np.ndarray) -> FeatureMap:
        """Detect corners in a grayscale frame.

        Args:
            frame: HxW grid of intensities in [0, 255]

        Returns:
            FeatureMap holding the strength grid, the accepted features and
            the source intensities

        Raises:
            InputError: If the frame is not 2-D, smaller than 11x11, or holds
                values outside [0, 255]
        """
        image = _as_intensity_grid(frame)
        height, width = image.shape

        strengths = self.compute_strengths(image)
        buckets = self._suppress(strengths)

        selected: list[Feature] = []
        for bucket in buckets:
            bucket.sort(key=lambda f: (-f.strength, f.row, f.col))
            selected.extend(bucket[: self._bucket_capacity])

        selected.sort(key=lambda f: (f.row, f.col))

        presence = np.zeros((height, width), dtype=np.uint8)
        for feature in selected:
            presence[feature.row, feature.col] = 1

        strengths.flags.writeable = False
        presence.flags.writeable = False

        logger.debug(
            "Detected %d corners in %dx%d frame", len(selected), height, width
        )

        return FeatureMap(
            strengths=strengths,
            features=presence,
            image=image,
            keypoints=tuple(selected),
        )

    def compute_strengths(self, image: np.ndarray) -> np.ndarray:
        """Compute the Harris response grid in one streaming pass.

        Args:
            image: HxW intensity grid (validated, at least 11x11)

        Returns:
            (H-6)x(W-6) float64 grid; entry (i, j) belongs to image
            pixel (i + 3, j + 3)
        """
        height, width = image.shape
        strengths = np.zeros(
            (height - 2 * STRENGTH_OFFSET, width - 2 * STRENGTH_OFFSET),
            dtype=np.float64,
        )

        buffer = _DerivativeBuffer(width)
        accumulator = _GaussianAccumulator(width)

        for row in range(1, height - 1):
            buffer.push(image, row)
            if not buffer.is_full:
                continue

            # Rows row-4 .. row are buffered; finalize the middle one
            center = row - KERNEL_RADIUS
            gxx, gyy, gxy = accumulator.smooth(buffer, center)

            det = gxx * gyy - gxy * gxy
            trace = (gxx + gyy).astype(np.float64)
            strengths[center - STRENGTH_OFFSET] = det - self._k * trace * trace

        return strengths

    def bucket_index(self, i: int, j: int, shape: tuple[int, int]) -> int:
        """Return the bucket of strength grid cell (i, j).

        Each bucket spans rows // row_buckets strength rows (and likewise
        for columns); the last bucket row/column absorbs the remainder.
        """
        n_rows, n_cols = shape
        row_size = max(n_rows // self._row_buckets, 1)
        col_size = max(n_cols // self._col_buckets, 1)
        row_bucket = min(i // row_size, self._row_buckets - 1)
        col_bucket = min(j // col_size, self._col_buckets - 1)
        return row_bucket * self._col_buckets + col_bucket

    def _suppress(self, strengths: np.ndarray) -> list[list[Feature]]:
        """Collect strict local maxima of the strength grid into buckets."""
        buckets: list[list[Feature]] = [
            [] for _ in range(self._row_buckets * self._col_buckets)
        ]

        maxima = _strict_local_maxima(strengths, self._radius)
        last_accepted: dict[int, int] = {}

        # Keep the 11x11 patch inside the image for small windows
        edge = PATCH_RADIUS - STRENGTH_OFFSET
        n_rows, n_cols = strengths.shape

        # np.nonzero walks the grid in row-major order
        for i, j in zip(*np.nonzero(maxima)):
            i, j = int(i), int(j)
            if i < edge or j < edge or i >= n_rows - edge or j >= n_cols - edge:
                continue

            # Non-overlapping suppression: skip `radius` columns after a hit
            previous = last_accepted.get(i)
            if previous is not None and j <= previous + self._radius:
                continue
            last_accepted[i] = j

            feature = Feature(
                strength=float(strengths[i, j]),
                row=i + STRENGTH_OFFSET,
                col=j + STRENGTH_OFFSET,
            )
            buckets[self.bucket_index(i, j, strengths.shape)].append(feature)

        return buckets

    @property
    def harris_k(self) -> float:
        return self._k

    @property
    def bucket_capacity(self) -> int:
        return self._bucket_capacity

    @property
    def num_buckets(self) -> int:
        return self._row_buckets * self._col_buckets


def _strict_local_maxima(strengths: np.ndarray, radius: int) -> np.ndarray:
    """Mark cells strictly greater than every neighbour in their window.

    Cells closer than radius to the grid edge have an incomplete window and
    are never maxima. Ties are not maxima.
    """
    n_rows, n_cols = strengths.shape
    mask = np.zeros((n_rows, n_cols), dtype=bool)
    if n_rows <= 2 * radius or n_cols <= 2 * radius:
        return mask

    center = strengths[radius : n_rows - radius, radius : n_cols - radius]
    is_max = np.ones(center.shape, dtype=bool)
    for dr in range(-radius, radius + 1):
        for dc in range(-radius, radius + 1):
            if dr == 0 and dc == 0:
                continue
            neighbour = strengths[
                radius + dr : n_rows - radius + dr,
                radius + dc : n_cols - radius + dc,
            ]
            is_max &= center > neighbour

    mask[radius : n_rows - radius, radius : n_cols - radius] = is_max
    return mask
