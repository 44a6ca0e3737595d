"""Exception hierarchy for the stereo visual odometry core.

Only input-shape violations and total data insufficiency are expected to
reach callers. Geometry failures are recovered close to where they happen
(a single point or a single RANSAC hypothesis is dropped).
"""


class StereoVOError(Exception):
    """Base class for all stereovo errors."""


class InputError(StereoVOError, ValueError):
    """Input does not have the shape or size the algorithms require.

    Raised for frames that are not 2-D, frames too small for the derivative
    and patch margins, mismatched array shapes, and features placed too
    close to the image border.
    """


class GeometryError(StereoVOError):
    """A geometric computation is degenerate.

    Examples are a triangulation whose homogeneous coordinate is zero, or a
    minimal pose solve that fails for a particular sample.
    """


class InsufficientDataError(StereoVOError):
    """Not enough data to produce a result.

    Raised when there are fewer correspondences than a minimal sample, when
    every motion hypothesis is degenerate, or when there are no features to
    track. Callers must handle this explicitly; no default motion is ever
    substituted.
    """
