"""Linear (DLT) triangulation of a stereo correspondence."""

import numpy as np

from ..errors import GeometryError

# Unit-norm homogeneous solutions with |w| below this are points at infinity
_MIN_HOMOGENEOUS_W = 1e-12


def build_dlt_matrix(
    P1: np.ndarray, P2: np.ndarray, point1: np.ndarray, point2: np.ndarray
) -> np.ndarray:
    """Stack the 4x4 DLT system A for two views.

    Each view contributes y * P[2] - P[1] and P[0] - x * P[2], so that
    A @ X = 0 for the homogeneous point X seen at (x, y) in both views.
    """
    rows = []
    for P, (x, y) in ((P1, point1), (P2, point2)):
        rows.append(y * P[2] - P[1])
        rows.append(P[0] - x * P[2])
    return np.array(rows, dtype=np.float64)


def triangulate(
    P1: np.ndarray, P2: np.ndarray, point1: np.ndarray, point2: np.ndarray
) -> np.ndarray:
    """Triangulate a 3D point from two calibrated views.

    The homogeneous solution is the right singular vector of A^T A with
    the smallest singular value.

    Args:
        P1: 3x4 projection matrix of the first camera
        P2: 3x4 projection matrix of the second camera
        point1: (x, y) pixel position in the first image
        point2: (x, y) pixel position in the second image

    Returns:
        (3,) point in the frame P1 and P2 project from

    Raises:
        GeometryError: If the homogeneous coordinate is numerically zero
            or the solution is not finite
    """
    P1 = np.asarray(P1, dtype=np.float64)
    P2 = np.asarray(P2, dtype=np.float64)
    if P1.shape != (3, 4) or P2.shape != (3, 4):
        raise ValueError(
            f"Projection matrices must be 3x4, got {P1.shape} and {P2.shape}"
        )

    A = build_dlt_matrix(
        P1, P2, np.asarray(point1, dtype=np.float64), np.asarray(point2, dtype=np.float64)
    )

    # numpy orders singular values descending; the last row of V^T is the
    # null-space direction
    _, _, Vt = np.linalg.svd(A.T @ A)
    X = Vt[-1]

    w = X[3]
    if not np.isfinite(X).all() or abs(w) < _MIN_HOMOGENEOUS_W:
        raise GeometryError(
            f"Degenerate triangulation for {tuple(point1)} / {tuple(point2)}: "
            f"homogeneous w = {w:.3e}"
        )

    return X[:3] / w
