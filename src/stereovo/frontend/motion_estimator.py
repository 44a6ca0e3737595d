"""Motion estimation with preemptive RANSAC and damped Gauss-Newton refinement.

Given 3D points (triangulated in a reference camera frame) and their 2D
observations in the current image, estimates the rotation and translation
that map reference-frame points into the current camera.

Stages:
    GENERATE  draw minimal samples and solve a minimal PnP for each
    SCORE     score every hypothesis over fixed-size groups of points with
              a heavy-tailed log-likelihood; keep the best
    REFINE    iterate damped Gauss-Newton on the winner's 6 pose parameters
"""

from __future__ import annotations

import contextlib
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterable

import cv2
import numpy as np
from scipy.linalg import LinAlgError, cho_factor, cho_solve

from ..errors import GeometryError, InputError, InsufficientDataError
from .pose import SE3

if TYPE_CHECKING:
    from ..config import RansacConfig
    from .stereo_camera import StereoRig

logger = logging.getLogger(__name__)

# solvePnP flags that accept exactly four points
FOUR_POINT_SOLVERS = (cv2.SOLVEPNP_AP3P, cv2.SOLVEPNP_P3P)


@dataclass
class MotionHypothesis:
    """A candidate camera motion and its aggregate score.

    Attributes:
        rvec: Rodrigues rotation vector (3,)
        tvec: Translation vector (3,)
        score: Sum over all scored points of -log(1 + squared reprojection
            error); higher is better
    """

    rvec: np.ndarray
    tvec: np.ndarray
    score: float = 0.0

    def __post_init__(self) -> None:
        self.rvec = np.asarray(self.rvec, dtype=np.float64).flatten()
        self.tvec = np.asarray(self.tvec, dtype=np.float64).flatten()
        if self.rvec.shape != (3,) or self.tvec.shape != (3,):
            raise ValueError(
                f"rvec and tvec must have 3 values, got {self.rvec.shape} "
                f"and {self.tvec.shape}"
            )

    @property
    def rotation(self) -> np.ndarray:
        """Return the 3x3 rotation matrix."""
        R, _ = cv2.Rodrigues(self.rvec)
        return R

    @property
    def translation(self) -> np.ndarray:
        return self.tvec.copy()

    @property
    def pose(self) -> SE3:
        """Return T_current_reference as an SE3."""
        return SE3.from_rvec_tvec(self.rvec, self.tvec)

    @property
    def params(self) -> np.ndarray:
        """Return the 6 refinement parameters [rvec, tvec]."""
        return np.concatenate([self.rvec, self.tvec])

    def is_finite(self) -> bool:
        return bool(np.isfinite(self.rvec).all() and np.isfinite(self.tvec).all())

    def copy(self) -> MotionHypothesis:
        return MotionHypothesis(self.rvec.copy(), self.tvec.copy(), self.score)


@dataclass
class MotionResult:
    """Outcome of a motion estimate.

    Attributes:
        hypothesis: Refined winning hypothesis
        initial: Winning hypothesis before refinement
        inliers: Boolean mask of the points used for refinement
        num_hypotheses: Hypotheses that survived generation
        initial_error: RMS reprojection error (pixels) of the unrefined
            winner over the refinement points
        reprojection_error: RMS reprojection error (pixels) after refinement
        iterations: Refinement iterations performed
    """

    hypothesis: MotionHypothesis
    initial: MotionHypothesis
    inliers: np.ndarray
    num_hypotheses: int
    initial_error: float
    reprojection_error: float
    iterations: int

    @property
    def num_inliers(self) -> int:
        return int(np.sum(self.inliers))

    @property
    def pose(self) -> SE3:
        return self.hypothesis.pose


@dataclass(frozen=True)
class _Problem:
    """Read-only data shared by all workers during one estimate."""

    points_3d: np.ndarray  # (N, 3)
    points_2d: np.ndarray  # (N, 2)
    camera_matrix: np.ndarray
    distortion: np.ndarray

    def __len__(self) -> int:
        return len(self.points_3d)

    def project(
        self, hypothesis: MotionHypothesis, index: slice | np.ndarray = slice(None)
    ) -> np.ndarray:
        points = self.points_3d[index]
        if len(points) == 0:
            return np.empty((0, 2), dtype=np.float64)

        projected, _ = cv2.projectPoints(
            points.reshape(-1, 1, 3),
            hypothesis.rvec,
            hypothesis.tvec,
            self.camera_matrix,
            self.distortion,
        )
        return projected.reshape(-1, 2)

    def squared_errors(
        self, hypothesis: MotionHypothesis, index: slice | np.ndarray = slice(None)
    ) -> np.ndarray:
        diff = self.project(hypothesis, index) - self.points_2d[index]
        return np.sum(diff * diff, axis=1)


class MotionEstimator:
    """Estimates camera motion from 3D-2D correspondences.

    Preemptive RANSAC: a fixed number of minimal-sample hypotheses are
    generated up front and scored against the data in groups of
    group_size points. With preemptive=False (the default) every
    hypothesis sees every group; with preemptive=True the weaker half is
    dropped after each group. The winner is refined by damped
    Gauss-Newton with a fixed damping term.

    Example:
        >>> estimator = MotionEstimator(seed=0)
        >>> result = estimator.estimate_motion(points_3d, points_2d, rig)
        >>> print(result.pose, result.reprojection_error)
    """

    def __init__(
        self,
        num_hypotheses: int = 500,
        sample_size: int = 4,
        group_size: int = 10,
        preemptive: bool = False,
        max_iterations: int = 100,
        damping: float = 0.1,
        epsilon: float = 0.01,
        inlier_threshold: float | None = 3.0,
        seed: int | None = None,
        num_workers: int = 1,
        pnp_method: int | None = None,
    ) -> None:
        """Initialize motion estimator.

        Args:
            num_hypotheses: Minimal samples drawn per estimate
            sample_size: Points per minimal sample. AP3P and P3P take exactly 4.
            group_size: Points per scoring group; the last may be short
            preemptive: Drop the weaker half of the hypotheses after each group
            max_iterations: Refinement iteration cap
            damping: Fixed value added to the diagonal of J^T J
            epsilon: Refinement stops once the update norm falls below this
            inlier_threshold: Points whose reprojection error under the
                RANSAC winner exceeds this (pixels) are left out of
                refinement. None refines on all points.
            seed: Seed for sample drawing. Each estimate restarts from it,
                so repeated calls on the same data agree.
            num_workers: Threads used for generation and scoring
            pnp_method: OpenCV solvePnP flag for the minimal solver. None
                picks AP3P for 4-point samples and EPnP for larger ones.
        """
        if sample_size < 4:
            raise ValueError(f"sample_size must be at least 4, got {sample_size}")
        if pnp_method is None:
            pnp_method = cv2.SOLVEPNP_AP3P if sample_size == 4 else cv2.SOLVEPNP_EPNP
        if pnp_method in FOUR_POINT_SOLVERS and sample_size != 4:
            raise ValueError(
                f"solvePnP method {pnp_method} needs sample_size 4, got {sample_size}"
            )
        if num_hypotheses < 1 or group_size < 1 or num_workers < 1:
            raise ValueError(
                "num_hypotheses, group_size and num_workers must be positive"
            )

        self._num_hypotheses = num_hypotheses
        self._sample_size = sample_size
        self._group_size = group_size
        self._preemptive = preemptive
        self._max_iterations = max_iterations
        self._damping = damping
        self._epsilon = epsilon
        self._inlier_threshold = inlier_threshold
        self._seed = seed
        self._num_workers = num_workers
        self._pnp_method = pnp_method

    @classmethod
    def from_config(cls, config: RansacConfig) -> MotionEstimator:
        """Create an estimator from a RansacConfig."""
        return cls(
            num_hypotheses=config.num_hypotheses,
            sample_size=config.sample_size,
            group_size=config.group_size,
            preemptive=config.preemptive,
            max_iterations=config.max_iterations,
            damping=config.damping,
            epsilon=config.epsilon,
            inlier_threshold=config.inlier_threshold,
            seed=config.seed,
            num_workers=config.num_workers,
        )

    def estimate_motion(
        self,
        points_3d: np.ndarray,
        points_2d: np.ndarray,
        rig: StereoRig,
    ) -> MotionResult:
        """Estimate the motion of the rig's reference camera.

        Args:
            points_3d: Nx3 points in the reference frame
            points_2d: Nx2 raw (distorted) pixels observed in the current
                reference-camera image
            rig: Calibrated rig; camera 1 intrinsics/distortion are used

        Returns:
            MotionResult with the refined winning hypothesis

        Raises:
            InputError: If the arrays are malformed or of different lengths
            InsufficientDataError: If there are fewer points than a minimal
                sample, or every hypothesis is degenerate
        """
        problem = self._build_problem(points_3d, points_2d, rig)
        rng = np.random.default_rng(self._seed)
        samples = self._draw_samples(len(problem), rng)

        with self._executor() as executor:
            hypotheses = self._generate(problem, samples, executor)
            if not hypotheses:
                raise InsufficientDataError(
                    f"All {len(samples)} minimal samples were degenerate"
                )
            winner = self._score(problem, hypotheses, executor)

        if not np.isfinite(winner.score):
            raise InsufficientDataError("No hypothesis produced a finite score")

        initial = winner.copy()
        inliers = self._inlier_mask(problem, winner)

        initial_error = _rms(problem.squared_errors(winner, inliers))
        iterations = 0
        if np.sum(inliers) >= self._sample_size:
            iterations = self._refine(problem, winner, inliers)
        else:
            logger.debug(
                "Skipping refinement: %d inliers below sample size %d",
                int(np.sum(inliers)),
                self._sample_size,
            )
        reprojection_error = _rms(problem.squared_errors(winner, inliers))

        winner.score = self._total_score(problem, winner)

        logger.debug(
            "Motion estimate: %d hypotheses, %d/%d inliers, "
            "RMS error %.3f -> %.3f px in %d iterations",
            len(hypotheses),
            int(np.sum(inliers)),
            len(problem),
            initial_error,
            reprojection_error,
            iterations,
        )

        return MotionResult(
            hypothesis=winner,
            initial=initial,
            inliers=inliers,
            num_hypotheses=len(hypotheses),
            initial_error=initial_error,
            reprojection_error=reprojection_error,
            iterations=iterations,
        )

    def _build_problem(
        self, points_3d: np.ndarray, points_2d: np.ndarray, rig: StereoRig
    ) -> _Problem:
        points_3d = np.asarray(points_3d, dtype=np.float64)
        points_2d = np.asarray(points_2d, dtype=np.float64)

        if points_3d.ndim != 2 or points_3d.shape[1] != 3:
            raise InputError(f"points_3d must be Nx3, got {points_3d.shape}")
        if points_2d.ndim != 2 or points_2d.shape[1] != 2:
            raise InputError(f"points_2d must be Nx2, got {points_2d.shape}")
        if len(points_3d) != len(points_2d):
            raise InputError(
                f"Got {len(points_3d)} 3D points but {len(points_2d)} 2D points"
            )
        if not (np.isfinite(points_3d).all() and np.isfinite(points_2d).all()):
            raise InputError("Correspondences contain non-finite coordinates")

        if len(points_3d) < self._sample_size:
            raise InsufficientDataError(
                f"Need at least {self._sample_size} correspondences, "
                f"got {len(points_3d)}"
            )

        return _Problem(
            points_3d=points_3d,
            points_2d=points_2d,
            camera_matrix=np.array(rig.camera_matrix, dtype=np.float64),
            distortion=np.array(rig.distortion, dtype=np.float64),
        )

    def _draw_samples(self, n_points: int, rng: np.random.Generator) -> np.ndarray:
        """Draw independent uniform samples without replacement.

        All samples are drawn on the calling thread so the result does not
        depend on the number of workers.
        """
        return np.array(
            [
                rng.choice(n_points, size=self._sample_size, replace=False)
                for _ in range(self._num_hypotheses)
            ],
            dtype=np.int64,
        )

    def _executor(self):
        if self._num_workers <= 1:
            return contextlib.nullcontext(None)
        return ThreadPoolExecutor(max_workers=self._num_workers)

    def _generate(
        self,
        problem: _Problem,
        samples: np.ndarray,
        executor: ThreadPoolExecutor | None,
    ) -> list[MotionHypothesis]:
        """GENERATE: one minimal PnP solve per sample.

        A failed solve drops only that hypothesis.
        """

        def solve(sample: np.ndarray) -> MotionHypothesis | None:
            try:
                return self._solve_sample(problem, sample)
            except GeometryError as exc:
                logger.debug("Discarding hypothesis: %s", exc)
                return None

        results = _parallel_map(executor, solve, samples)
        hypotheses = [h for h in results if h is not None]

        logger.debug(
            "Generated %d hypotheses from %d samples", len(hypotheses), len(samples)
        )
        return hypotheses

    def _solve_sample(self, problem: _Problem, sample: np.ndarray) -> MotionHypothesis:
        object_points = np.ascontiguousarray(problem.points_3d[sample].reshape(-1, 1, 3))
        image_points = np.ascontiguousarray(problem.points_2d[sample].reshape(-1, 1, 2))

        try:
            success, rvec, tvec = cv2.solvePnP(
                object_points,
                image_points,
                problem.camera_matrix,
                problem.distortion,
                flags=self._pnp_method,
            )
        except cv2.error as exc:
            raise GeometryError(f"Minimal pose solver failed: {exc}") from exc

        if not success or rvec is None or tvec is None:
            raise GeometryError("Minimal pose solver found no solution")

        hypothesis = MotionHypothesis(rvec=rvec, tvec=tvec)
        if not hypothesis.is_finite():
            raise GeometryError("Minimal pose solver returned non-finite pose")
        return hypothesis

    def _score(
        self,
        problem: _Problem,
        hypotheses: list[MotionHypothesis],
        executor: ThreadPoolExecutor | None,
    ) -> MotionHypothesis:
        """SCORE: accumulate group scores and return the best hypothesis.

        Ties go to the earliest hypothesis.
        """
        alive = list(range(len(hypotheses)))

        for start in range(0, len(problem), self._group_size):
            group = slice(start, start + self._group_size)

            contributions = _parallel_map(
                executor,
                lambda i: self._group_score(problem, hypotheses[i], group),
                alive,
            )
            for i, contribution in zip(alive, contributions):
                hypotheses[i].score += contribution

            if self._preemptive and len(alive) > 1:
                ranked = sorted(alive, key=lambda i: -hypotheses[i].score)
                alive = sorted(ranked[: (len(ranked) + 1) // 2])

        best = hypotheses[alive[0]]
        for i in alive[1:]:
            if hypotheses[i].score > best.score:
                best = hypotheses[i]
        return best

    @staticmethod
    def _group_score(
        problem: _Problem, hypothesis: MotionHypothesis, group: slice | np.ndarray
    ) -> float:
        """Return -log(prod(1 + e_i)) over a group, as a sum of logs."""
        errors = problem.squared_errors(hypothesis, group)
        score = -float(np.sum(np.log1p(errors)))
        # NaN would never lose a comparison; treat it as the worst score
        return score if np.isfinite(score) else -np.inf

    def _total_score(self, problem: _Problem, hypothesis: MotionHypothesis) -> float:
        return sum(
            self._group_score(problem, hypothesis, slice(start, start + self._group_size))
            for start in range(0, len(problem), self._group_size)
        )

    def _inlier_mask(self, problem: _Problem, hypothesis: MotionHypothesis) -> np.ndarray:
        if self._inlier_threshold is None:
            return np.ones(len(problem), dtype=bool)
        errors = problem.squared_errors(hypothesis)
        return errors < self._inlier_threshold**2

    def _refine(
        self,
        problem: _Problem,
        hypothesis: MotionHypothesis,
        mask: np.ndarray,
    ) -> int:
        """REFINE: damped Gauss-Newton on the hypothesis, in place.

        Solves (J^T J + damping * I) delta = J^T r by Cholesky, where r is
        observed minus projected. A step that would raise the summed
        squared residual ends refinement with the current pose kept.

        Returns:
            Number of iterations performed
        """
        object_points = problem.points_3d[mask].reshape(-1, 1, 3)
        observed = problem.points_2d[mask].reshape(-1)
        params = hypothesis.params
        cost = _sum_squares(problem, object_points, observed, params)
        damping = self._damping * np.eye(6)

        iteration = 0
        while iteration < self._max_iterations:
            iteration += 1

            projected, jacobian = cv2.projectPoints(
                object_points,
                params[:3],
                params[3:],
                problem.camera_matrix,
                problem.distortion,
            )
            # Columns: rvec (3), tvec (3), then intrinsics and distortion
            J = jacobian[:, :6]
            residuals = observed - projected.reshape(-1)

            try:
                delta = cho_solve(cho_factor(J.T @ J + damping), J.T @ residuals)
            except (LinAlgError, ValueError) as exc:
                logger.debug("Refinement stopped, normal equations singular: %s", exc)
                break

            candidate = params + delta
            candidate_cost = _sum_squares(problem, object_points, observed, candidate)
            if not np.isfinite(candidate_cost) or candidate_cost > cost:
                break

            params, cost = candidate, candidate_cost
            if np.linalg.norm(delta) < self._epsilon:
                break

        hypothesis.rvec = params[:3].copy()
        hypothesis.tvec = params[3:].copy()
        return iteration

    @property
    def num_hypotheses(self) -> int:
        return self._num_hypotheses

    @property
    def preemptive(self) -> bool:
        return self._preemptive


def _sum_squares(
    problem: _Problem,
    object_points: np.ndarray,
    observed: np.ndarray,
    params: np.ndarray,
) -> float:
    projected, _ = cv2.projectPoints(
        object_points, params[:3], params[3:], problem.camera_matrix, problem.distortion
    )
    residuals = observed - projected.reshape(-1)
    return float(residuals @ residuals)


def _rms(squared_errors: np.ndarray) -> float:
    if len(squared_errors) == 0:
        return 0.0
    return float(np.sqrt(np.mean(squared_errors)))


def _parallel_map(
    executor: ThreadPoolExecutor | None, fn: Callable, items: Iterable
) -> list:
    if executor is None:
        return [fn(item) for item in items]
    return list(executor.map(fn, items))
