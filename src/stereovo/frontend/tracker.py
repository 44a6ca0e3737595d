"""Feature tracking by SAD patch correlation with mutual consistency."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from ..errors import InputError, InsufficientDataError
from .corner_detector import PATCH_RADIUS, Feature, FeatureMap

if TYPE_CHECKING:
    from ..config import TrackerConfig

logger = logging.getLogger(__name__)

# (row, col) -> ((row, col), cost)
MatchTable = dict[tuple[int, int], tuple[tuple[int, int], int]]


@dataclass(frozen=True)
class Correspondence:
    """A mutually consistent pair of features and their SAD cost.

    Attributes:
        first: Feature in the first map (carries match_cost)
        second: Feature in the second map (carries match_cost)
        cost: Sum of absolute differences between the two patches
    """

    first: Feature
    second: Feature
    cost: int

    @classmethod
    def create(cls, first: Feature, second: Feature, cost: int) -> Correspondence:
        """Pair two features, stamping the cost on both."""
        cost = int(cost)
        return cls(
            first=first.with_match_cost(cost),
            second=second.with_match_cost(cost),
            cost=cost,
        )

    @property
    def disparity(self) -> float:
        """Return the horizontal offset first.col - second.col."""
        return float(self.first.col - self.second.col)


class Tracker:
    """Matches features between two FeatureMaps.

    For each feature in the first map, the best match is the feature in the
    second map with the lowest SAD over an 11x11 patch, searched within a
    window of +/- search_fraction of the image size. A pair is kept only
    if the match is mutual: the second feature's lowest-cost claimant is
    the first feature. Locally ambiguous matches are discarded.

    Works for both stereo (left/right) and temporal (t-1/t) pairs as long
    as the displacement stays inside the search window.
    """

    def __init__(
        self,
        patch_radius: int = PATCH_RADIUS,
        search_fraction: float = 0.1,
    ) -> None:
        """Initialize tracker.

        Args:
            patch_radius: Half-size of the compared patches. Features are
                guaranteed a PATCH_RADIUS margin, so larger values are invalid.
            search_fraction: Search window half-extent as a fraction of the
                image height (rows) and width (cols)
        """
        if not 0 < patch_radius <= PATCH_RADIUS:
            raise ValueError(
                f"patch_radius must be in [1, {PATCH_RADIUS}], got {patch_radius}"
            )
        if not 0 < search_fraction <= 1:
            raise ValueError(
                f"search_fraction must be in (0, 1], got {search_fraction}"
            )

        self._patch_radius = patch_radius
        self._search_fraction = search_fraction

    @classmethod
    def from_config(cls, config: TrackerConfig) -> Tracker:
        """Create a tracker from a TrackerConfig."""
        return cls(
            patch_radius=config.patch_radius,
            search_fraction=config.search_fraction,
        )

    def track(self, map_a: FeatureMap, map_b: FeatureMap) -> list[Correspondence]:
        """Return the mutual nearest-neighbour matches between two maps.

        Args:
            map_a: Features of the first image
            map_b: Features of the second image (same shape)

        Returns:
            Correspondences in row-major order of their first feature

        Raises:
            InputError: If the maps have different shapes
            InsufficientDataError: If either map holds no features
        """
        forward, backward = self.match_directional(map_a, map_b)

        correspondences = []
        for feature_a in map_a.keypoints:
            entry = forward.get(feature_a.coord)
            if entry is None:
                continue

            b_coord, cost = entry
            if backward.get(b_coord) != (feature_a.coord, cost):
                continue

            correspondences.append(
                Correspondence.create(feature_a, map_b.feature_at(*b_coord), cost)
            )

        logger.debug(
            "Tracked %d of %d features (%d candidate matches)",
            len(correspondences),
            len(map_a),
            len(forward),
        )
        return correspondences

    def match_directional(
        self, map_a: FeatureMap, map_b: FeatureMap
    ) -> tuple[MatchTable, MatchTable]:
        """Build the A->B best-match table and the B->A best-claimant table.

        Returns:
            (forward, backward). forward maps each A coordinate to its best
            B coordinate and cost. backward maps each claimed B coordinate
            to the lowest-cost A coordinate that chose it; a later claimant
            replaces the incumbent only with a strictly lower cost.
        """
        if map_a.image.shape != map_b.image.shape:
            raise InputError(
                f"Cannot track between maps of shape {map_a.image.shape} "
                f"and {map_b.image.shape}"
            )
        if len(map_a) == 0 or len(map_b) == 0:
            raise InsufficientDataError(
                f"No features to track ({len(map_a)} and {len(map_b)} available)"
            )

        r = self._patch_radius
        size = 2 * r + 1
        patches_b = sliding_window_view(map_b.image, (size, size))
        coords_b = np.array([kp.coord for kp in map_b.keypoints], dtype=np.int64)

        # Small epsilon so e.g. 70 * 0.1 does not floor to 6
        half_rows = int(map_a.height * self._search_fraction + 1e-9)
        half_cols = int(map_a.width * self._search_fraction + 1e-9)

        forward: MatchTable = {}
        backward: MatchTable = {}

        for feature_a in map_a.keypoints:
            row, col = feature_a.coord
            in_window = (
                (coords_b[:, 0] >= max(row - half_rows, 0))
                & (coords_b[:, 0] < min(row + half_rows, map_b.height))
                & (coords_b[:, 1] >= max(col - half_cols, 0))
                & (coords_b[:, 1] < min(col + half_cols, map_b.width))
            )
            candidates = coords_b[in_window]
            if len(candidates) == 0:
                continue

            patch_a = map_a.image[row - r : row + r + 1, col - r : col + r + 1]
            patches = patches_b[candidates[:, 0] - r, candidates[:, 1] - r]
            costs = np.abs(patches - patch_a).sum(axis=(1, 2))

            # argmin keeps the first (row-major) candidate on ties
            best = int(np.argmin(costs))
            b_coord = (int(candidates[best, 0]), int(candidates[best, 1]))
            cost = int(costs[best])

            forward[feature_a.coord] = (b_coord, cost)

            incumbent = backward.get(b_coord)
            if incumbent is None or cost < incumbent[1]:
                backward[b_coord] = (feature_a.coord, cost)

        return forward, backward

    @property
    def search_fraction(self) -> float:
        return self._search_fraction
