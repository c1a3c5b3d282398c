"""
Point correspondence search between a known marker layout and observed points.

Matching is a constraint-satisfaction search over index permutations rather
than a least-squares fit: candidate index lists into the observed points are
grown one reference point at a time, and any candidate whose newest pair of
observed points is not as far apart as the matching pair of consecutive
reference points is discarded. Whatever survives all reference points is a
geometrically consistent assignment.

The number of live candidates can grow combinatorially with the number of
observed points, so callers handling busy scenes should bound the observed
pool or pass ``max_candidates``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

LOGGER = logging.getLogger(__name__)

DISTANCE_TOLERANCE = 0.0025  # meters
DUPLICATE_TOLERANCE = 0.001  # meters

IndexList = List[int]


@dataclass
class CorrespondenceResult:
    """Outcome of a correspondence search.

    ``candidates`` holds every surviving index list; each list has one entry
    per (deduplicated) reference point, indexing into the observed points
    handed to :func:`get_point_correspondence`. ``duplicates`` maps an
    observed index to the later indices that were merged into it.
    """

    success: bool
    candidates: List[IndexList] = field(default_factory=list)
    duplicates: Dict[int, List[int]] = field(default_factory=dict)

    @property
    def best(self) -> Optional[IndexList]:
        """First surviving candidate in enumeration order."""
        return self.candidates[0] if self.candidates else None

    def claimed_indices(self, candidate: IndexList) -> List[int]:
        """Every observed index a candidate accounts for, duplicates included."""
        claimed = set(candidate)
        for idx in candidate:
            claimed.update(self.duplicates.get(idx, []))
        return sorted(claimed)


def group_duplicates(
    points: Sequence,
    tolerance: float = DUPLICATE_TOLERANCE,
) -> Tuple[List[int], Dict[int, List[int]]]:
    """Group points lying within ``tolerance`` of an earlier kept point.

    Returns:
        (indices of the kept points, {kept index: indices merged into it})
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    kept: List[int] = []
    merged: Dict[int, List[int]] = {}
    for i, point in enumerate(pts):
        owner = next((j for j in kept if np.linalg.norm(pts[j] - point) < tolerance), None)
        if owner is None:
            kept.append(i)
        else:
            merged.setdefault(owner, []).append(i)
    return kept, merged


def remove_duplicates(
    points: Sequence,
    tolerance: float = DUPLICATE_TOLERANCE,
) -> Tuple[np.ndarray, List[int]]:
    """Drop points lying within ``tolerance`` of an earlier kept point.

    Returns:
        (kept points as Nx3, indices of the kept points in the input)
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    kept, _ = group_duplicates(pts, tolerance)
    return pts[kept], kept


def create_index_list(candidates: List[IndexList], point_count: int) -> bool:
    """Grow every candidate by one observed index (in place).

    An empty list is seeded with one single-index candidate per observed
    point. Otherwise each candidate is replaced by its extensions with every
    index it does not already use, in ascending order.

    Returns:
        False if no candidate could be produced
    """
    if not candidates:
        candidates.extend([i] for i in range(point_count))
        return len(candidates) > 0

    previous = list(candidates)
    candidates.clear()
    for candidate in previous:
        used = set(candidate)
        for i in range(point_count):
            if i not in used:
                candidates.append(candidate + [i])

    return len(candidates) > 0


def filter_by_distance(
    distance: float,
    candidates: List[IndexList],
    points: np.ndarray,
    tolerance: float = DISTANCE_TOLERANCE,
) -> bool:
    """Keep candidates whose last two observed points are ``distance`` apart.

    Returns:
        False if a candidate is too short to compare; the list is then left
        unchanged
    """
    if any(len(candidate) < 2 for candidate in candidates):
        return False

    candidates[:] = [
        candidate for candidate in candidates
        if abs(np.linalg.norm(points[candidate[-1]] - points[candidate[-2]]) - distance) <= tolerance
    ]
    return True


def _extend_and_filter(
    candidates: List[IndexList],
    points: np.ndarray,
    distance: float,
    tolerance: float,
) -> List[IndexList]:
    """create_index_list followed by filter_by_distance, without the doomed lists."""
    survivors: List[IndexList] = []
    point_count = len(points)
    for candidate in candidates:
        used = set(candidate)
        last = points[candidate[-1]]
        for i in range(point_count):
            if i in used:
                continue
            if abs(np.linalg.norm(points[i] - last) - distance) <= tolerance:
                survivors.append(candidate + [i])
    return survivors


def get_point_correspondence(
    reference_points: Sequence,
    observed_points: Sequence,
    max_candidates: Optional[int] = None,
    distance_tolerance: float = DISTANCE_TOLERANCE,
    duplicate_tolerance: float = DUPLICATE_TOLERANCE,
    prune_early: bool = True,
) -> CorrespondenceResult:
    """Find index lists mapping observed points onto the reference points.

    Args:
        reference_points: Known marker layout, in order (Nx3)
        observed_points: Unordered observed points (Mx3)
        max_candidates: Give up if more candidates than this survive a step
        distance_tolerance: Allowed error on each consecutive distance (m)
        duplicate_tolerance: Points closer than this are merged (m)
        prune_early: Check distances while extending candidates instead of
            materializing every extension first; both give the same result

    Returns:
        CorrespondenceResult; ``candidates[i][k]`` is the index in
        ``observed_points`` of the point matching reference point ``k``
    """
    reference, _ = remove_duplicates(reference_points, duplicate_tolerance)
    observed_pts = np.asarray(observed_points, dtype=np.float64).reshape(-1, 3)
    observed_index, duplicates = group_duplicates(observed_pts, duplicate_tolerance)
    observed = observed_pts[observed_index]

    if len(reference) < 3 or len(observed) < 3:
        LOGGER.debug(
            "Correspondence needs 3+ points (reference=%d, observed=%d)",
            len(reference),
            len(observed),
        )
        return CorrespondenceResult(success=False)

    candidates: List[IndexList] = []
    create_index_list(candidates, len(observed))

    for k in range(1, len(reference)):
        distance = float(np.linalg.norm(reference[k] - reference[k - 1]))
        if prune_early:
            candidates = _extend_and_filter(candidates, observed, distance, distance_tolerance)
        elif create_index_list(candidates, len(observed)):
            filter_by_distance(distance, candidates, observed, distance_tolerance)

        if not candidates:
            return CorrespondenceResult(success=False)

        if max_candidates is not None and len(candidates) > max_candidates:
            LOGGER.warning(
                "Correspondence search aborted: %d candidates exceed limit of %d",
                len(candidates),
                max_candidates,
            )
            return CorrespondenceResult(success=False)

    # Map deduplicated indices back onto the caller's observed list
    mapped = [[observed_index[i] for i in candidate] for candidate in candidates]
    LOGGER.debug("Correspondence found with %d surviving candidates", len(mapped))
    return CorrespondenceResult(success=True, candidates=mapped, duplicates=duplicates)
