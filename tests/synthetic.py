"""
Synthetic AB/depth frame generation for tests.

Markers are rendered as bright disks in the AB image with a matching patch
of constant depth, at integer pixel centres and whole-millimetre depths, so
the 3D points the tracker recovers are known exactly.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from typing import List, Optional, Sequence

import cv2
import numpy as np

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from depth import PinholeUnmapper  # type: ignore
from pose import CalibrationData, invert_transform, transform_points  # type: ignore

IMAGE_SIZE = 512
FOCAL = 220.0
CENTRE = 256.0

BLOB_RADIUS = 5
DEPTH_RADIUS = 7
AB_MARKER_VALUE = 4000  # >> 2 saturates to 255 after rebalancing


def camera_matrix() -> np.ndarray:
    return np.array([
        [FOCAL, 0.0, CENTRE],
        [0.0, FOCAL, CENTRE],
        [0.0, 0.0, 1.0],
    ])


def make_unmapper() -> PinholeUnmapper:
    calibration = CalibrationData(camera_matrix=camera_matrix(), dist_coeffs=np.zeros((5, 1)))
    return PinholeUnmapper(calibration, image_size=(IMAGE_SIZE, IMAGE_SIZE))


@dataclass
class SyntheticFrame:
    ab: np.ndarray
    depth: np.ndarray
    pixels: List[tuple]
    camera_points: np.ndarray  # exact points the tracker should recover (depth frame)


def render_markers(
    camera_points: Sequence,
    ab: Optional[np.ndarray] = None,
    depth: Optional[np.ndarray] = None,
) -> SyntheticFrame:
    """Draw markers at the projections of ``camera_points`` (depth frame, meters)."""
    if ab is None:
        ab = np.zeros((IMAGE_SIZE, IMAGE_SIZE), dtype=np.uint16)
    if depth is None:
        depth = np.zeros((IMAGE_SIZE, IMAGE_SIZE), dtype=np.uint16)

    pixels = []
    actual = []
    for point in np.asarray(camera_points, dtype=np.float64).reshape(-1, 3):
        u = int(round(FOCAL * point[0] / point[2] + CENTRE))
        v = int(round(FOCAL * point[1] / point[2] + CENTRE))
        raw = int(round(np.linalg.norm(point) * 1000.0))

        cv2.circle(depth, (u, v), DEPTH_RADIUS, raw, -1)
        cv2.circle(ab, (u, v), BLOB_RADIUS, AB_MARKER_VALUE, -1)

        ray = np.array([(u - CENTRE) / FOCAL, (v - CENTRE) / FOCAL, 1.0])
        actual.append(ray / np.linalg.norm(ray) * raw / 1000.0)
        pixels.append((u, v))

    return SyntheticFrame(ab=ab, depth=depth, pixels=pixels, camera_points=np.array(actual))


def geometry_for_pose(observed_points: np.ndarray, pose: np.ndarray) -> np.ndarray:
    """Tool-frame geometry that ``pose`` maps exactly onto ``observed_points``."""
    return transform_points(invert_transform(pose), observed_points)


def min_pixel_separation(pixels: Sequence) -> float:
    pts = np.asarray(pixels, dtype=np.float64)
    best = np.inf
    for i in range(len(pts)):
        for j in range(i + 1, len(pts)):
            best = min(best, float(np.linalg.norm(pts[i] - pts[j])))
    return best
