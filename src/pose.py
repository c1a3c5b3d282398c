"""
Rigid pose estimation module.

Provides the point-set registration used to recover a tool's pose from
matched marker positions, plus small helpers for working with 4x4
homogeneous transforms and loading camera calibration data.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np
from scipy.spatial.transform import Rotation

LOGGER = logging.getLogger(__name__)


@dataclass
class CalibrationData:
    """Container for camera calibration parameters."""

    camera_matrix: np.ndarray
    dist_coeffs: np.ndarray


def _as_points(points) -> np.ndarray:
    arr = np.asarray(points, dtype=np.float64)
    if arr.size == 0:
        return arr.reshape(0, 3)
    return arr.reshape(-1, 3)


def compute_rigid_transform(src: Sequence, dst: Sequence) -> np.ndarray:
    """Compute the transform which maps ``src`` onto ``dst``.

    Least-squares rotation and translation (Kabsch) between two point sets
    given in corresponding order, so ``src[i]`` pairs with ``dst[i]``. No
    scaling is estimated and reflections are corrected, so the rotation block
    always has determinant +1. Every pair is weighted equally.

    Args:
        src: Points in the floating frame (Nx3)
        dst: Points in the target frame (Nx3)

    Returns:
        4x4 homogeneous transform, identity if the sets differ in length
    """
    transform = np.eye(4, dtype=np.float64)

    src_pts = _as_points(src)
    dst_pts = _as_points(dst)
    if len(src_pts) != len(dst_pts) or len(src_pts) == 0:
        LOGGER.debug("Rigid transform skipped: %d source vs %d target points", len(src_pts), len(dst_pts))
        return transform

    center_src = src_pts.mean(axis=0)
    center_dst = dst_pts.mean(axis=0)

    S = src_pts - center_src
    D = dst_pts - center_dst
    H = D.T @ S

    try:
        U, _, Vt = np.linalg.svd(H)
    except np.linalg.LinAlgError as e:
        LOGGER.warning("SVD failed during rigid registration: %s", e)
        return transform

    R = U @ Vt
    if np.linalg.det(R) < 0.0:
        Vt[2, :] *= -1.0
        R = U @ Vt

    t = center_dst - R @ center_src

    transform[:3, :3] = R
    transform[:3, 3] = t
    return transform


def invert_transform(transform: np.ndarray) -> np.ndarray:
    """Invert a rigid 4x4 transform without a general matrix inverse."""
    R = transform[:3, :3]
    t = transform[:3, 3]
    inverse = np.eye(4, dtype=np.float64)
    inverse[:3, :3] = R.T
    inverse[:3, 3] = -R.T @ t
    return inverse


def transform_points(transform: np.ndarray, points: Sequence) -> np.ndarray:
    """Apply a 4x4 homogeneous transform to Nx3 points."""
    pts = _as_points(points)
    homogeneous = np.hstack([pts, np.ones((len(pts), 1))])
    return (homogeneous @ np.asarray(transform, dtype=np.float64).T)[:, :3]


def quaternion_to_rotation_matrix(quaternion: Sequence[float]) -> np.ndarray:
    """Convert an (x, y, z, w) quaternion to a 3x3 rotation matrix."""
    q = np.asarray(quaternion, dtype=np.float64)
    if np.linalg.norm(q) < 1e-12:
        raise ValueError("Quaternion must be non-zero")
    return Rotation.from_quat(q).as_matrix()


def make_transform(rotation: np.ndarray, translation: Sequence[float]) -> np.ndarray:
    """Assemble a 4x4 transform from a 3x3 rotation and a translation."""
    transform = np.eye(4, dtype=np.float64)
    transform[:3, :3] = rotation
    transform[:3, 3] = np.asarray(translation, dtype=np.float64).reshape(3)
    return transform


def from_row_vector_convention(matrix: np.ndarray) -> np.ndarray:
    """Convert a row-vector (pre-multiplying) transform to column-vector form.

    Some device APIs hand out row-major matrices meant for ``p' = p @ M``;
    everything in this package uses ``p' = M @ p``. The two differ by a
    transpose, applied once where the matrix enters the tracker.
    """
    arr = np.asarray(matrix, dtype=np.float64)
    if arr.shape != (4, 4):
        raise ValueError(f"Expected a 4x4 matrix, got shape {arr.shape}")
    return arr.T.copy()


def serialize_pose(transform: np.ndarray) -> List[float]:
    """Flatten a 4x4 transform into 16 values in column-major order."""
    return np.asarray(transform, dtype=np.float64).flatten(order="F").tolist()


def rotation_angle_between(R1: np.ndarray, R2: np.ndarray) -> float:
    """Angle (radians) of the relative rotation between two rotation matrices."""
    return float(Rotation.from_matrix(R1.T @ R2).magnitude())


# ---------------------------------------------------------------------- #
# Calibration
# ---------------------------------------------------------------------- #
def load_calibration(config: Dict) -> CalibrationData:
    """Load calibration data from config or external file."""
    calibration_file = config.get("calibration_file")

    if calibration_file:
        data = _read_calibration_file(calibration_file)
    else:
        data = {
            "camera_matrix": config.get("camera_matrix"),
            "dist_coeffs": config.get("dist_coeffs"),
        }

    if data.get("camera_matrix") is None:
        raise ValueError("Camera matrix must be provided for unmapping pixels.")

    camera_matrix = np.array(data["camera_matrix"], dtype=np.float64).reshape(3, 3)
    dist_coeffs = _normalize_dist_coeffs(data.get("dist_coeffs"))

    LOGGER.info("Calibration loaded with camera matrix:\n%s", camera_matrix)
    return CalibrationData(camera_matrix=camera_matrix, dist_coeffs=dist_coeffs)


def _read_calibration_file(path: str) -> Dict:
    calib_path = Path(path)
    if not calib_path.exists():
        raise FileNotFoundError(f"Calibration file not found: {path}")
    with calib_path.open("r", encoding="utf-8") as f:
        payload = json.load(f)
    return payload


def _normalize_dist_coeffs(coeffs: Optional[Sequence[float]]) -> np.ndarray:
    if coeffs is None:
        coeffs = [0.0, 0.0, 0.0, 0.0, 0.0]
    arr = np.array(coeffs, dtype=np.float64).reshape(-1, 1)
    return arr
