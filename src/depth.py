"""
Depth-to-world projection for detected blobs.

Lifts 2D blob centres into 3D using the raw depth image and a camera
"unmap" function (pixel -> point on the camera's z=1 unit plane), rejecting
blobs whose depth is missing, out of range or cannot be unmapped. The
resulting points are expressed both in the depth sensor frame and in the
world frame of the current depth-to-world transform.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Union

import cv2
import numpy as np

from pose import CalibrationData

LOGGER = logging.getLogger(__name__)

INVALID_SAMPLE = -1.0

Pixel = Tuple[float, float]


class UnmapFunction(Protocol):
    """Maps a pixel (u, v) onto the camera unit plane (x, y), or None on failure."""

    def __call__(self, pixel: Pixel) -> Optional[Tuple[float, float]]:
        ...


Unmapper = Union[UnmapFunction, Callable[[Pixel], Optional[Tuple[float, float]]]]


class PinholeUnmapper:
    """Unmap function backed by a calibrated pinhole camera model."""

    def __init__(self, calibration: CalibrationData, image_size: Optional[Tuple[int, int]] = None):
        """
        Args:
            calibration: Camera matrix and distortion coefficients
            image_size: Optional (width, height); pixels outside are rejected
        """
        self.calibration = calibration
        self.image_size = image_size

    def __call__(self, pixel: Pixel) -> Optional[Tuple[float, float]]:
        u, v = float(pixel[0]), float(pixel[1])
        if not (np.isfinite(u) and np.isfinite(v)):
            return None
        if self.image_size is not None:
            width, height = self.image_size
            if u < 0 or v < 0 or u >= width or v >= height:
                return None

        src = np.array([[[u, v]]], dtype=np.float64)
        undistorted = cv2.undistortPoints(src, self.calibration.camera_matrix, self.calibration.dist_coeffs)
        x, y = undistorted.reshape(2)
        if not (np.isfinite(x) and np.isfinite(y)):
            return None
        return float(x), float(y)


@dataclass
class ValidatedBlob:
    """A blob with a trustworthy 3D location."""

    pixel: Pixel  # 2D location, kept for labelling
    depth_point: np.ndarray  # (3,) in the depth sensor frame, meters
    world_point: np.ndarray  # (3,) in the world frame, meters


@dataclass
class DepthProjectorConfig:
    """Configuration for depth validation of blobs."""

    invalid_depth_threshold: float = 4090.0  # Raw values above this are sensor "no data" codes
    depth_scale: float = 1000.0  # Raw units per meter

    @classmethod
    def from_dict(cls, config: Optional[Dict]) -> DepthProjectorConfig:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (config or {}).items() if k in known})


def bilinear_interpolate(image: np.ndarray, point: Pixel) -> float:
    """Sample a grayscale image at a non-integer location.

    Args:
        image: 2D uint8 or uint16 image
        point: (x, y) pixel location

    Returns:
        Interpolated value from the four surrounding pixels, or -1 for an
        empty image, an unsupported pixel format or an out-of-bounds point
    """
    if image is None or image.size == 0 or image.ndim != 2:
        return INVALID_SAMPLE
    if image.dtype not in (np.uint8, np.uint16):
        return INVALID_SAMPLE

    x, y = float(point[0]), float(point[1])
    rows, cols = image.shape
    if not (np.isfinite(x) and np.isfinite(y)):
        return INVALID_SAMPLE
    if x < 0 or y < 0 or x >= cols or y >= rows:
        return INVALID_SAMPLE

    x0, y0 = int(x), int(y)
    x1 = min(x0 + 1, cols - 1)
    y1 = min(y0 + 1, rows - 1)
    dx = x - x0
    dy = y - y0

    q00 = float(image[y0, x0])
    q01 = float(image[y0, x1])
    q10 = float(image[y1, x0])
    q11 = float(image[y1, x1])

    return (
        q00 * (1 - dx) * (1 - dy)
        + q01 * dx * (1 - dy)
        + q10 * (1 - dx) * dy
        + q11 * dx * dy
    )


class DepthProjector:
    """Validates 2D blobs against the depth image and projects them to 3D."""

    def __init__(self, config: Optional[Dict] = None):
        if isinstance(config, DepthProjectorConfig):
            self.config = config
        else:
            self.config = DepthProjectorConfig.from_dict(config)
        self.last_rejections: Dict[str, int] = {}

    def is_valid_depth(self, raw_depth: float) -> bool:
        """Whether a sampled raw depth can be trusted."""
        if raw_depth == INVALID_SAMPLE or raw_depth < 0:
            return False
        return raw_depth != 0 and raw_depth <= self.config.invalid_depth_threshold

    def project(self, unit_plane: Tuple[float, float], raw_depth: float) -> np.ndarray:
        """Point along the unit-plane ray at the measured (radial) depth."""
        ray = np.array([unit_plane[0], unit_plane[1], 1.0], dtype=np.float64)
        ray /= np.linalg.norm(ray)
        return ray * (raw_depth / self.config.depth_scale)

    def validate(
        self,
        depth_image: np.ndarray,
        depth_to_world: np.ndarray,
        blobs: Sequence[Pixel],
        unmap: Optional[Unmapper],
    ) -> List[ValidatedBlob]:
        """Build the list of blobs with valid 3D locations.

        Args:
            depth_image: Raw 16-bit depth image
            depth_to_world: 4x4 transform from the depth sensor frame to world
            blobs: Detected 2D blob centres
            unmap: Pixel -> unit plane function, None disables projection

        Returns:
            Validated blobs in input order
        """
        transform = np.asarray(depth_to_world, dtype=np.float64)
        if transform.shape != (4, 4):
            raise ValueError(f"depth_to_world must be 4x4, got shape {transform.shape}")

        self.last_rejections = {"depth": 0, "unmap": 0}
        validated: List[ValidatedBlob] = []

        if unmap is None:
            LOGGER.debug("No unmap function set; skipping 3D validation")
            return validated

        for pixel in blobs:
            raw_depth = bilinear_interpolate(depth_image, pixel)
            if not self.is_valid_depth(raw_depth):
                self.last_rejections["depth"] += 1
                continue

            unit_plane = unmap((float(pixel[0]), float(pixel[1])))
            if unit_plane is None:
                self.last_rejections["unmap"] += 1
                continue

            depth_point = self.project(unit_plane, raw_depth)
            world_point = (transform @ np.append(depth_point, 1.0))[:3]

            validated.append(ValidatedBlob(
                pixel=(float(pixel[0]), float(pixel[1])),
                depth_point=depth_point,
                world_point=world_point,
            ))

        if self.last_rejections["depth"] or self.last_rejections["unmap"]:
            LOGGER.debug(
                "Blob validation: %d kept, %d bad depth, %d unmap failures",
                len(validated),
                self.last_rejections["depth"],
                self.last_rejections["unmap"],
            )
        return validated
