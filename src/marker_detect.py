"""
Marker detection module.

Finds the centres of infrared-reflective markers in the brightened AB
(active brightness) image produced by a depth sensor. Markers show up as
small, bright, near-circular blobs; candidates are segmented by a fixed
binary threshold and filtered by contour area and circularity.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, fields
from enum import Enum
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np

LOGGER = logging.getLogger(__name__)

Pixel = Tuple[float, float]


class BlobDetectionMethod(Enum):
    """Supported blob detection methods."""
    BASIC = "basic"  # Threshold + contour area/circularity filtering
    REFINED = "refined"  # BASIC, then sub-pixel ellipse fit on an upscaled crop


@dataclass
class BlobDetectorConfig:
    """Configuration for the blob detector."""

    method: str = "basic"
    binary_threshold: int = 180
    min_area: float = 5.0  # px^2
    max_area: float = 16384.0  # px^2, 1/16th of a 512x512 frame
    min_circularity: float = 0.7

    # Refined method only
    refine_target_size: int = 200  # Long side of the upscaled crop (px)
    refine_margin: int = 1  # Border added around each contour crop (px)

    @classmethod
    def from_dict(cls, config: Optional[Dict]) -> BlobDetectorConfig:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (config or {}).items() if k in known})


def rebalance_ir_image(raw_image: np.ndarray) -> np.ndarray:
    """Brighten a raw 16-bit AB image and convert it to 8 bits.

    Each pixel is divided by 4 before a saturating cast, which keeps the
    reflective markers near the top of the 8-bit range without clipping
    the whole frame.

    Args:
        raw_image: 2D uint16 AB image (left untouched)

    Returns:
        2D uint8 image
    """
    if raw_image.ndim != 2 or raw_image.dtype != np.uint16:
        raise ValueError(f"Expected a 2D uint16 image, got {raw_image.dtype} with shape {raw_image.shape}")
    shifted = raw_image >> 2
    return np.clip(shifted, 0, 255).astype(np.uint8)


def circularity(area: float, perimeter: float) -> float:
    """Roundness of a contour: 1.0 for a perfect circle."""
    if perimeter <= 0:
        return 0.0
    return (4.0 * math.pi * area) / (perimeter * perimeter)


class BlobDetector:
    """Detects circular marker blobs in 8-bit infrared frames."""

    def __init__(self, config: Optional[Dict] = None):
        if isinstance(config, BlobDetectorConfig):
            self.config = config
        else:
            self.config = BlobDetectorConfig.from_dict(config)
        self.method = BlobDetectionMethod(self.config.method.lower())

    def set_method(self, method: BlobDetectionMethod):
        """Switch between basic and refined detection."""
        self.method = method
        self.config.method = method.value
        LOGGER.info("Blob detection method set to %s", method.value)

    def detect(self, image: np.ndarray) -> List[Pixel]:
        """Detect blob centres in the given frame.

        The image is binarized in place; pass a copy if the original is
        still needed.

        Args:
            image: 2D uint8 brightened IR image

        Returns:
            List of (x, y) pixel coordinates in contour discovery order
        """
        if image.ndim != 2 or image.dtype != np.uint8:
            raise ValueError(f"Expected a 2D uint8 image, got {image.dtype} with shape {image.shape}")

        _, binary = cv2.threshold(image, self.config.binary_threshold, 255, cv2.THRESH_BINARY)
        image[...] = binary
        contours, _ = cv2.findContours(image, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

        if self.method == BlobDetectionMethod.REFINED:
            blobs = self._detect_refined(image, contours)
        else:
            blobs = self._detect_basic(contours)

        LOGGER.debug("Detected %d blobs from %d contours", len(blobs), len(contours))
        return blobs

    def _passes_area(self, area: float) -> bool:
        return self.config.min_area <= area <= self.config.max_area

    def _detect_basic(self, contours) -> List[Pixel]:
        blobs: List[Pixel] = []
        for contour in contours:
            area = cv2.contourArea(contour)
            if not self._passes_area(area):
                continue

            perimeter = cv2.arcLength(contour, True)
            if circularity(area, perimeter) < self.config.min_circularity:
                continue

            moments = cv2.moments(contour)
            if moments["m00"] == 0:
                continue
            blobs.append((moments["m10"] / moments["m00"], moments["m01"] / moments["m00"]))
        return blobs

    def _detect_refined(self, image: np.ndarray, contours) -> List[Pixel]:
        height, width = image.shape
        margin = self.config.refine_margin
        blobs: List[Pixel] = []

        for contour in contours:
            area = cv2.contourArea(contour)
            if not self._passes_area(area):
                continue

            x, y, w, h = cv2.boundingRect(contour)
            xmin = max(x - margin, 0)
            ymin = max(y - margin, 0)
            xmax = min(x + w + margin, width)
            ymax = min(y + h + margin, height)

            crop = image[ymin:ymax, xmin:xmax]
            scale = min(
                self.config.refine_target_size / crop.shape[1],
                self.config.refine_target_size / crop.shape[0],
            )
            large = cv2.resize(crop, (0, 0), fx=scale, fy=scale, interpolation=cv2.INTER_LINEAR)
            _, large = cv2.threshold(large, self.config.binary_threshold, 255, cv2.THRESH_BINARY)

            large_contours, _ = cv2.findContours(large, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
            if not large_contours:
                continue

            refined = large_contours[0]
            refined_area = cv2.contourArea(refined)
            refined_perimeter = cv2.arcLength(refined, True)
            if circularity(refined_area, refined_perimeter) < self.config.min_circularity:
                continue

            centre = self._fit_centre(refined)
            if centre is None:
                continue

            # resize() aligns pixel centres, not corners
            blobs.append((
                (centre[0] + 0.5) / scale - 0.5 + xmin,
                (centre[1] + 0.5) / scale - 0.5 + ymin,
            ))
        return blobs

    @staticmethod
    def _fit_centre(contour: np.ndarray) -> Optional[Pixel]:
        """Ellipse centre of a contour, or its moment centroid if too short to fit."""
        if len(contour) >= 5:
            (cx, cy), _, _ = cv2.fitEllipseDirect(contour)
            return float(cx), float(cy)

        moments = cv2.moments(contour)
        if moments["m00"] == 0:
            return None
        return moments["m10"] / moments["m00"], moments["m01"] / moments["m00"]
