"""
Display buffer rendering.

Produces 8-bit images for visual feedback: the brightened IR image with
crosses on the marker centres of every tracked tool, and a depth map scaled
so 1 m maps to full brightness.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Tuple

import cv2
import numpy as np

from tracking.tools import Tool

LOGGER = logging.getLogger(__name__)

MARKER_COLOR = (100, 100, 100)
MARKER_SIZE = 25
MARKER_THICKNESS = 5


def label_image_with_tools(tools: Mapping[int, Tool], image: np.ndarray) -> np.ndarray:
    """Draw a cross at each observed marker centre (in place).

    Args:
        tools: Tool dictionary; only tools seen this frame have pixels
        image: 8-bit display image

    Returns:
        The same image, for chaining
    """
    for tool_id in sorted(tools):
        draw_markers(image, tools[tool_id].observed_pixels)
    return image


def draw_markers(image: np.ndarray, pixels: Iterable[Tuple[int, int]]) -> np.ndarray:
    for x, y in pixels:
        cv2.drawMarker(
            image,
            (int(x), int(y)),
            MARKER_COLOR,
            markerType=cv2.MARKER_CROSS,
            markerSize=MARKER_SIZE,
            thickness=MARKER_THICKNESS,
        )
    return image


def depth_display_image(depth_image: np.ndarray, invalid_threshold: float = 4090) -> np.ndarray:
    """Convert a raw 16-bit depth image into an 8-bit display image.

    Raw values above ``invalid_threshold`` are sensor "no data" codes and are
    zeroed; the remaining millimetre values are scaled by 255/1000.
    """
    if depth_image.ndim != 2 or depth_image.dtype != np.uint16:
        raise ValueError(f"Expected a 2D uint16 depth image, got {depth_image.dtype} with shape {depth_image.shape}")

    cleaned = depth_image.copy()
    cleaned[cleaned > invalid_threshold] = 0
    return cv2.convertScaleAbs(cleaned, alpha=255.0 / 1000.0)
