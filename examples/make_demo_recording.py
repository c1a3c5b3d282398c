"""
Create a synthetic demo recording and matching tool configuration.

Renders a four-marker tool swinging in front of a static sensor into AB and
depth frames, so the tracker can be tried without hardware:

    python examples/make_demo_recording.py --output demo
    python src/irtooltrack_cli.py --recording demo/recording.npz --tools demo/tools.json --display
"""

import argparse
import logging
import os
import sys

import cv2
import numpy as np

# Add src directory to path for imports
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from pose import make_transform, quaternion_to_rotation_matrix, transform_points  # type: ignore
from tracking.tools import Tool, ToolDictionary, save_tool_config  # type: ignore
from utils import DEFAULT_CONFIG, setup_logging  # type: ignore
from video import Frame, save_recording  # type: ignore


LOGGER = logging.getLogger(__name__)

TOOL_ID = 1
TOOL_GEOMETRY = np.array([
    [0.0, 0.0, 0.0],
    [0.08, 0.0, 0.0],
    [0.08, 0.12, 0.0],
    [0.0, 0.05, 0.03],
])


def render_frame(points, camera_matrix, size):
    """Draw markers for camera-frame points into fresh AB/depth images."""
    width, height = size
    ab = np.full((height, width), 40, dtype=np.uint16)  # dim background
    depth = np.full((height, width), 1800, dtype=np.uint16)  # back wall

    fx, fy = camera_matrix[0, 0], camera_matrix[1, 1]
    cx, cy = camera_matrix[0, 2], camera_matrix[1, 2]
    for x, y, z in points:
        u = int(round(fx * x / z + cx))
        v = int(round(fy * y / z + cy))
        cv2.circle(depth, (u, v), 7, int(round(np.linalg.norm([x, y, z]) * 1000)), -1)
        cv2.circle(ab, (u, v), 5, 4000, -1)
    return ab, depth


def main():
    parser = argparse.ArgumentParser(description="Generate a synthetic IR tool tracking recording")
    parser.add_argument("--output", "-o", default="demo", help="Output directory")
    parser.add_argument("--frames", "-n", type=int, default=120, help="Number of frames")
    args = parser.parse_args()

    setup_logging()
    os.makedirs(args.output, exist_ok=True)

    tracker_cfg = DEFAULT_CONFIG["tracker"]
    size = (tracker_cfg["image_width"], tracker_cfg["image_height"])
    camera_matrix = np.array(DEFAULT_CONFIG["calibration"]["camera_matrix"], dtype=np.float64)

    frames = []
    for i in range(args.frames):
        swing = 0.3 * np.sin(2 * np.pi * i / args.frames)
        rotation = quaternion_to_rotation_matrix([0.1, np.sin(swing / 2), 0.0, np.cos(swing / 2)])
        pose = make_transform(rotation, [0.05 * np.sin(swing), -0.05, 0.45])
        ab, depth = render_frame(transform_points(pose, TOOL_GEOMETRY), camera_matrix, size)
        frames.append(Frame(index=i, ab=ab, depth=depth, depth_to_world=np.eye(4)))

    save_recording(os.path.join(args.output, "recording.npz"), frames)

    tools = ToolDictionary()
    tools.add(Tool.from_points(TOOL_ID, TOOL_GEOMETRY, name="Demo probe"))
    save_tool_config(tools, os.path.join(args.output, "tools.json"))

    LOGGER.info("Demo recording written to %s", args.output)


if __name__ == "__main__":
    main()
