"""
Main entry point for the IRTOOLTRACK application.

Replays a recorded AB/depth sequence through the tool tracker and writes
one JSON line of serialized tool poses per frame.

Usage:
    python irtooltrack_cli.py --recording rec.npz --tools tools.json
    python irtooltrack_cli.py --recording rec.npz --tools tools.json --display
    python irtooltrack_cli.py --recording rec.npz --tools tools.json --verbose
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

import cv2

from depth import PinholeUnmapper
from marker_detect import BlobDetectionMethod
from pose import load_calibration
from tracker import ToolTracker
from tracking.tools import load_tool_config
from utils import get_config, get_timestamp, setup_logging, validate_config
from video import RecordedFrameSource

LOGGER = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="IRTOOLTRACK - Infrared marker tool tracking from depth sensor recordings",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python irtooltrack_cli.py --recording rec.npz --tools tools.json
  python irtooltrack_cli.py --recording rec.npz --tools tools.json --display --refined

Controls (with --display):
  Q / ESC - Quit
        """,
    )

    parser.add_argument("--recording", "-r", required=True, help="Path to .npz recording")
    parser.add_argument("--tools", "-t", help="Path to JSON tool configuration")
    parser.add_argument("--config", "-c", help="Path to JSON configuration overrides")
    parser.add_argument("--output", "-o", help="JSON-lines output path (default: poses_<timestamp>.jsonl)")
    parser.add_argument(
        "--display", "-d",
        action="store_true",
        help="Show the labelled IR and depth display images",
    )
    parser.add_argument(
        "--refined",
        action="store_true",
        help="Use sub-pixel refined blob detection",
    )
    parser.add_argument(
        "--verbose", "-V",
        action="store_true",
        help="Enable verbose/debug logging",
    )

    return parser.parse_args()


def build_tracker(config) -> ToolTracker:
    """Create a tracker with tools and unmap function from configuration."""
    tracker_cfg = config["tracker"]
    tracker = ToolTracker(tracker_cfg)

    calibration = load_calibration(config["calibration"])
    tracker.set_unmap_function(
        PinholeUnmapper(calibration, image_size=(tracker_cfg["image_width"], tracker_cfg["image_height"]))
    )

    if config.get("tools_file"):
        tracker.set_tools(load_tool_config(config["tools_file"]))
    return tracker


def show_display(tracker: ToolTracker, config) -> bool:
    """Show display buffers; returns False when the user asks to quit."""
    display = config.get("display", {})
    window = display.get("window_name", "IRTOOLTRACK")
    ir_image, depth_image = tracker.get_display_images()
    if display.get("show_ir", True):
        cv2.imshow(f"{window} - IR", ir_image)
    if display.get("show_depth", True):
        cv2.imshow(f"{window} - Depth", depth_image)
    key = cv2.waitKey(1) & 0xFF
    return key not in (ord('q'), 27)


def main():
    """Main entry point."""
    args = parse_args()

    # Set up logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    setup_logging(level=log_level)

    LOGGER.info("Starting IRTOOLTRACK...")

    config = get_config(args.config)
    if args.tools:
        config["tools_file"] = args.tools
    if args.refined:
        config["tracker"]["blob_detection"]["method"] = BlobDetectionMethod.REFINED.value
    if not validate_config(config):
        sys.exit(1)

    try:
        tracker = build_tracker(config)
    except (ValueError, FileNotFoundError) as e:
        LOGGER.error("Failed to set up tracker: %s", e)
        sys.exit(1)

    if tracker.tracked_tools_count == 0:
        LOGGER.warning("No tools configured; poses will be empty")

    source = RecordedFrameSource(args.recording)
    if not source.initialize():
        sys.exit(1)

    output_path = args.output or f"poses_{get_timestamp()}.jsonl"
    try:
        with open(output_path, "w", encoding="utf-8") as out:
            for frame in source:
                result = tracker.process_frame(
                    frame.ab,
                    frame.depth,
                    frame.depth_to_world,
                    update_display=args.display,
                )
                record = {
                    "frame": frame.index,
                    "visible": result.visible_tool_ids,
                    "tools": tracker.serialize(),
                }
                out.write(json.dumps(record) + "\n")

                if args.display and not show_display(tracker, config):
                    LOGGER.info("User requested exit")
                    break
    except OSError as e:
        LOGGER.error("Failed to write output %s: %s", output_path, e)
        sys.exit(1)
    finally:
        source.cleanup()
        if args.display:
            cv2.destroyAllWindows()

    LOGGER.info("Tracking metrics: %s", tracker.metrics.to_dict())
    LOGGER.info("Poses written to %s", output_path)
    sys.exit(0)


if __name__ == "__main__":
    main()
