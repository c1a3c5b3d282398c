"""
Infrared tool tracker.

Ties the per-frame pipeline together:

1. Brighten the 16-bit AB image into 8 bits
2. Detect circular marker blobs in 2D
3. Validate blobs against the depth image and lift them into 3D
4. Match each tool's marker layout against the validated points and solve
   its pose, removing claimed points before moving on to the next tool
5. Optionally render display buffers

The tracker is synchronous and not thread-safe; callers sharing the
serialized output or display images with other threads must lock around
``process_frame``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, fields
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from depth import DepthProjector, DepthProjectorConfig, Unmapper, ValidatedBlob
from marker_detect import BlobDetector, BlobDetectorConfig, Pixel, rebalance_ir_image
from overlay import depth_display_image, label_image_with_tools
from pose import compute_rigid_transform, serialize_pose
from tracking.correspondence import get_point_correspondence
from tracking.tools import Tool, ToolDictionary, tool_dictionary_from_mapping

LOGGER = logging.getLogger(__name__)

RECORD_LENGTH = 18  # [id, visible, 16 pose elements]


@dataclass
class TrackerConfiguration:
    """Configuration for the tool tracker."""

    image_width: int = 512
    image_height: int = 512
    update_display: bool = False
    max_candidates: Optional[int] = None
    blob_detection: BlobDetectorConfig = field(default_factory=BlobDetectorConfig)
    depth_projection: DepthProjectorConfig = field(default_factory=DepthProjectorConfig)

    @classmethod
    def from_dict(cls, config: Optional[Dict]) -> TrackerConfiguration:
        config = dict(config or {})
        blob_cfg = BlobDetectorConfig.from_dict(config.pop("blob_detection", None))
        depth_cfg = DepthProjectorConfig.from_dict(config.pop("depth_projection", None))
        known = {f.name for f in fields(cls)}
        return cls(
            blob_detection=blob_cfg,
            depth_projection=depth_cfg,
            **{k: v for k, v in config.items() if k in known},
        )


@dataclass
class FrameResult:
    """Summary of one processed frame."""

    blob_count: int = 0
    validated_count: int = 0
    visible_tool_ids: List[int] = field(default_factory=list)
    processing_time: float = 0.0
    stage_times: Dict[str, float] = field(default_factory=dict)


@dataclass
class TrackingMetrics:
    """Accumulated tracking metrics for analysis."""

    total_frames: int = 0
    frames_with_visible_tools: int = 0
    total_blobs: int = 0
    total_validated: int = 0
    total_processing_time: float = 0.0

    @property
    def avg_blobs(self) -> float:
        return self.total_blobs / max(self.total_frames, 1)

    @property
    def avg_validated(self) -> float:
        return self.total_validated / max(self.total_frames, 1)

    @property
    def avg_processing_time(self) -> float:
        return self.total_processing_time / max(self.total_frames, 1)

    @property
    def visibility_rate(self) -> float:
        return self.frames_with_visible_tools / max(self.total_frames, 1) * 100

    def update(self, result: FrameResult):
        self.total_frames += 1
        self.total_blobs += result.blob_count
        self.total_validated += result.validated_count
        self.total_processing_time += result.processing_time
        if result.visible_tool_ids:
            self.frames_with_visible_tools += 1

    def to_dict(self) -> Dict:
        return {
            "total_frames": self.total_frames,
            "visibility_rate": self.visibility_rate,
            "avg_blobs": self.avg_blobs,
            "avg_validated": self.avg_validated,
            "avg_processing_time_ms": self.avg_processing_time * 1000,
        }


def update_tool_dictionary(
    validated_blobs: List[ValidatedBlob],
    tools: Mapping[int, Tool],
    max_candidates: Optional[int] = None,
) -> List[int]:
    """Match every tool against the frame's validated blobs.

    Tools are visited in ascending id order. Blobs claimed by a tool are
    removed from ``validated_blobs`` so no point can be assigned twice and
    later tools search a smaller pool.

    Returns:
        Ids of the tools found this frame
    """
    world_points = [blob.world_point for blob in validated_blobs]
    depth_points = [blob.depth_point for blob in validated_blobs]
    pixels = [blob.pixel for blob in validated_blobs]
    found: List[int] = []

    for tool_id in sorted(tools):
        tool = tools[tool_id]
        tool.reset_observation()

        result = get_point_correspondence(tool.geometry, world_points, max_candidates=max_candidates)
        if not result.success or result.best is None:
            continue
        index_list = result.best

        for idx in index_list:
            if 0 <= idx < len(world_points):
                tool.observed_world.append(world_points[idx])
                tool.observed_depth.append(depth_points[idx])
                tool.observed_pixels.append((int(round(pixels[idx][0])), int(round(pixels[idx][1]))))

        if len(tool.observed_world) != tool.marker_count:
            LOGGER.debug(
                "Tool %d: matched %d points for %d markers, skipping",
                tool_id,
                len(tool.observed_world),
                tool.marker_count,
            )
            tool.reset_observation()
            continue

        tool.pose_world = compute_rigid_transform(tool.geometry, tool.observed_world)
        tool.pose_depth = compute_rigid_transform(tool.geometry, tool.observed_depth)
        tool.visible = True
        found.append(tool_id)

        # Near-duplicates merged into a matched point are the same marker.
        # Largest index first so earlier deletions don't shift later ones
        for idx in reversed(result.claimed_indices(index_list)):
            del validated_blobs[idx]
            del world_points[idx]
            del depth_points[idx]
            del pixels[idx]

    return found


def serialize_tools(tools: Mapping[int, Tool]) -> List[float]:
    """Encode tools as ``[id, visible, 16 column-major pose values]`` records."""
    encoded: List[float] = []
    for tool_id in sorted(tools):
        tool = tools[tool_id]
        encoded.append(float(tool.tool_id))
        encoded.append(1.0 if tool.visible else 0.0)
        encoded.extend(serialize_pose(tool.pose_world))
    return encoded


class ToolTracker:
    """Tracks rigid tools fitted with IR markers from AB + depth frames."""

    def __init__(
        self,
        config: Optional[Union[Dict, TrackerConfiguration]] = None,
        tools: Optional[Mapping[int, Union[Tool, Sequence]]] = None,
        unmap: Optional[Unmapper] = None,
    ):
        if isinstance(config, TrackerConfiguration):
            self.config = config
        else:
            self.config = TrackerConfiguration.from_dict(config)

        self.blob_detector = BlobDetector(self.config.blob_detection)
        self.depth_projector = DepthProjector(self.config.depth_projection)
        self.unmap: Optional[Unmapper] = unmap

        self._tools = ToolDictionary()
        if tools:
            self.set_tools(tools)

        # Per-frame scratch, owned here and cleared at the start of each frame
        self._frame_blob_pixels: List[Pixel] = []
        self._frame_blobs: List[ValidatedBlob] = []

        shape = (self.config.image_height, self.config.image_width)
        self._ir_display = np.zeros(shape, dtype=np.uint8)
        self._depth_display = np.zeros(shape, dtype=np.uint8)

        self.metrics = TrackingMetrics()

    # ------------------------------------------------------------------ #
    # Setup
    # ------------------------------------------------------------------ #
    @property
    def tools(self) -> ToolDictionary:
        return self._tools

    @property
    def tracked_tools_count(self) -> int:
        return len(self._tools)

    def set_tools(self, tools: Mapping[int, Union[Tool, Sequence]]):
        """Replace the tool dictionary.

        Accepts Tool objects or raw ``{id: [[x, y, z], ...]}`` geometry.
        """
        if all(isinstance(t, Tool) for t in tools.values()):
            self._tools = ToolDictionary()
            for tool_id in sorted(tools):
                self._tools.add(tools[tool_id])
        else:
            self._tools = tool_dictionary_from_mapping(tools)
        LOGGER.info("Tracking %d tool(s)", len(self._tools))

    def set_unmap_function(self, unmap: Optional[Unmapper]):
        """Attach the depth camera's pixel-to-unit-plane function."""
        self.unmap = unmap

    def reset_metrics(self):
        self.metrics = TrackingMetrics()

    # ------------------------------------------------------------------ #
    # Per-frame processing
    # ------------------------------------------------------------------ #
    def _as_image(self, buffer: np.ndarray, name: str) -> np.ndarray:
        image = np.asarray(buffer)
        if image.dtype != np.uint16:
            raise ValueError(f"{name} image must be uint16, got {image.dtype}")
        shape = (self.config.image_height, self.config.image_width)
        if image.size != shape[0] * shape[1]:
            raise ValueError(f"{name} image has {image.size} pixels, expected {shape[1]}x{shape[0]}")
        return image.reshape(shape)

    def process_frame(
        self,
        ab_image: np.ndarray,
        depth_image: np.ndarray,
        depth_to_world: np.ndarray,
        update_display: Optional[bool] = None,
    ) -> FrameResult:
        """Run the full pipeline on one AB/depth frame pair.

        Args:
            ab_image: 16-bit infrared image, 2D or flat row-major
            depth_image: 16-bit depth image, 2D or flat row-major
            depth_to_world: 4x4 depth-camera-to-world transform (column vectors)
            update_display: Render display buffers; defaults to the config flag

        Returns:
            FrameResult with counts and stage timings
        """
        if update_display is None:
            update_display = self.config.update_display

        start = time.perf_counter()
        stage_times: Dict[str, float] = {}

        self._frame_blob_pixels.clear()
        self._frame_blobs.clear()

        ab = self._as_image(ab_image, "AB")
        depth = self._as_image(depth_image, "Depth")

        t0 = time.perf_counter()
        ir8 = rebalance_ir_image(ab)
        if update_display:
            # Blob detection binarizes ir8 in place
            np.copyto(self._ir_display, ir8)
        self._frame_blob_pixels.extend(self.blob_detector.detect(ir8))
        stage_times["detect"] = time.perf_counter() - t0

        t0 = time.perf_counter()
        self._frame_blobs.extend(
            self.depth_projector.validate(depth, depth_to_world, self._frame_blob_pixels, self.unmap)
        )
        stage_times["validate"] = time.perf_counter() - t0

        blob_count = len(self._frame_blob_pixels)
        validated_count = len(self._frame_blobs)

        t0 = time.perf_counter()
        found = update_tool_dictionary(self._frame_blobs, self._tools, self.config.max_candidates)
        stage_times["match"] = time.perf_counter() - t0

        if update_display:
            t0 = time.perf_counter()
            label_image_with_tools(self._tools, self._ir_display)
            np.copyto(
                self._depth_display,
                depth_display_image(depth, self.config.depth_projection.invalid_depth_threshold),
            )
            stage_times["display"] = time.perf_counter() - t0

        result = FrameResult(
            blob_count=blob_count,
            validated_count=validated_count,
            visible_tool_ids=found,
            processing_time=time.perf_counter() - start,
            stage_times=stage_times,
        )
        self.metrics.update(result)

        LOGGER.debug(
            "Frame: %d blobs, %d validated, visible tools %s (%.2f ms)",
            blob_count,
            validated_count,
            found,
            result.processing_time * 1000,
        )
        return result

    # ------------------------------------------------------------------ #
    # Outputs
    # ------------------------------------------------------------------ #
    def serialize(self) -> List[float]:
        """Flat ``[id, visible, 16 pose values]`` records in ascending id order."""
        return serialize_tools(self._tools)

    def get_display_images(self) -> Tuple[np.ndarray, np.ndarray]:
        """Copies of the latest (IR, depth) 8-bit display buffers."""
        return self._ir_display.copy(), self._depth_display.copy()
