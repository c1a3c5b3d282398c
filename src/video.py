"""
Recorded frame input.

Replays AB/depth frame pairs with their depth-to-world transforms from a
``.npz`` recording, so the tracker can be run and tested without a live
sensor. Recordings hold three stacked arrays:

- ``ab``: (F, H, W) uint16 infrared images
- ``depth``: (F, H, W) uint16 depth images
- ``depth_to_world``: (F, 4, 4) transforms

and an optional scalar ``row_major`` flag for transforms captured in
row-vector convention.
"""

import logging
import os
from dataclasses import dataclass
from typing import Iterator, List, Optional

import numpy as np

from pose import from_row_vector_convention


@dataclass
class Frame:
    """One AB/depth frame pair with its sensor pose."""

    index: int
    ab: np.ndarray
    depth: np.ndarray
    depth_to_world: np.ndarray


class RecordedFrameSource:
    """Handles playback of recorded sensor frames."""

    REQUIRED_ARRAYS = ('ab', 'depth', 'depth_to_world')

    def __init__(self, path, config=None):
        """Initialize frame source.

        Args:
            path: Path to the .npz recording
            config: Configuration dictionary
        """
        self.path = path
        self.config = config or {}
        self.logger = logging.getLogger(__name__)

        self._ab: Optional[np.ndarray] = None
        self._depth: Optional[np.ndarray] = None
        self._poses: Optional[np.ndarray] = None

        self.max_frames = self.config.get('max_frames')

    def initialize(self):
        """Load the recording.

        Returns:
            bool: True if the recording is usable, False otherwise
        """
        self.cleanup()

        if not os.path.exists(self.path):
            self.logger.error(f"Recording not found: {self.path}")
            return False

        try:
            with np.load(self.path) as data:
                missing = [name for name in self.REQUIRED_ARRAYS if name not in data.files]
                if missing:
                    self.logger.error(f"Recording {self.path} is missing arrays: {missing}")
                    return False

                ab = data['ab']
                depth = data['depth']
                poses = data['depth_to_world'].astype(np.float64)
                row_major = bool(data['row_major']) if 'row_major' in data.files else False
        except (OSError, ValueError) as e:
            self.logger.error(f"Failed to read recording {self.path}: {e}")
            return False

        if ab.shape != depth.shape or ab.ndim != 3:
            self.logger.error(f"AB {ab.shape} and depth {depth.shape} stacks must match as (F, H, W)")
            return False
        if poses.shape != (ab.shape[0], 4, 4):
            self.logger.error(f"Expected {ab.shape[0]} 4x4 transforms, got shape {poses.shape}")
            return False

        if row_major:
            poses = np.stack([from_row_vector_convention(p) for p in poses])

        self._ab = ab.astype(np.uint16, copy=False)
        self._depth = depth.astype(np.uint16, copy=False)
        self._poses = poses

        self.logger.info(f"Recording loaded: {self.path} ({len(self)} frames, {ab.shape[2]}x{ab.shape[1]})")
        return True

    def __len__(self):
        if self._ab is None:
            return 0
        count = self._ab.shape[0]
        return min(count, self.max_frames) if self.max_frames else count

    def __iter__(self) -> Iterator[Frame]:
        for index in range(len(self)):
            yield self.get_frame(index)

    def get_frame(self, index):
        """Return the frame at ``index``.

        Returns:
            Frame or None if out of range
        """
        if self._ab is None or not 0 <= index < len(self):
            return None
        return Frame(
            index=index,
            ab=self._ab[index],
            depth=self._depth[index],
            depth_to_world=self._poses[index],
        )

    def get_frame_info(self):
        """Get information about the loaded recording.

        Returns:
            dict: Frame information
        """
        if self._ab is None:
            return {}

        return {
            'frames': len(self),
            'width': int(self._ab.shape[2]),
            'height': int(self._ab.shape[1]),
            'path': str(self.path),
        }

    def cleanup(self):
        """Release loaded arrays."""
        if self._ab is not None:
            self._ab = None
            self._depth = None
            self._poses = None
            self.logger.info("Frame source cleaned up")


def save_recording(path, frames: List[Frame], row_major=False):
    """Write frames to a .npz recording readable by RecordedFrameSource."""
    np.savez_compressed(
        path,
        ab=np.stack([f.ab for f in frames]).astype(np.uint16),
        depth=np.stack([f.depth for f in frames]).astype(np.uint16),
        depth_to_world=np.stack([f.depth_to_world for f in frames]).astype(np.float64),
        row_major=np.array(row_major),
    )
    logging.getLogger(__name__).info(f"Saved {len(frames)} frames to {path}")
