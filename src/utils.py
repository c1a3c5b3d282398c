"""
Shared helper functions and utilities.

This module contains logging setup and the configuration layer used across
the project.
"""

import copy
import json
import logging
import os
from datetime import datetime


def setup_logging(level=logging.INFO):
    """Set up logging configuration.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    logger = logging.getLogger(__name__)
    logger.info("Logging initialized")


DEFAULT_CONFIG = {
    # Sensor settings
    'tracker': {
        'image_width': 512,
        'image_height': 512,
        'update_display': False,
        # Abort correspondence search beyond this many live candidates (None = unbounded)
        'max_candidates': None,

        'blob_detection': {
            'method': 'basic',  # 'basic' or 'refined'
            'binary_threshold': 180,
            'min_area': 5.0,
            'max_area': 16384.0,  # 1/16th of a 512x512 frame
            'min_circularity': 0.7,
            'refine_target_size': 200,
            'refine_margin': 1,
        },

        'depth_projection': {
            'invalid_depth_threshold': 4090,  # raw units
            'depth_scale': 1000.0,  # raw units per meter
        },
    },

    # Pinhole model backing the default unmap function
    'calibration': {
        'calibration_file': None,  # Optional path to JSON file with camera_matrix/dist_coeffs
        'camera_matrix': [
            [220.0, 0.0, 256.0],
            [0.0, 220.0, 256.0],
            [0.0, 0.0, 1.0],
        ],
        'dist_coeffs': [0.0, 0.0, 0.0, 0.0, 0.0],
    },

    # Tool geometry file
    'tools_file': None,

    # Display
    'display': {
        'window_name': 'IRTOOLTRACK',
        'show_ir': True,
        'show_depth': True,
    },
}


def _merge_config(base, overrides):
    """Recursively overlay ``overrides`` onto ``base`` (in place)."""
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge_config(base[key], value)
        else:
            base[key] = value
    return base


def get_config(config_path=None):
    """Load configuration from file or return defaults.

    Args:
        config_path: Path to configuration file (optional)

    Returns:
        dict: Configuration dictionary
    """
    default_config = copy.deepcopy(DEFAULT_CONFIG)

    # Load from file if provided
    if config_path and os.path.exists(config_path):
        try:
            with open(config_path, 'r') as f:
                loaded_config = json.load(f)
            _merge_config(default_config, loaded_config)
            logging.info(f"Configuration loaded from {config_path}")
        except (OSError, ValueError) as e:
            logging.warning(f"Failed to load config from {config_path}: {e}")
    elif config_path:
        logging.warning(f"Config file not found: {config_path}, using defaults")

    return default_config


def save_config(config, config_path):
    """Save configuration to file.

    Args:
        config: Configuration dictionary
        config_path: Path to save configuration file

    Returns:
        bool: True if save successful, False otherwise
    """
    try:
        with open(config_path, 'w') as f:
            json.dump(config, f, indent=4)
        logging.info(f"Configuration saved to {config_path}")
        return True
    except (OSError, TypeError) as e:
        logging.error(f"Failed to save config to {config_path}: {e}")
        return False


def validate_config(config):
    """Validate configuration parameters.

    Args:
        config: Configuration dictionary

    Returns:
        bool: True if valid, False otherwise
    """
    if 'tracker' not in config:
        logging.error("Missing required config key: tracker")
        return False

    tracker = config['tracker']
    for key in ('image_width', 'image_height'):
        if key not in tracker:
            logging.error(f"Missing required config key: tracker.{key}")
            return False

    # Validate numeric values
    if tracker['image_width'] <= 0 or tracker['image_height'] <= 0:
        logging.error("Image dimensions must be positive")
        return False

    blobs = tracker.get('blob_detection', {})
    if blobs.get('min_area', 0) > blobs.get('max_area', float('inf')):
        logging.error("blob_detection.min_area must not exceed max_area")
        return False
    if not 0 <= blobs.get('binary_threshold', 180) <= 255:
        logging.error("blob_detection.binary_threshold must be within 0-255")
        return False
    if not 0.0 <= blobs.get('min_circularity', 0.7) <= 1.0:
        logging.error("blob_detection.min_circularity must be within 0-1")
        return False

    depth = tracker.get('depth_projection', {})
    if depth.get('depth_scale', 1000.0) <= 0:
        logging.error("depth_projection.depth_scale must be positive")
        return False

    max_candidates = tracker.get('max_candidates')
    if max_candidates is not None and max_candidates <= 0:
        logging.error("max_candidates must be positive or null")
        return False

    logging.info("Configuration validated successfully")
    return True


def get_timestamp():
    """Get current timestamp string.

    Returns:
        str: Formatted timestamp
    """
    return datetime.now().strftime("%Y%m%d_%H%M%S")
