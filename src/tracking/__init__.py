"""
Tracking subpackage.

Provides marker-layout matching utilities for rigid tools fitted with
infrared-reflective markers:
- Correspondence search between known and observed marker positions
- Tool definitions and the id-ordered tool dictionary
- JSON tool configuration loading/saving
"""

from .correspondence import (
    DISTANCE_TOLERANCE,
    DUPLICATE_TOLERANCE,
    CorrespondenceResult,
    create_index_list,
    group_duplicates,
    filter_by_distance,
    get_point_correspondence,
    remove_duplicates,
)
from .tools import (
    Tool,
    ToolDictionary,
    load_tool_config,
    parse_tool_config,
    save_tool_config,
    tool_dictionary_from_mapping,
)

__all__ = [
    "DISTANCE_TOLERANCE",
    "DUPLICATE_TOLERANCE",
    "CorrespondenceResult",
    "create_index_list",
    "group_duplicates",
    "filter_by_distance",
    "get_point_correspondence",
    "remove_duplicates",
    "Tool",
    "ToolDictionary",
    "load_tool_config",
    "parse_tool_config",
    "save_tool_config",
    "tool_dictionary_from_mapping",
]
