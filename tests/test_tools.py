"""
Tests for tool definitions and tool configuration files.
"""

import json
import os
import sys
import tempfile
import unittest

import numpy as np

sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from tracking.tools import (  # type: ignore
    Tool,
    ToolDictionary,
    load_tool_config,
    parse_tool_config,
    save_tool_config,
    tool_dictionary_from_mapping,
)

TRIANGLE = [[0.0, 0.0, 0.0], [0.05, 0.0, 0.0], [0.05, 0.07, 0.0]]


class TestTool(unittest.TestCase):
    """Test cases for tool construction and validation."""

    def test_from_points(self):
        tool = Tool.from_points(3, TRIANGLE, name="Probe")
        self.assertEqual(tool.tool_id, 3)
        self.assertEqual(tool.name, "Probe")
        self.assertEqual(tool.marker_count, 3)
        self.assertFalse(tool.visible)
        np.testing.assert_array_equal(tool.pose_world, np.eye(4))

    def test_geometry_read_only(self):
        tool = Tool.from_points(1, TRIANGLE)
        with self.assertRaises(ValueError):
            tool.geometry[0, 0] = 1.0

    def test_invalid_ids(self):
        for tool_id in (-1, 256, 1.5, "1", True):
            with self.subTest(tool_id=tool_id):
                with self.assertRaises(ValueError):
                    Tool.from_points(tool_id, TRIANGLE)

    def test_id_bounds_inclusive(self):
        self.assertEqual(Tool.from_points(0, TRIANGLE).tool_id, 0)
        self.assertEqual(Tool.from_points(255, TRIANGLE).tool_id, 255)

    def test_too_few_markers(self):
        with self.assertRaises(ValueError):
            Tool.from_points(1, TRIANGLE[:2])

    def test_bad_shape_and_values(self):
        with self.assertRaises(ValueError):
            Tool.from_points(1, [[0, 0], [1, 1], [2, 2]])
        with self.assertRaises(ValueError):
            Tool.from_points(1, [[0, 0, 0], [1, 0, 0], [0, float("nan"), 0]])

    def test_duplicate_markers_dropped(self):
        points = TRIANGLE + [[0.0502, 0.0, 0.0]]
        with self.assertLogs(level="WARNING"):
            tool = Tool.from_points(1, points)
        self.assertEqual(tool.marker_count, 3)

    def test_duplicates_leaving_too_few_markers(self):
        with self.assertRaises(ValueError):
            Tool.from_points(1, [[0, 0, 0], [0.0001, 0, 0], [0.05, 0, 0]])

    def test_reset_observation(self):
        tool = Tool.from_points(1, TRIANGLE)
        tool.visible = True
        tool.pose_world = np.full((4, 4), 2.0)
        tool.observed_world.append(np.zeros(3))
        tool.observed_pixels.append((1, 2))

        tool.reset_observation()
        self.assertFalse(tool.visible)
        np.testing.assert_array_equal(tool.pose_world, np.eye(4))
        np.testing.assert_array_equal(tool.pose_depth, np.eye(4))
        self.assertEqual(tool.observed_world, [])
        self.assertEqual(tool.observed_pixels, [])


class TestToolDictionary(unittest.TestCase):
    """Test cases for the id-ordered tool collection."""

    def test_ascending_iteration(self):
        tools = ToolDictionary()
        for tool_id in (7, 2, 5):
            tools.add(Tool.from_points(tool_id, TRIANGLE))
        self.assertEqual(list(tools), [2, 5, 7])
        self.assertEqual([t.tool_id for t in tools.values()], [2, 5, 7])
        self.assertEqual([k for k, _ in tools.items()], [2, 5, 7])

    def test_accessors_return_sorted_lists(self):
        tools = ToolDictionary()
        for tool_id in (9, 1):
            tools.add(Tool.from_points(tool_id, TRIANGLE))
        self.assertIsInstance(tools.keys(), list)
        self.assertIsInstance(tools.values(), list)
        self.assertIsInstance(tools.items(), list)
        self.assertEqual(tools.items()[0][0], 1)
        self.assertEqual(set(tools) & {1, 5}, {1})

    def test_first_id_wins(self):
        tools = ToolDictionary()
        self.assertTrue(tools.add(Tool.from_points(1, TRIANGLE, name="first")))
        self.assertFalse(tools.add(Tool.from_points(1, TRIANGLE, name="second")))
        self.assertEqual(tools[1].name, "first")

    def test_from_mapping_skips_invalid(self):
        tools = tool_dictionary_from_mapping({4: TRIANGLE, 300: TRIANGLE, 1: TRIANGLE[:1]})
        self.assertEqual(tools.keys(), [4])


class TestToolConfig(unittest.TestCase):
    """Test cases for JSON tool configuration."""

    def test_parse_string_and_numeric_coordinates(self):
        payload = json.dumps({"tools": [{
            "name": "Probe",
            "id": 2,
            "coordinates": [["0.0", "0.0", "0.0"], [0.05, 0.0, 0.0], ["0.05", 0.07, "0"]],
        }]})
        tools = parse_tool_config(payload)
        self.assertEqual(tools.keys(), [2])
        np.testing.assert_allclose(tools[2].geometry, TRIANGLE)
        self.assertEqual(tools[2].name, "Probe")

    def test_parse_decoded_object(self):
        tools = parse_tool_config({"tools": [{"id": 1.0, "coordinates": TRIANGLE}]})
        self.assertEqual(tools.keys(), [1])
        self.assertIsNone(tools[1].name)

    def test_invalid_documents(self):
        with self.assertLogs(level="ERROR"):
            self.assertEqual(len(parse_tool_config("{not json")), 0)
        with self.assertLogs(level="ERROR"):
            self.assertEqual(len(parse_tool_config('{"objects": []}')), 0)
        with self.assertLogs(level="ERROR"):
            self.assertEqual(len(parse_tool_config("[]")), 0)

    def test_bad_entries_skipped(self):
        payload = {"tools": [
            {"id": 1, "coordinates": [["a", "b", "c"], [0, 0, 0], [1, 1, 1]]},
            {"id": 2, "coordinates": [[0, 0], [1, 1], [2, 2]]},
            {"id": 3},
            {"id": 300, "coordinates": TRIANGLE},
            "not an object",
            {"id": 4, "coordinates": TRIANGLE},
        ]}
        with self.assertLogs(level="WARNING"):
            tools = parse_tool_config(payload)
        self.assertEqual(tools.keys(), [4])

    def test_duplicate_ids_first_wins(self):
        payload = {"tools": [
            {"id": 1, "name": "first", "coordinates": TRIANGLE},
            {"id": 1, "name": "second", "coordinates": TRIANGLE},
        ]}
        tools = parse_tool_config(payload)
        self.assertEqual(len(tools), 1)
        self.assertEqual(tools[1].name, "first")

    def test_save_and_load(self):
        tools = ToolDictionary()
        tools.add(Tool.from_points(9, TRIANGLE, name="Pointer"))
        tools.add(Tool.from_points(3, [[0, 0, 0], [0.1, 0, 0], [0, 0.1, 0], [0, 0, 0.1]]))

        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "tools.json")
            self.assertTrue(save_tool_config(tools, path))

            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            self.assertEqual([entry["id"] for entry in raw["tools"]], [3, 9])

            loaded = load_tool_config(path)
            self.assertEqual(loaded.keys(), [3, 9])
            self.assertEqual(loaded[9].name, "Pointer")
            np.testing.assert_allclose(loaded[3].geometry, tools[3].geometry)

    def test_missing_file(self):
        with self.assertLogs(level="ERROR"):
            self.assertEqual(len(load_tool_config("/nonexistent/tools.json")), 0)


if __name__ == "__main__":
    unittest.main()
