"""
Tests for rigid pose estimation functionality.
"""

import json
import os
import sys
import tempfile
import unittest

import numpy as np

sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from pose import (  # type: ignore
    compute_rigid_transform,
    from_row_vector_convention,
    invert_transform,
    load_calibration,
    make_transform,
    quaternion_to_rotation_matrix,
    rotation_angle_between,
    serialize_pose,
    transform_points,
)


class TestRigidTransform(unittest.TestCase):
    """Test cases for point-set registration."""

    def setUp(self):
        self.src = np.array([
            [0.0, 0.0, 0.0],
            [0.08, 0.0, 0.0],
            [0.08, 0.12, 0.0],
            [0.0, 0.05, 0.03],
        ])
        rotation = quaternion_to_rotation_matrix([0.2, -0.4, 0.1, 0.85])
        self.expected = make_transform(rotation, [0.1, -0.25, 0.7])
        self.dst = transform_points(self.expected, self.src)

    def test_recovers_known_pose(self):
        transform = compute_rigid_transform(self.src, self.dst)
        np.testing.assert_allclose(transform, self.expected, atol=1e-9)
        self.assertAlmostEqual(np.linalg.det(transform[:3, :3]), 1.0)
        np.testing.assert_array_equal(transform[3], [0.0, 0.0, 0.0, 1.0])

    def test_inverse_registration(self):
        forward = compute_rigid_transform(self.src, self.dst)
        backward = compute_rigid_transform(self.dst, self.src)
        np.testing.assert_allclose(forward @ backward, np.eye(4), atol=1e-9)

    def test_identity_for_matching_sets(self):
        np.testing.assert_allclose(compute_rigid_transform(self.src, self.src), np.eye(4), atol=1e-12)

    def test_three_points_suffice(self):
        transform = compute_rigid_transform(self.src[:3], self.dst[:3])
        np.testing.assert_allclose(transform, self.expected, atol=1e-9)

    def test_length_mismatch_returns_identity(self):
        np.testing.assert_array_equal(compute_rigid_transform(self.src, self.dst[:3]), np.eye(4))

    def test_empty_input_returns_identity(self):
        np.testing.assert_array_equal(compute_rigid_transform([], []), np.eye(4))

    def test_reflection_corrected(self):
        mirrored = self.src * np.array([1.0, 1.0, -1.0])
        transform = compute_rigid_transform(self.src, mirrored)
        self.assertAlmostEqual(np.linalg.det(transform[:3, :3]), 1.0)

    def test_noisy_points(self):
        rng = np.random.default_rng(11)
        noisy = self.dst + rng.normal(0.0, 0.0003, self.dst.shape)
        transform = compute_rigid_transform(self.src, noisy)
        self.assertLess(rotation_angle_between(transform[:3, :3], self.expected[:3, :3]), np.radians(1.0))
        np.testing.assert_allclose(transform[:3, 3], self.expected[:3, 3], atol=0.002)


class TestTransformHelpers(unittest.TestCase):
    """Test cases for 4x4 transform utilities."""

    def test_invert_transform(self):
        transform = make_transform(quaternion_to_rotation_matrix([0.3, 0.1, -0.2, 0.9]), [1.0, -2.0, 0.5])
        np.testing.assert_allclose(invert_transform(transform), np.linalg.inv(transform), atol=1e-12)

    def test_transform_points(self):
        transform = make_transform(np.eye(3), [1.0, 2.0, 3.0])
        np.testing.assert_allclose(transform_points(transform, [[0, 0, 0], [1, 1, 1]]), [[1, 2, 3], [2, 3, 4]])

    def test_quaternion_quarter_turn(self):
        rotation = quaternion_to_rotation_matrix([0.0, 0.0, np.sin(np.pi / 4), np.cos(np.pi / 4)])
        np.testing.assert_allclose(rotation @ [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], atol=1e-12)

    def test_quaternion_normalized(self):
        np.testing.assert_allclose(quaternion_to_rotation_matrix([0, 0, 0, 5]), np.eye(3))

    def test_rotation_angle_between(self):
        half = np.radians(30.0) / 2
        rotation = quaternion_to_rotation_matrix([0.0, 0.0, np.sin(half), np.cos(half)])
        self.assertAlmostEqual(rotation_angle_between(np.eye(3), rotation), np.radians(30.0))
        self.assertAlmostEqual(rotation_angle_between(rotation, rotation), 0.0)

    def test_zero_quaternion(self):
        with self.assertRaises(ValueError):
            quaternion_to_rotation_matrix([0, 0, 0, 0])

    def test_row_vector_convention(self):
        transform = make_transform(quaternion_to_rotation_matrix([0.1, 0.2, 0.3, 0.9]), [4.0, 5.0, 6.0])
        row_major = transform.T
        np.testing.assert_allclose(from_row_vector_convention(row_major), transform)

        point = np.array([0.1, 0.2, 0.3, 1.0])
        np.testing.assert_allclose(point @ row_major, transform @ point)

        with self.assertRaises(ValueError):
            from_row_vector_convention(np.eye(3))

    def test_serialize_pose_column_major(self):
        transform = make_transform(np.eye(3), [7.0, 8.0, 9.0])
        values = serialize_pose(transform)
        self.assertEqual(len(values), 16)
        self.assertEqual(values[12:15], [7.0, 8.0, 9.0])
        self.assertEqual(values[15], 1.0)
        self.assertEqual(values[3], 0.0)


class TestCalibrationLoading(unittest.TestCase):
    """Test cases for camera calibration loading."""

    def setUp(self):
        self.camera_matrix = [[220.0, 0.0, 256.0], [0.0, 220.0, 256.0], [0.0, 0.0, 1.0]]

    def test_inline_calibration(self):
        calibration = load_calibration({"camera_matrix": self.camera_matrix, "dist_coeffs": [0.1, 0, 0, 0, 0]})
        self.assertEqual(calibration.camera_matrix.shape, (3, 3))
        self.assertEqual(calibration.dist_coeffs.shape, (5, 1))
        self.assertEqual(calibration.dist_coeffs[0, 0], 0.1)

    def test_missing_dist_coeffs_default_to_zero(self):
        calibration = load_calibration({"camera_matrix": self.camera_matrix})
        np.testing.assert_array_equal(calibration.dist_coeffs, np.zeros((5, 1)))

    def test_calibration_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "calibration.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump({"camera_matrix": self.camera_matrix, "dist_coeffs": [0, 0, 0, 0, 0]}, f)

            calibration = load_calibration({"calibration_file": path})
            self.assertEqual(calibration.camera_matrix[0, 2], 256.0)

    def test_missing_calibration_file(self):
        with self.assertRaises(FileNotFoundError):
            load_calibration({"calibration_file": "/nonexistent/calibration.json"})

    def test_missing_camera_matrix(self):
        with self.assertRaises(ValueError):
            load_calibration({"dist_coeffs": [0, 0, 0, 0, 0]})


if __name__ == "__main__":
    unittest.main()
