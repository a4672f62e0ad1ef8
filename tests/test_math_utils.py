import os
import sys
import unittest

import numpy as np
from scipy.spatial.transform import Rotation as R

script_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(script_dir)
sys.path.insert(0, project_root)

from retargetkit.utils.data_types import Transform
from retargetkit.utils.math_utils import (
    IDENTITY_QUAT,
    X_AXIS,
    Y_AXIS,
    Z_AXIS,
    angle_between,
    compose_matrix,
    decompose_matrix,
    quat_from_axis_angle,
    quat_inverse,
    quat_multiply,
    quat_normalize,
    quat_rotate_vector,
    quats_close,
    rotation_between_vectors,
)


class TestQuaternionMath(unittest.TestCase):
    def test_multiply_matches_scipy_composition(self):
        a = R.from_euler("xyz", [10, 20, 30], degrees=True).as_quat()
        b = R.from_euler("xyz", [-40, 5, 60], degrees=True).as_quat()
        expected = (R.from_quat(a) * R.from_quat(b)).as_quat()
        self.assertTrue(quats_close(quat_multiply(a, b), expected))

    def test_multiply_broadcasts_over_keyframes(self):
        frames = R.from_euler("z", np.linspace(0, 90, 5), degrees=True).as_quat()
        out = quat_multiply(IDENTITY_QUAT, frames)
        self.assertEqual(out.shape, (5, 4))
        np.testing.assert_allclose(out, frames, atol=1e-12)

    def test_inverse_cancels(self):
        q = quat_from_axis_angle(np.array([1.0, 2.0, 3.0]), 0.7)
        np.testing.assert_allclose(quat_multiply(q, quat_inverse(q)), IDENTITY_QUAT, atol=1e-12)

    def test_normalize_degenerate_is_identity(self):
        np.testing.assert_allclose(quat_normalize(np.zeros(4)), IDENTITY_QUAT)
        batch = quat_normalize(np.array([[0, 0, 0, 0], [0, 0, 0, 2.0]]))
        np.testing.assert_allclose(batch, [IDENTITY_QUAT, IDENTITY_QUAT])

    def test_rotate_vector(self):
        q = quat_from_axis_angle(Z_AXIS, np.pi / 2)
        np.testing.assert_allclose(quat_rotate_vector(q, X_AXIS), Y_AXIS, atol=1e-12)


class TestVectorMath(unittest.TestCase):
    def test_rotation_between_vectors(self):
        q = rotation_between_vectors(X_AXIS, Y_AXIS)
        np.testing.assert_allclose(quat_rotate_vector(q, X_AXIS), Y_AXIS, atol=1e-12)

    def test_rotation_between_parallel_vectors_is_identity(self):
        np.testing.assert_allclose(rotation_between_vectors(Z_AXIS, Z_AXIS * 3), IDENTITY_QUAT)

    def test_rotation_between_opposite_vectors_uses_fallback_axis(self):
        q = rotation_between_vectors(-Z_AXIS, Z_AXIS, fallback_axis=Y_AXIS)
        np.testing.assert_allclose(quat_rotate_vector(q, -Z_AXIS), Z_AXIS, atol=1e-12)
        # rotation stays about Y, so Y is preserved
        np.testing.assert_allclose(quat_rotate_vector(q, Y_AXIS), Y_AXIS, atol=1e-12)

    def test_angle_between_degenerate(self):
        self.assertEqual(angle_between(np.zeros(3), X_AXIS), 0.0)
        self.assertAlmostEqual(angle_between(X_AXIS, -X_AXIS), np.pi)


class TestMatrixMath(unittest.TestCase):
    def test_compose_decompose(self):
        p = np.array([1.0, -2.0, 0.5])
        q = R.from_euler("xyz", [30, -10, 75], degrees=True).as_quat()
        s = np.array([2.0, 1.0, 0.5])
        mat = compose_matrix(p, q, s)
        p2, q2, s2 = decompose_matrix(mat)
        np.testing.assert_allclose(p2, p, atol=1e-12)
        np.testing.assert_allclose(s2, s, atol=1e-12)
        self.assertTrue(quats_close(q2, q))

    def test_transform_matrix(self):
        t = Transform([1.0, 2.0, 3.0], R.from_euler("z", 90, degrees=True).as_quat(), [2.0, 2.0, 2.0])
        mat = t.to_matrix()
        np.testing.assert_allclose(mat @ [1.0, 0.0, 0.0, 1.0], [1.0, 4.0, 3.0, 1.0], atol=1e-12)
        back = Transform.from_matrix(mat)
        np.testing.assert_allclose(back.p, t.p, atol=1e-12)
        np.testing.assert_allclose(back.s, t.s, atol=1e-12)
        self.assertTrue(quats_close(back.q, t.q))

    def test_decompose_negative_determinant_flips_x(self):
        mat = np.diag([-1.0, 1.0, 1.0, 1.0])
        _, q, s = decompose_matrix(mat)
        np.testing.assert_allclose(s, [-1.0, 1.0, 1.0])
        self.assertTrue(quats_close(q, IDENTITY_QUAT))


if __name__ == "__main__":
    unittest.main()
