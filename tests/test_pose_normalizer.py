import os
import sys
import unittest

import numpy as np

script_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(script_dir)
sys.path.insert(0, project_root)

from rig_factory import a_pose, chain_skeleton, mixamo_skeleton, set_rotation, ue5_skeleton

from retargetkit.utils.data_types import SkeletonView
from retargetkit.utils.errors import DiagnosticCode, InvalidSkeleton
from retargetkit.utils.math_utils import X_AXIS, angle_between, normalize_vector, quats_close
from retargetkit.utils.pose_normalizer import (
    PoseType,
    align_bone_to_axis,
    apply_a_pose,
    apply_t_pose,
    detect_pose,
    detect_pose_bones,
    extend_chain,
    validate_poses,
)
from retargetkit.utils.skeleton_analyzer import find_by_name


def arm_direction(skel, arm="LeftArm", hand="LeftHand"):
    positions = skel.world_positions()
    return normalize_vector(positions[find_by_name(skel, hand)] - positions[find_by_name(skel, arm)])


class TestPoseDetection(unittest.TestCase):
    def test_pose_bones(self):
        roles = detect_pose_bones(ue5_skeleton())
        self.assertEqual(roles["Hips"], "pelvis")
        self.assertEqual(roles["LeftArm"], "upperarm_l")
        self.assertEqual(roles["RightHand"], "hand_r")
        self.assertEqual(roles["LeftFoot"], "foot_l")

    def test_pose_bones_empty_skeleton(self):
        with self.assertRaises(InvalidSkeleton):
            detect_pose_bones(SkeletonView())

    def test_detect_t_pose(self):
        self.assertEqual(detect_pose(mixamo_skeleton()), PoseType.T_POSE)
        self.assertEqual(detect_pose(ue5_skeleton()), PoseType.T_POSE)

    def test_detect_a_pose(self):
        self.assertEqual(detect_pose(a_pose(mixamo_skeleton())), PoseType.A_POSE)

    def test_detect_unknown(self):
        self.assertEqual(detect_pose(chain_skeleton()), PoseType.UNKNOWN)
        arms_up = mixamo_skeleton()
        set_rotation(arms_up, "LeftArm", "z", 80.0)
        set_rotation(arms_up, "RightArm", "z", -80.0)
        self.assertEqual(detect_pose(arms_up), PoseType.UNKNOWN)

    def test_validate_poses(self):
        same = validate_poses(mixamo_skeleton(), ue5_skeleton())
        self.assertTrue(same.compatible)
        self.assertEqual(same.source_pose, PoseType.T_POSE)

        mixed = validate_poses(a_pose(mixamo_skeleton()), ue5_skeleton())
        self.assertFalse(mixed.compatible)
        self.assertEqual(mixed.source_pose, PoseType.A_POSE)
        self.assertIn("T-pose", mixed.recommendation)


class TestPoseOperations(unittest.TestCase):
    def test_extend_chain_straightens(self):
        skel = chain_skeleton()
        set_rotation(skel, "B", "z", 90.0)
        np.testing.assert_allclose(skel.world_positions()[2], [-1, 1, 0], atol=1e-9)

        self.assertTrue(extend_chain(skel, "A", "C"))
        np.testing.assert_allclose(skel.world_positions()[2], [0, 2, 0], atol=1e-9)
        np.testing.assert_allclose(skel.world_positions()[3], [0, 3, 0], atol=1e-9)

    def test_extend_chain_defaults_to_first_child_tip(self):
        skel = chain_skeleton()
        set_rotation(skel, "C", "z", 45.0)
        self.assertTrue(extend_chain(skel, "A"))
        np.testing.assert_allclose(skel.world_positions()[3], [0, 3, 0], atol=1e-9)

    def test_extend_chain_not_found(self):
        skel = chain_skeleton()
        diagnostics = []
        self.assertFalse(extend_chain(skel, "C", "A", diagnostics))
        self.assertFalse(extend_chain(skel, "Missing", "A", diagnostics))
        self.assertEqual([d.code for d in diagnostics], [DiagnosticCode.CHAIN_NOT_FOUND] * 2)

    def test_align_bone_to_axis(self):
        skel = chain_skeleton()
        self.assertTrue(align_bone_to_axis(skel, "A", "B", X_AXIS))
        np.testing.assert_allclose(skel.world_positions()[1], [1, 0, 0], atol=1e-9)
        self.assertFalse(align_bone_to_axis(skel, "Missing", None, X_AXIS))

    def test_apply_t_pose_from_a_pose(self):
        skel = a_pose(mixamo_skeleton())
        result = apply_t_pose(skel)
        self.assertIs(result.skeleton, skel)
        self.assertEqual(detect_pose(skel), PoseType.T_POSE)
        self.assertLess(angle_between(arm_direction(skel), X_AXIS), 1e-6)
        self.assertLess(angle_between(arm_direction(skel, "RightArm", "RightHand"), -X_AXIS), 1e-6)
        self.assertEqual(result.diagnostics, [])

    def test_apply_t_pose_is_idempotent(self):
        skel = a_pose(mixamo_skeleton())
        set_rotation(skel, "LeftForeArm", "y", 30.0)
        apply_t_pose(skel)
        once = [b.quaternion.copy() for b in skel.bones]
        apply_t_pose(skel)
        for before, bone in zip(once, skel.bones):
            self.assertTrue(quats_close(before, bone.quaternion, atol=1e-4), bone.name)

    def test_apply_t_pose_restores_facing(self):
        skel = mixamo_skeleton()
        set_rotation(skel, "Hips", "y", 180.0)
        self.assertNotEqual(detect_pose(skel), PoseType.T_POSE)

        apply_t_pose(skel)
        self.assertEqual(detect_pose(skel), PoseType.T_POSE)
        self.assertGreater(skel.world_positions()[find_by_name(skel, "LeftHand")][0], 0.0)

    def test_apply_a_pose(self):
        skel = mixamo_skeleton()
        apply_a_pose(skel)
        self.assertEqual(detect_pose(skel), PoseType.A_POSE)

    def test_missing_roles_reported(self):
        result = apply_t_pose(chain_skeleton())
        self.assertTrue(result.diagnostics)
        self.assertTrue(all(d.code is DiagnosticCode.CHAIN_NOT_FOUND for d in result.diagnostics))

    def test_apply_t_pose_empty_skeleton(self):
        with self.assertRaises(InvalidSkeleton):
            apply_t_pose(SkeletonView())


if __name__ == "__main__":
    unittest.main()
