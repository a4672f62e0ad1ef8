import os
import sys

import numpy as np

script_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(script_dir)
sys.path.insert(0, project_root)

from retargetkit.utils.data_types import AnimationClip, AnimationTrack, SkeletonView, TrackType
from retargetkit.utils.math_utils import quat_from_euler

# =============================================================================
# Bone layouts: (name, parent, local offset). Y-up, facing +Z, T-pose.
# Left side is +X.
# =============================================================================

MIXAMO_BONES = [
    ("Hips", None, (0, 1.0, 0)),
    ("Spine", "Hips", (0, 0.1, 0)),
    ("Spine1", "Spine", (0, 0.1, 0)),
    ("Spine2", "Spine1", (0, 0.1, 0)),
    ("Neck", "Spine2", (0, 0.15, 0)),
    ("Head", "Neck", (0, 0.1, 0)),
    ("LeftShoulder", "Spine2", (0.05, 0.1, 0)),
    ("LeftArm", "LeftShoulder", (0.1, 0, 0)),
    ("LeftForeArm", "LeftArm", (0.25, 0, 0)),
    ("LeftHand", "LeftForeArm", (0.25, 0, 0)),
    ("LeftHandThumb1", "LeftHand", (0.03, 0, 0.03)),
    ("LeftHandIndex1", "LeftHand", (0.08, 0, 0)),
    ("RightShoulder", "Spine2", (-0.05, 0.1, 0)),
    ("RightArm", "RightShoulder", (-0.1, 0, 0)),
    ("RightForeArm", "RightArm", (-0.25, 0, 0)),
    ("RightHand", "RightForeArm", (-0.25, 0, 0)),
    ("RightHandThumb1", "RightHand", (-0.03, 0, 0.03)),
    ("RightHandIndex1", "RightHand", (-0.08, 0, 0)),
    ("LeftUpLeg", "Hips", (0.1, -0.05, 0)),
    ("LeftLeg", "LeftUpLeg", (0, -0.45, 0)),
    ("LeftFoot", "LeftLeg", (0, -0.45, 0)),
    ("LeftToeBase", "LeftFoot", (0, -0.05, 0.1)),
    ("RightUpLeg", "Hips", (-0.1, -0.05, 0)),
    ("RightLeg", "RightUpLeg", (0, -0.45, 0)),
    ("RightFoot", "RightLeg", (0, -0.45, 0)),
    ("RightToeBase", "RightFoot", (0, -0.05, 0.1)),
]

UE5_BONES = [
    ("root", None, (0, 0, 0)),
    ("pelvis", "root", (0, 1.0, 0)),
    ("spine_01", "pelvis", (0, 0.1, 0)),
    ("spine_02", "spine_01", (0, 0.1, 0)),
    ("spine_03", "spine_02", (0, 0.1, 0)),
    ("neck_01", "spine_03", (0, 0.15, 0)),
    ("head", "neck_01", (0, 0.1, 0)),
    ("clavicle_l", "spine_03", (0.05, 0.1, 0)),
    ("upperarm_l", "clavicle_l", (0.1, 0, 0)),
    ("lowerarm_l", "upperarm_l", (0.25, 0, 0)),
    ("hand_l", "lowerarm_l", (0.25, 0, 0)),
    ("thumb_01_l", "hand_l", (0.03, 0, 0.03)),
    ("index_01_l", "hand_l", (0.08, 0, 0)),
    ("clavicle_r", "spine_03", (-0.05, 0.1, 0)),
    ("upperarm_r", "clavicle_r", (-0.1, 0, 0)),
    ("lowerarm_r", "upperarm_r", (-0.25, 0, 0)),
    ("hand_r", "lowerarm_r", (-0.25, 0, 0)),
    ("thumb_01_r", "hand_r", (-0.03, 0, 0.03)),
    ("index_01_r", "hand_r", (-0.08, 0, 0)),
    ("thigh_l", "pelvis", (0.1, -0.05, 0)),
    ("calf_l", "thigh_l", (0, -0.45, 0)),
    ("foot_l", "calf_l", (0, -0.45, 0)),
    ("ball_l", "foot_l", (0, -0.05, 0.1)),
    ("thigh_r", "pelvis", (-0.1, -0.05, 0)),
    ("calf_r", "thigh_r", (0, -0.45, 0)),
    ("foot_r", "calf_r", (0, -0.45, 0)),
    ("ball_r", "foot_r", (0, -0.05, 0.1)),
]


def build_skeleton(layout, name="Skeleton", prefix="", scale=1.0, root_offset=None):
    """Build a SkeletonView from a layout; bind pose is the built pose."""
    skel = SkeletonView(name)
    index = {}
    for bone_name, parent, offset in layout:
        offset = np.asarray(offset, dtype=np.float64) * scale
        if parent is None and root_offset is not None:
            offset = np.asarray(root_offset, dtype=np.float64)
        parent_index = -1 if parent is None else index[parent]
        bone = skel.add_bone(prefix + bone_name, position=offset, parent=parent_index)
        index[bone_name] = bone.index
    skel.capture_bind_pose()
    return skel


def mixamo_skeleton(prefix="", scale=1.0, root_offset=None):
    return build_skeleton(MIXAMO_BONES, "Mixamo", prefix, scale, root_offset)


def ue5_skeleton(scale=1.0):
    return build_skeleton(UE5_BONES, "UE5", "", scale)


def chain_skeleton(lengths=(1.0, 1.0, 1.0), names=("A", "B", "C", "D")):
    """Straight chain along +Y."""
    skel = SkeletonView("Chain")
    skel.add_bone(names[0])
    for i, length in enumerate(lengths):
        skel.add_bone(names[i + 1], position=(0, length, 0), parent=i)
    skel.capture_bind_pose()
    return skel


def set_rotation(skel, name, seq, degrees):
    for bone in skel.bones:
        if bone.name == name:
            bone.quaternion = quat_from_euler(seq, degrees)
            return bone
    raise KeyError(name)


def a_pose(skel, left="LeftArm", right="RightArm"):
    """Drop both upper arms 45 degrees."""
    set_rotation(skel, left, "z", -45.0)
    set_rotation(skel, right, "z", 45.0)
    return skel


def rotation_track(bone_name, degrees_list, seq="z", times=None):
    values = np.concatenate([quat_from_euler(seq, d) for d in degrees_list])
    if times is None:
        times = np.linspace(0.0, 1.0, len(degrees_list))
    return AnimationTrack(bone_name, TrackType.QUATERNION, times, values)


def position_track(bone_name, positions, times=None):
    positions = np.asarray(positions, dtype=np.float64)
    if times is None:
        times = np.linspace(0.0, 1.0, len(positions))
    return AnimationTrack(bone_name, TrackType.POSITION, times, positions.reshape(-1))


def sample_clip(prefix="", name="Walk"):
    """Small clip touching the root, one arm and the spine."""
    return AnimationClip(
        name,
        1.0,
        [
            rotation_track(prefix + "Hips", [0.0, 15.0, 30.0], seq="y"),
            position_track(prefix + "Hips", [(0, 1.0, 0), (0.5, 1.0, 0), (1.0, 1.0, 0)]),
            rotation_track(prefix + "LeftArm", [0.0, -20.0, -45.0]),
            rotation_track(prefix + "Spine", [0.0, 5.0, 10.0], seq="x"),
        ],
    )
