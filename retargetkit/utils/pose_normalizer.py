from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

import numpy as np

from .bone_mapper import ROLE_TABLE, _match_role, _normalized
from .data_types import SkeletonView
from .errors import DiagnosticCode, InvalidSkeleton, warning
from .math_utils import (
    X_AXIS,
    Y_AXIS,
    Z_AXIS,
    angle_between,
    decompose_matrix,
    normalize_vector,
    quat_inverse,
    quat_multiply,
    quat_normalize,
    rotation_between_vectors,
)
from .presets import POSE_ROLES
from .skeleton_analyzer import find_by_name, is_ancestor, root_bones

# =============================================================================
# Constants
# =============================================================================

T_POSE_MAX_ANGLE = 25.0  # degrees from the horizontal side axis
T_POSE_MAX_VERTICAL = 0.3  # max |y| of the normalized arm direction
A_POSE_ANGLE_RANGE = (30.0, 60.0)  # degrees from straight down
ALIGN_ANGLE_EPS = 1e-3  # radians

A_POSE_LEFT_ARM = normalize_vector(np.array([1.0, -1.0, 0.0]))
A_POSE_RIGHT_ARM = normalize_vector(np.array([-1.0, -1.0, 0.0]))


class PoseType(str, Enum):
    T_POSE = "T-pose"
    A_POSE = "A-pose"
    UNKNOWN = "unknown"


@dataclass
class PoseValidation:
    source_pose: PoseType
    target_pose: PoseType
    compatible: bool
    recommendation: str


@dataclass
class NormalizationResult:
    skeleton: SkeletonView
    role_map: dict[str, str]
    diagnostics: list = field(default_factory=list)


BoneRef = Union[int, str, None]


# =============================================================================
# Detection
# =============================================================================


def detect_pose_bones(skel: SkeletonView) -> dict[str, str]:
    """Role -> bone name for the bones used by pose detection and normalization."""
    if skel is None or not skel.bones:
        raise InvalidSkeleton("Invalid skeleton provided")
    candidates = _normalized(skel.names)
    role_map = {}
    for role in POSE_ROLES:
        bone = _match_role(candidates, ROLE_TABLE[role])
        if bone is not None:
            role_map[role] = bone
    return role_map


def _arm_direction(skel: SkeletonView, positions: np.ndarray, role_map: dict, side: str) -> Optional[np.ndarray]:
    arm = find_by_name(skel, role_map.get(f"{side}Arm"))
    hand = find_by_name(skel, role_map.get(f"{side}Hand"))
    if arm is None or hand is None:
        return None
    direction = normalize_vector(positions[hand] - positions[arm])
    return direction if np.any(direction) else None


def detect_pose(skel: SkeletonView, role_map: Optional[dict[str, str]] = None) -> PoseType:
    """Classify the current pose from the upper arm -> hand directions."""
    if skel is None or not skel.bones:
        return PoseType.UNKNOWN
    role_map = role_map if role_map is not None else detect_pose_bones(skel)
    positions = skel.world_positions()

    left = _arm_direction(skel, positions, role_map, "Left")
    right = _arm_direction(skel, positions, role_map, "Right")
    if left is None or right is None:
        return PoseType.UNKNOWN

    left_side = np.degrees(angle_between(left, X_AXIS))
    right_side = np.degrees(angle_between(right, -X_AXIS))
    if (
        left_side < T_POSE_MAX_ANGLE
        and right_side < T_POSE_MAX_ANGLE
        and abs(left[1]) < T_POSE_MAX_VERTICAL
        and abs(right[1]) < T_POSE_MAX_VERTICAL
    ):
        return PoseType.T_POSE

    lo, hi = A_POSE_ANGLE_RANGE
    left_down = np.degrees(angle_between(left, -Y_AXIS))
    right_down = np.degrees(angle_between(right, -Y_AXIS))
    if lo <= left_down <= hi and lo <= right_down <= hi and left[0] > 0 and right[0] < 0:
        return PoseType.A_POSE

    return PoseType.UNKNOWN


def _recommendation(source: PoseType, target: PoseType) -> str:
    if source == target:
        if source is PoseType.UNKNOWN:
            return "Both poses are unrecognised; results may need manual correction."
        return f"Poses match ({source.value}), retargeting can proceed directly."
    if PoseType.UNKNOWN in (source, target):
        return "One pose could not be detected; consider normalizing both skeletons to a T-pose."
    return f"Source is {source.value} and target is {target.value}; apply a T-pose to both before retargeting."


def validate_poses(source: SkeletonView, target: SkeletonView) -> PoseValidation:
    source_pose = detect_pose(source)
    target_pose = detect_pose(target)
    compatible = source_pose == target_pose
    return PoseValidation(source_pose, target_pose, compatible, _recommendation(source_pose, target_pose))


# =============================================================================
# Pose Operations
# =============================================================================


def _resolve(skel: SkeletonView, ref: BoneRef) -> Optional[int]:
    if ref is None:
        return None
    if isinstance(ref, (int, np.integer)):
        return int(ref) if 0 <= ref < len(skel.bones) else None
    return find_by_name(skel, ref)


def _world_rotation(mat: np.ndarray) -> np.ndarray:
    return decompose_matrix(mat)[1]


def _rotate_bone_world(skel: SkeletonView, worlds: np.ndarray, index: int, rotation: np.ndarray):
    """Pre-multiply the world rotation of bone `index` and store it back as a local rotation."""
    new_world_q = quat_multiply(rotation, _world_rotation(worlds[index]))
    parent_q = _world_rotation(skel.parent_world(worlds, index))
    skel.bones[index].quaternion = quat_normalize(quat_multiply(quat_inverse(parent_q), new_world_q))


def extend_chain(skel: SkeletonView, origin: BoneRef, end: BoneRef = None, diagnostics: Optional[list] = None) -> bool:
    """
    Straighten the chain origin..end so each segment continues the direction
    of the segment above it. Walks from end's parent up to origin.
    Returns False (and records CHAIN_NOT_FOUND) when the chain cannot be resolved.
    """
    base = _resolve(skel, origin)
    tip = _resolve(skel, end)
    if base is not None and tip is None and end is None:
        tip = base
        while skel.bones[tip].children:
            tip = skel.bones[tip].children[0]

    if base is None or tip is None or not is_ancestor(skel, base, tip):
        if diagnostics is not None:
            diagnostics.append(
                warning(DiagnosticCode.CHAIN_NOT_FOUND, f"No bone chain from {origin!r} to {end!r}")
            )
        return False

    stop = skel.bones[base].parent
    previous = tip
    current = skel.bones[previous].parent
    if current < 0:
        return True
    nxt = skel.bones[current].parent

    while nxt >= 0 and nxt != stop:
        positions = skel.world_positions()
        worlds = skel.world_matrices()
        desired = normalize_vector(positions[current] - positions[nxt])
        actual = normalize_vector(positions[previous] - positions[current])
        if np.any(desired) and np.any(actual) and angle_between(actual, desired) > ALIGN_ANGLE_EPS:
            _rotate_bone_world(skel, worlds, current, rotation_between_vectors(actual, desired))
        previous = current
        current = nxt
        nxt = skel.bones[current].parent
    return True


def align_bone_to_axis(skel: SkeletonView, origin: BoneRef, end: BoneRef, axis: np.ndarray) -> bool:
    """Rotate `origin` so the origin -> end direction points along `axis`."""
    o = _resolve(skel, origin)
    if o is None:
        return False
    e = _resolve(skel, end)
    if e is None:
        if not skel.bones[o].children:
            return False
        e = skel.bones[o].children[0]

    worlds = skel.world_matrices()
    direction = normalize_vector(worlds[e][:3, 3] - worlds[o][:3, 3])
    if not np.any(direction):
        return False
    if angle_between(direction, axis) > ALIGN_ANGLE_EPS:
        _rotate_bone_world(skel, worlds, o, rotation_between_vectors(direction, axis))
    return True


def look_bone_at_axis(
    skel: SkeletonView, bone: BoneRef, dir_a: np.ndarray, dir_b: np.ndarray, axis: np.ndarray
) -> bool:
    """Rotate `bone` so the normal dir_a x dir_b points along `axis`."""
    index = _resolve(skel, bone)
    normal = normalize_vector(np.cross(dir_a, dir_b))
    if index is None or not np.any(normal):
        return False
    if angle_between(normal, axis) > ALIGN_ANGLE_EPS:
        worlds = skel.world_matrices()
        rotation = rotation_between_vectors(normal, axis, fallback_axis=normalize_vector(dir_b))
        _rotate_bone_world(skel, worlds, index, rotation)
    return True


def _face_forward(skel: SkeletonView, role_map: dict) -> bool:
    """Yaw the first root bone so the character faces +Z."""
    left = find_by_name(skel, role_map.get("LeftArm"))
    right = find_by_name(skel, role_map.get("RightArm"))
    roots = root_bones(skel)
    if left is None or right is None or not roots:
        return False
    positions = skel.world_positions()
    arms_dir = normalize_vector(positions[left] - positions[right])
    return look_bone_at_axis(skel, roots[0], arms_dir, Y_AXIS, Z_AXIS)


def _apply_reference_pose(
    skel: SkeletonView, role_map: Optional[dict[str, str]], left_arm_axis: np.ndarray, right_arm_axis: np.ndarray
) -> NormalizationResult:
    if skel is None or not skel.bones:
        raise InvalidSkeleton("Invalid skeleton provided")
    role_map = role_map if role_map is not None else detect_pose_bones(skel)
    diagnostics: list = []

    chains = [
        ("Hips", "Spine"),
        ("LeftUpLeg", "LeftFoot"),
        ("RightUpLeg", "RightFoot"),
        ("LeftArm", "LeftHand"),
        ("RightArm", "RightHand"),
    ]
    for origin, end in chains:
        if origin in role_map and end in role_map:
            extend_chain(skel, role_map[origin], role_map[end], diagnostics)
        else:
            diagnostics.append(
                warning(DiagnosticCode.CHAIN_NOT_FOUND, f"Missing role for chain {origin} -> {end}")
            )

    def align(origin: str, end: str, axis: np.ndarray):
        if origin in role_map and end in role_map:
            align_bone_to_axis(skel, role_map[origin], role_map[end], axis)

    align("Hips", "Spine", Y_AXIS)
    _face_forward(skel, role_map)
    align("LeftUpLeg", "LeftFoot", -Y_AXIS)
    align("RightUpLeg", "RightFoot", -Y_AXIS)
    align("LeftArm", "LeftHand", left_arm_axis)
    align("RightArm", "RightHand", right_arm_axis)
    _face_forward(skel, role_map)

    return NormalizationResult(skel, role_map, diagnostics)


def apply_t_pose(skel: SkeletonView, role_map: Optional[dict[str, str]] = None) -> NormalizationResult:
    """Straighten limbs, stand the spine up, face +Z and spread the arms along +/-X."""
    return _apply_reference_pose(skel, role_map, X_AXIS, -X_AXIS)


def apply_a_pose(skel: SkeletonView, role_map: Optional[dict[str, str]] = None) -> NormalizationResult:
    """Like apply_t_pose, with arms pointing 45 degrees down."""
    return _apply_reference_pose(skel, role_map, A_POSE_LEFT_ARM, A_POSE_RIGHT_ARM)
