from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

from .data_types import AnimationClip, Bone, NodeKind, SceneNode, SkeletonView
from .errors import DiagnosticCode, UnsupportedRigFormat, warning
from .math_utils import LENGTH_EPS, decompose_matrix, normalize_vector

# =============================================================================
# Name Helpers
# =============================================================================

NAME_PREFIXES = [
    "bip01_",
    "bip01 ",
    "bip001_",
    "bip001 ",
    "joint_",
    "bone_",
    "def_",
    "def-",
    "rig_",
    "valvebiped_",
    "mixamorig_",
    "mixamorig",
]

FUNCTIONAL_ROOT_KEYWORDS = ("hip", "pelvis", "root")


def normalize_bone_name(name: str) -> str:
    """Normalize bone name by removing namespaces, prefixes and separators"""
    name_lower = name.lower()

    if ":" in name_lower:
        name_lower = name_lower.split(":")[-1]

    for prefix in NAME_PREFIXES:
        if name_lower.startswith(prefix):
            name_lower = name_lower[len(prefix) :]
            break

    return re.sub(r"[\s_.\-]", "", name_lower)


def detect_duplicates(names: list[str]) -> list[tuple[str, int]]:
    """(name, occurrence count) for every name seen more than once, first-seen order."""
    counts: dict[str, int] = {}
    for name in names:
        counts[name] = counts.get(name, 0) + 1
    return [(name, count) for name, count in counts.items() if count > 1]


# =============================================================================
# Extraction
# =============================================================================


def _collect(root: SceneNode, predicate: Callable[[SceneNode], bool]) -> SkeletonView:
    """
    Walk the scene depth-first and collect every node accepted by `predicate`
    as a bone. Parent links follow the nearest collected ancestor.
    """
    skel = SkeletonView(root.name or "Skeleton")
    worlds: dict[int, np.ndarray] = {}
    bone_index: dict[int, int] = {}
    bone_worlds: list[np.ndarray] = []

    def visit(node: SceneNode, parent_world: np.ndarray, parent_bone: int):
        world = parent_world @ node.local_matrix()
        worlds[id(node)] = world
        current_bone = parent_bone

        if predicate(node):
            if parent_bone >= 0:
                if node.parent is not None and bone_index.get(id(node.parent)) == parent_bone:
                    p, q, s = node.position, node.quaternion, node.scale
                else:
                    # Fold intermediate non-bone nodes into the local transform
                    p, q, s = decompose_matrix(np.linalg.inv(bone_worlds[parent_bone]) @ world)
            else:
                holder = node.parent
                holder_world = np.eye(4) if holder is None else worlds[id(holder)]
                if skel.root_parent_world is None and holder is not None:
                    skel.root_parent_world = holder_world.copy()
                if np.allclose(holder_world, _root_parent(skel)):
                    p, q, s = node.position, node.quaternion, node.scale
                else:
                    p, q, s = decompose_matrix(np.linalg.inv(_root_parent(skel)) @ world)
            bone = skel.add_bone(node.name, p, q, s, parent_bone)
            bone_index[id(node)] = bone.index
            bone_worlds.append(world)
            current_bone = bone.index

        for child in node.children:
            visit(child, world, current_bone)

    visit(root, np.eye(4), -1)
    return skel


def _root_parent(skel: SkeletonView) -> np.ndarray:
    return np.eye(4) if skel.root_parent_world is None else skel.root_parent_world


def _skeleton_from_tracks(clip: AnimationClip) -> SkeletonView:
    """Flat skeleton with one identity root bone per animated bone name."""
    skel = SkeletonView(clip.name or "Skeleton")
    for bone_name in clip.bone_names():
        skel.add_bone(bone_name)
    skel.from_animation_tracks = True
    return skel


def extract_skeleton(root: SceneNode, clip: Optional[AnimationClip] = None) -> SkeletonView:
    """
    Build a SkeletonView from a scene graph.

    Bones are every BONE node in depth-first order. Scenes with no bones and no
    skinned mesh fall back to treating the GROUP hierarchy as bones, and scenes
    with nothing at all fall back to the bone names found in `clip`.
    Bind inverses come from the first skinned mesh when it lists the bone,
    otherwise from the bone's current world matrix.
    """
    if root is None:
        raise UnsupportedRigFormat("No scene root provided")

    nodes = list(root.traverse())
    has_bones = any(n.kind is NodeKind.BONE for n in nodes)
    skinned = next((n for n in nodes if n.kind is NodeKind.SKINNED_MESH), None)

    if has_bones:
        skel = _collect(root, lambda n: n.kind is NodeKind.BONE)
    elif skinned is None and any(n.kind is NodeKind.GROUP for n in nodes[1:]):
        skel = _collect(root, lambda n: n.kind is NodeKind.GROUP and n is not root)
    elif clip is not None and clip.tracks:
        skel = _skeleton_from_tracks(clip)
    else:
        raise UnsupportedRigFormat(f"No skeleton found in scene '{root.name}'")

    if len(skel) == 0:
        raise UnsupportedRigFormat(f"No skeleton found in scene '{root.name}'")

    if skinned is not None:
        for i, bone in enumerate(skel.bones):
            inv = skinned.bone_inverses.get(bone.name)
            if inv is not None:
                skel.bind_inverses[i] = inv.copy()
    skel.capture_bind_pose()

    for name, count in detect_duplicates(skel.names):
        skel.diagnostics.append(
            warning(
                DiagnosticCode.DUPLICATE_BONE_NAMES,
                f"Bone name '{name}' appears {count} times; name lookups resolve to the first",
                bone=name,
            )
        )
    return skel


# =============================================================================
# Queries
# =============================================================================


def find_by_name(skel: SkeletonView, name: Optional[str]) -> Optional[int]:
    if not name:
        return None
    for i, bone in enumerate(skel.bones):
        if bone.name == name:
            return i
    return None


def find_by_ref(skel: SkeletonView, bone: Bone) -> Optional[int]:
    for i, candidate in enumerate(skel.bones):
        if candidate is bone:
            return i
    return None


def root_bones(skel: SkeletonView) -> list[int]:
    return [i for i, b in enumerate(skel.bones) if b.parent < 0]


def functional_root(skel: SkeletonView) -> Optional[int]:
    """First bone named like hips/pelvis/root, else the first root bone."""
    if not skel.bones:
        return None
    for i, bone in enumerate(skel.bones):
        if any(k in normalize_bone_name(bone.name) for k in FUNCTIONAL_ROOT_KEYWORDS):
            return i
    roots = root_bones(skel)
    return roots[0] if roots else 0


def is_ancestor(skel: SkeletonView, ancestor: int, index: int) -> bool:
    """True when `ancestor` is `index` or one of its parents."""
    current = index
    while current >= 0:
        if current == ancestor:
            return True
        current = skel.bones[current].parent
    return False


# =============================================================================
# Hierarchy View
# =============================================================================


@dataclass
class HierarchyNode:
    name: str
    index: int
    depth: int
    is_mapped: bool
    mapped_to: Optional[str]
    children: list["HierarchyNode"] = field(default_factory=list)


def build_hierarchy_view(skel: SkeletonView, mapping: dict[str, str], is_source: bool) -> list[HierarchyNode]:
    """Forest of HierarchyNode, one tree per root bone."""
    reverse = {trg: src for src, trg in mapping.items()}

    def node(i: int, depth: int) -> HierarchyNode:
        bone = skel.bones[i]
        mapped_to = mapping.get(bone.name) if is_source else reverse.get(bone.name)
        return HierarchyNode(
            name=bone.name,
            index=i,
            depth=depth,
            is_mapped=mapped_to is not None,
            mapped_to=mapped_to,
            children=[node(c, depth + 1) for c in bone.children],
        )

    return [node(i, 0) for i in root_bones(skel)]


def format_hierarchy(nodes: list[HierarchyNode]) -> list[str]:
    lines = []
    for n in nodes:
        mark = f" -> {n.mapped_to}" if n.is_mapped else ""
        lines.append(f"{'  ' * n.depth}{n.name}{mark}")
        lines.extend(format_hierarchy(n.children))
    return lines


# =============================================================================
# Structure Analysis
# =============================================================================


def analyze_structure(skel: SkeletonView) -> dict:
    """Summary statistics used for debugging and rig reports."""
    depths = {}
    for i, bone in enumerate(skel.bones):
        depths[i] = 0 if bone.parent < 0 else depths.get(bone.parent, 0) + 1

    lower = [b.name.lower() for b in skel.bones]
    has_left = any("left" in n or n.endswith("_l") or n.startswith("l_") for n in lower)
    has_right = any("right" in n or n.endswith("_r") or n.startswith("r_") for n in lower)
    limb_count = sum(
        1 for n in lower if any(k in n for k in ("upperarm", "leftarm", "rightarm", "thigh", "upleg"))
    )

    return {
        "bone_count": len(skel.bones),
        "root_bones": [skel.bones[i].name for i in root_bones(skel)],
        "max_depth": max(depths.values(), default=0),
        "has_symmetry": has_left and has_right,
        "limb_count": limb_count,
    }


def detect_up_axis(skel: SkeletonView) -> Optional[str]:
    """Dominant axis ("X", "Y" or "Z") of the first root -> child direction."""
    roots = root_bones(skel)
    if not roots or not skel.bones[roots[0]].children:
        return None
    positions = skel.world_positions()
    root = roots[0]
    child = skel.bones[root].children[0]
    direction = normalize_vector(positions[child] - positions[root])
    if np.linalg.norm(direction) < LENGTH_EPS:
        return None
    axis = int(np.argmax(np.abs(direction)))
    return "XYZ"[axis]
