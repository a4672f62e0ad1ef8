from __future__ import annotations

import json
import os
from typing import Optional

import numpy as np

from .data_types import AnimationClip, AnimationTrack, NodeKind, SceneNode, SkeletonView, parse_track_name
from .errors import UnsupportedRigFormat
from .math_utils import decompose_matrix
from .skeleton_analyzer import extract_skeleton

# =============================================================================
# JSON interchange
# =============================================================================
# Document layout:
#   {"scene": <node>, "clips": [<clip>, ...]}
# node:  {"name", "kind", "position", "quaternion", "scale", "children", "bone_inverses"?}
# clip:  {"name", "duration", "tracks": [{"name": "<bone>.<property>", "times", "values"}]}
# Matrices are 4x4 nested lists, row-major, column-vector convention.


def _matrix(value, where: str) -> np.ndarray:
    mat = np.asarray(value, dtype=np.float64)
    if mat.size != 16:
        raise UnsupportedRigFormat(f"{where}: expected a 4x4 matrix")
    return mat.reshape(4, 4)


def node_from_dict(data: dict) -> SceneNode:
    if not isinstance(data, dict) or "name" not in data:
        raise UnsupportedRigFormat("Scene node must be an object with a 'name'")
    try:
        kind = NodeKind(data.get("kind", NodeKind.GROUP.value))
    except ValueError as e:
        raise UnsupportedRigFormat(f"Unknown node kind {data.get('kind')!r} on '{data['name']}'") from e

    bone_inverses = {
        name: _matrix(mat, f"bone_inverses[{name}]") for name, mat in (data.get("bone_inverses") or {}).items()
    }
    node = SceneNode(
        data["name"],
        kind,
        position=data.get("position"),
        quaternion=data.get("quaternion"),
        scale=data.get("scale"),
        bone_inverses=bone_inverses,
    )
    for child in data.get("children", []):
        node.add(node_from_dict(child))
    return node


def node_to_dict(node: SceneNode) -> dict:
    data = {
        "name": node.name,
        "kind": node.kind.value,
        "position": node.position.tolist(),
        "quaternion": node.quaternion.tolist(),
        "scale": node.scale.tolist(),
        "children": [node_to_dict(c) for c in node.children],
    }
    if node.bone_inverses:
        data["bone_inverses"] = {k: v.tolist() for k, v in node.bone_inverses.items()}
    return data


def clip_from_dict(data: dict, strict: bool = False) -> AnimationClip:
    """Tracks with unknown properties are skipped unless `strict`."""
    tracks = []
    for track in data.get("tracks", []):
        bone_name, track_type = parse_track_name(track["name"])
        if track_type is None:
            if strict:
                raise ValueError(f"Unsupported track property in '{track['name']}'")
            continue
        tracks.append(AnimationTrack(bone_name, track_type, track["times"], track["values"]))
    return AnimationClip(data.get("name", "Clip"), float(data.get("duration", -1.0)), tracks)


def clip_to_dict(clip: AnimationClip) -> dict:
    return {
        "name": clip.name,
        "duration": clip.duration,
        "tracks": [
            {"name": t.name, "times": t.times.tolist(), "values": t.values.tolist()} for t in clip.tracks
        ],
    }


def skeleton_to_scene(skel: SkeletonView, name: Optional[str] = None) -> SceneNode:
    """Rebuild a scene tree (armature group + bones + skin) from a SkeletonView."""
    armature = SceneNode(name or skel.name, NodeKind.GROUP)
    if skel.root_parent_world is not None:
        armature.position, armature.quaternion, armature.scale = decompose_matrix(skel.root_parent_world)

    nodes = []
    for bone in skel.bones:
        node = SceneNode(bone.name, NodeKind.BONE, bone.position, bone.quaternion, bone.scale)
        parent = armature if bone.parent < 0 else nodes[bone.parent]
        parent.add(node)
        nodes.append(node)

    inverses = {b.name: inv for b, inv in zip(skel.bones, skel.bind_inverses) if inv is not None}
    if inverses:
        armature.add(SceneNode(f"{armature.name}_skin", NodeKind.SKINNED_MESH, bone_inverses=inverses))
    return armature


# =============================================================================
# Files
# =============================================================================


def load_document(path: str, strict: bool = False) -> tuple[SceneNode, list[AnimationClip]]:
    if not os.path.exists(path):
        raise FileNotFoundError(f"Document not found: {path}")
    with open(path, "r") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise UnsupportedRigFormat(f"'{path}' is not valid JSON: {e}") from e
    if not isinstance(data, dict) or "scene" not in data:
        raise UnsupportedRigFormat(f"'{path}' has no 'scene' entry")
    scene = node_from_dict(data["scene"])
    clips = [clip_from_dict(c, strict) for c in data.get("clips", [])]
    return scene, clips


def load_skeleton(path: str) -> tuple[SkeletonView, list[AnimationClip]]:
    scene, clips = load_document(path)
    return extract_skeleton(scene, clips[0] if clips else None), clips


def save_document(path: str, scene: Optional[SceneNode], clips: list[AnimationClip]):
    data = {"clips": [clip_to_dict(c) for c in clips]}
    if scene is not None:
        data["scene"] = node_to_dict(scene)
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    with open(path, "w") as f:
        json.dump(data, f, indent=2)
