from __future__ import annotations

from enum import Enum
from typing import Iterator, Optional

import numpy as np

from .errors import InvalidSkeleton
from .math_utils import IDENTITY_QUAT, compose_matrix, decompose_matrix, quat_normalize


# =============================================================================
# Transforms
# =============================================================================


class Transform:
    """Translation / rotation / scale triple. Rotation is a quaternion [x, y, z, w]."""

    def __init__(self, p=None, q=None, s=None):
        self.p = np.zeros(3) if p is None else np.asarray(p, dtype=np.float64).copy()
        self.q = IDENTITY_QUAT.copy() if q is None else quat_normalize(q)
        self.s = np.ones(3) if s is None else np.asarray(s, dtype=np.float64).copy()

    @classmethod
    def identity(cls) -> "Transform":
        return cls()

    @classmethod
    def from_matrix(cls, mat: np.ndarray) -> "Transform":
        p, q, s = decompose_matrix(mat)
        return cls(p, q, s)

    def to_matrix(self) -> np.ndarray:
        return compose_matrix(self.p, self.q, self.s)

    def copy(self) -> "Transform":
        return Transform(self.p, self.q, self.s)

    def __repr__(self):
        return f"Transform(p={self.p.tolist()}, q={self.q.tolist()}, s={self.s.tolist()})"


# =============================================================================
# Skeleton
# =============================================================================


class Bone:
    def __init__(
        self,
        name: str,
        index: int = -1,
        position=None,
        quaternion=None,
        scale=None,
        parent: int = -1,
    ):
        self.name = name
        self.index = index
        self.position = np.zeros(3) if position is None else np.asarray(position, dtype=np.float64).copy()
        self.quaternion = IDENTITY_QUAT.copy() if quaternion is None else quat_normalize(quaternion)
        self.scale = np.ones(3) if scale is None else np.asarray(scale, dtype=np.float64).copy()
        self.parent = parent  # index into SkeletonView.bones, -1 for roots
        self.children: list[int] = []

    def local_matrix(self) -> np.ndarray:
        return compose_matrix(self.position, self.quaternion, self.scale)

    def set_local_matrix(self, mat: np.ndarray):
        self.position, self.quaternion, self.scale = decompose_matrix(mat)

    def copy(self) -> "Bone":
        bone = Bone(self.name, self.index, self.position, self.quaternion, self.scale, self.parent)
        bone.children = list(self.children)
        return bone

    def __repr__(self):
        return f"Bone({self.name!r}, index={self.index}, parent={self.parent})"


class SkeletonView:
    """
    Flat, index-addressable view of a bone hierarchy.

    bones[i].parent is an index into the same list (-1 for roots).
    bind_inverses[i] is the inverse world matrix of bone i in its bind pose
    (None when unknown; the current world pose is used instead).
    root_parent_world is the world matrix of the node that holds the root
    bones (an armature), or None when the roots sit at the scene origin.
    """

    def __init__(self, name: str = "Skeleton"):
        self.name = name
        self.bones: list[Bone] = []
        self.bind_inverses: list[Optional[np.ndarray]] = []
        self.root_parent_world: Optional[np.ndarray] = None
        self.from_animation_tracks = False
        self.diagnostics: list = []

    def add_bone(
        self,
        name: str,
        position=None,
        quaternion=None,
        scale=None,
        parent: int = -1,
        bind_inverse: Optional[np.ndarray] = None,
    ) -> Bone:
        index = len(self.bones)
        if parent >= index:
            raise InvalidSkeleton(f"Bone '{name}' references parent {parent} that is not yet defined")
        bone = Bone(name, index, position, quaternion, scale, parent)
        self.bones.append(bone)
        self.bind_inverses.append(None if bind_inverse is None else np.asarray(bind_inverse, dtype=np.float64))
        if parent >= 0:
            self.bones[parent].children.append(index)
        return bone

    @property
    def names(self) -> list[str]:
        return [b.name for b in self.bones]

    def __len__(self):
        return len(self.bones)

    def __iter__(self) -> Iterator[Bone]:
        return iter(self.bones)

    def __getitem__(self, index: int) -> Bone:
        return self.bones[index]

    def world_matrices(self) -> np.ndarray:
        """World matrices of every bone in the current local pose, shape [N, 4, 4]."""
        n = len(self.bones)
        worlds: list[Optional[np.ndarray]] = [None] * n
        root_world = np.eye(4) if self.root_parent_world is None else self.root_parent_world

        def resolve(i: int, visiting: set) -> np.ndarray:
            if worlds[i] is not None:
                return worlds[i]
            if i in visiting:
                raise InvalidSkeleton(f"Cycle in bone hierarchy at '{self.bones[i].name}'")
            visiting.add(i)
            bone = self.bones[i]
            parent_world = root_world if bone.parent < 0 else resolve(bone.parent, visiting)
            worlds[i] = parent_world @ bone.local_matrix()
            return worlds[i]

        for i in range(n):
            resolve(i, set())
        if n == 0:
            return np.zeros((0, 4, 4))
        return np.stack(worlds)

    def world_positions(self) -> np.ndarray:
        return self.world_matrices()[:, :3, 3]

    def parent_world(self, worlds: np.ndarray, index: int) -> np.ndarray:
        """World matrix of the parent of bone `index` (root parent for roots)."""
        parent = self.bones[index].parent
        if parent >= 0:
            return worlds[parent]
        return np.eye(4) if self.root_parent_world is None else self.root_parent_world

    def capture_bind_pose(self, overwrite: bool = False):
        """Fill bind inverses from the current world pose."""
        worlds = self.world_matrices()
        for i in range(len(self.bones)):
            if overwrite or self.bind_inverses[i] is None:
                self.bind_inverses[i] = np.linalg.inv(worlds[i])

    def bind_worlds(self) -> np.ndarray:
        """World matrices of the bind pose (current pose where the inverse is unknown)."""
        current = self.world_matrices()
        out = current.copy()
        for i, inv in enumerate(self.bind_inverses):
            if inv is not None:
                out[i] = np.linalg.inv(inv)
        return out

    def copy(self) -> "SkeletonView":
        skel = SkeletonView(self.name)
        skel.bones = [b.copy() for b in self.bones]
        skel.bind_inverses = [None if m is None else m.copy() for m in self.bind_inverses]
        skel.root_parent_world = None if self.root_parent_world is None else self.root_parent_world.copy()
        skel.from_animation_tracks = self.from_animation_tracks
        skel.diagnostics = list(self.diagnostics)
        return skel

    def __repr__(self):
        return f"SkeletonView({self.name!r}, bones={len(self.bones)})"


# =============================================================================
# Scene Graph
# =============================================================================


class NodeKind(str, Enum):
    BONE = "Bone"
    SKINNED_MESH = "SkinnedMesh"
    GROUP = "Group"
    OTHER = "Object3D"


class SceneNode:
    """Minimal scene graph node used as input for skeleton extraction."""

    def __init__(
        self,
        name: str,
        kind: NodeKind = NodeKind.GROUP,
        position=None,
        quaternion=None,
        scale=None,
        bone_inverses: Optional[dict[str, np.ndarray]] = None,
    ):
        self.name = name
        self.kind = NodeKind(kind)
        self.position = np.zeros(3) if position is None else np.asarray(position, dtype=np.float64).copy()
        self.quaternion = IDENTITY_QUAT.copy() if quaternion is None else quat_normalize(quaternion)
        self.scale = np.ones(3) if scale is None else np.asarray(scale, dtype=np.float64).copy()
        self.children: list[SceneNode] = []
        self.parent: Optional[SceneNode] = None
        # Only meaningful on skinned meshes: bone name -> inverse bind matrix
        self.bone_inverses: dict[str, np.ndarray] = {
            k: np.asarray(v, dtype=np.float64) for k, v in (bone_inverses or {}).items()
        }

    def add(self, child: "SceneNode") -> "SceneNode":
        child.parent = self
        self.children.append(child)
        return child

    def local_matrix(self) -> np.ndarray:
        return compose_matrix(self.position, self.quaternion, self.scale)

    def traverse(self) -> Iterator["SceneNode"]:
        """Depth-first pre-order walk, self first."""
        yield self
        for child in self.children:
            yield from child.traverse()

    def __repr__(self):
        return f"SceneNode({self.name!r}, {self.kind.value}, children={len(self.children)})"


# =============================================================================
# Animation
# =============================================================================


class TrackType(str, Enum):
    QUATERNION = "quaternion"
    POSITION = "position"
    SCALE = "scale"

    @property
    def stride(self) -> int:
        return 4 if self is TrackType.QUATERNION else 3


def parse_track_name(name: str) -> tuple[str, Optional[TrackType]]:
    """Split "<bone>.<property>". Unknown properties yield None."""
    if "." not in name:
        return name, None
    bone_name, prop = name.rsplit(".", 1)
    try:
        return bone_name, TrackType(prop)
    except ValueError:
        return bone_name, None


class AnimationTrack:
    def __init__(self, bone_name: str, track_type: TrackType, times, values):
        self.bone_name = bone_name
        self.track_type = TrackType(track_type)
        self.times = np.asarray(times, dtype=np.float32).reshape(-1)
        self.values = np.asarray(values, dtype=np.float32).reshape(-1)
        stride = self.track_type.stride
        if self.values.size != self.times.size * stride:
            raise ValueError(
                f"Track '{self.name}': expected {self.times.size * stride} values "
                f"for {self.times.size} keyframes, got {self.values.size}"
            )

    @classmethod
    def from_name(cls, name: str, times, values) -> "AnimationTrack":
        bone_name, track_type = parse_track_name(name)
        if track_type is None:
            raise ValueError(f"Unsupported track property in '{name}'")
        return cls(bone_name, track_type, times, values)

    @property
    def name(self) -> str:
        return f"{self.bone_name}.{self.track_type.value}"

    @property
    def keyframe_count(self) -> int:
        return int(self.times.size)

    def frames(self) -> np.ndarray:
        """Values reshaped to [keyframes, stride] in float64."""
        return self.values.reshape(-1, self.track_type.stride).astype(np.float64)

    def __repr__(self):
        return f"AnimationTrack({self.name!r}, keys={self.keyframe_count})"


class AnimationClip:
    def __init__(self, name: str, duration: float = -1.0, tracks: Optional[list[AnimationTrack]] = None):
        self.name = name
        self.tracks: list[AnimationTrack] = list(tracks or [])
        if duration < 0:
            duration = max((float(t.times[-1]) for t in self.tracks if t.times.size), default=0.0)
        self.duration = float(duration)

    def bone_names(self) -> list[str]:
        """Bone names referenced by tracks, first-seen order."""
        seen = []
        for track in self.tracks:
            if track.bone_name not in seen:
                seen.append(track.bone_name)
        return seen

    def __repr__(self):
        return f"AnimationClip({self.name!r}, duration={self.duration}, tracks={len(self.tracks)})"
