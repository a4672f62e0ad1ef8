from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Sequence

import numpy as np
import yaml

from .bone_mapper import ROLE_TABLE, BoneMapping, _match_role, _normalized
from .data_types import AnimationClip, AnimationTrack, SkeletonView, Transform, TrackType
from .errors import (
    DiagnosticCode,
    EmptyMapping,
    EngineNotReady,
    InvalidSkeleton,
    MissingSkeleton,
    NoTracksRetargeted,
    RetargetError,
    UnknownPoseMode,
    info,
    warning,
)
from .math_utils import (
    LENGTH_EPS,
    decompose_matrix,
    invert_matrix,
    is_identity_matrix,
    quat_from_euler,
    quat_inverse,
    quat_multiply,
    quat_normalize,
    quat_rotate_vector,
    rotation_matrix,
)
from .pose_normalizer import PoseValidation, apply_t_pose, validate_poses
from .presets import SCALE_ROLE_PAIRS
from .skeleton_analyzer import find_by_name, functional_root

RETARGETED_SUFFIX = "_retargeted"

# =============================================================================
# Options
# =============================================================================


class BindPoseMode(Enum):
    DEFAULT = 0  # replay the stored bind pose
    CURRENT = 1  # use the pose the bones currently hold

    @classmethod
    def parse(cls, value) -> "BindPoseMode":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().upper()
            if key in cls.__members__:
                return cls[key]
        elif isinstance(value, int) and not isinstance(value, bool):
            for mode in cls:
                if mode.value == value:
                    return mode
        raise UnknownPoseMode(f"Unknown bind pose mode: {value!r}")


_default_correction = quat_from_euler("y", -90.0)


def get_default_coordinate_correction() -> np.ndarray:
    return _default_correction.copy()


def set_default_coordinate_correction(q) -> None:
    """Replace the process-wide default root correction quaternion [x, y, z, w]."""
    global _default_correction
    q = np.asarray(q, dtype=np.float64).reshape(-1)
    if q.size != 4 or not np.all(np.isfinite(q)):
        raise ValueError("Coordinate correction must be a finite quaternion [x, y, z, w]")
    _default_correction = quat_normalize(q)


@dataclass
class RetargetOptions:
    src_pose_mode: BindPoseMode = BindPoseMode.DEFAULT
    trg_pose_mode: BindPoseMode = BindPoseMode.DEFAULT
    src_embed_world: bool = True
    trg_embed_world: bool = True
    use_world_space_transformation: bool = False
    use_optimal_scale: bool = True
    auto_validate_pose: bool = True
    auto_apply_t_pose: bool = False
    coordinate_correction_enabled: bool = False
    coordinate_correction: Optional[np.ndarray] = None
    preserve_root_motion: bool = True
    source_root: Optional[str] = None
    target_root: Optional[str] = None

    def __post_init__(self):
        self.src_pose_mode = BindPoseMode.parse(self.src_pose_mode)
        self.trg_pose_mode = BindPoseMode.parse(self.trg_pose_mode)
        if self.coordinate_correction is not None:
            q = np.asarray(self.coordinate_correction, dtype=np.float64).reshape(-1)
            if q.size != 4:
                raise ValueError("coordinate_correction must have 4 components [x, y, z, w]")
            self.coordinate_correction = quat_normalize(q)

    def correction_quaternion(self) -> np.ndarray:
        if self.coordinate_correction is not None:
            return self.coordinate_correction.copy()
        return get_default_coordinate_correction()

    def replace(self, **changes) -> "RetargetOptions":
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "RetargetOptions":
        data = dict(data or {})
        names = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - names)
        if unknown:
            raise ValueError(f"Unknown retarget options: {', '.join(unknown)}")
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: str) -> "RetargetOptions":
        with open(path, "r") as f:
            data = yaml.load(f, Loader=yaml.FullLoader) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Options file '{path}' must contain a mapping")
        return cls.from_dict(data.get("retarget", data))


# =============================================================================
# Bind Replica
# =============================================================================


@dataclass
class EmbeddedWorld:
    forward: Transform
    inverse: Transform


class BindReplica:
    """
    Detached copy of a skeleton held in a reference pose, with cached
    world transforms. The root sits at the origin; the transform of the
    original root parent is kept separately in `embedded_root_world`.
    """

    def __init__(self, skeleton: SkeletonView, pose_mode: BindPoseMode, embedded_root_world: Optional[EmbeddedWorld] = None):
        self.skeleton = skeleton
        self.pose_mode = pose_mode
        self.embedded_root_world = embedded_root_world
        self.parent_indices = np.array([b.parent for b in skeleton.bones], dtype=np.int32)
        self.world_matrices = np.zeros((0, 4, 4))
        self.transforms_world: list[Transform] = []
        self.transforms_world_inverse: list[Transform] = []
        self.refresh()

    @classmethod
    def from_skeleton(
        cls, skeleton: SkeletonView, pose_mode: BindPoseMode = BindPoseMode.DEFAULT, embed_world: bool = True
    ) -> "BindReplica":
        pose_mode = BindPoseMode.parse(pose_mode)
        if pose_mode is BindPoseMode.DEFAULT:
            worlds = skeleton.bind_worlds()
        else:
            worlds = None

        copy = skeleton.copy()
        copy.root_parent_world = None
        copy.diagnostics = []

        if worlds is not None:
            for i, bone in enumerate(copy.bones):
                if bone.parent >= 0:
                    bone.set_local_matrix(np.linalg.inv(worlds[bone.parent]) @ worlds[i])
                else:
                    bone.set_local_matrix(worlds[i])

        embedded = None
        if embed_world and not is_identity_matrix(skeleton.root_parent_world):
            m = skeleton.root_parent_world
            embedded = EmbeddedWorld(Transform.from_matrix(m), Transform.from_matrix(invert_matrix(m)))
        return cls(copy, pose_mode, embedded)

    def refresh(self):
        """Recompute cached world transforms after the local pose changed."""
        self.world_matrices = self.skeleton.world_matrices()
        self.transforms_world = [Transform.from_matrix(m) for m in self.world_matrices]
        self.transforms_world_inverse = [Transform.from_matrix(invert_matrix(m)) for m in self.world_matrices]

    @property
    def bones(self):
        return self.skeleton.bones

    def world_position(self, index: int) -> np.ndarray:
        return self.world_matrices[index][:3, 3]

    def parent_world_matrix(self, index: int) -> np.ndarray:
        parent = self.parent_indices[index]
        return self.world_matrices[parent] if parent >= 0 else np.eye(4)

    def parent_world_rotation(self, index: int) -> np.ndarray:
        parent = self.parent_indices[index]
        if parent < 0:
            return np.array([0.0, 0.0, 0.0, 1.0])
        return self.transforms_world[parent].q

    def embedded_rotation(self, inverse: bool = False) -> np.ndarray:
        if self.embedded_root_world is None:
            return np.array([0.0, 0.0, 0.0, 1.0])
        t = self.embedded_root_world.inverse if inverse else self.embedded_root_world.forward
        return t.q


# =============================================================================
# Results
# =============================================================================


class EngineState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    POSE_VALIDATED = "pose_validated"
    READY = "ready"


@dataclass
class InitReport:
    mapped_bones: int
    proportion_ratio: float
    pose_validation: Optional[PoseValidation]
    diagnostics: list = field(default_factory=list)


@dataclass
class RetargetResult:
    clip: AnimationClip
    diagnostics: list = field(default_factory=list)


class ClipStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ClipOutcome:
    source_name: str
    status: ClipStatus
    clip: Optional[AnimationClip] = None
    reason: Optional[str] = None
    diagnostics: list = field(default_factory=list)


@dataclass
class BatchResult:
    outcomes: list[ClipOutcome]

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def success(self) -> int:
        return sum(1 for o in self.outcomes if o.status is ClipStatus.OK)

    @property
    def clips(self) -> list[AnimationClip]:
        return [o.clip for o in self.outcomes if o.status is ClipStatus.OK]


# =============================================================================
# Engine
# =============================================================================


class RetargetingEngine:
    def __init__(self, options: Optional[RetargetOptions] = None):
        self.options = options or RetargetOptions()
        self.state = EngineState.UNINITIALIZED
        self.source: Optional[SkeletonView] = None
        self.target: Optional[SkeletonView] = None
        self.mapping: dict[str, str] = {}
        self.bind_src: Optional[BindReplica] = None
        self.bind_trg: Optional[BindReplica] = None
        self.idx_map = np.zeros(0, dtype=np.int32)
        self.left: list[Optional[np.ndarray]] = []
        self.right: list[Optional[np.ndarray]] = []
        self.proportion_ratio = 1.0
        self.pose_validation: Optional[PoseValidation] = None
        self.source_root: Optional[int] = None
        self.diagnostics: list = []

    @property
    def is_ready(self) -> bool:
        return self.state is EngineState.READY

    def invalidate(self):
        self.state = EngineState.UNINITIALIZED

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def initialize(
        self,
        source: SkeletonView,
        target: SkeletonView,
        mapping: BoneMapping | dict,
        options: Optional[RetargetOptions] = None,
    ) -> InitReport:
        if source is None or target is None:
            raise MissingSkeleton("Source and target skeletons are required")
        if not source.bones or not target.bones:
            raise InvalidSkeleton("Source and target skeletons must contain bones")
        if options is not None:
            self.options = options
        opts = self.options

        self.invalidate()
        self.source = source
        self.target = target
        self.mapping = dict(mapping.mapping if isinstance(mapping, BoneMapping) else mapping or {})
        diagnostics = list(source.diagnostics) + list(target.diagnostics)

        self.idx_map = self.compute_bone_map_indices(source, target, self.mapping, diagnostics)

        self.bind_src = BindReplica.from_skeleton(source, opts.src_pose_mode, opts.src_embed_world)
        self.bind_trg = BindReplica.from_skeleton(target, opts.trg_pose_mode, opts.trg_embed_world)
        self.state = EngineState.INITIALIZED

        self.pose_validation = None
        if opts.auto_validate_pose:
            self.pose_validation = validate_poses(self.bind_src.skeleton, self.bind_trg.skeleton)
            if not self.pose_validation.compatible:
                diagnostics.append(
                    info(
                        DiagnosticCode.POSE_VALIDATION_INCOMPATIBLE,
                        f"Source pose {self.pose_validation.source_pose.value}, "
                        f"target pose {self.pose_validation.target_pose.value}: "
                        f"{self.pose_validation.recommendation}",
                    )
                )
                if opts.auto_apply_t_pose:
                    for replica in (self.bind_src, self.bind_trg):
                        result = apply_t_pose(replica.skeleton)
                        diagnostics.extend(result.diagnostics)
                        replica.refresh()
                    diagnostics.append(info(DiagnosticCode.POSE_NORMALIZED, "Applied T-pose to both bind replicas"))
        self.state = EngineState.POSE_VALIDATED

        self.left, self.right = self.precompute_retargeting_quats(diagnostics)
        self._check_bind_segments(diagnostics)
        if opts.use_optimal_scale:
            self.proportion_ratio = self.compute_optimal_scale(diagnostics)
        else:
            self.proportion_ratio = self.compute_proportion_ratio()

        if opts.source_root:
            self.source_root = find_by_name(source, opts.source_root)
            if self.source_root is None:
                diagnostics.append(
                    warning(DiagnosticCode.UNRESOLVABLE_BONE, "Selected source root not found", bone=opts.source_root)
                )
        else:
            self.source_root = functional_root(source)

        self.diagnostics = diagnostics
        self.state = EngineState.READY
        return InitReport(
            mapped_bones=int(np.count_nonzero(self.idx_map >= 0)),
            proportion_ratio=self.proportion_ratio,
            pose_validation=self.pose_validation,
            diagnostics=list(diagnostics),
        )

    @staticmethod
    def compute_bone_map_indices(
        source: SkeletonView, target: SkeletonView, mapping: dict[str, str], diagnostics: Optional[list] = None
    ) -> np.ndarray:
        """idx_map[i] = target index of source bone i, or -1."""
        idx_map = np.full(len(source.bones), -1, dtype=np.int32)
        for src_name, trg_name in mapping.items():
            i = find_by_name(source, src_name)
            j = find_by_name(target, trg_name)
            if i is None or j is None:
                if diagnostics is not None:
                    missing = src_name if i is None else trg_name
                    side = "source" if i is None else "target"
                    diagnostics.append(
                        warning(
                            DiagnosticCode.UNRESOLVABLE_BONE,
                            f"Mapping {src_name} -> {trg_name}: bone not found in {side} skeleton",
                            bone=missing,
                        )
                    )
                continue
            idx_map[i] = j
        return idx_map

    # Mapping and option edits invalidate the session

    def set_mapping(self, mapping: BoneMapping | dict):
        self.mapping = dict(mapping.mapping if isinstance(mapping, BoneMapping) else mapping)
        self.invalidate()

    def add_mapping(self, source: str, target: str):
        self.mapping = {s: t for s, t in self.mapping.items() if t != target}
        self.mapping[source] = target
        self.invalidate()

    def remove_mapping(self, source: str):
        self.mapping.pop(source, None)
        self.invalidate()

    def clear_mapping(self):
        self.mapping = {}
        self.invalidate()

    def set_pose_modes(self, src_pose_mode=None, trg_pose_mode=None):
        changes = {}
        if src_pose_mode is not None:
            changes["src_pose_mode"] = BindPoseMode.parse(src_pose_mode)
        if trg_pose_mode is not None:
            changes["trg_pose_mode"] = BindPoseMode.parse(trg_pose_mode)
        self.set_options(**changes)

    def set_options(self, **changes):
        self.options = self.options.replace(**changes)
        self.invalidate()

    def set_coordinate_correction(self, enabled: bool, quaternion=None):
        """Toggle root correction. Takes effect on the next clip without re-initialization."""
        changes = {"coordinate_correction_enabled": bool(enabled)}
        if quaternion is not None:
            changes["coordinate_correction"] = quaternion
        self.options = self.options.replace(**changes)

    # -------------------------------------------------------------------------
    # Precomputation
    # -------------------------------------------------------------------------

    def precompute_retargeting_quats(self, diagnostics: Optional[list] = None):
        """
        Per mapped source bone i -> target bone j:
          L = inv(trgParentWorld_j) * inv(trgEmbedded) * srcEmbedded * srcParentWorld_i
          R = inv(srcWorld_i) * inv(srcEmbedded) * trgEmbedded * trgWorld_j
        so a local source rotation q maps to L * q * R.
        """
        src, trg = self.bind_src, self.bind_trg
        n = len(src.bones)
        left: list[Optional[np.ndarray]] = [None] * n
        right: list[Optional[np.ndarray]] = [None] * n

        src_emb = src.embedded_rotation()
        src_emb_inv = src.embedded_rotation(inverse=True)
        trg_emb = trg.embedded_rotation()
        trg_emb_inv = trg.embedded_rotation(inverse=True)

        for i in range(n):
            j = int(self.idx_map[i])
            if j < 0:
                continue

            l = quat_inverse(trg.parent_world_rotation(j))
            l = quat_multiply(l, trg_emb_inv)
            l = quat_multiply(l, src_emb)
            l = quat_multiply(l, src.parent_world_rotation(i))

            r = quat_inverse(src.transforms_world[i].q)
            r = quat_multiply(r, src_emb_inv)
            r = quat_multiply(r, trg_emb)
            r = quat_multiply(r, trg.transforms_world[j].q)

            if not (np.all(np.isfinite(l)) and np.all(np.isfinite(r))):
                if diagnostics is not None:
                    diagnostics.append(
                        warning(
                            DiagnosticCode.INVALID_QUATERNION_PRECOMPUTE,
                            "Correction quaternions are not finite",
                            bone=src.bones[i].name,
                        )
                    )
                continue
            left[i] = quat_normalize(l)
            right[i] = quat_normalize(r)
        return left, right

    def _check_bind_segments(self, diagnostics: list):
        for i in range(len(self.bind_src.bones)):
            j = int(self.idx_map[i])
            if j < 0:
                continue
            for replica, index in ((self.bind_src, i), (self.bind_trg, j)):
                bone = replica.bones[index]
                if not bone.children:
                    continue
                length = np.linalg.norm(replica.world_position(bone.children[0]) - replica.world_position(index))
                if length < LENGTH_EPS:
                    diagnostics.append(
                        warning(
                            DiagnosticCode.DEGENERATE_BIND_POSE,
                            f"Bind pose segment to first child has length {length:.2e}",
                            bone=bone.name,
                        )
                    )

    def compute_optimal_scale(self, diagnostics: Optional[list] = None) -> float:
        """Median of target/source lengths over canonical landmark pairs."""
        src, trg = self.bind_src, self.bind_trg
        src_names = _normalized(src.skeleton.names)
        trg_names = _normalized(trg.skeleton.names)

        def landmark(replica: BindReplica, names, role: str) -> Optional[np.ndarray]:
            bone = _match_role(names, ROLE_TABLE[role])
            index = find_by_name(replica.skeleton, bone)
            return None if index is None else replica.world_position(index)

        measurements = []
        for start, end in SCALE_ROLE_PAIRS:
            points = [
                landmark(src, src_names, start),
                landmark(src, src_names, end),
                landmark(trg, trg_names, start),
                landmark(trg, trg_names, end),
            ]
            if any(p is None for p in points):
                continue
            src_length = np.linalg.norm(points[1] - points[0])
            trg_length = np.linalg.norm(points[3] - points[2])
            if src_length < LENGTH_EPS:
                if diagnostics is not None:
                    diagnostics.append(
                        warning(
                            DiagnosticCode.DEGENERATE_SEGMENT,
                            f"Source segment {start}-{end} has length {src_length:.2e}; skipped",
                        )
                    )
                continue
            measurements.append(trg_length / src_length)

        if not measurements:
            return 1.0
        return float(np.median(measurements))

    def compute_proportion_ratio(self) -> float:
        """Total target / total source first-child segment length over mapped bones."""
        src_total = 0.0
        trg_total = 0.0
        for i, bone in enumerate(self.bind_src.bones):
            j = int(self.idx_map[i])
            if j < 0:
                continue
            trg_bone = self.bind_trg.bones[j]
            if not bone.children or not trg_bone.children:
                continue
            src_len = np.linalg.norm(self.bind_src.world_position(bone.children[0]) - self.bind_src.world_position(i))
            trg_len = np.linalg.norm(self.bind_trg.world_position(trg_bone.children[0]) - self.bind_trg.world_position(j))
            if src_len > LENGTH_EPS and trg_len > LENGTH_EPS:
                src_total += src_len
                trg_total += trg_len
        return trg_total / src_total if src_total > 0 else 1.0

    # -------------------------------------------------------------------------
    # Keyframe Math
    # -------------------------------------------------------------------------

    def retarget_quaternion(self, src_index: int, q: np.ndarray) -> np.ndarray:
        """Fast path: L * q * R. Accepts [4] or [K, 4]."""
        out = quat_multiply(quat_multiply(self.left[src_index], q), self.right[src_index])
        return quat_normalize(out)

    def retarget_keyframe_world_space(self, src_index: int, q: np.ndarray) -> Optional[np.ndarray]:
        j = int(self.idx_map[src_index])
        if j < 0:
            return None
        src_bone = self.bind_src.bones[src_index]
        anim = src_bone.local_matrix() @ rotation_matrix(q)
        local_out = (
            invert_matrix(self.bind_trg.parent_world_matrix(j))
            @ self.bind_trg.world_matrices[j]
            @ invert_matrix(self.bind_src.world_matrices[src_index])
            @ anim
        )
        return decompose_matrix(local_out)[1]

    # -------------------------------------------------------------------------
    # Tracks
    # -------------------------------------------------------------------------

    def _resolve_target(self, src_index: int, bone_name: str, diagnostics: list, allow_fallback: bool = True):
        j = int(self.idx_map[src_index])
        if j >= 0:
            return self.target.bones[j].name, j
        if allow_fallback:
            j = find_by_name(self.target, bone_name)
            if j is not None:
                diagnostics.append(
                    info(DiagnosticCode.SAME_NAME_FALLBACK, "Unmapped bone exists in target by name", bone=bone_name)
                )
                return bone_name, j
        diagnostics.append(
            warning(DiagnosticCode.UNRESOLVABLE_BONE, "Bone is neither mapped nor present in target", bone=bone_name)
        )
        return None

    def _source_index(self, track: AnimationTrack, diagnostics: list) -> Optional[int]:
        index = find_by_name(self.source, track.bone_name)
        if index is None:
            diagnostics.append(
                warning(DiagnosticCode.UNRESOLVABLE_BONE, "Track bone not found in source skeleton", bone=track.bone_name)
            )
        return index

    def retarget_quaternion_track(self, track: AnimationTrack, diagnostics: list) -> Optional[AnimationTrack]:
        i = self._source_index(track, diagnostics)
        if i is None:
            return None
        resolved = self._resolve_target(i, track.bone_name, diagnostics)
        if resolved is None:
            return None
        target_name, _ = resolved
        if self.left[i] is None or self.right[i] is None:
            diagnostics.append(
                warning(
                    DiagnosticCode.INVALID_QUATERNION_PRECOMPUTE,
                    "No correction quaternions for this bone; track dropped",
                    bone=track.bone_name,
                )
            )
            return None

        frames = track.frames()
        if i == self.source_root and self.options.coordinate_correction_enabled:
            c = self.options.correction_quaternion()
            frames = quat_multiply(quat_multiply(quat_inverse(c), frames), c)

        if self.options.use_world_space_transformation:
            out = np.empty_like(frames)
            for k, q in enumerate(frames):
                world_q = self.retarget_keyframe_world_space(i, q)
                out[k] = q if world_q is None else world_q
        else:
            out = self.retarget_quaternion(i, frames)

        return AnimationTrack(target_name, TrackType.QUATERNION, track.times.copy(), out)

    def retarget_position_track(
        self, track: AnimationTrack, diagnostics: list, preserve_root_motion: Optional[bool] = None
    ) -> Optional[AnimationTrack]:
        preserve = self.options.preserve_root_motion if preserve_root_motion is None else preserve_root_motion
        i = self._source_index(track, diagnostics)
        if i is None:
            return None
        if i != self.source_root or not preserve:
            reason = "root motion disabled" if i == self.source_root else "non-root position track"
            diagnostics.append(info(DiagnosticCode.ROOT_POSITION_SKIPPED, f"Dropped: {reason}", bone=track.bone_name))
            return None
        j = int(self.idx_map[i])
        if j < 0:
            diagnostics.append(
                info(DiagnosticCode.ROOT_POSITION_SKIPPED, "Dropped: root bone is not mapped", bone=track.bone_name)
            )
            return None

        src_bind = self.bind_src.bones[i].position
        trg_bind = self.bind_trg.bones[j].position
        delta = track.frames() - src_bind
        if self.options.coordinate_correction_enabled:
            delta = quat_rotate_vector(self.options.correction_quaternion(), delta)
        out = trg_bind + self.proportion_ratio * delta
        return AnimationTrack(self.target.bones[j].name, TrackType.POSITION, track.times.copy(), out)

    def retarget_scale_track(self, track: AnimationTrack, diagnostics: list) -> Optional[AnimationTrack]:
        i = self._source_index(track, diagnostics)
        if i is None:
            return None
        resolved = self._resolve_target(i, track.bone_name, diagnostics)
        if resolved is None:
            return None
        target_name, j = resolved
        src_scale = self.bind_src.bones[i].scale
        trg_scale = self.bind_trg.bones[j].scale
        ratio = trg_scale / np.where(np.abs(src_scale) < 1e-12, 1.0, src_scale)
        out = track.frames() * ratio
        return AnimationTrack(target_name, TrackType.SCALE, track.times.copy(), out)

    # -------------------------------------------------------------------------
    # Clips
    # -------------------------------------------------------------------------

    def retarget_animation(
        self, clip: AnimationClip, new_name: Optional[str] = None, preserve_root_motion: Optional[bool] = None
    ) -> RetargetResult:
        if self.source is None or self.target is None:
            raise MissingSkeleton("Source and target skeletons are required")
        if not self.is_ready:
            raise EngineNotReady("Engine must be initialized before retargeting")
        if not self.mapping:
            raise EmptyMapping("No bone mappings defined")

        diagnostics: list = []
        tracks: list[AnimationTrack] = []
        for track in clip.tracks:
            if track.track_type is TrackType.QUATERNION:
                new_track = self.retarget_quaternion_track(track, diagnostics)
            elif track.track_type is TrackType.POSITION:
                new_track = self.retarget_position_track(track, diagnostics, preserve_root_motion)
            else:
                new_track = self.retarget_scale_track(track, diagnostics)
            if new_track is not None:
                tracks.append(new_track)

        if clip.tracks and not tracks:
            diagnostics.append(warning(DiagnosticCode.NO_TRACKS_RETARGETED, f"No tracks retargeted for '{clip.name}'"))
            raise NoTracksRetargeted(f"No tracks could be retargeted for clip '{clip.name}'", diagnostics)

        name = new_name or f"{clip.name}{RETARGETED_SUFFIX}"
        return RetargetResult(AnimationClip(name, clip.duration, tracks), diagnostics)

    def retarget_all(
        self,
        clips: Sequence[AnimationClip],
        new_names: Optional[dict[str, str]] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
        preserve_root_motion: Optional[bool] = None,
    ) -> BatchResult:
        """Retarget clips one by one; a failing clip is reported and skipped."""
        if self.source is None or self.target is None:
            raise MissingSkeleton("Source and target skeletons are required")
        if not self.is_ready:
            raise EngineNotReady("Engine must be initialized before retargeting")
        if not self.mapping:
            raise EmptyMapping("No bone mappings defined")

        new_names = new_names or {}
        outcomes: list[ClipOutcome] = []
        cancelled = False
        for clip in clips:
            if not cancelled and should_cancel is not None and should_cancel():
                cancelled = True
            if cancelled:
                outcomes.append(ClipOutcome(clip.name, ClipStatus.CANCELLED, reason="cancelled"))
                continue
            try:
                result = self.retarget_animation(clip, new_names.get(clip.name), preserve_root_motion)
            except RetargetError as e:
                outcomes.append(ClipOutcome(clip.name, ClipStatus.FAILED, reason=str(e), diagnostics=e.diagnostics))
                continue
            outcomes.append(ClipOutcome(clip.name, ClipStatus.OK, clip=result.clip, diagnostics=result.diagnostics))
        return BatchResult(outcomes)
