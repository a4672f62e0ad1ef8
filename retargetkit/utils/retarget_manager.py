from __future__ import annotations

from typing import Callable, Optional, Sequence

from .bone_mapper import BoneMapper, BoneMapping
from .data_types import AnimationClip, SceneNode, SkeletonView
from .errors import EmptyMapping, MissingSkeleton
from .pose_normalizer import PoseValidation, validate_poses
from .retarget_engine import (
    BatchResult,
    BindPoseMode,
    BindReplica,
    InitReport,
    RetargetingEngine,
    RetargetOptions,
    RetargetResult,
)
from .skeleton_analyzer import HierarchyNode, build_hierarchy_view, extract_skeleton, find_by_name, functional_root


class RetargetManager:
    """
    Session facade: holds the two skeletons, the mapping and the options,
    and lazily (re)initializes the engine whenever they change.
    """

    def __init__(self, options: Optional[RetargetOptions] = None):
        self.engine = RetargetingEngine(options or RetargetOptions())
        self.mapper = BoneMapper()
        self.source: Optional[SkeletonView] = None
        self.target: Optional[SkeletonView] = None
        self.source_clips: list[AnimationClip] = []
        self.source_root: Optional[str] = None
        self.target_root: Optional[str] = None

    @property
    def options(self) -> RetargetOptions:
        return self.engine.options

    @property
    def mapping(self) -> BoneMapping:
        return self.mapper.mapping

    # -------------------------------------------------------------------------
    # Models
    # -------------------------------------------------------------------------

    @staticmethod
    def _as_skeleton(model, clip: Optional[AnimationClip] = None) -> SkeletonView:
        if isinstance(model, SkeletonView):
            return model
        if isinstance(model, SceneNode):
            return extract_skeleton(model, clip)
        raise TypeError(f"Expected SkeletonView or SceneNode, got {type(model).__name__}")

    def set_source(self, model, clips: Optional[Sequence[AnimationClip]] = None):
        self.source_clips = list(clips or [])
        self.source = self._as_skeleton(model, self.source_clips[0] if self.source_clips else None)
        self.source_root = None
        self.mapper.detect_rig_types(source_bones=self.source.names)
        self.engine.invalidate()

    def set_target(self, model):
        self.target = self._as_skeleton(model)
        self.target_root = None
        self.mapper.detect_rig_types(target_bones=self.target.names)
        self.engine.invalidate()

    def set_source_root(self, name: Optional[str]):
        self.source_root = name
        self.engine.invalidate()

    def set_target_root(self, name: Optional[str]):
        self.target_root = name
        self.engine.invalidate()

    @property
    def effective_source_root(self) -> Optional[str]:
        return self._effective_root(self.source, self.source_root)

    @property
    def effective_target_root(self) -> Optional[str]:
        return self._effective_root(self.target, self.target_root)

    @staticmethod
    def _effective_root(skel: Optional[SkeletonView], selected: Optional[str]) -> Optional[str]:
        if skel is None:
            return None
        if selected and find_by_name(skel, selected) is not None:
            return selected
        index = functional_root(skel)
        return None if index is None else skel.bones[index].name

    # -------------------------------------------------------------------------
    # Mapping
    # -------------------------------------------------------------------------

    def auto_map(self, include_hands: bool = False) -> BoneMapping:
        """Role-based mapping, plus root -> root when the roles did not cover it."""
        self._require_skeletons()
        mapping = self.mapper.generate(self.source.names, self.target.names, include_hands)

        src_root = self.effective_source_root
        trg_root = self.effective_target_root
        if src_root and trg_root and src_root not in mapping and mapping.source_of(trg_root) is None:
            mapping.add(src_root, trg_root)
        self.engine.invalidate()
        return mapping

    def add_mapping(self, source: str, target: str) -> Optional[str]:
        released = self.mapper.add(source, target)
        self.engine.invalidate()
        return released

    def remove_mapping(self, source: str) -> bool:
        removed = self.mapper.remove(source)
        self.engine.invalidate()
        return removed

    def clear_mappings(self):
        self.mapper.clear()
        self.engine.invalidate()

    def set_mapping(self, mapping: BoneMapping | dict):
        self.mapper.set_mapping(mapping)
        self.engine.invalidate()

    def save_mapping(self, path: str, name: Optional[str] = None):
        self.mapper.save(path, name)

    def load_mapping(self, path: str) -> BoneMapping:
        mapping = self.mapper.load(path)
        self.engine.invalidate()
        return mapping

    def mapping_info(self) -> dict:
        return self.mapper.info()

    # -------------------------------------------------------------------------
    # Options
    # -------------------------------------------------------------------------

    def set_options(self, **changes):
        self.engine.set_options(**changes)

    def set_pose_modes(self, src_pose_mode=None, trg_pose_mode=None):
        self.engine.set_pose_modes(src_pose_mode, trg_pose_mode)

    def set_coordinate_correction(self, enabled: bool, quaternion=None):
        self.engine.set_coordinate_correction(enabled, quaternion)

    # -------------------------------------------------------------------------
    # Retargeting
    # -------------------------------------------------------------------------

    def _require_skeletons(self):
        if self.source is None or self.target is None:
            raise MissingSkeleton("Source and target skeletons are required")

    def initialize(self) -> InitReport:
        self._require_skeletons()
        if len(self.mapping) == 0:
            raise EmptyMapping("No bone mappings defined")
        options = self.options.replace(
            source_root=self.effective_source_root,
            target_root=self.effective_target_root,
        )
        return self.engine.initialize(self.source, self.target, self.mapping, options)

    def _ensure_ready(self):
        if not self.engine.is_ready:
            self.initialize()

    def validate_retargeting_poses(self) -> PoseValidation:
        self._require_skeletons()
        src = BindReplica.from_skeleton(self.source, self.options.src_pose_mode, self.options.src_embed_world)
        trg = BindReplica.from_skeleton(self.target, self.options.trg_pose_mode, self.options.trg_embed_world)
        return validate_poses(src.skeleton, trg.skeleton)

    def retarget_animation(
        self, clip: AnimationClip, preserve_root_motion: Optional[bool] = None, new_name: Optional[str] = None
    ) -> RetargetResult:
        self._require_skeletons()
        self._ensure_ready()
        return self.engine.retarget_animation(clip, new_name, preserve_root_motion)

    def retarget_all(
        self,
        clips: Optional[Sequence[AnimationClip]] = None,
        new_names: Optional[dict[str, str]] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
        preserve_root_motion: Optional[bool] = None,
    ) -> BatchResult:
        self._require_skeletons()
        self._ensure_ready()
        clips = self.source_clips if clips is None else clips
        return self.engine.retarget_all(clips, new_names, should_cancel, preserve_root_motion)

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def build_hierarchy(self, is_source: bool = True) -> list[HierarchyNode]:
        skel = self.source if is_source else self.target
        if skel is None:
            return []
        return build_hierarchy_view(skel, self.mapping.mapping, is_source)

    def pose_modes(self) -> tuple[BindPoseMode, BindPoseMode]:
        return self.options.src_pose_mode, self.options.trg_pose_mode
