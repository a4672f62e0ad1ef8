from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional

from .errors import DiagnosticCode, MappingFileError, info, warning
from .presets import (
    BASE_ROLE_PATTERNS,
    FINGER_KEYWORDS,
    FINGER_ROLE_PATTERNS,
    GENERIC_HUMANOID_SIGNATURE,
    HAND_ROLES,
    MIXAMO_PREFIX,
    UE5_SIGNATURE,
    UNITY_SIGNATURE,
)
from .skeleton_analyzer import normalize_bone_name

MAPPING_FILE_VERSION = "1.0"


# =============================================================================
# Role Table
# =============================================================================


@dataclass(frozen=True)
class RoleSpec:
    name: str
    patterns: tuple[str, ...]
    is_finger: bool = False
    guard_fingers: bool = False


def _build_role(name: str, patterns: list[str], is_finger: bool) -> RoleSpec:
    normalized = []
    for pattern in patterns:
        norm = normalize_bone_name(pattern)
        if norm and norm not in normalized:
            normalized.append(norm)
    return RoleSpec(name, tuple(normalized), is_finger, name in HAND_ROLES)


BASE_ROLES = [_build_role(name, pats, False) for name, pats in BASE_ROLE_PATTERNS.items()]
FINGER_ROLES = [_build_role(name, pats, True) for name, pats in FINGER_ROLE_PATTERNS.items()]
ROLE_TABLE = {role.name: role for role in BASE_ROLES + FINGER_ROLES}


class RigType(str, Enum):
    MIXAMO = "mixamo"
    UE5 = "ue5"
    UNITY = "unity"
    HUMANOID = "humanoid"
    CUSTOM = "custom"
    UNKNOWN = "unknown"


# =============================================================================
# Matching
# =============================================================================


def _normalized(names: Iterable[str]) -> list[tuple[str, str]]:
    return [(name, normalize_bone_name(name)) for name in names]


def find_role_bone(bone_names: list[str], role: RoleSpec | str) -> Optional[str]:
    """
    Find the bone that plays `role`.
    Pass 1: first bone whose normalized name equals any pattern.
    Pass 2: first bone whose normalized name contains any pattern.
    Hand roles never match finger bones in pass 2.
    """
    if isinstance(role, str):
        role = ROLE_TABLE[role]
    return _match_role(_normalized(bone_names), role)


def _match_role(candidates: list[tuple[str, str]], role: RoleSpec) -> Optional[str]:
    for name, norm in candidates:
        if norm in role.patterns:
            return name

    for name, norm in candidates:
        if role.guard_fingers and any(k in norm for k in FINGER_KEYWORDS):
            continue
        for pattern in role.patterns:
            if pattern in norm:
                return name
    return None


def _matches_signature(joined: str, signature) -> bool:
    return all(any(alt in joined for alt in requirement) for requirement in signature)


def detect_rig_type(bone_names: list[str]) -> RigType:
    """Substring heuristic over the '|'-joined lowercase bone names."""
    if not bone_names:
        return RigType.CUSTOM
    if any(MIXAMO_PREFIX in name for name in bone_names):
        return RigType.MIXAMO

    joined = "|".join(name.lower() for name in bone_names)
    if _matches_signature(joined, UE5_SIGNATURE):
        return RigType.UE5
    if _matches_signature(joined, UNITY_SIGNATURE):
        return RigType.UNITY
    if _matches_signature(joined, GENERIC_HUMANOID_SIGNATURE):
        return RigType.HUMANOID
    return RigType.CUSTOM


# =============================================================================
# Mapping
# =============================================================================


class BoneMapping:
    """Injective source bone name -> target bone name table."""

    def __init__(
        self,
        mapping: Optional[dict[str, str]] = None,
        confidence: float = 0.0,
        source_rig_type: RigType = RigType.UNKNOWN,
        target_rig_type: RigType = RigType.UNKNOWN,
        name: str = "",
        created_at: Optional[str] = None,
    ):
        self.mapping: dict[str, str] = {}
        self.confidence = confidence
        self.created_at = created_at
        self.source_rig_type = RigType(source_rig_type)
        self.target_rig_type = RigType(target_rig_type)
        self.name = name
        self.diagnostics: list = []
        for src, trg in (mapping or {}).items():
            self.add(src, trg)

    def add(self, source: str, target: str) -> Optional[str]:
        """Map source -> target. Returns the source that previously held target, if any."""
        if not source or not target:
            raise ValueError("Both source and target bones must be specified")
        released = self.source_of(target)
        if released is not None and released != source:
            del self.mapping[released]
            self.diagnostics.append(
                warning(
                    DiagnosticCode.TARGET_ALREADY_MAPPED,
                    f"'{target}' reassigned from '{released}' to '{source}'",
                    bone=target,
                )
            )
        else:
            released = None
        self.mapping[source] = target
        return released

    def remove(self, source: str) -> bool:
        return self.mapping.pop(source, None) is not None

    def clear(self):
        self.mapping.clear()
        self.confidence = 0.0

    def target_of(self, source: str) -> Optional[str]:
        return self.mapping.get(source)

    def source_of(self, target: str) -> Optional[str]:
        for src, trg in self.mapping.items():
            if trg == target:
                return src
        return None

    def items(self):
        return self.mapping.items()

    def __len__(self):
        return len(self.mapping)

    def __contains__(self, source):
        return source in self.mapping

    def __iter__(self):
        return iter(self.mapping)

    def copy(self) -> "BoneMapping":
        mapping = BoneMapping(
            None, self.confidence, self.source_rig_type, self.target_rig_type, self.name, self.created_at
        )
        mapping.mapping = dict(self.mapping)
        mapping.diagnostics = list(self.diagnostics)
        return mapping

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def to_dict(self, name: Optional[str] = None) -> dict:
        return {
            "name": name or self.name or "Bone Mapping",
            "version": MAPPING_FILE_VERSION,
            "createdAt": self.created_at or datetime.now(timezone.utc).isoformat(),
            "sourceRigType": self.source_rig_type.value,
            "targetRigType": self.target_rig_type.value,
            "confidence": self.confidence,
            "mapping": dict(self.mapping),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BoneMapping":
        if not isinstance(data, dict):
            raise MappingFileError("Mapping file must contain a JSON object")
        mappings = data.get("mapping")
        if not isinstance(mappings, dict):
            raise MappingFileError("Invalid mapping file format: 'mapping' object is missing")
        for src, trg in mappings.items():
            if not isinstance(src, str) or not isinstance(trg, str) or not src or not trg:
                raise MappingFileError(f"Invalid mapping entry: {src!r} -> {trg!r}")

        def rig(value) -> RigType:
            try:
                return RigType(value or RigType.UNKNOWN.value)
            except ValueError:
                return RigType.CUSTOM

        return cls(
            mappings,
            confidence=float(data.get("confidence", 0.0) or 0.0),
            source_rig_type=rig(data.get("sourceRigType")),
            target_rig_type=rig(data.get("targetRigType")),
            name=str(data.get("name", "")),
            created_at=str(data["createdAt"]) if data.get("createdAt") else None,
        )

    def save(self, path: str, name: Optional[str] = None):
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(name), f, indent=2)

    @classmethod
    def load(cls, path: str) -> "BoneMapping":
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise MappingFileError(f"Mapping file '{path}' is not valid JSON: {e}") from e
        return cls.from_dict(data)

    def __repr__(self):
        return f"BoneMapping({len(self.mapping)} bones, confidence={self.confidence:.2f})"


def generate_automatic_mapping(
    source_bones: list[str], target_bones: list[str], include_hands: bool = False
) -> BoneMapping:
    """
    Role-based automatic mapping.

    Base roles are matched in table order, then finger roles when
    include_hands is set. A target bone is claimed by the first role that
    finds it; later roles resolving to it are skipped. Confidence is the
    share of base roles mapped on both sides.
    """
    src = _normalized(source_bones)
    trg = _normalized(target_bones)
    result = BoneMapping(
        source_rig_type=detect_rig_type(list(source_bones)),
        target_rig_type=detect_rig_type(list(target_bones)),
        name="Auto Mapping",
    )
    used_targets: set[str] = set()
    base_mapped = 0

    roles = BASE_ROLES + (FINGER_ROLES if include_hands else [])
    for role in roles:
        src_bone = _match_role(src, role)
        trg_bone = _match_role(trg, role)
        if not src_bone or not trg_bone:
            continue
        if trg_bone in used_targets:
            result.diagnostics.append(
                info(
                    DiagnosticCode.TARGET_ALREADY_MAPPED,
                    f"Role {role.name}: '{trg_bone}' already claimed by an earlier role",
                    bone=trg_bone,
                )
            )
            continue
        if src_bone in result.mapping:
            result.diagnostics.append(
                info(
                    DiagnosticCode.SOURCE_ALREADY_MAPPED,
                    f"Role {role.name}: '{src_bone}' already mapped to '{result.mapping[src_bone]}'",
                    bone=src_bone,
                )
            )
            continue
        result.mapping[src_bone] = trg_bone
        used_targets.add(trg_bone)
        if not role.is_finger:
            base_mapped += 1

    result.confidence = base_mapped / len(BASE_ROLES)
    return result


# =============================================================================
# Service
# =============================================================================


class BoneMapper:
    """Stateful mapping editor used by RetargetManager."""

    def __init__(self):
        self.mapping = BoneMapping()

    @property
    def source_rig_type(self) -> RigType:
        return self.mapping.source_rig_type

    @property
    def target_rig_type(self) -> RigType:
        return self.mapping.target_rig_type

    def detect_rig_types(self, source_bones: Optional[list[str]] = None, target_bones: Optional[list[str]] = None):
        if source_bones is not None:
            self.mapping.source_rig_type = detect_rig_type(source_bones)
        if target_bones is not None:
            self.mapping.target_rig_type = detect_rig_type(target_bones)

    def generate(self, source_bones: list[str], target_bones: list[str], include_hands: bool = False) -> BoneMapping:
        self.mapping = generate_automatic_mapping(source_bones, target_bones, include_hands)
        return self.mapping

    def add(self, source: str, target: str) -> Optional[str]:
        return self.mapping.add(source, target)

    def remove(self, source: str) -> bool:
        return self.mapping.remove(source)

    def clear(self):
        self.mapping.clear()

    def set_mapping(self, mapping: BoneMapping | dict):
        if isinstance(mapping, BoneMapping):
            self.mapping = mapping.copy()
        else:
            self.mapping = BoneMapping(
                mapping,
                source_rig_type=self.mapping.source_rig_type,
                target_rig_type=self.mapping.target_rig_type,
            )

    def info(self) -> dict:
        return {
            "mapping": dict(self.mapping.mapping),
            "confidence": self.mapping.confidence,
            "sourceRigType": self.mapping.source_rig_type.value,
            "targetRigType": self.mapping.target_rig_type.value,
            "mappedCount": len(self.mapping),
        }

    def save(self, path: str, name: Optional[str] = None):
        self.mapping.save(path, name)

    def load(self, path: str) -> BoneMapping:
        self.mapping = BoneMapping.load(path)
        return self.mapping
