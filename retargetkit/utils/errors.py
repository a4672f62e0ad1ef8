from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


# =============================================================================
# Diagnostics
# =============================================================================


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class DiagnosticCode(str, Enum):
    DUPLICATE_BONE_NAMES = "DUPLICATE_BONE_NAMES"
    UNRESOLVABLE_BONE = "UNRESOLVABLE_BONE"
    DEGENERATE_BIND_POSE = "DEGENERATE_BIND_POSE"
    DEGENERATE_SEGMENT = "DEGENERATE_SEGMENT"
    INVALID_QUATERNION_PRECOMPUTE = "INVALID_QUATERNION_PRECOMPUTE"
    POSE_VALIDATION_INCOMPATIBLE = "POSE_VALIDATION_INCOMPATIBLE"
    POSE_NORMALIZED = "POSE_NORMALIZED"
    TARGET_ALREADY_MAPPED = "TARGET_ALREADY_MAPPED"
    SOURCE_ALREADY_MAPPED = "SOURCE_ALREADY_MAPPED"
    CHAIN_NOT_FOUND = "CHAIN_NOT_FOUND"
    ROOT_POSITION_SKIPPED = "ROOT_POSITION_SKIPPED"
    SAME_NAME_FALLBACK = "SAME_NAME_FALLBACK"
    NO_TRACKS_RETARGETED = "NO_TRACKS_RETARGETED"


@dataclass(frozen=True)
class Diagnostic:
    """A non-fatal finding reported alongside a result."""

    code: DiagnosticCode
    message: str
    severity: Severity = Severity.WARNING
    bone: Optional[str] = None

    def __str__(self) -> str:
        where = f" [{self.bone}]" if self.bone else ""
        return f"{self.severity.value.upper()} {self.code.value}{where}: {self.message}"


def warning(code: DiagnosticCode, message: str, bone: Optional[str] = None) -> Diagnostic:
    return Diagnostic(code, message, Severity.WARNING, bone)


def info(code: DiagnosticCode, message: str, bone: Optional[str] = None) -> Diagnostic:
    return Diagnostic(code, message, Severity.INFO, bone)


# =============================================================================
# Exceptions
# =============================================================================


class RetargetError(Exception):
    """Base class for fatal retargeting errors."""

    code = "RETARGET_ERROR"

    def __init__(self, message: str = "", diagnostics=None):
        super().__init__(message or self.__class__.__doc__)
        self.diagnostics = list(diagnostics or [])


class MissingSkeleton(RetargetError):
    """Source or target skeleton is not set."""

    code = "MISSING_SKELETON"


class InvalidSkeleton(RetargetError):
    """Skeleton has no bones or an unusable structure."""

    code = "INVALID_SKELETON"


class EmptyMapping(RetargetError):
    """No bone mappings are defined."""

    code = "EMPTY_MAPPING"


class UnknownPoseMode(RetargetError):
    """Bind pose mode is not recognised."""

    code = "UNKNOWN_POSE_MODE"


class UnsupportedRigFormat(RetargetError):
    """Input could not be interpreted as a rig."""

    code = "UNSUPPORTED_RIG_FORMAT"


class NoTracksRetargeted(RetargetError):
    """No tracks could be retargeted for this clip."""

    code = "NO_TRACKS_RETARGETED"


class EngineNotReady(RetargetError):
    """Engine must be initialized before retargeting."""

    code = "ENGINE_NOT_READY"


class MappingFileError(RetargetError):
    """Bone mapping file is malformed."""

    code = "MAPPING_FILE_ERROR"
