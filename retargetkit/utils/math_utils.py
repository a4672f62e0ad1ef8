from __future__ import annotations

import numpy as np
from scipy.spatial.transform import Rotation as R

# =============================================================================
# Conventions
# =============================================================================
# Quaternions are [x, y, z, w] (same order as track values and scipy).
# Matrices are 4x4, column-vector convention (p' = M @ p), composed as T * R * S.

IDENTITY_QUAT = np.array([0.0, 0.0, 0.0, 1.0])
X_AXIS = np.array([1.0, 0.0, 0.0])
Y_AXIS = np.array([0.0, 1.0, 0.0])
Z_AXIS = np.array([0.0, 0.0, 1.0])

LENGTH_EPS = 1e-3
QUAT_EPS = 1e-6


# =============================================================================
# Quaternion Utilities
# =============================================================================


def quat_normalize(q: np.ndarray) -> np.ndarray:
    """Normalize quaternion(s) [..., 4]. Degenerate quaternions become identity."""
    q = np.asarray(q, dtype=np.float64)
    norm = np.linalg.norm(q, axis=-1, keepdims=True)
    safe = np.where(norm < 1e-12, 1.0, norm)
    out = q / safe
    if np.any(norm < 1e-12):
        mask = (norm < 1e-12)[..., 0]
        out[mask] = IDENTITY_QUAT
    return out


def quat_multiply(q1: np.ndarray, q2: np.ndarray) -> np.ndarray:
    """Hamilton product of quaternions [x, y, z, w]. Broadcasts over leading axes."""
    q1 = np.asarray(q1, dtype=np.float64)
    q2 = np.asarray(q2, dtype=np.float64)
    x1, y1, z1, w1 = q1[..., 0], q1[..., 1], q1[..., 2], q1[..., 3]
    x2, y2, z2, w2 = q2[..., 0], q2[..., 1], q2[..., 2], q2[..., 3]
    return np.stack(
        [
            w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
            w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
            w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
            w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
        ],
        axis=-1,
    )


def quat_inverse(q: np.ndarray) -> np.ndarray:
    """Inverse of quaternion [x, y, z, w]."""
    q = np.asarray(q, dtype=np.float64)
    conj = q * np.array([-1.0, -1.0, -1.0, 1.0])
    return conj / np.sum(q**2, axis=-1, keepdims=True)


def quat_from_axis_angle(axis: np.ndarray, angle: float) -> np.ndarray:
    axis = normalize_vector(axis)
    if not np.any(axis):
        return IDENTITY_QUAT.copy()
    return R.from_rotvec(axis * angle).as_quat()


def quat_from_euler(seq: str, angles, degrees: bool = True) -> np.ndarray:
    return R.from_euler(seq, angles, degrees=degrees).as_quat()


def quat_rotate_vector(q: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Rotate vector(s) v by quaternion q."""
    return R.from_quat(quat_normalize(q)).apply(np.asarray(v, dtype=np.float64))


def quats_close(q1: np.ndarray, q2: np.ndarray, atol: float = QUAT_EPS) -> bool:
    """True when q1 and q2 describe the same rotation (q and -q are equal)."""
    q1 = quat_normalize(q1)
    q2 = quat_normalize(q2)
    return bool(np.allclose(q1, q2, atol=atol) or np.allclose(q1, -q2, atol=atol))


# =============================================================================
# Vector Utilities
# =============================================================================


def normalize_vector(v: np.ndarray) -> np.ndarray:
    v = np.asarray(v, dtype=np.float64)
    n = np.linalg.norm(v)
    if n < 1e-12:
        return np.zeros_like(v)
    return v / n


def angle_between(v1: np.ndarray, v2: np.ndarray) -> float:
    """Angle in radians between two vectors (0 when either is degenerate)."""
    a = normalize_vector(v1)
    b = normalize_vector(v2)
    if not np.any(a) or not np.any(b):
        return 0.0
    return float(np.arccos(np.clip(np.dot(a, b), -1.0, 1.0)))


def rotation_between_vectors(
    v1: np.ndarray, v2: np.ndarray, fallback_axis: np.ndarray | None = None
) -> np.ndarray:
    """Returns the quaternion that aligns v1 with v2 via shortest path."""
    v1 = normalize_vector(v1)
    v2 = normalize_vector(v2)
    if not np.any(v1) or not np.any(v2):
        return IDENTITY_QUAT.copy()

    dot = np.dot(v1, v2)
    if dot > 0.999999:
        return IDENTITY_QUAT.copy()
    if dot < -0.999999:
        # 180 deg: pick a perpendicular axis
        if fallback_axis is not None and abs(np.dot(normalize_vector(fallback_axis), v1)) < 1e-6:
            axis = normalize_vector(fallback_axis)
        else:
            helper = Y_AXIS if abs(v1[0]) > 0.9 else X_AXIS
            axis = normalize_vector(np.cross(v1, helper))
        return R.from_rotvec(axis * np.pi).as_quat()

    axis = np.cross(v1, v2)
    angle = np.arccos(np.clip(dot, -1.0, 1.0))
    return R.from_rotvec(axis / np.linalg.norm(axis) * angle).as_quat()


# =============================================================================
# Matrix Utilities
# =============================================================================


def compose_matrix(p: np.ndarray, q: np.ndarray, s: np.ndarray) -> np.ndarray:
    """Build a 4x4 matrix M = T * R * S."""
    mat = np.eye(4)
    mat[:3, :3] = R.from_quat(quat_normalize(q)).as_matrix() * np.asarray(s, dtype=np.float64)
    mat[:3, 3] = p
    return mat


def decompose_matrix(mat: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Split a 4x4 TRS matrix into (position, quaternion [x, y, z, w], scale)."""
    mat = np.asarray(mat, dtype=np.float64)
    m33 = mat[:3, :3]
    scale = np.linalg.norm(m33, axis=0)
    if np.linalg.det(m33) < 0:
        scale[0] = -scale[0]

    safe = np.where(np.abs(scale) < 1e-12, 1.0, scale)
    rot = m33 / safe
    q = R.from_matrix(rot).as_quat()
    return mat[:3, 3].copy(), quat_normalize(q), scale


def rotation_matrix(q: np.ndarray) -> np.ndarray:
    """4x4 pure rotation matrix from quaternion."""
    mat = np.eye(4)
    mat[:3, :3] = R.from_quat(quat_normalize(q)).as_matrix()
    return mat


def invert_matrix(mat: np.ndarray) -> np.ndarray:
    return np.linalg.inv(np.asarray(mat, dtype=np.float64))


def is_identity_matrix(mat: np.ndarray | None, atol: float = 1e-6) -> bool:
    if mat is None:
        return True
    return bool(np.allclose(mat, np.eye(4), atol=atol))
