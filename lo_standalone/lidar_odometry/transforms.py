"""Rigid transform helpers: 4x4 homogeneous matrices, slerp, pretty printing.

Poses are plain (4, 4) float64 NumPy arrays. Rotations go through
scipy.spatial.transform so that quaternion conventions match the
trajectory writers ([qx, qy, qz, qw]).
"""
import numpy as np
from scipy.spatial.transform import Rotation, Slerp

RAD2DEG = 180.0 / np.pi


def as_transform(matrix) -> np.ndarray:
    """Validate and copy a 4x4 homogeneous transform.

    Raises:
        ValueError: if the input is not 4x4 or not finite.
    """
    T = np.array(matrix, dtype=np.float64)
    if T.shape != (4, 4):
        raise ValueError(f"Expected 4x4 transform, got shape {T.shape}")
    if not np.all(np.isfinite(T)):
        raise ValueError("Transform contains non-finite values")
    return T


def make_transform(R: np.ndarray = None, t: np.ndarray = None) -> np.ndarray:
    """Build a 4x4 transform from a rotation matrix and a translation."""
    T = np.eye(4)
    if R is not None:
        T[:3, :3] = R
    if t is not None:
        T[:3, 3] = t
    return T


def invert_transform(T: np.ndarray) -> np.ndarray:
    """Closed-form inverse of a rigid transform: [R^T, -R^T t]."""
    R = T[:3, :3]
    Ti = np.eye(4)
    Ti[:3, :3] = R.T
    Ti[:3, 3] = -R.T @ T[:3, 3]
    return Ti


def transform_points(T: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Apply a 4x4 transform to (N, 3) points."""
    return points @ T[:3, :3].T + T[:3, 3]


def rotation_matrix_to_quaternion(R: np.ndarray) -> np.ndarray:
    """Convert 3x3 rotation matrix to quaternion [qx, qy, qz, qw]."""
    return Rotation.from_matrix(R).as_quat()


def rot_to_euler(R: np.ndarray) -> np.ndarray:
    """Rotation matrix to [roll, pitch, yaw] in radians (XYZ convention)."""
    sy = np.sqrt(R[0, 0] ** 2 + R[1, 0] ** 2)
    if sy >= 1e-6:
        x = np.arctan2(R[2, 1], R[2, 2])
        y = np.arctan2(-R[2, 0], sy)
        z = np.arctan2(R[1, 0], R[0, 0])
    else:
        x = np.arctan2(-R[1, 2], R[1, 1])
        y = np.arctan2(-R[2, 0], sy)
        z = 0.0
    return np.array([x, y, z])


def interpolate_transform(T0: np.ndarray, T1: np.ndarray,
                          alpha: float) -> np.ndarray:
    """Blend two poses: linear on translation, shortest-arc slerp on rotation.

    Args:
        T0: (4, 4) pose at alpha = 0.
        T1: (4, 4) pose at alpha = 1.
        alpha: Blend fraction in [0, 1].

    Returns:
        (4, 4) interpolated pose.
    """
    t = (1.0 - alpha) * T0[:3, 3] + alpha * T1[:3, 3]
    # Slerp goes through the relative rotation vector, whose angle is in
    # [0, pi], so the blend always follows the shorter arc.
    key_rots = Rotation.from_matrix(np.stack([T0[:3, :3], T1[:3, :3]]))
    R = Slerp([0.0, 1.0], key_rots)([alpha]).as_matrix()[0]
    return make_transform(R, t)


def as_string(T: np.ndarray) -> str:
    """One-line summary: translation, quaternion and roll/pitch/yaw in degrees."""
    t = T[:3, 3]
    q = rotation_matrix_to_quaternion(T[:3, :3])
    rpy = rot_to_euler(T[:3, :3]) * RAD2DEG
    return (f"t:[{t[0]:f}, {t[1]:f}, {t[2]:f}] ; "
            f"q:[{q[0]:f}, {q[1]:f}, {q[2]:f}, {q[3]:f}] ; "
            f"rpy (deg):[{rpy[0]:f}, {rpy[1]:f}, {rpy[2]:f}]")
