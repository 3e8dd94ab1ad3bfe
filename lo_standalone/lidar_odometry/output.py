"""Trajectory and point cloud output writers.

Supports TUM format and CSV format for odometry and per-scan point clouds.
"""
import numpy as np

from .transforms import rotation_matrix_to_quaternion
from .types import PointCloud


def trajectory_from_samples(samples) -> list:
    """Turn InterpolationSamples into (timestamp, pos(3,), quat(4,)) tuples.

    Quaternions are in [qx, qy, qz, qw] order.
    """
    return [(s.timestamp, s.pose[:3, 3].copy(),
             rotation_matrix_to_quaternion(s.pose[:3, :3]))
            for s in samples]


TRAJECTORY_CSV_HEADER = "timestamp,tx,ty,tz,qx,qy,qz,qw"


def _write_pose_rows(filepath: str, trajectory: list, sep: str, header: str = None):
    """One row per pose: timestamp, position, quaternion [qx, qy, qz, qw]."""
    with open(filepath, 'w') as f:
        if header:
            f.write(header + "\n")
        for ts, pos, q in trajectory:
            f.write(sep.join(f"{v:.6f}" for v in (ts, *pos, *q)) + "\n")


def write_tum(filepath: str, trajectory: list):
    """TUM format: space separated, no header."""
    _write_pose_rows(filepath, trajectory, " ")


def write_odometry_csv(filepath: str, trajectory: list):
    """CSV with a header row, same columns as TUM."""
    _write_pose_rows(filepath, trajectory, ",", TRAJECTORY_CSV_HEADER)


def write_trajectory(filepath: str, trajectory: list):
    """CSV if the path ends in .csv, TUM otherwise."""
    if filepath.endswith('.csv'):
        write_odometry_csv(filepath, trajectory)
    else:
        write_tum(filepath, trajectory)


def write_scan_csv(filepath: str, cloud: PointCloud):
    """Write a single point cloud as CSV.

    Columns: x,y,z[,nx,ny,nz]
    """
    if cloud.has_normals():
        data = np.hstack([cloud.points, cloud.normals])
        header = "x,y,z,nx,ny,nz"
    else:
        data = cloud.points
        header = "x,y,z"
    np.savetxt(filepath, data, fmt="%.6f", delimiter=",",
               header=header, comments="")
