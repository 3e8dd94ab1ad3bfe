"""Voxel grid and random downsampling using NumPy.

Voxel cells are anchored at the cloud's min bound shifted by half a voxel.
Each occupied cell is replaced by the centroid of its points; normals and
colors are averaged the same way. Averaged normals are left un-normalized,
call PointCloud.normalize_normals() afterwards if unit normals are needed.
"""
import numpy as np

from .errors import VoxelSizeError
from .types import AxisAlignedBoundingBox, PointCloud

INT32_MAX = np.iinfo(np.int32).max


def compute_voxel_bounds(points: np.ndarray, voxel_size: float):
    """Min/max voxel grid bounds around the points, padded by half a voxel.

    Raises:
        VoxelSizeError: the voxel index range would overflow int32.
    """
    half = 0.5 * voxel_size
    min_bound = points.min(axis=0) - half
    max_bound = points.max(axis=0) + half
    if voxel_size * INT32_MAX < np.max(max_bound - min_bound):
        raise VoxelSizeError(
            f"voxel_size {voxel_size} is too small for a cloud extent of "
            f"{np.max(max_bound - min_bound):.3f}")
    return min_bound, max_bound


def _voxel_centroids(cloud: PointCloud, index: np.ndarray, voxel_size: float,
                     min_bound: np.ndarray) -> PointCloud:
    """Replace the selected points by one averaged point per occupied voxel."""
    points = cloud.points[index]
    if len(points) == 0:
        return PointCloud(
            normals=np.zeros((0, 3)) if cloud.has_normals() else None,
            colors=np.zeros((0, 3)) if cloud.has_colors() else None,
        )

    voxel_idx = np.floor((points - min_bound) / voxel_size).astype(np.int64)
    _, inverse = np.unique(voxel_idx, axis=0, return_inverse=True)
    inverse = inverse.reshape(-1)
    n_voxels = int(inverse.max()) + 1
    counts = np.bincount(inverse, minlength=n_voxels).astype(np.float64)

    def average(values):
        out = np.zeros((n_voxels, 3))
        for dim in range(3):
            out[:, dim] = np.bincount(
                inverse, weights=values[:, dim], minlength=n_voxels) / counts
        return out

    normals = None
    if cloud.has_normals():
        # NaN normals are left out of the sum but still count as points
        n = cloud.normals[index]
        n = np.where(np.all(np.isfinite(n), axis=1, keepdims=True), n, 0.0)
        normals = average(n)
    colors = average(cloud.colors[index]) if cloud.has_colors() else None

    return PointCloud(points=average(points), normals=normals, colors=colors)


def voxelize(voxel_size: float, cloud: PointCloud) -> PointCloud:
    """Downsample a point cloud using voxel grid filtering.

    Args:
        voxel_size: Voxel edge length in meters. Values <= 0 disable
            voxelization and a copy of the input is returned.
        cloud: Input cloud.

    Returns:
        New cloud with one centroid per occupied voxel.
    """
    if voxel_size <= 0 or cloud.is_empty():
        return cloud.copy()
    min_bound, _ = compute_voxel_bounds(cloud.points, voxel_size)
    return _voxel_centroids(cloud, slice(None), voxel_size, min_bound)


def voxelize_around_position(voxel_size: float, bbox: AxisAlignedBoundingBox,
                             cloud: PointCloud) -> PointCloud:
    """Voxelize only the points inside bbox, pass the rest through unchanged.

    The voxel grid spans the whole cloud, so voxels are aligned the same way
    as in voxelize(). Output order: passed-through points first, then the
    voxel centroids.
    """
    if voxel_size <= 0 or cloud.is_empty():
        return cloud.copy()
    min_bound, _ = compute_voxel_bounds(cloud.points, voxel_size)
    inside = bbox.contains(cloud.points)
    passed = cloud.select(~inside)
    voxelized = _voxel_centroids(cloud, inside, voxel_size, min_bound)
    return _concatenate(passed, voxelized)


def random_downsample(ratio: float, cloud: PointCloud,
                      rng: np.random.Generator = None) -> PointCloud:
    """Keep each point independently with probability ``ratio``.

    This thins the cloud statistically; the output size is not fixed.
    A ratio >= 1.0 returns a copy of the input.
    """
    if ratio >= 1.0 or cloud.is_empty():
        return cloud.copy()
    rng = rng if rng is not None else np.random.default_rng()
    return cloud.select(rng.random(len(cloud)) < ratio)


def _concatenate(a: PointCloud, b: PointCloud) -> PointCloud:
    normals = None
    if a.normals is not None and b.normals is not None:
        normals = np.vstack([a.normals, b.normals])
    colors = None
    if a.colors is not None and b.colors is not None:
        colors = np.vstack([a.colors, b.colors])
    return PointCloud(points=np.vstack([a.points, b.points]),
                      normals=normals, colors=colors)
