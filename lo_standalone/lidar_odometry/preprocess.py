"""Scan preprocessing: crop, voxelize, random downsample, estimate normals.

The steps always run in that order. Normals are only estimated when the
registration objective is point-to-plane.
"""
import numpy as np
from scipy.spatial import cKDTree

from .cropping import CroppingVolume, cropping_volume_factory
from .downsampler import random_downsample, voxelize
from .numba_kernels import pca_normals_batch_jit
from .registration import IcpObjective
from .types import AxisAlignedBoundingBox, PointCloud


def estimate_normals(knn: int, cloud: PointCloud) -> PointCloud:
    """Cloud with a unit normal per point fitted to its knn nearest neighbours."""
    out = cloud.copy()
    n = len(cloud)
    if n == 0:
        out.normals = np.zeros((0, 3))
        return out
    k = max(1, min(int(knn), n))
    _, idx = cKDTree(cloud.points).query(cloud.points, k=k)
    idx = np.asarray(idx, dtype=np.int64).reshape(n, k)
    out.normals = pca_normals_batch_jit(np.ascontiguousarray(cloud.points), idx)
    out.normalize_normals()
    return out


def bounding_box_around_position(low, high, origin=None) -> AxisAlignedBoundingBox:
    """Box spanning origin + low .. origin + high."""
    origin = np.zeros(3) if origin is None else np.asarray(origin, dtype=np.float64)
    return AxisAlignedBoundingBox(min_bound=origin + np.asarray(low, dtype=np.float64),
                                  max_bound=origin + np.asarray(high, dtype=np.float64))


def crop_to_bounding_box(bbox: AxisAlignedBoundingBox, cloud: PointCloud) -> PointCloud:
    return cloud.select(bbox.contains(cloud.points))


def remove_by_ids(ids, cloud: PointCloud) -> PointCloud:
    """Cloud without the points at the given indices."""
    if len(ids) == 0:
        return cloud.copy()
    keep = np.ones(len(cloud), dtype=bool)
    keep[np.asarray(ids, dtype=np.int64)] = False
    return cloud.select(keep)


def compute_point_cloud_distance(reference: PointCloud, cloud: PointCloud,
                                 ids_in_reference):
    """Nearest-neighbour distance from selected reference points to cloud.

    Returns:
        Tuple (distances, ids): one distance per reference index for which a
        neighbour was found, and those indices. Both are empty when cloud
        has no points.
    """
    ids = np.asarray(ids_in_reference, dtype=np.int64)
    if cloud.is_empty() or len(ids) == 0:
        return np.zeros(0), np.zeros(0, dtype=np.int64)
    dists, _ = cKDTree(cloud.points).query(reference.points[ids], k=1)
    found = np.isfinite(dists)
    return dists[found], ids[found]


class ScanPreprocessor:
    """Reduce a raw scan to a registration-ready cloud."""

    def __init__(self, cropper: CroppingVolume = None, voxel_size: float = 0.0,
                 downsampling_ratio: float = 1.0, knn: int = 20,
                 objective: IcpObjective = IcpObjective.POINT_TO_POINT,
                 rng: np.random.Generator = None):
        """
        Args:
            cropper: Cropping volume applied first (default keeps everything).
            voxel_size: Voxel edge length; <= 0 disables voxelization.
            downsampling_ratio: Keep probability per point; >= 1 keeps all.
            knn: Neighbour count for normal estimation.
            objective: Registration objective; normals are estimated only
                for point-to-plane.
            rng: Random generator for the downsampling step.
        """
        self.cropper = cropper if cropper is not None else CroppingVolume()
        self.voxel_size = voxel_size
        self.downsampling_ratio = downsampling_ratio
        self.knn = knn
        self.objective = objective
        self.rng = rng if rng is not None else np.random.default_rng()

    @classmethod
    def from_parameters(cls, params, rng: np.random.Generator = None):
        """Build from OdometryToolsParameters."""
        proc = params.scan_processing
        return cls(
            cropper=cropping_volume_factory(proc.cropper),
            voxel_size=proc.voxel_size,
            downsampling_ratio=proc.downsampling_ratio,
            knn=params.scan_matcher.knn,
            objective=params.scan_matcher.icp_objective,
            rng=rng,
        )

    @property
    def needs_normals(self) -> bool:
        return self.objective == IcpObjective.POINT_TO_PLANE

    def process(self, cloud: PointCloud) -> PointCloud:
        """Crop -> voxelize -> random downsample -> (normals).

        Non-finite points are dropped before cropping.

        Raises:
            VoxelSizeError: voxel_size too small for the cropped extent.
        """
        finite = np.all(np.isfinite(cloud.points), axis=1)
        out = cloud.select(finite) if not np.all(finite) else cloud
        out = self.cropper.crop(out)
        out = voxelize(self.voxel_size, out)
        out = random_downsample(self.downsampling_ratio, out, self.rng)
        if self.needs_normals:
            out = estimate_normals(self.knn, out)
        return out


def preprocess(cloud: PointCloud, params, rng: np.random.Generator = None) -> PointCloud:
    """One-shot preprocessing of a scan with OdometryToolsParameters."""
    return ScanPreprocessor.from_parameters(params, rng=rng).process(cloud)
