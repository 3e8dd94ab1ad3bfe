"""Numba JIT-compiled kernels for the per-point inner loops.

Key targets:

1. pca_normals_batch_jit: local-plane normal per point from its k nearest
   neighbours (smallest-eigenvalue eigenvector of the neighbourhood
   covariance)
2. crop_mask_jit: radius / cylinder membership test used by the cropping
   volumes
"""
import math
import numpy as np
from numba import njit, prange


# ─────────────────────────────────────────────────────────────
#  Normal estimation
# ─────────────────────────────────────────────────────────────

@njit(cache=True)
def pca_normal_jit(neighbors):
    """Unit normal of the best-fit plane through (K, 3) neighbour points.

    Fewer than three neighbours cannot span a plane; +z is returned then.
    """
    k = neighbors.shape[0]
    normal = np.zeros(3)
    if k < 3:
        normal[2] = 1.0
        return normal

    mean = np.zeros(3)
    for i in range(k):
        for j in range(3):
            mean[j] += neighbors[i, j]
    for j in range(3):
        mean[j] /= k

    cov = np.zeros((3, 3))
    for i in range(k):
        d0 = neighbors[i, 0] - mean[0]
        d1 = neighbors[i, 1] - mean[1]
        d2 = neighbors[i, 2] - mean[2]
        cov[0, 0] += d0 * d0
        cov[0, 1] += d0 * d1
        cov[0, 2] += d0 * d2
        cov[1, 1] += d1 * d1
        cov[1, 2] += d1 * d2
        cov[2, 2] += d2 * d2
    cov[1, 0] = cov[0, 1]
    cov[2, 0] = cov[0, 2]
    cov[2, 1] = cov[1, 2]

    if cov[0, 0] + cov[1, 1] + cov[2, 2] == 0.0:
        normal[2] = 1.0
        return normal

    # eigh returns eigenvalues in ascending order
    _, vecs = np.linalg.eigh(cov)
    norm = math.sqrt(vecs[0, 0] ** 2 + vecs[1, 0] ** 2 + vecs[2, 0] ** 2)
    for j in range(3):
        normal[j] = vecs[j, 0] / norm
    return normal


@njit(parallel=True, cache=True)
def pca_normals_batch_jit(points, neighbor_idx):
    """Normals for all points given an (N, K) neighbour index table.

    Indices equal to N mark missing neighbours (cKDTree convention) and
    are skipped.
    """
    N = points.shape[0]
    K = neighbor_idx.shape[1]
    normals = np.empty((N, 3))
    for i in prange(N):
        count = 0
        for j in range(K):
            if neighbor_idx[i, j] < N:
                count += 1
        neighbors = np.empty((count, 3))
        c = 0
        for j in range(K):
            idx = neighbor_idx[i, j]
            if idx < N:
                neighbors[c, 0] = points[idx, 0]
                neighbors[c, 1] = points[idx, 1]
                neighbors[c, 2] = points[idx, 2]
                c += 1
        n = pca_normal_jit(neighbors)
        normals[i, 0] = n[0]
        normals[i, 1] = n[1]
        normals[i, 2] = n[2]
    return normals


# ─────────────────────────────────────────────────────────────
#  Cropping
# ─────────────────────────────────────────────────────────────

@njit(parallel=True, cache=True)
def crop_mask_jit(points, center, r_min, r_max, min_z, max_z, planar):
    """Boolean keep-mask: r_min < r < r_max and min_z < z < max_z.

    r is measured from center, over x/y only when planar is set, otherwise
    in 3D. z is relative to center as well. All bounds are strict.
    """
    N = points.shape[0]
    mask = np.empty(N, dtype=np.bool_)
    for i in prange(N):
        dx = points[i, 0] - center[0]
        dy = points[i, 1] - center[1]
        dz = points[i, 2] - center[2]
        if planar:
            r = math.sqrt(dx * dx + dy * dy)
        else:
            r = math.sqrt(dx * dx + dy * dy + dz * dz)
        mask[i] = (r > r_min) and (r < r_max) and (dz > min_z) and (dz < max_z)
    return mask


# ─────────────────────────────────────────────────────────────
#  Warm-up: call once at startup to pre-compile all JIT
# ─────────────────────────────────────────────────────────────

def warmup():
    """Pre-compile all JIT functions with dummy data."""
    pts = np.random.randn(8, 3)
    idx = np.tile(np.arange(4, dtype=np.int64), (8, 1))
    pca_normal_jit(pts[:4])
    pca_normals_batch_jit(pts, idx)
    crop_mask_jit(pts, np.zeros(3), 0.0, 10.0, -np.inf, np.inf, False)
