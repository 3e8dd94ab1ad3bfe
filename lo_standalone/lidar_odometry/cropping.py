"""Cropping volumes: keep only the points of a scan inside a configured region.

The set of shapes is closed. A volume is built once from the
``scan_cropping`` parameters and never mutated; ``with_pose`` returns a
re-centred copy.
"""
from dataclasses import dataclass, field, replace
from enum import Enum

import numpy as np

from .errors import ConfigurationError
from .numba_kernels import crop_mask_jit
from .types import PointCloud


class CropperType(Enum):
    NONE = "None"
    CYLINDER = "Cylinder"
    MAX_RADIUS = "MaxRadius"
    MIN_RADIUS = "MinRadius"
    MIN_MAX_RADIUS = "MinMaxRadius"


CROPPER_NAMES = {t.value: t for t in CropperType}


@dataclass(frozen=True)
class CroppingVolume:
    """Radius / cylinder region around a centre position.

    Membership uses strict bounds:
        MaxRadius     r < radius_max
        MinRadius     r > radius_min
        MinMaxRadius  radius_min < r < radius_max
        Cylinder      planar r < radius_max and min_z < z < max_z
        None          every point is kept
    """
    cropper_type: CropperType = CropperType.NONE
    radius_min: float = 0.0
    radius_max: float = np.inf
    min_z: float = -np.inf
    max_z: float = np.inf
    center: tuple = field(default=(0.0, 0.0, 0.0))

    def with_pose(self, T: np.ndarray) -> 'CroppingVolume':
        """Copy of this volume centred on the translation of a 4x4 pose."""
        return replace(self, center=tuple(float(v) for v in T[:3, 3]))

    def contains(self, points: np.ndarray) -> np.ndarray:
        """(N,) boolean mask of points inside the volume."""
        points = np.ascontiguousarray(points, dtype=np.float64)
        if self.cropper_type == CropperType.NONE:
            return np.ones(len(points), dtype=bool)

        r_min, r_max = -np.inf, np.inf
        min_z, max_z = -np.inf, np.inf
        planar = False
        if self.cropper_type == CropperType.MAX_RADIUS:
            r_max = self.radius_max
        elif self.cropper_type == CropperType.MIN_RADIUS:
            r_min = self.radius_min
        elif self.cropper_type == CropperType.MIN_MAX_RADIUS:
            r_min, r_max = self.radius_min, self.radius_max
        else:
            r_max = self.radius_max
            min_z, max_z = self.min_z, self.max_z
            planar = True

        return crop_mask_jit(points, np.asarray(self.center, dtype=np.float64),
                             float(r_min), float(r_max),
                             float(min_z), float(max_z), planar)

    def crop(self, cloud: PointCloud) -> PointCloud:
        """New cloud holding only the points inside the volume."""
        if cloud.is_empty():
            return cloud.copy()
        return cloud.select(self.contains(cloud.points))


def cropping_volume_factory(params) -> CroppingVolume:
    """Build the cropping volume named by ``params.cropper_name``.

    Args:
        params: ScanCroppingParameters (cropper_name, radius_min,
            radius_max, min_z, max_z).

    Raises:
        ConfigurationError: unknown cropper name.
    """
    cropper_type = CROPPER_NAMES.get(params.cropper_name)
    if cropper_type is None:
        raise ConfigurationError(
            f"Unknown cropper type '{params.cropper_name}', expected one of "
            f"{sorted(n for n in CROPPER_NAMES if n != 'None')}")
    return CroppingVolume(
        cropper_type=cropper_type,
        radius_min=float(params.radius_min),
        radius_max=float(params.radius_max),
        min_z=float(params.min_z),
        max_z=float(params.max_z),
    )
