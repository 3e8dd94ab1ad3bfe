"""Tests for the cropping volumes."""
import numpy as np
import pytest

from lidar_odometry.config import ScanCroppingParameters
from lidar_odometry.cropping import CropperType, CroppingVolume, cropping_volume_factory
from lidar_odometry.errors import ConfigurationError
from lidar_odometry.types import PointCloud


def ring(radii, z=0.0):
    return PointCloud(points=[[r, 0.0, z] for r in radii])


def kept_x(volume, cloud):
    return sorted(volume.crop(cloud).points[:, 0].tolist())


class TestRadiusCroppers:

    def test_max_radius(self):
        vol = CroppingVolume(CropperType.MAX_RADIUS, radius_max=5.0)
        assert kept_x(vol, ring([1.0, 4.9, 5.0, 6.0])) == [1.0, 4.9]

    def test_min_radius(self):
        vol = CroppingVolume(CropperType.MIN_RADIUS, radius_min=2.0)
        assert kept_x(vol, ring([1.0, 2.0, 2.1, 50.0])) == [2.1, 50.0]

    def test_min_max_radius(self):
        vol = CroppingVolume(CropperType.MIN_MAX_RADIUS, radius_min=2.0, radius_max=5.0)
        assert kept_x(vol, ring([1.0, 2.0, 3.0, 5.0, 6.0])) == [3.0]

    def test_radius_is_three_dimensional(self):
        vol = CroppingVolume(CropperType.MAX_RADIUS, radius_max=5.0)
        cloud = PointCloud(points=[[3.0, 0.0, 3.0], [3.0, 0.0, 4.5]])
        assert len(vol.crop(cloud)) == 1

    def test_none_keeps_everything(self, random_cloud):
        out = CroppingVolume().crop(random_cloud)
        np.testing.assert_array_equal(out.points, random_cloud.points)


class TestCylinder:

    @pytest.fixture
    def cylinder(self):
        return CroppingVolume(CropperType.CYLINDER, radius_max=5.0, min_z=-1.0, max_z=2.0)

    def test_radius_is_planar(self, cylinder):
        cloud = PointCloud(points=[[3.0, 3.0, 1.5], [4.0, 4.0, 0.0]])
        out = cylinder.crop(cloud)
        np.testing.assert_array_equal(out.points, [[3.0, 3.0, 1.5]])

    def test_z_band_is_strict(self, cylinder):
        cloud = PointCloud(points=[[0.0, 0.0, z] for z in (-1.0, -0.5, 1.9, 2.0)])
        out = cylinder.crop(cloud)
        np.testing.assert_array_equal(out.points[:, 2], [-0.5, 1.9])


class TestPose:

    def test_with_pose_recentres(self):
        vol = CroppingVolume(CropperType.MAX_RADIUS, radius_max=1.0)
        T = np.eye(4)
        T[:3, 3] = [10.0, 0.0, 0.0]
        moved = vol.with_pose(T)
        cloud = PointCloud(points=[[0.0, 0.0, 0.0], [10.5, 0.0, 0.0]])
        np.testing.assert_array_equal(moved.crop(cloud).points, [[10.5, 0.0, 0.0]])
        assert vol.center == (0.0, 0.0, 0.0)

    def test_cylinder_z_band_follows_centre(self):
        vol = CroppingVolume(CropperType.CYLINDER, radius_max=5.0, min_z=-1.0, max_z=1.0)
        T = np.eye(4)
        T[2, 3] = 10.0
        cloud = PointCloud(points=[[0.0, 0.0, 0.0], [0.0, 0.0, 10.5]])
        np.testing.assert_array_equal(vol.with_pose(T).crop(cloud).points,
                                      [[0.0, 0.0, 10.5]])


def test_crop_keeps_normals_aligned():
    cloud = PointCloud(points=[[1.0, 0.0, 0.0], [9.0, 0.0, 0.0]],
                       normals=[[0.0, 0.0, 1.0], [1.0, 0.0, 0.0]])
    out = CroppingVolume(CropperType.MAX_RADIUS, radius_max=5.0).crop(cloud)
    np.testing.assert_array_equal(out.normals, [[0.0, 0.0, 1.0]])


def test_crop_empty_cloud():
    vol = CroppingVolume(CropperType.MIN_RADIUS, radius_min=1.0)
    assert vol.crop(PointCloud()).is_empty()


class TestFactory:

    @pytest.mark.parametrize("name, expected", [
        ("None", CropperType.NONE),
        ("Cylinder", CropperType.CYLINDER),
        ("MaxRadius", CropperType.MAX_RADIUS),
        ("MinRadius", CropperType.MIN_RADIUS),
        ("MinMaxRadius", CropperType.MIN_MAX_RADIUS),
    ])
    def test_known_names(self, name, expected):
        params = ScanCroppingParameters(cropper_name=name, radius_min=1.0,
                                        radius_max=20.0, min_z=-3.0, max_z=3.0)
        vol = cropping_volume_factory(params)
        assert vol.cropper_type == expected
        assert vol.radius_min == 1.0
        assert vol.radius_max == 20.0
        assert (vol.min_z, vol.max_z) == (-3.0, 3.0)

    def test_unknown_name(self):
        with pytest.raises(ConfigurationError, match="Sphere"):
            cropping_volume_factory(ScanCroppingParameters(cropper_name="Sphere"))
