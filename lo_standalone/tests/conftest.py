"""Shared fixtures: synthetic clouds, tool set parameters, scripted registration."""
import numpy as np
import pytest

from lidar_odometry.config import (IcpParameters, OdometryParameters,
                                   OdometryToolsParameters,
                                   ScanCroppingParameters,
                                   ScanProcessingParameters)
from lidar_odometry.registration import IcpObjective
from lidar_odometry.types import PointCloud, RegistrationResult


class ScriptedRegistration:
    """Registration stand-in returning queued results and recording calls."""

    def __init__(self, results=()):
        self.results = list(results)
        self.calls = []

    def queue(self, fitness, transformation=None, inlier_rmse=0.01):
        T = np.eye(4) if transformation is None else np.asarray(transformation)
        self.results.append(RegistrationResult(T, fitness, inlier_rmse))

    def register(self, reference, scan, max_correspondence_distance,
                 initial_guess, objective, criteria):
        self.calls.append(dict(
            reference=reference, scan=scan,
            max_correspondence_distance=max_correspondence_distance,
            initial_guess=np.array(initial_guess), objective=objective,
            criteria=criteria))
        return self.results.pop(0)


def make_tools(objective=IcpObjective.POINT_TO_POINT, min_fitness=0.7,
               voxel_size=0.0, ratio=1.0, cropper="None", max_corr=1.0,
               max_n_iter=50, knn=10):
    return OdometryToolsParameters(
        scan_matcher=IcpParameters(
            icp_objective=objective, knn=knn,
            max_correspondence_distance=max_corr, max_n_iter=max_n_iter),
        scan_processing=ScanProcessingParameters(
            voxel_size=voxel_size, downsampling_ratio=ratio,
            cropper=ScanCroppingParameters(cropper_name=cropper,
                                           radius_min=1.0, radius_max=50.0,
                                           min_z=-5.0, max_z=5.0)),
        min_acceptable_fitness=min_fitness,
    )


def translation(x=0.0, y=0.0, z=0.0):
    T = np.eye(4)
    T[:3, 3] = [x, y, z]
    return T


@pytest.fixture
def registration():
    return ScriptedRegistration()


@pytest.fixture
def odom_params():
    return OdometryParameters(scan_to_scan=make_tools())


@pytest.fixture
def random_cloud():
    rng = np.random.default_rng(0)
    return PointCloud(points=rng.uniform(-10.0, 10.0, size=(500, 3)))


@pytest.fixture
def plane_cloud():
    """Points on the z = 0 plane on a regular 0.5 m grid."""
    xs, ys = np.meshgrid(np.arange(-5.0, 5.0, 0.5), np.arange(-5.0, 5.0, 0.5))
    pts = np.column_stack([xs.ravel(), ys.ravel(), np.zeros(xs.size)])
    return PointCloud(points=pts)
