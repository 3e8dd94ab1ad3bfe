"""Tests for the LidarOdometry engine, driven by a scripted registration."""
import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from conftest import make_tools, translation
from lidar_odometry.config import OdometryParameters
from lidar_odometry.errors import ConfigurationError, TransformNotAvailableError
from lidar_odometry.odometry import LidarOdometry, ToolSetMode
from lidar_odometry.registration import IcpObjective
from lidar_odometry.types import PointCloud


def make_odometry(registration, **kwargs):
    params = kwargs.pop('params', None) or OdometryParameters(scan_to_scan=make_tools())
    return LidarOdometry(params, registration=registration,
                         rng=np.random.default_rng(1), **kwargs)


def shifted(cloud, dx):
    return PointCloud(points=cloud.points + [dx, 0.0, 0.0])


class TestConstruction:

    def test_missing_objective_is_fatal(self, registration):
        params = OdometryParameters(scan_to_scan=make_tools(objective=None))
        with pytest.raises(ConfigurationError):
            LidarOdometry(params, registration=registration)

    def test_unknown_cropper_is_fatal(self, registration):
        params = OdometryParameters(scan_to_scan=make_tools(cropper="Sphere"))
        with pytest.raises(ConfigurationError):
            LidarOdometry(params, registration=registration)

    def test_map_initializing_without_tools_is_fatal(self, registration):
        params = OdometryParameters(scan_to_scan=make_tools(),
                                    is_map_initializing=True)
        with pytest.raises(ConfigurationError):
            LidarOdometry(params, registration=registration)

    def test_initial_state(self, registration):
        odom = make_odometry(registration)
        assert not odom.has_processed_measurements()
        assert odom.get_preprocessed_cloud().is_empty()
        np.testing.assert_array_equal(odom.cumulative_pose, np.eye(4))
        with pytest.raises(TransformNotAvailableError):
            odom.get_odom_pose(0.0)


class TestFirstScan:

    def test_first_scan_always_accepted(self, registration, random_cloud):
        odom = make_odometry(registration)
        assert odom.add_scan(random_cloud, 0.0)
        assert not registration.calls
        assert odom.has_processed_measurements()
        np.testing.assert_array_equal(odom.get_odom_pose(0.0), np.eye(4))
        assert len(odom.get_preprocessed_cloud()) == len(random_cloud)

    def test_first_scan_keeps_initial_pose(self, registration, random_cloud):
        T0 = translation(1.0, 2.0, 3.0)
        odom = make_odometry(registration, initial_pose=T0)
        assert odom.add_scan(random_cloud, 10.0)
        np.testing.assert_array_equal(odom.cumulative_pose, T0)
        np.testing.assert_array_equal(odom.get_odom_pose(10.0), T0)
        assert odom.last_diagnostics.accepted
        assert odom.last_diagnostics.reason == "first scan"

    def test_first_scan_is_preprocessed(self, registration, random_cloud):
        params = OdometryParameters(scan_to_scan=make_tools(voxel_size=5.0))
        odom = make_odometry(registration, params=params)
        odom.add_scan(random_cloud, 0.0)
        assert len(odom.get_preprocessed_cloud()) < len(random_cloud)


    def test_empty_first_scan_is_rejected(self, registration, random_cloud):
        params = OdometryParameters(scan_to_scan=make_tools(cropper="MaxRadius"))
        odom = make_odometry(registration, params=params)
        far = PointCloud(points=np.full((10, 3), 1000.0))
        assert not odom.add_scan(far, 0.0)
        assert not odom.has_processed_measurements()
        assert odom.last_timestamp is None
        assert "empty" in odom.last_diagnostics.reason

        assert odom.add_scan(random_cloud, 1.0)
        assert not registration.calls
        assert odom.get_buffer().size() == 1
        assert odom.last_diagnostics.reason == "first scan"


class TestRegistration:

    def test_accepted_scan_composes_inverse(self, registration, random_cloud):
        odom = make_odometry(registration)
        odom.add_scan(random_cloud, 0.0)
        T = translation(-1.0, 0.0, 0.0)
        registration.queue(0.9, T)
        assert odom.add_scan(shifted(random_cloud, -1.0), 1.0)
        np.testing.assert_allclose(odom.cumulative_pose, np.linalg.inv(T))
        np.testing.assert_allclose(odom.get_odom_pose(1.0)[:3, 3], [1.0, 0.0, 0.0])

    def test_poses_accumulate(self, registration, random_cloud):
        odom = make_odometry(registration)
        odom.add_scan(random_cloud, 0.0)
        R = Rotation.from_rotvec([0.0, 0.0, 0.1]).as_matrix()
        step = np.eye(4)
        step[:3, :3] = R
        step[:3, 3] = [0.5, 0.1, 0.0]
        expected = np.eye(4)
        for i in range(1, 4):
            registration.queue(0.95, step)
            assert odom.add_scan(random_cloud, float(i))
            expected = expected @ np.linalg.inv(step)
        np.testing.assert_allclose(odom.cumulative_pose, expected, atol=1e-12)

    def test_registration_arguments(self, registration, random_cloud):
        params = OdometryParameters(scan_to_scan=make_tools(max_corr=0.8, max_n_iter=17))
        odom = make_odometry(registration, params=params)
        odom.add_scan(random_cloud, 0.0)
        registration.queue(0.9)
        odom.add_scan(shifted(random_cloud, 0.2), 1.0)
        call = registration.calls[0]
        np.testing.assert_allclose(call['reference'].points, random_cloud.points)
        np.testing.assert_allclose(call['scan'].points, random_cloud.points + [0.2, 0.0, 0.0])
        assert call['max_correspondence_distance'] == 0.8
        assert call['criteria'].max_iteration == 17
        assert call['objective'] == IcpObjective.POINT_TO_POINT
        np.testing.assert_array_equal(call['initial_guess'], np.eye(4))

    def test_point_to_plane_scans_carry_normals(self, registration, plane_cloud):
        params = OdometryParameters(
            scan_to_scan=make_tools(objective=IcpObjective.POINT_TO_PLANE))
        odom = make_odometry(registration, params=params)
        odom.add_scan(plane_cloud, 0.0)
        registration.queue(0.9)
        odom.add_scan(plane_cloud, 1.0)
        scan = registration.calls[0]['scan']
        assert scan.has_normals()
        np.testing.assert_allclose(np.abs(scan.normals[:, 2]), 1.0, atol=1e-9)

    def test_fitness_equal_to_threshold_is_rejected(self, registration, random_cloud):
        odom = make_odometry(registration)
        odom.add_scan(random_cloud, 0.0)
        registration.queue(0.7, translation(1.0))
        assert not odom.add_scan(random_cloud, 1.0)


class TestRejection:

    def test_rejection_keeps_pose_and_buffer(self, registration, random_cloud):
        odom = make_odometry(registration)
        odom.add_scan(random_cloud, 0.0)
        registration.queue(0.9, translation(-1.0))
        odom.add_scan(random_cloud, 1.0)
        pose_before = odom.cumulative_pose

        registration.queue(0.3, translation(-5.0))
        assert not odom.add_scan(random_cloud, 2.0)
        np.testing.assert_array_equal(odom.cumulative_pose, pose_before)
        assert odom.get_buffer().size() == 2
        assert odom.last_timestamp == 1.0

    def test_rejection_replaces_reference_cloud(self, registration, random_cloud):
        odom = make_odometry(registration)
        odom.add_scan(random_cloud, 0.0)
        moved = shifted(random_cloud, 3.0)
        registration.queue(0.1)
        odom.add_scan(moved, 1.0)
        np.testing.assert_allclose(odom.get_preprocessed_cloud().points, moved.points)

        registration.queue(0.9)
        odom.add_scan(random_cloud, 2.0)
        np.testing.assert_allclose(registration.calls[1]['reference'].points, moved.points)

    def test_empty_processed_scan_is_rejected(self, registration, random_cloud):
        params = OdometryParameters(scan_to_scan=make_tools(cropper="MaxRadius"))
        odom = make_odometry(registration, params=params)
        odom.add_scan(random_cloud, 0.0)
        reference = odom.get_preprocessed_cloud()
        far = PointCloud(points=np.full((10, 3), 1000.0))
        assert not odom.add_scan(far, 1.0)
        assert not registration.calls
        np.testing.assert_allclose(odom.get_preprocessed_cloud().points, reference.points)
        assert "empty" in odom.last_diagnostics.reason

    def test_non_finite_transform_is_rejected(self, registration, random_cloud, capsys):
        odom = make_odometry(registration)
        odom.add_scan(random_cloud, 0.0)
        bad = translation(1.0)
        bad[0, 3] = np.nan
        registration.queue(0.9, bad)
        assert not odom.add_scan(random_cloud, 1.0)
        np.testing.assert_array_equal(odom.cumulative_pose, np.eye(4))
        assert odom.get_buffer().size() == 1
        assert odom.last_timestamp == 0.0
        assert "non-finite" in odom.last_diagnostics.reason
        assert "[Odometry] WARNING" in capsys.readouterr().out

        registration.queue(0.9, translation(-1.0))
        assert odom.add_scan(random_cloud, 2.0)
        np.testing.assert_allclose(odom.cumulative_pose, translation(1.0))
        assert odom.get_buffer().size() == 2

    def test_out_of_order_scan_not_processed(self, registration, random_cloud):
        odom = make_odometry(registration)
        odom.add_scan(random_cloud, 5.0)
        assert not odom.add_scan(shifted(random_cloud, 9.0), 4.0)
        assert not registration.calls
        np.testing.assert_allclose(odom.get_preprocessed_cloud().points, random_cloud.points)
        assert "out of order" in odom.last_diagnostics.reason

    def test_duplicate_timestamp_rejected(self, registration, random_cloud):
        odom = make_odometry(registration)
        odom.add_scan(random_cloud, 1.0)
        assert not odom.add_scan(random_cloud, 1.0)
        assert odom.get_buffer().size() == 1

    def test_scan_after_rejected_timestamp_still_attempted(self, registration, random_cloud):
        odom = make_odometry(registration)
        odom.add_scan(random_cloud, 0.0)
        registration.queue(0.2)
        assert not odom.add_scan(random_cloud, 2.0)
        registration.queue(0.9)
        assert odom.add_scan(random_cloud, 1.0)
        assert len(registration.calls) == 2

    def test_rejection_prints_warning(self, registration, random_cloud, capsys):
        odom = make_odometry(registration)
        odom.add_scan(random_cloud, 0.0)
        registration.queue(0.3, translation(1.0), inlier_rmse=0.25)
        odom.add_scan(random_cloud, 1.0)
        out = capsys.readouterr().out
        assert "[Odometry] WARNING" in out
        assert "Fitness: 0.3000" in out
        assert "RMSE: 0.2500" in out

    def test_diagnostics_recorded(self, registration, random_cloud):
        odom = make_odometry(registration)
        odom.add_scan(random_cloud, 0.0)
        T = translation(0.4)
        registration.queue(0.8, T, inlier_rmse=0.05)
        odom.add_scan(random_cloud, 1.0)
        d = odom.last_diagnostics
        assert d.accepted
        assert d.fitness == 0.8
        assert d.inlier_rmse == 0.05
        assert d.elapsed_msec >= 0.0
        assert d.buffer_size == 2
        assert d.mode == ToolSetMode.STEADY_STATE.value
        np.testing.assert_array_equal(d.transformation, T)


def test_three_scan_scenario(registration, random_cloud):
    odom = make_odometry(registration)
    assert odom.add_scan(random_cloud, 0.0)

    registration.queue(0.9, translation(-1.0))
    assert odom.add_scan(shifted(random_cloud, -1.0), 1.0)
    pose_t1 = odom.cumulative_pose

    third = shifted(random_cloud, -2.0)
    registration.queue(0.3, translation(-1.0))
    assert not odom.add_scan(third, 2.0)

    buffer = odom.get_buffer()
    assert [s.timestamp for s in buffer.samples()] == [0.0, 1.0]
    assert odom.has_processed_measurements()
    np.testing.assert_array_equal(odom.cumulative_pose, pose_t1)
    np.testing.assert_array_equal(odom.get_odom_pose(1.5), pose_t1)
    np.testing.assert_allclose(odom.get_odom_pose(0.5)[:3, 3], [0.5, 0.0, 0.0])
    np.testing.assert_allclose(odom.get_preprocessed_cloud().points, third.points)


class TestMapInitializing:

    @pytest.fixture
    def params(self):
        return OdometryParameters(
            scan_to_scan=make_tools(min_fitness=0.7, max_corr=0.5),
            map_initializing=make_tools(min_fitness=0.4, max_corr=2.0),
            is_map_initializing=True,
        )

    def test_uses_map_initializing_tools_until_success(self, registration, params, random_cloud):
        odom = make_odometry(registration, params=params)
        assert odom.mode == ToolSetMode.MAP_INITIALIZING
        odom.add_scan(random_cloud, 0.0)

        registration.queue(0.3)
        assert not odom.add_scan(random_cloud, 1.0)
        assert odom.is_map_initializing
        assert registration.calls[-1]['max_correspondence_distance'] == 2.0

        registration.queue(0.5)
        assert odom.add_scan(random_cloud, 2.0)
        assert not odom.is_map_initializing
        assert odom.mode == ToolSetMode.STEADY_STATE

        registration.queue(0.5)
        assert not odom.add_scan(random_cloud, 3.0)
        assert registration.calls[-1]['max_correspondence_distance'] == 0.5
        assert not odom.is_map_initializing

    def test_initial_transform_seeds_map_initializing_guess(self, registration, params, random_cloud):
        odom = make_odometry(registration, params=params)
        guess = translation(0.0, 3.0, 0.0)
        odom.set_initial_transform(guess)
        odom.add_scan(random_cloud, 0.0)
        registration.queue(0.9)
        odom.add_scan(random_cloud, 1.0)
        np.testing.assert_array_equal(registration.calls[0]['initial_guess'], guess)

        registration.queue(0.9)
        odom.add_scan(random_cloud, 2.0)
        np.testing.assert_array_equal(registration.calls[1]['initial_guess'], np.eye(4))

    def test_initial_transform_ignored_without_map_initializing(self, registration, random_cloud, capsys):
        odom = make_odometry(registration)
        odom.set_initial_transform(translation(1.0))
        assert "ignored" in capsys.readouterr().out
        odom.add_scan(random_cloud, 0.0)
        registration.queue(0.9)
        odom.add_scan(random_cloud, 1.0)
        np.testing.assert_array_equal(registration.calls[0]['initial_guess'], np.eye(4))


def test_buffer_timestamps_strictly_increasing(registration, random_cloud):
    odom = make_odometry(registration)
    rng = np.random.default_rng(7)
    odom.add_scan(random_cloud, 0.0)
    for i in range(1, 30):
        registration.queue(float(rng.uniform(0.0, 1.0)), translation(0.1))
        odom.add_scan(random_cloud, i * 0.1)
    times = [s.timestamp for s in odom.get_buffer().samples()]
    assert all(a < b for a, b in zip(times, times[1:]))
