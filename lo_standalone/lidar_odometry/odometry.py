"""Scan-to-scan lidar odometry.

Each scan is preprocessed with the active tool set and registered against
the previous processed scan. Accepted registrations advance the cumulative
odom -> range sensor pose and are pushed into a TransformInterpolationBuffer
so the pose can be queried at arbitrary times.

Two tool sets exist: map initializing (used until the first successful
registration, if enabled) and scan to scan (steady state). The switch from
the former to the latter is one-way.
"""
import time
from enum import Enum

import numpy as np

from .config import OdometryParameters, OdometryToolsParameters
from .errors import ConfigurationError
from .interpolation import TransformInterpolationBuffer
from .preprocess import ScanPreprocessor
from .registration import ConvergenceCriteria, Open3dIcpRegistration
from .transforms import as_string, as_transform, invert_transform
from .types import PointCloud, ScanMatchDiagnostics


class ToolSetMode(Enum):
    MAP_INITIALIZING = "map_initializing"
    STEADY_STATE = "scan_to_scan"


class LidarOdometryTools:
    """Preprocessing, matcher settings and acceptance gate for one mode."""

    def __init__(self, params: OdometryToolsParameters,
                 rng: np.random.Generator = None):
        """
        Raises:
            ConfigurationError: no registration objective, or an unknown
                cropper name.
        """
        if params.scan_matcher.icp_objective is None:
            raise ConfigurationError("Registration objective is not set")
        self.params = params
        self.preprocessor = ScanPreprocessor.from_parameters(params, rng=rng)
        self.criteria = ConvergenceCriteria(
            max_iteration=params.scan_matcher.max_n_iter)
        self.initial_guess = np.eye(4)

    @property
    def objective(self):
        return self.params.scan_matcher.icp_objective

    @property
    def max_correspondence_distance(self) -> float:
        return self.params.scan_matcher.max_correspondence_distance

    @property
    def min_acceptable_fitness(self) -> float:
        return self.params.min_acceptable_fitness


class LidarOdometry:
    """Incremental pose estimation from successive lidar scans.

    Not thread safe: calls to add_scan must be serialized by the caller.
    Pose lookups on the buffer may run concurrently with add_scan.
    """

    def __init__(self, params: OdometryParameters, registration=None,
                 initial_pose: np.ndarray = None,
                 rng: np.random.Generator = None,
                 buffer_size_limit: int = None):
        """
        Args:
            params: Odometry parameters (both tool sets).
            registration: Object with a ``register`` method, see
                registration.py. Defaults to Open3D ICP.
            initial_pose: Starting odom -> range sensor pose (identity if None).
            rng: Random generator shared by the downsampling steps.
            buffer_size_limit: Optional cap on the pose buffer length.

        Raises:
            ConfigurationError: a tool set is missing or malformed.
        """
        self.params = params
        self.registration = (registration if registration is not None
                             else Open3dIcpRegistration())
        self._tools = {
            ToolSetMode.STEADY_STATE: LidarOdometryTools(params.scan_to_scan, rng),
        }
        self._is_map_initializing = bool(params.is_map_initializing)
        if self._is_map_initializing:
            if params.map_initializing is None:
                raise ConfigurationError(
                    "Map initialization enabled but no map_initializing tool set given")
            self._tools[ToolSetMode.MAP_INITIALIZING] = LidarOdometryTools(
                params.map_initializing, rng)

        self._cloud_prev = PointCloud()
        self._odom_to_range_sensor = (np.eye(4) if initial_pose is None
                                      else as_transform(initial_pose))
        self._last_timestamp = None
        self._buffer = TransformInterpolationBuffer(size_limit=buffer_size_limit)
        self.last_diagnostics = None

    # ── state accessors ─────────────────────────────────────────────

    @property
    def is_map_initializing(self) -> bool:
        return self._is_map_initializing

    @property
    def mode(self) -> ToolSetMode:
        if self._is_map_initializing:
            return ToolSetMode.MAP_INITIALIZING
        return ToolSetMode.STEADY_STATE

    @property
    def cumulative_pose(self) -> np.ndarray:
        return self._odom_to_range_sensor.copy()

    @property
    def last_timestamp(self):
        """Timestamp of the last accepted scan (None before the first one)."""
        return self._last_timestamp

    def get_buffer(self) -> TransformInterpolationBuffer:
        return self._buffer

    def get_odom_pose(self, timestamp: float) -> np.ndarray:
        """Interpolated odom -> range sensor pose at timestamp.

        Raises:
            TransformNotAvailableError: no scan processed yet.
        """
        return self._buffer.lookup(timestamp)

    def get_preprocessed_cloud(self) -> PointCloud:
        """Copy of the current reference cloud."""
        return self._cloud_prev.copy()

    def has_processed_measurements(self) -> bool:
        return not self._buffer.empty()

    def set_initial_transform(self, initial_transform: np.ndarray):
        """Seed the registration initial guess of the map initializing tool set.

        Has no effect once map initialization is over (or if it is disabled).
        """
        T = as_transform(initial_transform)
        tools = self._tools.get(ToolSetMode.MAP_INITIALIZING)
        if tools is None:
            print("[Odometry] WARNING: map initialization is disabled, "
                  "initial transform ignored")
            return
        tools.initial_guess = T

    # ── scan processing ─────────────────────────────────────────────

    def add_scan(self, cloud: PointCloud, timestamp: float) -> bool:
        """Process one scan. Returns True if its pose entered the buffer.

        Scans older than (or as old as) the last accepted one, scans that
        preprocess to nothing, and registrations with fitness at or below the
        tool set threshold are rejected. Details of the outcome are left in
        ``last_diagnostics``.
        """
        t_start = time.perf_counter()
        mode = self.mode
        tools = self._tools[mode]

        if self._last_timestamp is not None and timestamp <= self._last_timestamp:
            self._finish(ScanMatchDiagnostics(
                timestamp=timestamp, accepted=False, mode=mode.value,
                reason=(f"measurements came out of order "
                        f"(t={timestamp}, last accepted t={self._last_timestamp})"),
                buffer_size=self._buffer.size()), t_start)
            return False

        processed = tools.preprocessor.process(cloud)

        if processed.is_empty():
            self._finish(ScanMatchDiagnostics(
                timestamp=timestamp, accepted=False, mode=mode.value,
                reason="scan is empty after preprocessing",
                reference_size=len(self._cloud_prev),
                buffer_size=self._buffer.size()), t_start)
            return False

        if self._cloud_prev.is_empty():
            self._cloud_prev = processed
            self._buffer.push(timestamp, self._odom_to_range_sensor)
            self._last_timestamp = timestamp
            self._finish(ScanMatchDiagnostics(
                timestamp=timestamp, accepted=True, mode=mode.value,
                reason="first scan", source_size=len(processed),
                buffer_size=self._buffer.size()), t_start)
            return True

        result = self.registration.register(
            self._cloud_prev, processed,
            tools.max_correspondence_distance,
            tools.initial_guess,
            tools.objective,
            tools.criteria,
        )
        is_finite = bool(np.all(np.isfinite(result.transformation)))
        is_odom_okay = is_finite and result.fitness > tools.min_acceptable_fitness
        diagnostics = ScanMatchDiagnostics(
            timestamp=timestamp, accepted=is_odom_okay, mode=mode.value,
            fitness=result.fitness, inlier_rmse=result.inlier_rmse,
            transformation=result.transformation.copy(),
            source_size=len(processed), reference_size=len(self._cloud_prev))

        if not is_odom_okay:
            if not is_finite:
                diagnostics.reason = "registration returned a non-finite transform"
            else:
                diagnostics.reason = (f"fitness {result.fitness:.4f} <= "
                                      f"{tools.min_acceptable_fitness:.4f}")
            # The reference still follows the sensor; the pose does not move.
            self._cloud_prev = processed
            diagnostics.buffer_size = self._buffer.size()
            self._finish(diagnostics, t_start)
            return False

        self._is_map_initializing = False
        self._odom_to_range_sensor = (
            self._odom_to_range_sensor @ invert_transform(result.transformation))
        self._cloud_prev = processed
        self._buffer.push(timestamp, self._odom_to_range_sensor)
        self._last_timestamp = timestamp
        diagnostics.buffer_size = self._buffer.size()
        self._finish(diagnostics, t_start)
        return True

    def _finish(self, diagnostics: ScanMatchDiagnostics, t_start: float):
        diagnostics.elapsed_msec = (time.perf_counter() - t_start) * 1e3
        self.last_diagnostics = diagnostics
        if not diagnostics.accepted:
            _report_failure(diagnostics)
        elif self.params.is_print_timing_information:
            print(f"[Odometry] t={diagnostics.timestamp:.6f} ({diagnostics.mode}) "
                  f"fitness: {diagnostics.fitness:.4f} "
                  f"rmse: {diagnostics.inlier_rmse:.4f} "
                  f"time: {diagnostics.elapsed_msec:.1f} msec")


def _report_failure(d: ScanMatchDiagnostics):
    print(f"[Odometry] WARNING: scan at t={d.timestamp:.6f} rejected: {d.reason}")
    if d.source_size == 0 and d.reference_size == 0:
        return
    print(f"[Odometry]   Size of the odom buffer: {d.buffer_size}")
    print(f"[Odometry]   Scan matching time elapsed: {d.elapsed_msec:.1f} msec")
    print(f"[Odometry]   Fitness: {d.fitness:.4f}")
    print(f"[Odometry]   RMSE: {d.inlier_rmse:.4f}")
    if np.all(np.isfinite(d.transformation)):
        print(f"[Odometry]   Transform: {as_string(d.transformation)}")
    print(f"[Odometry]   source size: {d.source_size}  "
          f"reference size: {d.reference_size}")
