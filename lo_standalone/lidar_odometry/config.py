"""Configuration loader for the odometry pipeline.

Reads YAML config files laid out like the open3d_slam parameter files
(``odometry`` / ``scan_matching`` / ``scan_processing`` / ``scan_cropping``).
Tool set fields are required: a missing or malformed value aborts loading
with a ConfigurationError instead of running on a partial configuration.
"""
import os
from dataclasses import dataclass, field

import numpy as np
import yaml

from .errors import ConfigurationError
from .registration import IcpObjective, icp_objective_from_name


@dataclass(frozen=True)
class ScanCroppingParameters:
    """Cropping volume selection (see cropping.cropping_volume_factory)."""
    cropper_name: str = "None"
    radius_min: float = 0.0
    radius_max: float = np.inf
    min_z: float = -np.inf
    max_z: float = np.inf


@dataclass(frozen=True)
class ScanProcessingParameters:
    voxel_size: float = 0.0
    downsampling_ratio: float = 1.0
    cropper: ScanCroppingParameters = field(default_factory=ScanCroppingParameters)


@dataclass(frozen=True)
class IcpParameters:
    icp_objective: IcpObjective = None
    knn: int = 20
    max_correspondence_distance: float = 1.0
    max_n_iter: int = 50


@dataclass(frozen=True)
class OdometryToolsParameters:
    """One registration tool set: preprocessing + matcher + acceptance gate."""
    scan_matcher: IcpParameters = field(default_factory=IcpParameters)
    scan_processing: ScanProcessingParameters = field(
        default_factory=ScanProcessingParameters)
    min_acceptable_fitness: float = 0.7


@dataclass(frozen=True)
class OdometryParameters:
    scan_to_scan: OdometryToolsParameters = field(
        default_factory=OdometryToolsParameters)
    map_initializing: OdometryToolsParameters = None
    is_map_initializing: bool = False
    is_print_timing_information: bool = False


@dataclass(frozen=True)
class PipelineConfig:
    """Full pipeline configuration."""
    odometry: OdometryParameters = field(default_factory=OdometryParameters)
    lidar_topic: str = "/points"
    min_points_per_scan: int = 1


def _require(node, key: str, cast, path: str):
    """Read node[key] converted with cast; raise ConfigurationError otherwise."""
    full = f"{path}.{key}" if path else key
    if not isinstance(node, dict) or key not in node or node[key] is None:
        raise ConfigurationError(f"Missing parameter '{full}'")
    try:
        return cast(node[key])
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Cannot parse parameter '{full}' = {node[key]!r}: {e}") from None


def _optional(node, key: str, cast, default, path: str):
    if not isinstance(node, dict) or node.get(key) is None:
        return default
    return _require(node, key, cast, path)


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    raise ValueError("expected true or false")


def load_cropping_parameters(node, path: str = "scan_cropping") -> ScanCroppingParameters:
    return ScanCroppingParameters(
        cropper_name=_require(node, 'cropper_type', str, path),
        radius_min=_require(node, 'cropping_radius_min', float, path),
        radius_max=_require(node, 'cropping_radius_max', float, path),
        min_z=_require(node, 'min_z', float, path),
        max_z=_require(node, 'max_z', float, path),
    )


def load_processing_parameters(node, path: str = "scan_processing") -> ScanProcessingParameters:
    return ScanProcessingParameters(
        voxel_size=_require(node, 'voxel_size', float, path),
        downsampling_ratio=_require(node, 'downsampling_ratio', float, path),
        cropper=load_cropping_parameters(
            _require(node, 'scan_cropping', dict, path), f"{path}.scan_cropping"),
    )


def load_icp_parameters(node, path: str = "scan_matching") -> IcpParameters:
    return IcpParameters(
        icp_objective=icp_objective_from_name(
            _require(node, 'icp_objective', str, path)),
        knn=_require(node, 'knn', int, path),
        max_correspondence_distance=_require(node, 'max_correspondence_dist', float, path),
        max_n_iter=_require(node, 'max_n_iter', int, path),
    )


def load_tools_parameters(node, path: str) -> OdometryToolsParameters:
    return OdometryToolsParameters(
        scan_matcher=load_icp_parameters(
            _require(node, 'scan_matching', dict, path), f"{path}.scan_matching"),
        scan_processing=load_processing_parameters(
            _require(node, 'scan_processing', dict, path), f"{path}.scan_processing"),
        min_acceptable_fitness=_require(node, 'min_acceptable_fitness', float, path),
    )


def load_odometry_parameters(node, path: str = "odometry") -> OdometryParameters:
    """Build OdometryParameters from the ``odometry`` section of a config.

    The map initializing tool set is only read (and then required) when
    ``is_map_initializing`` is set.
    """
    if not isinstance(node, dict):
        raise ConfigurationError(f"Missing section '{path}'")
    is_map_initializing = _optional(node, 'is_map_initializing', _as_bool, False, path)
    map_initializing = None
    if is_map_initializing:
        map_initializing = load_tools_parameters(
            _require(node, 'map_initializing', dict, path), f"{path}.map_initializing")
    return OdometryParameters(
        scan_to_scan=load_tools_parameters(
            _require(node, 'scan_to_scan', dict, path), f"{path}.scan_to_scan"),
        map_initializing=map_initializing,
        is_map_initializing=is_map_initializing,
        is_print_timing_information=_optional(
            node, 'is_print_timing_information', _as_bool, False, path),
    )


def load_config(yaml_path: str) -> PipelineConfig:
    """Load configuration from a YAML file.

    Raises:
        ConfigurationError: file missing, empty, unparseable, or a required
            parameter is missing or malformed.
    """
    if not os.path.isfile(yaml_path):
        raise ConfigurationError(f"Config file not found: {yaml_path}")
    try:
        with open(yaml_path, 'r') as f:
            cfg = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Config loading failed for {yaml_path}: {e}") from e
    if not isinstance(cfg, dict):
        raise ConfigurationError(f"Config loading failed for {yaml_path}: empty document")

    bag = cfg.get('bag') or {}
    return PipelineConfig(
        odometry=load_odometry_parameters(cfg.get('odometry')),
        lidar_topic=_optional(bag, 'lidar_topic', str, PipelineConfig.lidar_topic, 'bag'),
        min_points_per_scan=_optional(
            bag, 'min_points_per_scan', int, PipelineConfig.min_points_per_scan, 'bag'),
    )
