"""Exceptions raised by the odometry package.

Configuration problems and buffer precondition violations are fatal and
propagate to the caller. Per-scan problems inside the engine are never
raised; they show up in the diagnostics record instead.
"""


class OdometryError(Exception):
    """Base class for all odometry errors."""


class ConfigurationError(OdometryError, ValueError):
    """Missing, malformed or unsupported parameter."""


class VoxelSizeError(ConfigurationError):
    """Voxel size too small for the extent of the cloud (int32 overflow)."""


class MonotonicityError(OdometryError, ValueError):
    """Buffer push with a timestamp that does not advance the buffer."""


class TransformNotAvailableError(OdometryError, LookupError):
    """Pose lookup on a buffer that holds no samples."""
