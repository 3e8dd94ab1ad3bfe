"""Data structures used throughout the odometry pipeline."""
import numpy as np
from dataclasses import dataclass, field


def _empty_xyz() -> np.ndarray:
    return np.zeros((0, 3))


@dataclass
class PointCloud:
    """Ordered set of 3D points with optional per-point normals and colors.

    normals and colors are either None or (N, 3) arrays aligned with points.
    Processing steps always return a new PointCloud; arrays are never shared
    between the input and the output of a step.
    """
    points: np.ndarray = field(default_factory=_empty_xyz)   # (N, 3)
    normals: np.ndarray = None                                # (N, 3) or None
    colors: np.ndarray = None                                 # (N, 3) or None

    def __post_init__(self):
        self.points = np.asarray(self.points, dtype=np.float64).reshape(-1, 3)
        if self.normals is not None:
            self.normals = np.asarray(self.normals, dtype=np.float64).reshape(-1, 3)
        if self.colors is not None:
            self.colors = np.asarray(self.colors, dtype=np.float64).reshape(-1, 3)

    def __len__(self):
        return len(self.points)

    def is_empty(self) -> bool:
        return len(self.points) == 0

    def has_normals(self) -> bool:
        return self.normals is not None and len(self.normals) == len(self.points)

    def has_colors(self) -> bool:
        return self.colors is not None and len(self.colors) == len(self.points)

    def select(self, index) -> 'PointCloud':
        """New cloud holding the points picked by a boolean mask or index array."""
        return PointCloud(
            points=self.points[index].copy(),
            normals=self.normals[index].copy() if self.has_normals() else None,
            colors=self.colors[index].copy() if self.has_colors() else None,
        )

    def copy(self) -> 'PointCloud':
        return PointCloud(
            points=self.points.copy(),
            normals=None if self.normals is None else self.normals.copy(),
            colors=None if self.colors is None else self.colors.copy(),
        )

    def transformed(self, T: np.ndarray) -> 'PointCloud':
        """Cloud with points (and normals) mapped through a 4x4 transform."""
        R = T[:3, :3]
        out = self.copy()
        out.points = self.points @ R.T + T[:3, 3]
        if self.has_normals():
            out.normals = self.normals @ R.T
        return out

    def normalize_normals(self):
        """Scale every normal to unit length in place. Zero normals stay zero."""
        if not self.has_normals():
            return
        norms = np.linalg.norm(self.normals, axis=1, keepdims=True)
        np.divide(self.normals, norms, out=self.normals, where=norms > 0)


@dataclass
class AxisAlignedBoundingBox:
    """Axis-aligned box given by its min and max corners (inclusive)."""
    min_bound: np.ndarray = field(default_factory=lambda: np.zeros(3))
    max_bound: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def contains(self, points: np.ndarray) -> np.ndarray:
        """(N,) boolean mask of points inside the box."""
        return np.all((points >= self.min_bound) & (points <= self.max_bound),
                      axis=1)


@dataclass
class RegistrationResult:
    """Output of one registration call.

    transformation maps points of the reference cloud into the frame of
    the scan that was registered against it.
    """
    transformation: np.ndarray = field(default_factory=lambda: np.eye(4))
    fitness: float = 0.0
    inlier_rmse: float = 0.0


@dataclass
class InterpolationSample:
    """Pose of the range sensor in the odometry frame at a given time."""
    timestamp: float = 0.0
    pose: np.ndarray = field(default_factory=lambda: np.eye(4))


@dataclass
class ScanMatchDiagnostics:
    """What happened to the most recent scan handed to the odometry."""
    timestamp: float = 0.0
    accepted: bool = False
    reason: str = ""
    mode: str = ""
    fitness: float = 0.0
    inlier_rmse: float = 0.0
    elapsed_msec: float = 0.0
    transformation: np.ndarray = field(default_factory=lambda: np.eye(4))
    source_size: int = 0
    reference_size: int = 0
    buffer_size: int = 0
