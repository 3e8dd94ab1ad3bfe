"""Point cloud registration primitive backed by Open3D ICP.

The odometry only needs one call:

    register(reference, scan, max_correspondence_distance, initial_guess,
             objective, criteria) -> RegistrationResult

Any object with a matching ``register`` method can stand in for
Open3dIcpRegistration (the tests use a scripted one).
"""
from dataclasses import dataclass
from enum import Enum

import numpy as np

from .errors import ConfigurationError
from .types import PointCloud, RegistrationResult


class IcpObjective(Enum):
    POINT_TO_POINT = "PointToPoint"
    POINT_TO_PLANE = "PointToPlane"


ICP_OBJECTIVE_NAMES = {
    "PointToPoint": IcpObjective.POINT_TO_POINT,
    "PointToPlane": IcpObjective.POINT_TO_PLANE,
    # names used by the open3d_slam parameter files
    "PointToPointIcp": IcpObjective.POINT_TO_POINT,
    "PointToPlaneIcp": IcpObjective.POINT_TO_PLANE,
}


def icp_objective_from_name(name: str) -> IcpObjective:
    """Map a config string to an IcpObjective.

    Raises:
        ConfigurationError: unknown objective name.
    """
    try:
        return ICP_OBJECTIVE_NAMES[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown icp objective '{name}', expected one of "
            f"{sorted(ICP_OBJECTIVE_NAMES)}") from None


@dataclass(frozen=True)
class ConvergenceCriteria:
    """ICP stopping rule (mirrors open3d ICPConvergenceCriteria)."""
    max_iteration: int = 30
    relative_fitness: float = 1e-6
    relative_rmse: float = 1e-6


def to_open3d(cloud: PointCloud):
    """Convert a PointCloud into an open3d.geometry.PointCloud."""
    import open3d as o3d

    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(cloud.points)
    if cloud.has_normals():
        pcd.normals = o3d.utility.Vector3dVector(cloud.normals)
    if cloud.has_colors():
        pcd.colors = o3d.utility.Vector3dVector(cloud.colors)
    return pcd


def from_open3d(pcd) -> PointCloud:
    """Convert an open3d.geometry.PointCloud into a PointCloud."""
    return PointCloud(
        points=np.asarray(pcd.points).copy(),
        normals=np.asarray(pcd.normals).copy() if pcd.has_normals() else None,
        colors=np.asarray(pcd.colors).copy() if pcd.has_colors() else None,
    )


class Open3dIcpRegistration:
    """ICP registration through open3d.pipelines.registration.

    The reference cloud is the ICP source and the scan the ICP target, so the
    returned transformation maps reference points into the scan frame.
    """

    def register(self, reference: PointCloud, scan: PointCloud,
                 max_correspondence_distance: float,
                 initial_guess: np.ndarray,
                 objective: IcpObjective,
                 criteria: ConvergenceCriteria) -> RegistrationResult:
        """Run ICP and return (transformation, fitness, inlier_rmse).

        Raises:
            ValueError: point-to-plane requested but the scan has no normals.
        """
        import open3d as o3d

        reg = o3d.pipelines.registration
        if objective == IcpObjective.POINT_TO_PLANE:
            if not scan.has_normals():
                raise ValueError("Point-to-plane ICP needs normals on the scan")
            estimation = reg.TransformationEstimationPointToPlane()
        else:
            estimation = reg.TransformationEstimationPointToPoint(False)

        o3d_criteria = reg.ICPConvergenceCriteria(
            relative_fitness=criteria.relative_fitness,
            relative_rmse=criteria.relative_rmse,
            max_iteration=criteria.max_iteration,
        )
        res = reg.registration_icp(
            to_open3d(reference), to_open3d(scan),
            max_correspondence_distance,
            np.asarray(initial_guess, dtype=np.float64),
            estimation, o3d_criteria)
        return RegistrationResult(
            transformation=np.asarray(res.transformation, dtype=np.float64).copy(),
            fitness=float(res.fitness),
            inlier_rmse=float(res.inlier_rmse),
        )
