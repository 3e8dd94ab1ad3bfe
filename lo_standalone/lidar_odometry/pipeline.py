"""Offline odometry pipeline: scan stream in, trajectory out."""
import os
import time
import numpy as np
from tqdm import tqdm

from .bag_reader import read_lidar_scans
from .config import PipelineConfig
from .numba_kernels import warmup as numba_warmup
from .odometry import LidarOdometry
from .output import trajectory_from_samples, write_scan_csv, write_trajectory


class OdometryPipeline:
    """Runs LidarOdometry over a sequence of scans and writes the trajectory."""

    def __init__(self, config: PipelineConfig, registration=None,
                 rng: np.random.Generator = None):
        self.config = config
        self.odometry = LidarOdometry(config.odometry, registration=registration,
                                      rng=rng)
        self.num_accepted = 0
        self.num_rejected = 0

    @property
    def trajectory(self) -> list:
        """(timestamp, pos, quat) tuples for every accepted scan."""
        return trajectory_from_samples(self.odometry.get_buffer().samples())

    def process(self, scans, scan_output_dir: str = None, total: int = None):
        """Feed (timestamp, PointCloud) pairs through the odometry.

        Args:
            scans: Iterable of (timestamp, PointCloud).
            scan_output_dir: If set, every accepted preprocessed scan is
                written there as CSV, in the odometry frame.
            total: Scan count for the progress bar, if known.
        """
        if scan_output_dir:
            os.makedirs(scan_output_dir, exist_ok=True)

        t_start = time.time()
        pbar = tqdm(scans, total=total, desc="Processing scans", unit="scan",
                    dynamic_ncols=True)
        for timestamp, cloud in pbar:
            if self.odometry.add_scan(cloud, timestamp):
                if scan_output_dir:
                    scan_csv = os.path.join(
                        scan_output_dir, f"scan_{self.num_accepted:06d}.csv")
                    write_scan_csv(scan_csv, self.odometry.get_preprocessed_cloud()
                                   .transformed(self.odometry.cumulative_pose))
                self.num_accepted += 1
            else:
                self.num_rejected += 1

            elapsed = time.time() - t_start
            done = self.num_accepted + self.num_rejected
            pbar.set_postfix(rate=f"{done / elapsed if elapsed > 0 else 0:.1f} scans/s",
                             rejected=self.num_rejected)
        pbar.close()

    def run(self, bag_path: str, output_path: str, scan_output_dir: str = None):
        """Process a whole bag file and write the trajectory.

        Args:
            bag_path: Path to the .bag file.
            output_path: Trajectory file (.csv for CSV, anything else TUM).
            scan_output_dir: Optional directory for per-scan CSV clouds.
        """
        print("[Pipeline] Compiling Numba JIT kernels...")
        numba_warmup()
        print("[Pipeline] JIT compilation complete.")

        print(f"[Pipeline] Reading bag: {bag_path}")
        print(f"[Pipeline] LiDAR topic: {self.config.lidar_topic}")
        scans = list(read_lidar_scans(bag_path, self.config.lidar_topic,
                                      self.config.min_points_per_scan))
        print(f"\n[Pipeline] Loaded {len(scans)} LiDAR scans")
        if len(scans) == 0:
            print("[Pipeline] No LiDAR scans found. Check topic name.")
            return

        t_start = time.time()
        self.process(scans, scan_output_dir=scan_output_dir, total=len(scans))
        elapsed = time.time() - t_start
        print(f"\n[Pipeline] Done. {self.num_accepted} accepted, "
              f"{self.num_rejected} rejected in {elapsed:.1f}s")

        write_trajectory(output_path, self.trajectory)
        print(f"[Pipeline] Trajectory written to: {output_path}")
