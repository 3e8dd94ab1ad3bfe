#!/usr/bin/env python3
"""Lidar Odometry Standalone Pipeline.

One-command processing: rosbag in -> odometry trajectory (+ scans) out.

Usage:
    python run.py my_scan.bag
    python run.py my_scan.bag --config custom.yaml
    python run.py my_scan.bag --output-dir results/ --save-scans

Outputs (all saved to --output-dir, default: same folder as bag):
    1. odometry.csv   - 6-DOF trajectory (timestamp, tx,ty,tz, qx,qy,qz,qw)
    2. scans/         - Accepted preprocessed scans in the odom frame (CSV)
"""
import argparse
import os
import sys
import time
from dataclasses import replace

# Add this directory to path so lidar_odometry is importable without install
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from lidar_odometry.config import load_config
from lidar_odometry.errors import ConfigurationError
from lidar_odometry.pipeline import OdometryPipeline


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Lidar Odometry Standalone Pipeline\n\n'
                    'Process a rosbag and produce:\n'
                    '  1. Odometry CSV\n'
                    '  2. Per-scan preprocessed point clouds (optional)',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('bag', help='Path to ROS1 .bag file')
    parser.add_argument('--config', default=None,
                        help='Path to YAML config file '
                             '(default: default.yaml in this folder)')
    parser.add_argument('--output-dir', default=None,
                        help='Output directory '
                             '(default: same folder as bag file)')
    parser.add_argument('--lid-topic', default=None,
                        help='Override LiDAR topic from config')
    parser.add_argument('--save-scans', action='store_true',
                        help='Save accepted preprocessed scans as CSV')

    args = parser.parse_args(argv)

    bag_path = os.path.abspath(args.bag)
    if not os.path.isfile(bag_path):
        print(f"Error: Bag file not found: {bag_path}")
        return 1

    if args.config:
        config_path = os.path.abspath(args.config)
    else:
        config_path = os.path.join(
            os.path.dirname(os.path.abspath(__file__)), 'default.yaml')

    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        print(f"Error: {e}")
        return 1
    if args.lid_topic:
        config = replace(config, lidar_topic=args.lid_topic)

    out_dir = os.path.abspath(args.output_dir) if args.output_dir \
        else os.path.dirname(bag_path)
    os.makedirs(out_dir, exist_ok=True)
    odom_path = os.path.join(out_dir, 'odometry.csv')
    scan_dir = os.path.join(out_dir, 'scans') if args.save_scans else None

    print("=" * 60)
    print("  Lidar Odometry Standalone Pipeline")
    print("=" * 60)
    print(f"  Bag:        {bag_path}")
    print(f"  Config:     {config_path}")
    print(f"  Output dir: {out_dir}")
    print(f"  Odometry:   {odom_path}")
    print(f"  Scans:      {scan_dir + '/' if scan_dir else '(skipped)'}")
    print("=" * 60)

    t0 = time.time()
    try:
        pipeline = OdometryPipeline(config)
        pipeline.run(bag_path, odom_path, scan_output_dir=scan_dir)
    except ConfigurationError as e:
        print(f"Error: {e}")
        return 1

    print(f"\n  Total time: {time.time() - t0:.1f}s")
    return 0


if __name__ == '__main__':
    sys.exit(main())
