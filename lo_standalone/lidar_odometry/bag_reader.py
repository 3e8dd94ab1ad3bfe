"""ROS1 bag file reader using the rosbags library (no ROS install needed).

Parses sensor_msgs/PointCloud2 and livox_ros_driver/CustomMsg messages on
the lidar topic into PointClouds stamped with the message header time.
"""
import struct
import numpy as np
from pathlib import Path

from rosbags.rosbag1 import Reader
from rosbags.typesys import Stores, get_typestore
from tqdm import tqdm

from .types import PointCloud


# Numpy dtype and byte size per PointField datatype
_POINTFIELD_NP_DTYPES = {
    1: (np.uint8, 1),
    2: (np.int8, 1),
    3: (np.uint16, 2),
    4: (np.int16, 2),
    5: (np.uint32, 4),
    6: (np.int32, 4),
    7: (np.float32, 4),
    8: (np.float64, 8),
}

# Livox CustomPoint: uint32 offset_time(ns), float32 x, y, z,
#                    uint8 reflectivity, uint8 tag, uint8 line
_LIVOX_POINT_DTYPE = np.dtype([
    ('offset_time', '<u4'),
    ('x', '<f4'), ('y', '<f4'), ('z', '<f4'),
    ('reflectivity', 'u1'), ('tag', 'u1'), ('line', 'u1'),
])


def _find_field(fields, name):
    """Find a field by name in PointCloud2 fields list."""
    for f in fields:
        if f.name == name:
            return f
    return None


def _parse_pointcloud2(msg) -> np.ndarray:
    """Parse the x/y/z fields of a PointCloud2 message into (N, 3) float64."""
    n_points = msg.width * msg.height
    if n_points == 0:
        return np.zeros((0, 3))

    axes = [_find_field(msg.fields, name) for name in ('x', 'y', 'z')]
    if any(f is None for f in axes):
        raise ValueError("PointCloud2 missing x/y/z fields")

    order = '>' if msg.is_bigendian else '<'
    buf = np.frombuffer(bytes(msg.data), dtype=np.uint8).reshape(
        n_points, msg.point_step)

    xyz = np.zeros((n_points, 3), dtype=np.float64)
    for dim, ff in enumerate(axes):
        dt, sz = _POINTFIELD_NP_DTYPES[ff.datatype]
        raw = buf[:, ff.offset:ff.offset + sz].copy()
        xyz[:, dim] = raw.view(np.dtype(dt).newbyteorder(order)).flatten()
    return xyz


def _parse_livox_custommsg(rawdata):
    """Parse a livox_ros_driver/CustomMsg from raw bytes.

    CustomMsg layout (ROS1 serialized):
      Header header        (uint32 seq, uint32 sec, uint32 nsec, string frame_id)
      uint64 timebase      (ns since epoch)
      uint32 point_num
      uint8  lidar_id
      uint8[3] rsvd
      CustomPoint[] points (uint32 array_len prefix, then N * 19 bytes)

    Returns:
        header_time: float64 seconds since epoch
        xyz: (N, 3) float64
    """
    data = bytes(rawdata)
    pos = 4  # seq
    sec, nsec, fid_len = struct.unpack_from('<III', data, pos)
    pos += 12 + fid_len
    pos += 8 + 4 + 1 + 3  # timebase, point_num, lidar_id, rsvd
    arr_len = struct.unpack_from('<I', data, pos)[0]
    pos += 4

    header_time = sec + nsec * 1e-9
    if arr_len == 0:
        return header_time, np.zeros((0, 3))

    pts = np.frombuffer(data, dtype=_LIVOX_POINT_DTYPE, count=arr_len, offset=pos)
    xyz = np.column_stack([
        pts['x'].astype(np.float64),
        pts['y'].astype(np.float64),
        pts['z'].astype(np.float64),
    ])
    return header_time, xyz


def read_lidar_scans(bag_path: str, lidar_topic: str, min_points: int = 1):
    """Read a ROS1 bag file and yield lidar scans in timestamp order.

    Args:
        bag_path: Path to the .bag file.
        lidar_topic: PointCloud2 or Livox CustomMsg topic.
        min_points: Scans with fewer points are skipped.

    Yields:
        (timestamp, PointCloud) tuples sorted by header time.
    """
    typestore = get_typestore(Stores.ROS1_NOETIC)
    scans = []

    with Reader(Path(bag_path)) as reader:
        connections = [c for c in reader.connections if c.topic == lidar_topic]
        if not connections:
            return
        for connection, _, rawdata in tqdm(
            reader.messages(connections=connections),
            desc="Reading bag", unit="msg", dynamic_ncols=True,
        ):
            if 'CustomMsg' in connection.msgtype:
                header_time, xyz = _parse_livox_custommsg(rawdata)
            else:
                msg = typestore.deserialize_ros1(rawdata, connection.msgtype)
                xyz = _parse_pointcloud2(msg)
                stamp = msg.header.stamp
                header_time = stamp.sec + stamp.nanosec * 1e-9

            if len(xyz) >= min_points:
                scans.append((header_time, PointCloud(points=xyz)))

    scans.sort(key=lambda s: s[0])
    yield from scans
