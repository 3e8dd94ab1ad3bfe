"""Time-indexed pose buffer with interpolated lookup.

Samples are appended in strictly increasing time order. A lookup between
two samples blends translation linearly and rotation by shortest-arc slerp;
a lookup outside the stored range returns the nearest boundary pose.
"""
import bisect
import threading

import numpy as np

from .errors import MonotonicityError, TransformNotAvailableError
from .transforms import as_transform, interpolate_transform
from .types import InterpolationSample


class TransformInterpolationBuffer:
    """Append-only (timestamp, pose) store.

    push and lookup take an internal lock, so a lookup racing a push sees
    either the old or the new buffer, never a half-written sample.
    """

    def __init__(self, size_limit: int = None):
        """
        Args:
            size_limit: Keep at most this many samples, dropping the oldest.
                None keeps everything.
        """
        if size_limit is not None and size_limit < 1:
            raise ValueError(f"size_limit must be >= 1, got {size_limit}")
        self.size_limit = size_limit
        self._times = []
        self._poses = []
        self._lock = threading.Lock()

    def __len__(self):
        return len(self._times)

    def size(self) -> int:
        return len(self._times)

    def empty(self) -> bool:
        return len(self._times) == 0

    @property
    def earliest_time(self) -> float:
        self._check_not_empty()
        return self._times[0]

    @property
    def latest_time(self) -> float:
        self._check_not_empty()
        return self._times[-1]

    def push(self, timestamp: float, pose: np.ndarray):
        """Append a sample.

        Raises:
            MonotonicityError: timestamp is not strictly greater than the
                latest stored timestamp.
        """
        timestamp = float(timestamp)
        pose = as_transform(pose)
        with self._lock:
            if self._times and timestamp <= self._times[-1]:
                raise MonotonicityError(
                    f"Buffer push at t={timestamp} does not advance past "
                    f"latest t={self._times[-1]}")
            self._times.append(timestamp)
            self._poses.append(pose)
            if self.size_limit is not None:
                excess = len(self._times) - self.size_limit
                if excess > 0:
                    del self._times[:excess]
                    del self._poses[:excess]

    def lookup(self, timestamp: float) -> np.ndarray:
        """Pose at an arbitrary time.

        Raises:
            TransformNotAvailableError: the buffer is empty.
        """
        with self._lock:
            self._check_not_empty()
            times = self._times
            if timestamp <= times[0]:
                return self._poses[0].copy()
            if timestamp >= times[-1]:
                return self._poses[-1].copy()

            i = bisect.bisect_left(times, timestamp)
            t1 = times[i]
            if t1 == timestamp:
                return self._poses[i].copy()
            t0 = times[i - 1]
            alpha = (timestamp - t0) / (t1 - t0)
            return interpolate_transform(self._poses[i - 1], self._poses[i], alpha)

    def has(self, timestamp: float) -> bool:
        """True if a sample is stored at exactly this time."""
        with self._lock:
            i = bisect.bisect_left(self._times, timestamp)
            return i < len(self._times) and self._times[i] == timestamp

    def latest_measurement(self) -> InterpolationSample:
        with self._lock:
            self._check_not_empty()
            return InterpolationSample(self._times[-1], self._poses[-1].copy())

    def samples(self) -> list:
        """Snapshot of all samples in time order."""
        with self._lock:
            return [InterpolationSample(t, T.copy())
                    for t, T in zip(self._times, self._poses)]

    def clear(self):
        with self._lock:
            self._times.clear()
            self._poses.clear()

    def _check_not_empty(self):
        if not self._times:
            raise TransformNotAvailableError("Interpolation buffer is empty")


def get_transform(timestamp: float, buffer: TransformInterpolationBuffer) -> np.ndarray:
    """Pose from buffer at timestamp (see TransformInterpolationBuffer.lookup)."""
    return buffer.lookup(timestamp)
