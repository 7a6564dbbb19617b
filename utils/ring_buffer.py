"""
Fixed-capacity rolling buffer backed by a numpy array and a write cursor.

Used for the expression / rotation / position deviation windows and the
pitch/yaw gesture window. Pushing never shifts existing samples.
"""

from typing import Optional

import numpy as np


class RollingBuffer:
    """Ring buffer of fixed-width float vectors."""

    def __init__(self, capacity: int, width: int):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = int(capacity)
        self.width = int(width)
        self._data = np.zeros((self.capacity, self.width), dtype=np.float64)
        self._cursor = 0  # next write slot
        self._count = 0

    def __len__(self) -> int:
        return self._count

    def is_full(self) -> bool:
        return self._count == self.capacity

    def push(self, vector) -> None:
        self._data[self._cursor] = np.asarray(vector, dtype=np.float64).reshape(self.width)
        self._cursor = (self._cursor + 1) % self.capacity
        self._count = min(self._count + 1, self.capacity)

    def mean(self) -> Optional[np.ndarray]:
        if self._count == 0:
            return None
        return self.values().mean(axis=0)

    def oldest(self) -> Optional[np.ndarray]:
        if self._count == 0:
            return None
        idx = self._cursor if self.is_full() else 0
        return self._data[idx].copy()

    def values(self) -> np.ndarray:
        """Samples in insertion order (oldest first)."""
        if not self.is_full():
            return self._data[: self._count].copy()
        return np.roll(self._data, -self._cursor, axis=0)

    def clear(self) -> None:
        self._cursor = 0
        self._count = 0

    def deviation_and_push(self, vector) -> float:
        """
        Euclidean distance between vector and the mean of the samples already
        buffered (0 when empty), then push vector.
        """
        current = np.asarray(vector, dtype=np.float64).reshape(self.width)
        avg = self.mean()
        distance = 0.0 if avg is None else float(np.linalg.norm(current - avg))
        self.push(current)
        return distance
