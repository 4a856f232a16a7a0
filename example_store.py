"""
example_store.py
----------------
Per-class example storage: an auto-growing float32 row buffer.

Each class slot keeps its embeddings in insertion order.  Appends write into
a preallocated buffer that doubles in capacity when full, so collecting a
few dozen examples per second never re-copies the whole matrix per frame.
"""

from __future__ import annotations

import numpy as np

_INITIAL_CAPACITY = 16   # rows


class ClassSlot:
    """
    Ordered, growable ``(count, dim)`` float32 matrix for one class.

    Usage
    -----
    slot = ClassSlot()
    slot.append(vec)          # vec: (dim,) float
    slot.rows                 # (count, dim) view, insertion order
    slot.replace(matrix)      # swap in a whole (n, dim) matrix
    slot.clear()

    The embedding width is fixed by the first row (or matrix) stored and
    released again by clear().
    """

    def __init__(self, initial_capacity: int = _INITIAL_CAPACITY):
        self._initial_capacity = max(1, initial_capacity)
        self._buf: np.ndarray | None = None
        self._count = 0

    # ------------------------------------------------------------------

    @property
    def count(self) -> int:
        return self._count

    @property
    def dim(self) -> int | None:
        return None if self._buf is None else self._buf.shape[1]

    @property
    def capacity(self) -> int:
        return 0 if self._buf is None else self._buf.shape[0]

    @property
    def rows(self) -> np.ndarray | None:
        """Filled part of the buffer, or None when the slot is empty."""
        if self._buf is None or self._count == 0:
            return None
        return self._buf[: self._count]

    def __len__(self) -> int:
        return self._count

    # ------------------------------------------------------------------

    def append(self, vec: np.ndarray) -> None:
        vec = np.asarray(vec, dtype=np.float32).reshape(-1)
        if self._buf is None:
            self._buf = np.empty((self._initial_capacity, vec.shape[0]), dtype=np.float32)
        elif vec.shape[0] != self._buf.shape[1]:
            raise ValueError(
                f"Embedding has length {vec.shape[0]}, slot stores length {self._buf.shape[1]}"
            )
        if self._count == self._buf.shape[0]:
            grown = np.empty((self._buf.shape[0] * 2, self._buf.shape[1]), dtype=np.float32)
            grown[: self._count] = self._buf[: self._count]
            self._buf = grown
        self._buf[self._count] = vec
        self._count += 1

    def replace(self, matrix: np.ndarray) -> None:
        matrix = np.asarray(matrix, dtype=np.float32)
        if matrix.ndim != 2:
            raise ValueError(f"Expected a 2-D (n, dim) matrix, got shape {matrix.shape}")
        # Own a copy so callers can keep mutating their array
        self._buf = np.array(matrix, dtype=np.float32, copy=True)
        self._count = matrix.shape[0]
        if self._count == 0:
            self._buf = None

    def clear(self) -> None:
        self._buf = None
        self._count = 0
