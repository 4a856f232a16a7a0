"""
example_db.py
-------------
LMDB persistence for per-label example matrices, used by
teachable_session.py (export / import) and embed_folder.py.

LMDB layout:
  key b"__labels__"    → JSON list of labels, in insertion order
  key b"__dim__"       → ascii int (embedding width)
  key b"label:<name>"  → raw float32 bytes of the (n, dim) example matrix
"""

from __future__ import annotations

import json

import lmdb
import numpy as np

_DEFAULT_INIT = 64 * 1024 ** 2   # 64 MB
_DEFAULT_GROW = 64 * 1024 ** 2   # 64 MB per growth step
_MAX_GROW_ATTEMPTS = 10

_LABELS_KEY = b"__labels__"
_DIM_KEY    = b"__dim__"


def _label_key(label: str) -> bytes:
    return b"label:" + label.encode("utf-8")


class ExampleDB:
    """
    Wraps an lmdb environment holding one example matrix per label, with
    automatic map-size growth on writes.

    Usage
    -----
    with ExampleDB("examples.lmdb") as db:
        db.put_class("thumbs_up", matrix)      # (n, dim) float32
        db.labels()                            # ["thumbs_up"]
        db.get_class("thumbs_up")              # (n, dim) float32

    Opening with readonly=True requires the file to exist.
    """

    def __init__(
        self,
        path:         str,
        readonly:     bool = False,
        initial_size: int  = _DEFAULT_INIT,
        grow_size:    int  = _DEFAULT_GROW,
    ):
        self.path      = str(path)
        self.readonly  = readonly
        self.grow_size = grow_size
        self._map_size = initial_size
        if readonly:
            self.env = lmdb.open(self.path, readonly=True, lock=False,
                                 readahead=False, meminit=False)
        else:
            self.env = lmdb.open(self.path, map_size=initial_size)

    # ------------------------------------------------------------------

    def _write(self, batch: dict[bytes, bytes | None]) -> None:
        """
        Apply *batch* in one transaction (None deletes the key).  Grows the
        map on MapFullError and retries.
        """
        if self.readonly:
            raise PermissionError(f"ExampleDB '{self.path}' is opened read-only")
        for attempt in range(1, _MAX_GROW_ATTEMPTS + 1):
            try:
                with self.env.begin(write=True) as txn:
                    for k, v in batch.items():
                        if v is None:
                            txn.delete(k)
                        else:
                            txn.put(k, v)
                return
            except lmdb.MapFullError:
                self._map_size += self.grow_size
                print(
                    f"\n[ExampleDB] '{self.path}' full, growing to "
                    f"{self._map_size // 1024 ** 2} MB (attempt {attempt})"
                )
                self.env.set_mapsize(self._map_size)
        raise RuntimeError(
            f"ExampleDB '{self.path}' could not grow after "
            f"{_MAX_GROW_ATTEMPTS} attempts, disk may be full"
        )

    def _get(self, key: bytes) -> bytes | None:
        with self.env.begin() as txn:
            data = txn.get(key)
        return None if data is None else bytes(data)

    # ------------------------------------------------------------------

    def labels(self) -> list[str]:
        data = self._get(_LABELS_KEY)
        return [] if data is None else json.loads(data.decode("utf-8"))

    @property
    def dim(self) -> int | None:
        data = self._get(_DIM_KEY)
        return None if data is None else int(data.decode())

    def __contains__(self, label: str) -> bool:
        return label in self.labels()

    def __len__(self) -> int:
        return len(self.labels())

    def put_class(self, label: str, matrix: np.ndarray) -> None:
        matrix = np.ascontiguousarray(matrix, dtype=np.float32)
        if matrix.ndim != 2:
            raise ValueError(f"Expected a 2-D (n, dim) matrix, got shape {matrix.shape}")
        dim = self.dim
        if dim is not None and matrix.shape[1] != dim:
            raise ValueError(
                f"Matrix rows have length {matrix.shape[1]}, database stores length {dim}"
            )
        labels = self.labels()
        if label not in labels:
            labels.append(label)
        self._write({
            _label_key(label): matrix.tobytes(),
            _LABELS_KEY:       json.dumps(labels).encode("utf-8"),
            _DIM_KEY:          str(matrix.shape[1]).encode(),
        })

    def get_class(self, label: str) -> np.ndarray:
        data = self._get(_label_key(label))
        if data is None:
            raise KeyError(label)
        return np.frombuffer(data, dtype=np.float32).reshape(-1, self.dim).copy()

    def remove_class(self, label: str) -> None:
        labels = self.labels()
        if label not in labels:
            raise KeyError(label)
        labels.remove(label)
        self._write({
            _label_key(label): None,
            _LABELS_KEY:       json.dumps(labels).encode("utf-8"),
        })

    def items(self):
        for label in self.labels():
            yield label, self.get_class(label)

    # ------------------------------------------------------------------

    def close(self) -> None:
        self.env.close()

    def __enter__(self) -> "ExampleDB":
        return self

    def __exit__(self, *_) -> None:
        self.close()
