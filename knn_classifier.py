"""
knn_classifier.py
-----------------
k-nearest-neighbour classification over user-collected image embeddings.

Pipeline
--------
1. Every example embedding is squashed (divided by SQUASH_DENOMINATOR) and
   L2-normalised, then appended to its class slot.
2. At query time the query is normalised the same way and scored against the
   concatenation of all class slots (built lazily, cached until the next
   mutation).  Vectors are unit length, so the dot product is the cosine
   similarity.
3. The k best rows vote for the class that owns them; confidences are vote
   fractions.

Usage
-----
    knn = KNNImageClassifier(num_classes=3, k=10)
    knn.add_example(embedding, 0)
    pred = knn.classify(query)          # Prediction
    print(pred.class_index, pred.confidences)

CLI quick-test (random embeddings, no model needed):
    python knn_classifier.py --classes 3 --per-class 20 --k 10
"""

from __future__ import annotations

import argparse
import time
from dataclasses import dataclass, field

import numpy as np

from errors import InvalidClass, NotReady
from example_store import ClassSlot

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

NUM_CLASSES        = 3
TOPK               = 10
SQUASH_DENOMINATOR = 300.0
_EPS               = 1e-12


# ---------------------------------------------------------------------------
# Data classes for results
# ---------------------------------------------------------------------------

@dataclass
class Neighbour:
    row:         int     # row in the aggregate training matrix
    class_index: int
    similarity:  float   # cosine similarity, 1.0 = identical direction

    def __repr__(self) -> str:
        return (f"Neighbour(row={self.row}, class={self.class_index}, "
                f"similarity={self.similarity:.3f})")


@dataclass
class Prediction:
    class_index: int                                   # winning slot
    confidences: np.ndarray = field(repr=False)        # (num_classes,) vote fractions
    k:           int = 0                               # neighbours actually used

    @property
    def confidence(self) -> float:
        return float(self.confidences[self.class_index])

    def as_dict(self) -> dict[int, float]:
        return {i: float(c) for i, c in enumerate(self.confidences)}

    def __repr__(self) -> str:
        return (f"Prediction(class={self.class_index}, "
                f"confidence={self.confidence:.0%}, k={self.k})")


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------

class KNNImageClassifier:
    """
    Per-class example store plus k-NN voting.

    Parameters
    ----------
    num_classes        : number of class slots, indices 0 .. num_classes-1
    k                  : neighbours that vote on each query
    squash_denominator : fixed scalar every embedding is divided by before
                         L2 normalisation

    Slots with no examples contribute zero rows.  The aggregate matrix is
    rebuilt on the first query after any add / clear / load.
    """

    def __init__(
        self,
        num_classes:        int   = NUM_CLASSES,
        k:                  int   = TOPK,
        squash_denominator: float = SQUASH_DENOMINATOR,
    ):
        if num_classes < 1:
            raise ValueError(f"num_classes must be >= 1, got {num_classes}")
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        self.num_classes        = num_classes
        self.k                  = k
        self.squash_denominator = float(squash_denominator)
        self._slots: list[ClassSlot] = [ClassSlot() for _ in range(num_classes)]
        self._train_matrix: np.ndarray | None = None
        self._dirty = True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_class(self, class_index: int) -> None:
        if not 0 <= class_index < self.num_classes:
            raise InvalidClass(class_index, self.num_classes)

    def _invalidate(self) -> None:
        self._train_matrix = None
        self._dirty = True

    def _aggregate(self) -> np.ndarray | None:
        """Concatenate non-empty slots in class order; cached until invalidated."""
        if self._dirty:
            parts = [s.rows for s in self._slots if s.count]
            self._train_matrix = np.concatenate(parts, axis=0) if parts else None
            self._dirty = False
        return self._train_matrix

    def normalize(self, embedding: np.ndarray) -> np.ndarray:
        """Divide by the squash denominator, then scale to unit L2 norm."""
        vec = np.asarray(embedding, dtype=np.float32).reshape(-1)
        squashed = vec / np.float32(self.squash_denominator)
        return squashed / (np.sqrt(np.square(squashed).sum()) + _EPS)

    def _check_dim(self, vec: np.ndarray) -> None:
        dim = self.dim
        if dim is not None and vec.shape[0] != dim:
            raise ValueError(f"Embedding has length {vec.shape[0]}, expected {dim}")

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def class_example_counts(self) -> list[int]:
        return [s.count for s in self._slots]

    @property
    def total_examples(self) -> int:
        return sum(s.count for s in self._slots)

    @property
    def dim(self) -> int | None:
        """Embedding width of the stored examples, None while empty."""
        for s in self._slots:
            if s.count:
                return s.dim
        return None

    def get_class_example_count(self, class_index: int) -> int:
        self._check_class(class_index)
        return self._slots[class_index].count

    def get_examples(self, class_index: int) -> np.ndarray | None:
        """Copy of the stored ``(count, dim)`` matrix for one class."""
        self._check_class(class_index)
        rows = self._slots[class_index].rows
        return None if rows is None else rows.copy()

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_example(self, embedding: np.ndarray, class_index: int) -> None:
        self._check_class(class_index)
        vec = self.normalize(embedding)
        self._check_dim(vec)
        self._slots[class_index].append(vec)
        self._invalidate()

    def clear_class(self, class_index: int) -> None:
        self._check_class(class_index)
        self._slots[class_index].clear()
        self._invalidate()

    def load_examples(self, matrix: np.ndarray, class_index: int) -> None:
        """
        Replace a class's examples wholesale.  Rows are stored as given: the
        caller supplies vectors that are already normalised (e.g. from
        get_examples() or a saved model).
        """
        self._check_class(class_index)
        matrix = np.asarray(matrix, dtype=np.float32)
        if matrix.ndim != 2:
            raise ValueError(f"Expected a 2-D (n, dim) matrix, got shape {matrix.shape}")
        others = [s.dim for i, s in enumerate(self._slots) if s.count and i != class_index]
        if others and matrix.shape[0] and matrix.shape[1] != others[0]:
            raise ValueError(
                f"Matrix rows have length {matrix.shape[1]}, expected {others[0]}"
            )
        self._slots[class_index].replace(matrix)
        self._invalidate()

    def reset(self) -> None:
        """Drop every stored example and the cached aggregate."""
        for s in self._slots:
            s.clear()
        self._invalidate()

    dispose = reset

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def similarities(self, embedding: np.ndarray) -> np.ndarray:
        """Cosine similarity of the query against every stored example, shape (N,)."""
        train = self._aggregate()
        if train is None:
            raise NotReady("Cannot classify without training examples")
        query = self.normalize(embedding)
        self._check_dim(query)
        return train @ query

    def _row_classes(self, rows: np.ndarray) -> np.ndarray:
        """Owning class of each aggregate row: first class whose cumulative count exceeds it."""
        offsets = np.cumsum(self.class_example_counts)
        return np.searchsorted(offsets, rows, side="right")

    def _top_rows(self, scores: np.ndarray, k: int) -> np.ndarray:
        # Stable sort on the negated scores keeps insertion order among ties
        return np.argsort(-scores, kind="stable")[:k]

    def nearest(self, embedding: np.ndarray, top_k: int | None = None) -> list[Neighbour]:
        """
        The *top_k* most similar stored examples (default: k).

        Returns
        -------
        List of Neighbour sorted by descending similarity, ties in insertion
        order.
        """
        scores = self.similarities(embedding)
        k = min(top_k or self.k, len(scores))
        rows = self._top_rows(scores, k)
        owners = self._row_classes(rows)
        return [
            Neighbour(row=int(r), class_index=int(c), similarity=float(scores[r]))
            for r, c in zip(rows, owners)
        ]

    def classify(self, embedding: np.ndarray) -> Prediction:
        """
        Majority vote of the k nearest examples.

        Raises NotReady when no class holds any example.  The predicted class
        is the first class (lowest index) reaching the highest vote share;
        classes without examples report 0.0.
        """
        scores = self.similarities(embedding)
        k = min(self.k, len(scores))
        rows = self._top_rows(scores, k)
        votes = np.bincount(self._row_classes(rows), minlength=self.num_classes)

        confidences = votes[: self.num_classes].astype(np.float32) / k
        class_index = -1
        top = 0.0
        for i, p in enumerate(confidences):
            if p > top:
                top = p
                class_index = i
        return Prediction(class_index=class_index, confidences=confidences, k=k)


# ---------------------------------------------------------------------------
# CLI quick-test
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="k-NN sanity check on random clustered embeddings.")
    parser.add_argument("--classes",   type=int, default=NUM_CLASSES)
    parser.add_argument("--per-class", type=int, default=20)
    parser.add_argument("--k",         type=int, default=TOPK)
    parser.add_argument("--dim",       type=int, default=1000)
    parser.add_argument("--noise",     type=float, default=0.5)
    args = parser.parse_args()

    rng = np.random.default_rng(0)
    centres = rng.normal(size=(args.classes, args.dim)).astype(np.float32) * 50
    knn = KNNImageClassifier(num_classes=args.classes, k=args.k)

    for c in range(args.classes):
        for _ in range(args.per_class):
            knn.add_example(centres[c] + rng.normal(size=args.dim) * 50 * args.noise, c)
    print(f"Stored {knn.total_examples} examples  counts={knn.class_example_counts}")

    hits = 0
    t0 = time.perf_counter()
    for c in range(args.classes):
        for _ in range(args.per_class):
            pred = knn.classify(centres[c] + rng.normal(size=args.dim) * 50 * args.noise)
            hits += pred.class_index == c
    elapsed = time.perf_counter() - t0
    n = args.classes * args.per_class

    print(f"Accuracy : {hits}/{n}  ({hits / n:.1%})")
    print(f"Latency  : {elapsed / n * 1000:.3f} ms/query")
    print(f"Example  : {knn.classify(centres[0])}")
    for nb in knn.nearest(centres[0], top_k=3):
        print(f"  {nb}")
