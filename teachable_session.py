"""
teachable_session.py
--------------------
One teachable-machine session: the embedder, the k-NN classifier, the
label ↔ class-slot map and the per-frame train / classify step.

A session replaces the page-level globals of a browser demo with an explicit
object that the front-ends (webcam_demo/app.py, capture_loop.py) hold a
reference to.

Usage
-----
    session = TeachableSession(ImageEmbedder().load(), listener=MyListener())
    session.start_training("thumbs_up")
    session.process_frame(bgr)          # trains + classifies
    session.stop_training()
    session.process_frame(bgr)          # classifies only
    session.get_classification()        # "thumbs_up"
"""

from __future__ import annotations

import json
from typing import Protocol

import numpy as np
from codetiming import Timer

from errors import LabelNotFound, NoAvailableSlots, NotReady
from example_db import ExampleDB
from knn_classifier import KNNImageClassifier, NUM_CLASSES, Prediction, TOPK

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

MAX_EXAMPLES  = 50      # per class; training stops adding beyond this
EMBEDDING_DIM = 1000    # row width of saved models (MobileNet ImageNet head)


class Embedder(Protocol):
    def is_loaded(self) -> bool: ...
    def embed_bgr(self, bgr: np.ndarray) -> np.ndarray: ...


class SessionListener:
    """
    Receives UI updates from a session.  Every method is a no-op; override
    the ones the front-end cares about.  Label / value lists are in slot
    order and only contain active labels.
    """

    def ready(self) -> None:
        pass

    def got_sample_counts(self, labels: list[str], counts: list[int]) -> None:
        pass

    def got_confidences(self, labels: list[str], confidences: list[float]) -> None:
        pass

    def got_classification(self, label: str) -> None:
        pass

    def got_saved_model(self, label: str, model: str) -> None:
        pass

    def done_loading_model(self, label: str) -> None:
        pass


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class TeachableSession:
    """
    Parameters
    ----------
    embedder     : object with is_loaded() and embed_bgr(bgr) → (dim,) floats
    num_classes  : number of labels that can be trained at once
    k            : neighbours voting on each classification
    max_examples : examples kept per label while training
    listener     : SessionListener receiving UI updates
    embedding_dim: row width expected by load_model()
    """

    def __init__(
        self,
        embedder:      Embedder,
        num_classes:   int = NUM_CLASSES,
        k:             int = TOPK,
        max_examples:  int = MAX_EXAMPLES,
        listener:      SessionListener | None = None,
        embedding_dim: int = EMBEDDING_DIM,
    ):
        self.embedder      = embedder
        self.num_classes   = num_classes
        self.max_examples  = max_examples
        self.embedding_dim = embedding_dim
        self.listener     = listener or SessionListener()
        self.classifier   = KNNImageClassifier(num_classes=num_classes, k=k)

        self._label_to_class: dict[str, int] = {}
        self._class_to_label: dict[int, str] = {}
        self._available: list[int] = list(range(num_classes))
        self._confidences: dict[int, float] = {}
        self._top_choice: int | None = None
        self._training: int | None = None
        self._timings: dict[str, float] = {}

    # ------------------------------------------------------------------
    # Label ↔ slot map
    # ------------------------------------------------------------------

    def _slot(self, label: str) -> int:
        try:
            return self._label_to_class[label]
        except KeyError:
            raise LabelNotFound(label) from None

    def _assign_slot(self, label: str) -> int:
        """Slot of *label*, registering it on the lowest free slot if new."""
        if label in self._label_to_class:
            return self._label_to_class[label]
        if not self._available:
            raise NoAvailableSlots(label, self.num_classes)
        c = self._available.pop(0)
        self._label_to_class[label] = c
        self._class_to_label[c] = label
        return c

    def _release_slot(self, label: str) -> None:
        c = self._label_to_class.pop(label)
        del self._class_to_label[c]
        self._available.append(c)
        self._available.sort()

    def _load_slot(self, label: str, matrix: np.ndarray) -> None:
        """Load *matrix* into the slot of *label*; a new label is unregistered again if the load fails."""
        is_new = label not in self._label_to_class
        c = self._assign_slot(label)
        try:
            self.classifier.load_examples(matrix, c)
        except ValueError:
            if is_new:
                self._release_slot(label)
            raise

    @property
    def labels(self) -> list[str]:
        return [self._class_to_label[c] for c in sorted(self._class_to_label)]

    @property
    def training_label(self) -> str | None:
        return None if self._training is None else self._class_to_label[self._training]

    @property
    def is_ready(self) -> bool:
        return self.embedder.is_loaded()

    # ------------------------------------------------------------------
    # UI event surface
    # ------------------------------------------------------------------

    def start_training(self, label: str) -> None:
        self._training = self._assign_slot(label)

    def stop_training(self) -> None:
        self._training = None

    def get_sample_count(self, label: str) -> int:
        return self.classifier.get_class_example_count(self._slot(label))

    def get_confidence(self, label: str) -> float:
        return self._confidences.get(self._slot(label), 0.0)

    def get_classification(self) -> str | None:
        if self._top_choice is None:
            return None
        return self._class_to_label.get(self._top_choice)

    def list_sample_counts(self) -> tuple[list[str], list[int]]:
        counts = self.classifier.class_example_counts
        slots = sorted(self._class_to_label)
        return [self._class_to_label[c] for c in slots], [counts[c] for c in slots]

    def list_confidences(self) -> tuple[list[str], list[float]]:
        slots = sorted(self._class_to_label)
        return ([self._class_to_label[c] for c in slots],
                [self._confidences.get(c, 0.0) for c in slots])

    def clear(self, label: str) -> None:
        c = self._slot(label)
        if self._training == c:
            self.stop_training()
        self.classifier.clear_class(c)
        self._release_slot(label)
        self._confidences.pop(c, None)
        if self._top_choice == c:
            self._top_choice = None

        self.listener.got_sample_counts(*self.list_sample_counts())
        self.listener.got_confidences(*self.list_confidences())
        self.listener.got_classification(self.get_classification() or "")

    def save_model(self, label: str) -> str:
        """JSON array of the label's examples, flattened row-major."""
        examples = self.classifier.get_examples(self._slot(label))
        flat = [] if examples is None else examples.reshape(-1).tolist()
        model = json.dumps(flat)
        self.listener.got_saved_model(label, model)
        return model

    def load_model(self, label: str, model: str) -> None:
        """Restore a label from save_model() output; rows are embedding_dim wide."""
        try:
            flat = np.asarray(json.loads(model), dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Cannot parse saved model for {label!r}: {e}") from e
        if flat.ndim != 1 or flat.size % self.embedding_dim:
            raise ValueError(
                f"Saved model for {label!r} has {flat.size} values, "
                f"not a multiple of {self.embedding_dim}"
            )
        matrix = flat.reshape(-1, self.embedding_dim)
        self._load_slot(label, matrix)
        self.listener.got_sample_counts(*self.list_sample_counts())
        self.listener.done_loading_model(label)

    # ------------------------------------------------------------------
    # Per-frame step
    # ------------------------------------------------------------------

    def embed(self, frame: np.ndarray) -> np.ndarray:
        if not self.is_ready:
            raise NotReady("Embedder is not loaded yet")
        with Timer("embed", logger=None) as t:
            vec = self.embedder.embed_bgr(frame)
        self._timings["embed_ms"] = t.last * 1000
        return vec

    def process_embedding(self, embedding: np.ndarray) -> Prediction | None:
        """
        Train the active slot (while below max_examples), then classify if
        any example exists.  Returns the prediction, or None when there is
        nothing to compare against.
        """
        c = self._training
        if c is not None and self.classifier.get_class_example_count(c) < self.max_examples:
            self.classifier.add_example(embedding, c)
            self.listener.got_sample_counts(*self.list_sample_counts())

        counts = self.classifier.class_example_counts
        if not any(counts):
            return None

        with Timer("classify", logger=None) as t:
            pred = self.classifier.classify(embedding)
        self._timings["classify_ms"] = t.last * 1000

        if pred.class_index >= 0:
            self._top_choice = pred.class_index
        for i in range(self.num_classes):
            if counts[i] > 0:
                self._confidences[i] = float(pred.confidences[i])

        self.listener.got_confidences(*self.list_confidences())
        self.listener.got_classification(self.get_classification() or "")
        return pred

    def process_frame(self, frame: np.ndarray) -> Prediction | None:
        return self.process_embedding(self.embed(frame))

    # ------------------------------------------------------------------
    # Bulk persistence
    # ------------------------------------------------------------------

    def export_examples(self, db: ExampleDB) -> int:
        """Write every non-empty label to *db*.  Returns the number of labels written."""
        written = 0
        for label in self.labels:
            examples = self.classifier.get_examples(self._label_to_class[label])
            if examples is None:
                continue
            db.put_class(label, examples)
            written += 1
        return written

    def import_examples(self, db: ExampleDB) -> list[str]:
        """Load every label stored in *db*; raises NoAvailableSlots when they do not fit."""
        loaded = []
        for label, matrix in db.items():
            self._load_slot(label, matrix)
            loaded.append(label)
            self.listener.done_loading_model(label)
        self.listener.got_sample_counts(*self.list_sample_counts())
        return loaded

    # ------------------------------------------------------------------

    def status(self) -> dict:
        labels, counts = self.list_sample_counts()
        _, confidences = self.list_confidences()
        return {
            "ready":          self.is_ready,
            "num_classes":    self.num_classes,
            "k":              self.classifier.k,
            "max_examples":   self.max_examples,
            "training":       self.training_label,
            "labels":         labels,
            "counts":         counts,
            "confidences":    confidences,
            "classification": self.get_classification(),
            "timings":        {k: round(v, 2) for k, v in self._timings.items()},
        }
