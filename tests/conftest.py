import numpy as np
import pytest

from teachable_session import SessionListener, TeachableSession


class FakeEmbedder:
    """
    Stands in for ImageEmbedder.  1-D inputs are returned as the embedding;
    images are reduced to their mean B, G, R values (a 3-long embedding).
    """

    def __init__(self, loaded=True):
        self.loaded = loaded
        self.calls = 0

    def load(self):
        self.loaded = True
        return self

    def is_loaded(self):
        return self.loaded

    def embed_bgr(self, bgr):
        self.calls += 1
        arr = np.asarray(bgr, dtype=np.float32)
        if arr.ndim == 3:
            return arr.reshape(-1, 3).mean(axis=0)
        return arr.reshape(-1)

    def embed_batch_bgr(self, bgrs):
        return np.stack([self.embed_bgr(b) for b in bgrs])


class RecordingListener(SessionListener):
    def __init__(self):
        self.events = []

    def got_sample_counts(self, labels, counts):
        self.events.append(("counts", list(labels), list(counts)))

    def got_confidences(self, labels, confidences):
        self.events.append(("confidences", list(labels), list(confidences)))

    def got_classification(self, label):
        self.events.append(("classification", label))

    def got_saved_model(self, label, model):
        self.events.append(("saved", label))

    def done_loading_model(self, label):
        self.events.append(("loaded", label))

    def last(self, kind):
        for e in reversed(self.events):
            if e[0] == kind:
                return e
        return None


RED   = np.array([0.0, 0.0, 255.0], dtype=np.float32)
GREEN = np.array([0.0, 255.0, 0.0], dtype=np.float32)
BLUE  = np.array([255.0, 0.0, 0.0], dtype=np.float32)


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def session(embedder, listener):
    return TeachableSession(embedder, num_classes=3, k=3, max_examples=5,
                            listener=listener, embedding_dim=3)
