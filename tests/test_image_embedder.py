"""Tests for ImageEmbedder with a tiny stand-in backbone (no weight download)."""

import numpy as np
import pytest
import torch.nn as nn

from errors import NotReady
from image_embedder import ImageEmbedder


def _tiny_embedder():
    embedder = ImageEmbedder(device="cpu")
    embedder.backbone = nn.Sequential(nn.AdaptiveAvgPool2d(1), nn.Flatten())
    return embedder


class TestImageEmbedder:

    def test_embed_before_load_raises(self):
        embedder = ImageEmbedder(device="cpu")
        assert not embedder.is_loaded()
        with pytest.raises(NotReady):
            embedder.embed_bgr(np.zeros((8, 8, 3), dtype=np.uint8))

    def test_batch_runs_through_module_call(self):
        embedder = _tiny_embedder()
        calls = []
        embedder.register_forward_hook(lambda mod, inp, out: calls.append(out.shape))
        frames = [np.zeros((32, 48, 3), dtype=np.uint8),
                  np.full((224, 224, 3), 255, dtype=np.uint8)]
        vecs = embedder.embed_batch_bgr(frames)
        assert calls == [(2, 3)]
        assert vecs.shape == (2, 3)
        assert vecs.dtype == np.float32

    def test_single_embedding_matches_batch_row(self):
        embedder = _tiny_embedder()
        frame = np.random.default_rng(0).integers(0, 256, (60, 80, 3), dtype=np.uint8)
        single = embedder.embed_bgr(frame)
        batch = embedder.embed_batch_bgr([frame, frame])
        assert single.shape == (3,)
        np.testing.assert_allclose(single, batch[0], rtol=1e-5)
