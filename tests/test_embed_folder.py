"""Tests for the folder-per-label bootstrap helpers."""

import cv2
import numpy as np
import pytest

from conftest import FakeEmbedder
from embed_folder import embed_images, find_labelled_images


def _write(path, bgr):
    path.parent.mkdir(parents=True, exist_ok=True)
    assert cv2.imwrite(str(path), bgr)


@pytest.fixture
def tree(tmp_path):
    red  = np.zeros((32, 32, 3), dtype=np.uint8); red[..., 2] = 255
    blue = np.zeros((32, 32, 3), dtype=np.uint8); blue[..., 0] = 255
    for i in range(3):
        _write(tmp_path / "red" / f"{i}.png", red)
    _write(tmp_path / "blue" / "0.png", blue)
    (tmp_path / "blue" / "notes.txt").write_text("ignored")
    (tmp_path / "empty").mkdir()
    (tmp_path / "blue" / "broken.jpg").write_bytes(b"not an image")
    return tmp_path


class TestFindLabelledImages:

    def test_groups_by_directory(self, tree):
        groups = find_labelled_images(tree)
        assert list(groups) == ["blue", "red"]
        assert [p.name for p in groups["red"]] == ["0.png", "1.png", "2.png"]
        assert "notes.txt" not in [p.name for p in groups["blue"]]

    def test_max_per_label(self, tree):
        groups = find_labelled_images(tree, max_per_label=2)
        assert len(groups["red"]) == 2

    def test_missing_source(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            find_labelled_images(tmp_path / "nope")


class TestEmbedImages:

    def test_embeds_in_batches_and_skips_unreadable(self, tree):
        groups = find_labelled_images(tree)
        out = embed_images(FakeEmbedder(), groups["blue"], batch_size=2, workers=2)
        assert out.shape == (1, 3)
        np.testing.assert_allclose(out[0], [255.0, 0.0, 0.0])

        out = embed_images(FakeEmbedder(), groups["red"], batch_size=2, workers=2)
        assert out.shape == (3, 3)
