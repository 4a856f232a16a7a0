"""Tests for LMDB example persistence."""

import numpy as np
import pytest

from example_db import ExampleDB


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "examples.lmdb")


class TestExampleDB:

    def test_put_and_get(self, db_path):
        m = np.arange(12, dtype=np.float32).reshape(3, 4)
        with ExampleDB(db_path) as db:
            db.put_class("a", m)
            assert db.labels() == ["a"]
            assert db.dim == 4
            np.testing.assert_array_equal(db.get_class("a"), m)

    def test_labels_keep_insertion_order(self, db_path):
        with ExampleDB(db_path) as db:
            db.put_class("b", np.zeros((1, 2)))
            db.put_class("a", np.zeros((2, 2)))
            db.put_class("b", np.ones((3, 2)))     # overwrite keeps position
            assert db.labels() == ["b", "a"]
            assert db.get_class("b").shape == (3, 2)
            assert "a" in db
            assert len(db) == 2

    def test_reopen_readonly(self, db_path):
        with ExampleDB(db_path) as db:
            db.put_class("x", np.ones((2, 3)))
        with ExampleDB(db_path, readonly=True) as db:
            assert dict((k, v.shape) for k, v in db.items()) == {"x": (2, 3)}
            with pytest.raises(PermissionError):
                db.put_class("y", np.ones((1, 3)))

    def test_width_mismatch(self, db_path):
        with ExampleDB(db_path) as db:
            db.put_class("a", np.zeros((1, 3)))
            with pytest.raises(ValueError):
                db.put_class("b", np.zeros((1, 4)))
            with pytest.raises(ValueError):
                db.put_class("c", np.zeros(3))

    def test_remove_class(self, db_path):
        with ExampleDB(db_path) as db:
            db.put_class("a", np.zeros((1, 2)))
            db.put_class("b", np.zeros((1, 2)))
            db.remove_class("a")
            assert db.labels() == ["b"]
            with pytest.raises(KeyError):
                db.get_class("a")
            with pytest.raises(KeyError):
                db.remove_class("a")

    def test_map_grows_when_full(self, db_path):
        big = np.ones((600, 1000), dtype=np.float32)   # ~2.4 MB
        with ExampleDB(db_path, initial_size=1024 ** 2, grow_size=2 * 1024 ** 2) as db:
            db.put_class("big", big)
            assert db.get_class("big").shape == (600, 1000)
