"""Tests for the Flask webcam demo routes."""

import json

import cv2
import numpy as np
import pytest

from webcam_demo.app import create_app


def _jpeg(bgr_colour):
    img = np.zeros((48, 64, 3), dtype=np.uint8)
    img[:] = bgr_colour
    ok, buf = cv2.imencode(".jpg", img)
    assert ok
    return buf.tobytes()


RED_JPEG  = _jpeg((0, 0, 255))
BLUE_JPEG = _jpeg((255, 0, 0))


@pytest.fixture
def client(session, tmp_path):
    app = create_app(session, examples_path=str(tmp_path / "examples.lmdb"))
    app.config["TESTING"] = True
    return app.test_client()


def _train(client, label, jpeg, n=2):
    assert client.post(f"/train/{label}").status_code == 200
    for _ in range(n):
        assert client.post("/frame", data=jpeg).status_code == 200
    assert client.post("/stop").status_code == 200


class TestWebcamApp:

    def test_status(self, client):
        body = client.get("/status").get_json()
        assert body["ready"] is True
        assert body["labels"] == []
        assert body["classification"] is None

    def test_train_and_classify(self, client):
        _train(client, "red", RED_JPEG)
        _train(client, "blue", BLUE_JPEG)
        body = client.post("/frame", data=RED_JPEG).get_json()
        assert body["classification"] == "red"
        assert body["counts"] == [2, 2]
        assert client.get("/classification").get_json() == {"label": "red"}
        assert client.get("/count/blue").get_json() == {"label": "blue", "count": 2}
        conf = client.get("/confidence/red").get_json()["confidence"]
        assert conf == pytest.approx(2 / 3)

    def test_bad_frame(self, client):
        assert client.post("/frame", data=b"").status_code == 400
        assert client.post("/frame", data=b"garbage").status_code == 400

    def test_unknown_label(self, client):
        r = client.get("/count/nope")
        assert r.status_code == 404
        body = r.get_json()
        assert body["error"] == "LabelNotFound"
        assert body["code"] == -1
        assert client.post("/clear/nope").status_code == 404

    def test_no_available_slots(self, client):
        for label in "abc":
            client.post(f"/train/{label}")
        r = client.post("/train/d")
        assert r.status_code == 409
        assert r.get_json()["code"] == -2

    def test_clear(self, client):
        _train(client, "red", RED_JPEG)
        body = client.post("/clear/red").get_json()
        assert body["labels"] == []
        assert body["classification"] is None

    def test_save_and_load(self, client):
        _train(client, "red", RED_JPEG, n=3)
        model = client.get("/save/red").get_json()["model"]
        assert len(json.loads(model)) == 3 * 3
        client.post("/clear/red")
        r = client.post("/load/again", data=model)
        assert r.get_json() == {"label": "again", "count": 3}
        assert client.post("/load/bad", data="[1, 2]").status_code == 400

    def test_save_examples_to_db(self, client, tmp_path):
        _train(client, "red", RED_JPEG)
        body = client.post("/examples/save").get_json()
        assert body["labels"] == 1
        assert (tmp_path / "examples.lmdb").exists()
