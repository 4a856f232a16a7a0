"""
webcam_demo/app.py
Flask server for the browser teachable machine.  The page captures webcam
frames and posts them as JPEG; training, k-NN classification and the
label bookkeeping run here in a TeachableSession.

The server is single-threaded on purpose: one frame (or one UI call) is
processed at a time, so training and classification never overlap.

Usage:
    python webcam_demo/app.py
    python webcam_demo/app.py --num-classes 4 --k 10 --examples data/examples.lmdb
    # then open http://localhost:5000 in your browser

API
---
GET  /status                → session.status()
POST /frame                 → JPEG body; trains / classifies; returns status
POST /train/<label>         → start training <label>
POST /stop                  → stop training
POST /clear/<label>         → drop <label> and its examples
GET  /count/<label>         → { "label", "count" }
GET  /confidence/<label>    → { "label", "confidence" }
GET  /classification        → { "label" }
GET  /save/<label>          → { "label", "model": "<JSON float array>" }
POST /load/<label>          → body: JSON float array from /save
POST /examples/save         → write every label to --examples
"""

import sys
from pathlib import Path

# Allow importing teachable_session / image_embedder from the parent directory
REPO = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(REPO))

import argparse
import cv2
import numpy as np
from flask import Flask, request, jsonify, send_from_directory

from errors import LabelNotFound, NoAvailableSlots, NotReady, TeachableError
from example_db import ExampleDB
from knn_classifier import NUM_CLASSES, TOPK
from teachable_session import MAX_EXAMPLES, TeachableSession

STATIC = Path(__file__).parent / "static"

_STATUS_FOR = {
    LabelNotFound:    404,
    NoAvailableSlots: 409,
    NotReady:         503,
}


def create_app(session: TeachableSession, examples_path: str | None = None) -> Flask:
    app = Flask(__name__, static_folder=str(STATIC))
    app.config["SESSION"] = session
    app.config["EXAMPLES_PATH"] = examples_path

    # -- Errors ----------------------------------------------------------------

    @app.errorhandler(TeachableError)
    def teachable_error(e: TeachableError):
        status = next((s for cls, s in _STATUS_FOR.items() if isinstance(e, cls)), 400)
        return jsonify({
            "error":   type(e).__name__,
            "code":    e.code,
            "label":   e.label,
            "message": str(e),
        }), status

    @app.errorhandler(ValueError)
    def value_error(e: ValueError):
        return jsonify({"error": "ValueError", "code": None, "message": str(e)}), 400

    # -- Pages -----------------------------------------------------------------

    @app.get("/")
    def index():
        return send_from_directory(str(STATIC), "index.html")

    @app.get("/status")
    def status():
        return jsonify(session.status())

    # -- Frames ----------------------------------------------------------------

    @app.post("/frame")
    def frame():
        """
        Accepts a JPEG in the request body.
        Returns the session status after training / classifying the frame.
        """
        data = request.get_data()
        arr  = np.frombuffer(data, dtype=np.uint8)
        img  = cv2.imdecode(arr, cv2.IMREAD_COLOR) if arr.size else None
        if img is None:
            return jsonify({"error": "could not decode image"}), 400
        session.process_frame(img)
        return jsonify(session.status())

    # -- Training --------------------------------------------------------------

    @app.post("/train/<label>")
    def train(label: str):
        session.start_training(label)
        return jsonify(session.status())

    @app.post("/stop")
    def stop():
        session.stop_training()
        return jsonify(session.status())

    @app.post("/clear/<label>")
    def clear(label: str):
        session.clear(label)
        return jsonify(session.status())

    # -- Getters ---------------------------------------------------------------

    @app.get("/count/<label>")
    def count(label: str):
        return jsonify(label=label, count=session.get_sample_count(label))

    @app.get("/confidence/<label>")
    def confidence(label: str):
        return jsonify(label=label, confidence=session.get_confidence(label))

    @app.get("/classification")
    def classification():
        return jsonify(label=session.get_classification())

    # -- Save / load -----------------------------------------------------------

    @app.get("/save/<label>")
    def save(label: str):
        return jsonify(label=label, model=session.save_model(label))

    @app.post("/load/<label>")
    def load(label: str):
        session.load_model(label, request.get_data(as_text=True))
        return jsonify(label=label, count=session.get_sample_count(label))

    @app.post("/examples/save")
    def save_examples():
        path = app.config["EXAMPLES_PATH"]
        if not path:
            return jsonify({"error": "server started without --examples"}), 400
        with ExampleDB(path) as db:
            n = session.export_examples(db)
        return jsonify(path=path, labels=n)

    return app


def main():
    p = argparse.ArgumentParser()
    p.add_argument("--num-classes",  type=int, default=NUM_CLASSES)
    p.add_argument("--k",            type=int, default=TOPK)
    p.add_argument("--max-examples", type=int, default=MAX_EXAMPLES)
    p.add_argument("--weights",      default=None, help="Optional state_dict for the embedding network")
    p.add_argument("--examples",     default=None, help="ExampleDB (.lmdb) to load on start / save to")
    p.add_argument("--port",         type=int, default=5000)
    args = p.parse_args()

    from image_embedder import ImageEmbedder

    print("Loading ImageEmbedder ...")
    embedder = ImageEmbedder(weights=args.weights).load()
    session  = TeachableSession(embedder, num_classes=args.num_classes,
                                k=args.k, max_examples=args.max_examples)

    if args.examples and Path(args.examples).exists():
        with ExampleDB(args.examples, readonly=True) as db:
            loaded = session.import_examples(db)
        print(f"Loaded {len(loaded)} labels from {args.examples}: {loaded}")
    session.listener.ready()

    app = create_app(session, examples_path=args.examples)
    print(f"Open http://localhost:{args.port}")
    app.run(host="0.0.0.0", port=args.port, debug=False, threaded=False)


if __name__ == "__main__":
    main()
