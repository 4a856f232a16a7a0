"""
capture_loop.py
---------------
Single-flight camera loop driving a TeachableSession, plus a local OpenCV
window demo.

Each tick reads one frame, awaits its embedding (both in worker threads so
the event loop stays responsive), then trains / classifies on the event-loop
thread and hands the prediction to ``on_result``.  The next frame is only
read once the previous one is fully processed, so training and
classification never overlap.

stop() does not abort a frame in flight: its embedding is allowed to finish
and is then dropped, because the loop's generation no longer matches.

Usage:
    python capture_loop.py
    python capture_loop.py --camera 1 --num-classes 4 --examples data/examples.lmdb

Keys (OpenCV window):
    1..9   hold-to-train toggle for label "1".."9"
    0      stop training
    c      clear the label being trained (or the current classification)
    f      switch to the next camera
    s      save all labels to --examples
    q/Esc  quit
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Callable, Protocol

import cv2
import numpy as np

from knn_classifier import Prediction
from teachable_session import TeachableSession


class FrameSource(Protocol):
    def read(self) -> np.ndarray | None: ...
    def release(self) -> None: ...


# ---------------------------------------------------------------------------
# Camera
# ---------------------------------------------------------------------------

class CameraSource:
    """
    cv2.VideoCapture wrapper.  switch() reopens on another device index
    (front / back camera on devices that expose both).
    """

    def __init__(self, index: int = 0, width: int | None = None):
        self.index = index
        self.width = width
        self._cap: cv2.VideoCapture | None = None
        self._open()

    def _open(self) -> None:
        self._cap = cv2.VideoCapture(self.index)
        if not self._cap.isOpened():
            raise RuntimeError(f"Cannot open camera {self.index}")
        if self.width:
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)

    def read(self) -> np.ndarray | None:
        ok, frame = self._cap.read()
        return frame if ok else None

    def switch(self, index: int | None = None) -> None:
        self.release()
        self.index = self.index + 1 if index is None else index
        try:
            self._open()
        except RuntimeError:
            # Wrap around to the first camera
            self.index = 0
            self._open()

    def release(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None


# ---------------------------------------------------------------------------
# Loop
# ---------------------------------------------------------------------------

ResultCallback = Callable[[np.ndarray, "Prediction | None"], None]


class CaptureLoop:
    """
    Parameters
    ----------
    session   : session to train / classify with
    source    : anything with read() → BGR frame or None
    on_result : called as on_result(frame, prediction) after every processed
                frame; prediction is None while no examples exist
    """

    def __init__(
        self,
        session:   TeachableSession,
        source:    FrameSource,
        on_result: ResultCallback | None = None,
    ):
        self.session   = session
        self.source    = source
        self.on_result = on_result
        self._generation = 0
        self._task: asyncio.Task | None = None
        self.frames_processed = 0
        self.frames_discarded = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start the loop on the running event loop; use restart() while running."""
        if self.running:
            raise RuntimeError("CaptureLoop is already running, use restart()")
        self._task = asyncio.get_running_loop().create_task(self._run(self._generation))
        return self._task

    async def restart(self) -> asyncio.Task:
        """Stop the current task (if any), then start a fresh one."""
        await self.stop()
        return self.start()

    async def stop(self) -> None:
        """Halt the loop; waits for a frame in flight and discards its result."""
        self._generation += 1
        if self._task is not None:
            await self._task
            self._task = None

    async def _run(self, generation: int) -> None:
        while generation == self._generation:
            frame = await asyncio.to_thread(self.source.read)
            if frame is None:
                break
            if not self.session.is_ready:
                await asyncio.sleep(0)
                continue
            embedding = await asyncio.to_thread(self.session.embed, frame)
            if generation != self._generation:
                self.frames_discarded += 1
                break
            pred = self.session.process_embedding(embedding)
            self.frames_processed += 1
            if self.on_result is not None:
                self.on_result(frame, pred)


# ---------------------------------------------------------------------------
# Local window demo
# ---------------------------------------------------------------------------

def _draw_overlay(frame: np.ndarray, session: TeachableSession) -> np.ndarray:
    out = frame.copy()
    labels, counts = session.list_sample_counts()
    _, confs = session.list_confidences()
    top = session.get_classification()
    y = 24
    for label, n, conf in zip(labels, counts, confs):
        colour = (0, 255, 0) if label == top else (220, 220, 220)
        marker = "*" if label == session.training_label else " "
        text = f"{marker}{label}: {n} examples - {conf * 100:.0f}%"
        cv2.putText(out, text, (10, y), cv2.FONT_HERSHEY_SIMPLEX, 0.6,
                    colour, 2, cv2.LINE_AA)
        y += 26
    return out


async def _main(args: argparse.Namespace) -> None:
    from example_db import ExampleDB
    from image_embedder import ImageEmbedder

    embedder = ImageEmbedder(weights=args.weights)
    session  = TeachableSession(embedder, num_classes=args.num_classes,
                                k=args.k, max_examples=args.max_examples)
    source   = CameraSource(args.camera)

    print("Loading ImageEmbedder ...")
    await asyncio.to_thread(embedder.load)

    if args.examples:
        from pathlib import Path
        if Path(args.examples).exists():
            with ExampleDB(args.examples, readonly=True) as db:
                loaded = session.import_examples(db)
            print(f"Loaded {len(loaded)} labels from {args.examples}: {loaded}")
    session.listener.ready()

    quit_event = asyncio.Event()

    def on_result(frame: np.ndarray, pred: Prediction | None) -> None:
        cv2.imshow("Teachable machine", _draw_overlay(frame, session))
        key = cv2.waitKey(1) & 0xFF
        if key in (ord("q"), 27):
            quit_event.set()
        elif ord("1") <= key <= ord("9"):
            label = chr(key)
            if session.training_label == label:
                session.stop_training()
            else:
                session.start_training(label)
        elif key == ord("0"):
            session.stop_training()
        elif key == ord("c"):
            label = session.training_label or session.get_classification()
            if label:
                session.clear(label)
        elif key == ord("f"):
            source.switch()
        elif key == ord("s") and args.examples:
            with ExampleDB(args.examples) as db:
                n = session.export_examples(db)
            print(f"Saved {n} labels to {args.examples}")

    loop = CaptureLoop(session, source, on_result=on_result)
    task   = loop.start()
    waiter = asyncio.create_task(quit_event.wait())
    await asyncio.wait([task, waiter], return_when=asyncio.FIRST_COMPLETED)
    waiter.cancel()
    await loop.stop()
    source.release()
    cv2.destroyAllWindows()
    print(f"Processed {loop.frames_processed} frames.")


if __name__ == "__main__":
    from knn_classifier import NUM_CLASSES, TOPK
    from teachable_session import MAX_EXAMPLES

    parser = argparse.ArgumentParser(description="Teachable machine on a local camera.")
    parser.add_argument("--camera",       type=int, default=0)
    parser.add_argument("--num-classes",  type=int, default=NUM_CLASSES)
    parser.add_argument("--k",            type=int, default=TOPK)
    parser.add_argument("--max-examples", type=int, default=MAX_EXAMPLES)
    parser.add_argument("--weights",      default=None,
                        help="Optional state_dict for the embedding network")
    parser.add_argument("--examples",     default=None,
                        help="ExampleDB (.lmdb) to load on start and save to with 's'")
    asyncio.run(_main(parser.parse_args()))
