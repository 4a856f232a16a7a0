"""
embed_folder.py
---------------
Bootstraps an example database from images on disk instead of the webcam:

  data/examples/
      thumbs_up/  *.jpg
      thumbs_down/*.jpg

Every sub-directory becomes a label.  Images are decoded in parallel,
embedded in batches, normalised exactly like live training examples and
written to an ExampleDB that capture_loop.py / webcam_demo/app.py load with
--examples.

Usage:
    python embed_folder.py --src data/examples --out data/examples.lmdb
    python embed_folder.py --src data/examples --out data/examples.lmdb --max-per-label 50 --batch 64
"""

from __future__ import annotations

import argparse
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import cv2
import numpy as np
from tqdm import tqdm

from example_db import ExampleDB
from knn_classifier import KNNImageClassifier
from teachable_session import MAX_EXAMPLES

IMG_EXTS    = {".jpg", ".jpeg", ".png", ".webp", ".bmp"}
EMBED_BATCH = 32


def find_labelled_images(src: Path, max_per_label: int | None = None) -> dict[str, list[Path]]:
    """Map each sub-directory name of *src* to its sorted image paths."""
    if not src.is_dir():
        raise FileNotFoundError(f"Source directory not found: {src}")
    out: dict[str, list[Path]] = {}
    for d in sorted(p for p in src.iterdir() if p.is_dir()):
        paths = sorted(p for p in d.iterdir() if p.suffix.lower() in IMG_EXTS)
        if max_per_label:
            paths = paths[:max_per_label]
        if paths:
            out[d.name] = paths
    return out


def embed_images(embedder, paths: list[Path], batch_size: int = EMBED_BATCH,
                 workers: int = 8, desc: str | None = None) -> np.ndarray:
    """
    Decode and embed *paths*; unreadable files are skipped.

    Returns
    -------
    np.ndarray float32, shape (n_readable, dim), raw (un-normalised) embeddings.
    """
    rows: list[np.ndarray] = []
    buf:  list[np.ndarray] = []

    def _flush():
        rows.append(embedder.embed_batch_bgr(buf))
        buf.clear()

    with ThreadPoolExecutor(max_workers=workers) as ex:
        for bgr in tqdm(ex.map(lambda p: cv2.imread(str(p)), paths),
                        total=len(paths), desc=desc, unit="img", leave=False):
            if bgr is None:
                continue
            buf.append(bgr)
            if len(buf) == batch_size:
                _flush()
        if buf:
            _flush()

    if not rows:
        return np.zeros((0, 0), dtype=np.float32)
    return np.vstack(rows).astype(np.float32)


def main():
    parser = argparse.ArgumentParser(description="Embed a folder-per-label image tree into an ExampleDB.")
    parser.add_argument("--src",           required=True, help="Directory with one sub-directory per label")
    parser.add_argument("--out",           required=True, help="Output ExampleDB (.lmdb)")
    parser.add_argument("--max-per-label", type=int, default=MAX_EXAMPLES)
    parser.add_argument("--batch",         type=int, default=EMBED_BATCH)
    parser.add_argument("--workers",       type=int, default=8, help="Parallel decode threads")
    parser.add_argument("--weights",       default=None,
                        help="Optional state_dict for the embedding network")
    args = parser.parse_args()

    from image_embedder import ImageEmbedder

    groups = find_labelled_images(Path(args.src), args.max_per_label)
    print(f"Found {len(groups)} labels in {args.src}: "
          + ", ".join(f"{k} ({len(v)})" for k, v in groups.items()))
    if not groups:
        return

    embedder = ImageEmbedder(weights=args.weights).load()
    knn = KNNImageClassifier(num_classes=1)   # only used for its normalisation

    with ExampleDB(args.out) as db:
        for label, paths in tqdm(groups.items(), unit="label"):
            raw = embed_images(embedder, paths, args.batch, args.workers, desc=label)
            if not len(raw):
                print(f"  {label}: no readable images, skipped")
                continue
            db.put_class(label, np.stack([knn.normalize(v) for v in raw]))

        print(f"Done: {len(db)} labels written to {args.out}")


if __name__ == "__main__":
    main()
