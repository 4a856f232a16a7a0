"""
image_embedder.py

Image embeddings for the teachable machine using a pretrained MobileNet.

Takes a BGR image (OpenCV, any size) and returns a 1000-float vector by:
  1. Stretching the frame to 224x224 and applying ImageNet normalisation
  2. Running it through timm's ImageNet-pretrained MobileNetV2
  3. Keeping the raw 1000-way classifier logits as the embedding

The logits of an ImageNet head are a compact, well-spread description of
"what is in the picture", which is all k-NN needs; no fine-tuning is done.
"""

from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np
import timm
import torch
import torch.nn as nn

from errors import NotReady


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMBEDDING_DIM = 1000             # ImageNet-1k head
IMAGE_SIZE    = 224              # native MobileNet pre-training resolution
MODEL_NAME    = "mobilenetv2_100"

# ImageNet normalisation constants (float32, channel-first friendly)
_MEAN = np.array([0.485, 0.456, 0.406], dtype=np.float32)
_STD  = np.array([0.229, 0.224, 0.225], dtype=np.float32)


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------

class ImageEmbedder(nn.Module):
    """
    MobileNet backbone that maps a BGR frame to a 1000-float embedding.

    Single image
    ------------
    embedder = ImageEmbedder()
    embedder.load()                        # build + warm up
    vec = embedder.embed_bgr(bgr_array)    # np.ndarray float32 (1000,)

    Batch (recommended for offline bootstrapping)
    ---------------------------------------------
    vecs = embedder.embed_batch_bgr(list_of_bgr)  # np.ndarray float32 (B, 1000)

    Construction is cheap; the network is created (and weights downloaded)
    by load().  Embedding before load() raises NotReady.
    """

    def __init__(
        self,
        model_name: str = MODEL_NAME,
        pretrained: bool = True,
        weights: str | None = None,
        device: str | None = None,
    ):
        super().__init__()

        if device is None:
            device = "cuda" if torch.cuda.is_available() else "cpu"
        self.device     = torch.device(device)
        self.model_name = model_name
        self.pretrained = pretrained
        self.weights    = weights
        self.backbone: nn.Module | None = None

    def load(self) -> "ImageEmbedder":
        """Create the network, load optional weights and run one warm-up pass."""
        if self.backbone is not None:
            return self

        backbone = timm.create_model(self.model_name, pretrained=self.pretrained)

        if self.weights:
            path = Path(self.weights)
            if not path.exists():
                raise FileNotFoundError(f"Weights not found: {path}")
            state = torch.load(path, map_location=self.device, weights_only=True)
            backbone.load_state_dict(state)
            print(f"[ImageEmbedder] Loaded weights from {path}")

        backbone.eval()
        backbone.to(device=self.device, dtype=torch.float32)
        self.backbone = backbone

        # First forward pass allocates kernels / workspaces
        with torch.no_grad():
            zeros = torch.zeros(1, 3, IMAGE_SIZE, IMAGE_SIZE, device=self.device)
            self.backbone(zeros)
        print(f"[ImageEmbedder] {self.model_name} ready on {self.device}")
        return self

    def is_loaded(self) -> bool:
        return self.backbone is not None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _bgr_to_tensor(self, bgrs: list[np.ndarray]) -> torch.Tensor:
        """
        Convert a list of BGR uint8 arrays (any size, stretched to
        IMAGE_SIZE×IMAGE_SIZE) to a normalised (B, 3, H, W) float32 tensor
        on self.device.
        """
        frames = []
        for bgr in bgrs:
            if bgr.shape[0] != IMAGE_SIZE or bgr.shape[1] != IMAGE_SIZE:
                bgr = cv2.resize(bgr, (IMAGE_SIZE, IMAGE_SIZE),
                                 interpolation=cv2.INTER_LINEAR)
            rgb = cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB).astype(np.float32) / 255.0
            rgb = (rgb - _MEAN) / _STD
            frames.append(rgb.transpose(2, 0, 1))   # (3, H, W)
        batch = np.stack(frames, axis=0)            # (B, 3, H, W)
        return torch.from_numpy(batch).to(device=self.device, dtype=torch.float32)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @torch.no_grad()
    def embed_batch_bgr(self, bgrs: list[np.ndarray]) -> np.ndarray:
        """
        Embed a batch of BGR images in one forward pass.

        Returns
        -------
        np.ndarray of dtype float32, shape (B, EMBEDDING_DIM).
        """
        if self.backbone is None:
            raise NotReady("ImageEmbedder.load() has not been called")
        x = self._bgr_to_tensor(bgrs)
        return self(x).float().cpu().numpy()

    def embed_bgr(self, bgr: np.ndarray) -> np.ndarray:
        """Embed a single BGR image. Returns float32 array of shape (EMBEDDING_DIM,)."""
        return self.embed_batch_bgr([bgr])[0]

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        if self.backbone is None:
            raise NotReady("ImageEmbedder.load() has not been called")
        return self.backbone(x)


# ---------------------------------------------------------------------------
# Quick sanity-check
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import time

    print(f"Loading {MODEL_NAME} …")
    embedder = ImageEmbedder().load()
    print(f"  device : {embedder.device}")
    print(f"  params : {sum(p.numel() for p in embedder.backbone.parameters()):,}")

    dummy  = np.random.randint(0, 256, (480, 640, 3), dtype=np.uint8)
    dummy2 = np.random.randint(0, 256, (480, 640, 3), dtype=np.uint8)

    t0 = time.perf_counter()
    vec = embedder.embed_bgr(dummy)
    elapsed = time.perf_counter() - t0
    print(f"\nSingle embedding:")
    print(f"  shape    : {vec.shape}  dtype={vec.dtype}")
    print(f"  latency  : {elapsed*1000:.1f} ms")

    batch = [np.random.randint(0, 256, (IMAGE_SIZE, IMAGE_SIZE, 3), dtype=np.uint8)
             for _ in range(32)]
    t0 = time.perf_counter()
    vecs = embedder.embed_batch_bgr(batch)
    elapsed = time.perf_counter() - t0
    print(f"\nBatch-32 embedding:")
    print(f"  shape    : {vecs.shape}")
    print(f"  latency  : {elapsed*1000:.1f} ms  ({elapsed/32*1000:.2f} ms/img)")

    def cos(a, b):
        return float(a @ b / (np.linalg.norm(a) * np.linalg.norm(b)))

    print(f"\nCosine (same image)   : {cos(vec, embedder.embed_bgr(dummy)):.4f}")
    print(f"Cosine (random image) : {cos(vec, embedder.embed_bgr(dummy2)):.4f}")
