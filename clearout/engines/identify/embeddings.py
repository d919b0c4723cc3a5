"""
Image embedding capability for visual-neighbor lookup.

`HashEmbedder` is a deterministic stand-in for a real image encoder: it
folds the raw bytes into `dim` buckets and L2-normalizes the result, so
the same bytes always give the same vector. A real encoder can replace it
by implementing `Embedder.embed`.
"""

from abc import ABC, abstractmethod
from typing import Sequence

import numpy as np


class Embedder(ABC):
    """Maps raw image bytes to a fixed-dimension vector."""

    dim: int

    @abstractmethod
    def embed(self, data: bytes) -> np.ndarray:
        ...

    def embed_mean(self, images: Sequence[bytes]) -> np.ndarray:
        """Mean embedding of a set of images (zeros for an empty set)."""
        if not images:
            return np.zeros(self.dim, dtype=np.float64)
        return np.mean([self.embed(data) for data in images], axis=0)


class HashEmbedder(Embedder):
    """Byte-position hash: byte i adds byte/255 to bucket i mod dim."""

    def __init__(self, dim: int = 512):
        if dim <= 0:
            raise ValueError("dim must be positive")
        self.dim = dim

    def embed(self, data: bytes) -> np.ndarray:
        buf = np.frombuffer(bytes(data), dtype=np.uint8).astype(np.float64) / 255.0
        pad = (-len(buf)) % self.dim
        if pad:
            buf = np.concatenate([buf, np.zeros(pad, dtype=np.float64)])
        vec = buf.reshape(-1, self.dim).sum(axis=0) if len(buf) else np.zeros(self.dim)
        norm = float(np.linalg.norm(vec))
        if norm == 0.0:
            return vec
        return vec / norm
