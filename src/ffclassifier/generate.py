from __future__ import annotations

import numpy as np


def _rng(seed: int | None) -> np.random.Generator:
    return np.random.default_rng(seed)


def _one_hot(y: np.ndarray, num_classes: int) -> np.ndarray:
    out = np.zeros((len(y), num_classes), dtype=np.float32)
    out[np.arange(len(y)), y] = 1.0
    return out


def make_simple_data(n: int = 10000, *, seed: int | None = 0, spread: float = 0.6) -> dict[str, np.ndarray]:
    """Two Gaussian blobs in 2-D, one per class, with one-hot labels.

    Features are deliberately off-centre and unevenly scaled so that per-dim
    mean/variance normalization has something to do.
    """

    rng = _rng(seed)
    y = rng.integers(0, 2, size=(n,))
    centres = np.array([[1.0, 4.0], [3.0, 8.0]], dtype=np.float32)
    scale = np.array([1.0, 2.0], dtype=np.float32)
    x = centres[y] + rng.normal(0.0, spread, size=(n, 2)) * scale
    return {"features": x.astype(np.float32), "labels": _one_hot(y, 2)}


def make_digits_like(
    n: int = 60000,
    *,
    seed: int | None = 0,
    input_dim: int = 784,
    num_classes: int = 10,
    noise: float = 40.0,
) -> dict[str, np.ndarray]:
    """MNIST-shaped synthetic data: pixels in [0, 255], one prototype per class plus noise."""

    rng = _rng(seed)
    prototypes = (rng.random((num_classes, input_dim)) < 0.2).astype(np.float32) * 255.0
    y = rng.integers(0, num_classes, size=(n,))
    x = prototypes[y] + rng.normal(0.0, noise, size=(n, input_dim))
    x = np.clip(np.rint(x), 0.0, 255.0)
    return {"features": x.astype(np.float32), "labels": _one_hot(y, num_classes)}
