from __future__ import annotations

import gzip
import time
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import requests

from ..dataset import write_ctf
from ..errors import DataFormatError

_MIRROR = "https://ossci-datasets.s3.amazonaws.com/mnist"

FILES = {
    "train": ("train-images-idx3-ubyte.gz", "train-labels-idx1-ubyte.gz"),
    "test": ("t10k-images-idx3-ubyte.gz", "t10k-labels-idx1-ubyte.gz"),
}


@dataclass(frozen=True)
class MnistFetchConfig:
    cache_dir: Path
    base_url: str = _MIRROR
    sleep_s: float = 0.0
    timeout_s: float = 60.0


def default_cache_dir() -> Path:
    return Path("datasets") / "mnist_cache"


def _ensure_dir(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)


def fetch_file(name: str, cfg: MnistFetchConfig, *, force: bool = False) -> Path:
    """Download and cache one gzipped IDX file; returns the cached path."""

    _ensure_dir(cfg.cache_dir)
    out = cfg.cache_dir / name
    if out.exists() and not force:
        return out

    r = requests.get(f"{cfg.base_url}/{name}", timeout=cfg.timeout_s)
    r.raise_for_status()
    tmp = out.with_suffix(out.suffix + ".part")
    tmp.write_bytes(r.content)
    tmp.replace(out)
    if cfg.sleep_s > 0:
        time.sleep(cfg.sleep_s)
    return out


def read_idx(path: str | Path) -> np.ndarray:
    """Parse an IDX file (optionally gzipped) of unsigned bytes."""

    path = Path(path)
    opener = gzip.open if path.suffix == ".gz" else open
    with opener(path, "rb") as f:
        raw = f.read()

    if len(raw) < 4 or raw[0] != 0 or raw[1] != 0:
        raise DataFormatError(f"{path}: not an IDX file")
    if raw[2] != 0x08:
        raise DataFormatError(f"{path}: unsupported IDX element type 0x{raw[2]:02x} (expected unsigned byte)")
    ndim = raw[3]
    header = 4 + 4 * ndim
    dims = tuple(int.from_bytes(raw[4 + 4 * i : 8 + 4 * i], "big") for i in range(ndim))
    data = np.frombuffer(raw, dtype=np.uint8, offset=header)
    if data.size != int(np.prod(dims)):
        raise DataFormatError(f"{path}: header says {dims}, payload has {data.size} values")
    return data.reshape(dims)


def load_split(split: str, cfg: MnistFetchConfig, *, force: bool = False) -> dict[str, np.ndarray]:
    if split not in FILES:
        raise ValueError(f"Unknown MNIST split: {split!r} (expected one of {sorted(FILES)})")
    images_name, labels_name = FILES[split]
    images = read_idx(fetch_file(images_name, cfg, force=force))
    labels = read_idx(fetch_file(labels_name, cfg, force=force))
    if len(images) != len(labels):
        raise DataFormatError(f"MNIST {split}: {len(images)} images but {len(labels)} labels")

    features = images.reshape(len(images), -1).astype(np.float32)
    one_hot = np.zeros((len(labels), 10), dtype=np.float32)
    one_hot[np.arange(len(labels)), labels.astype(np.int64)] = 1.0
    return {"features": features, "labels": one_hot}


def export_ctf(out: str | Path, split: str, cfg: MnistFetchConfig, *, force: bool = False) -> int:
    """Write MNIST ``split`` as a text-minibatch file: 784 raw pixels + 10-way one-hot labels."""
    return write_ctf(out, load_split(split, cfg, force=force))
