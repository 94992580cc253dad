from __future__ import annotations

import gzip
import struct

import numpy as np
import pytest

from ffclassifier.dataset import read_ctf
from ffclassifier.errors import DataFormatError
from ffclassifier.realdata.mnist import FILES, MnistFetchConfig, export_ctf, read_idx


def _write_idx(path, arr: np.ndarray) -> None:
    header = bytes([0, 0, 0x08, arr.ndim]) + b"".join(struct.pack(">I", d) for d in arr.shape)
    with gzip.open(path, "wb") as f:
        f.write(header + arr.astype(np.uint8).tobytes())


@pytest.fixture
def cached_train_split(tmp_path):
    rng = np.random.default_rng(0)
    images = rng.integers(0, 256, size=(5, 28, 28))
    labels = np.array([3, 0, 9, 1, 3])
    images_name, labels_name = FILES["train"]
    _write_idx(tmp_path / images_name, images)
    _write_idx(tmp_path / labels_name, labels)
    return MnistFetchConfig(cache_dir=tmp_path, base_url="http://invalid.localhost"), images, labels


def test_read_idx(cached_train_split, tmp_path):
    _, images, _ = cached_train_split
    arr = read_idx(tmp_path / FILES["train"][0])
    assert arr.shape == (5, 28, 28)
    np.testing.assert_array_equal(arr, images)


def test_read_idx_rejects_garbage(tmp_path):
    p = tmp_path / "junk.gz"
    with gzip.open(p, "wb") as f:
        f.write(b"\x01\x02\x03\x04")
    with pytest.raises(DataFormatError):
        read_idx(p)


def test_export_uses_cache_and_writes_ctf(cached_train_split, tmp_path):
    cfg, images, labels = cached_train_split
    out = tmp_path / "Train-28x28_cntk_text.txt"
    assert export_ctf(out, "train", cfg) == 5

    cols = read_ctf(out, {"features": 784, "labels": 10})
    np.testing.assert_array_equal(cols["features"], images.reshape(5, -1).astype(np.float32))
    assert cols["labels"].argmax(axis=1).tolist() == labels.tolist()


def test_unknown_split(tmp_path):
    with pytest.raises(ValueError):
        export_ctf(tmp_path / "x.txt", "validation", MnistFetchConfig(cache_dir=tmp_path))
