from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from ffclassifier.context import ExecutionContext
from ffclassifier.dataset import write_ctf
from ffclassifier.generate import make_simple_data
from ffclassifier.nn.source import TextMinibatchSource


@pytest.fixture
def ctx() -> ExecutionContext:
    return ExecutionContext.cpu()


@pytest.fixture
def simple_arrays() -> dict[str, np.ndarray]:
    return make_simple_data(200, seed=0)


@pytest.fixture
def simple_source(simple_arrays) -> TextMinibatchSource:
    return TextMinibatchSource.from_arrays(simple_arrays)


@pytest.fixture
def simple_ctf(tmp_path: Path, simple_arrays) -> Path:
    p = tmp_path / "SimpleDataTrain_cntk_text.txt"
    write_ctf(p, simple_arrays)
    return p
