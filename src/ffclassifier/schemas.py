from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Dict

import torch

_uids = itertools.count(1)


def _next_uid() -> int:
    return next(_uids)


@dataclass(frozen=True)
class Placeholder:
    """Symbolic input of a composite, bound to concrete data once per minibatch.

    Identity is the ``uid`` handle issued at construction, so two placeholders
    sharing a name are still distinct binding keys.
    """

    name: str
    shape: tuple[int, ...]  # per-sample shape, batch axis excluded
    dtype: torch.dtype = torch.float32
    uid: int = field(default_factory=_next_uid)

    def __hash__(self) -> int:
        return hash(self.uid)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Placeholder) and other.uid == self.uid


def placeholder(name: str, shape: tuple[int, ...] | int, dtype: torch.dtype = torch.float32) -> Placeholder:
    if isinstance(shape, int):
        shape = (shape,)
    shape = tuple(int(d) for d in shape)
    if any(d <= 0 for d in shape):
        raise ValueError(f"placeholder {name!r}: dimensions must be positive, got {shape}")
    return Placeholder(name=name, shape=shape, dtype=dtype)


@dataclass(frozen=True)
class StreamInformation:
    name: str
    dim: int
    uid: int = field(default_factory=_next_uid)

    def __hash__(self) -> int:
        return hash(self.uid)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, StreamInformation) and other.uid == self.uid


@dataclass(frozen=True)
class MinibatchData:
    data: torch.Tensor  # (num_samples, dim)
    num_samples: int
    sweep_end: bool = False


Bindings = Dict[Placeholder, torch.Tensor]
