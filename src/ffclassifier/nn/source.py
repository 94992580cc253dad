from __future__ import annotations

from pathlib import Path
from typing import Mapping

import numpy as np
import torch

from ..context import ExecutionContext
from ..dataset import read_ctf
from ..errors import StreamNotFoundError
from ..schemas import MinibatchData, StreamInformation


class TextMinibatchSource:
    """Streams fixed-size (features, labels) minibatches from a text-minibatch file.

    The whole file is loaded once; minibatches wrap across sweep boundaries.
    ``max_sweeps=None`` means unlimited. Once ``max_sweeps`` are consumed the
    last minibatch may be short and every later call returns ``{}``.
    """

    def __init__(
        self,
        path: str | Path | None,
        streams: Mapping[str, int],
        *,
        max_sweeps: int | None = None,
        randomize: bool = False,
        seed: int = 0,
        arrays: Mapping[str, np.ndarray] | None = None,
    ):
        if max_sweeps is not None and max_sweeps < 0:
            raise ValueError(f"max_sweeps must be >= 0 or None, got {max_sweeps}")
        self.path = None if path is None else Path(path)
        self.streams = {str(k): int(v) for k, v in streams.items()}
        self.max_sweeps = max_sweeps
        self.randomize = bool(randomize)
        self.seed = int(seed)

        if arrays is None:
            if self.path is None:
                raise ValueError("Either path or arrays must be given")
            arrays = read_ctf(self.path, self.streams)
        self._arrays = {name: np.asarray(arrays[name], dtype=np.float32) for name in self.streams}
        n = {len(a) for a in self._arrays.values()}
        if len(n) != 1:
            raise ValueError(f"Streams have different sample counts: {sorted(n)}")
        self._n = n.pop()
        if self._n == 0:
            raise ValueError("Minibatch source has no samples")

        self._infos = tuple(StreamInformation(name=name, dim=dim) for name, dim in self.streams.items())
        self._rng = np.random.default_rng(self.seed)
        self._order = self._new_order()
        self._cursor = 0
        self._sweep = 0

    @classmethod
    def from_arrays(
        cls,
        arrays: Mapping[str, np.ndarray],
        *,
        max_sweeps: int | None = None,
        randomize: bool = False,
        seed: int = 0,
    ) -> "TextMinibatchSource":
        streams = {name: int(np.asarray(a).shape[1]) for name, a in arrays.items()}
        return cls(None, streams, max_sweeps=max_sweeps, randomize=randomize, seed=seed, arrays=arrays)

    def fresh_copy(self, *, max_sweeps: int | None = None) -> "TextMinibatchSource":
        """Same data and stream descriptors, rewound to the start."""
        other = TextMinibatchSource(
            self.path,
            self.streams,
            max_sweeps=max_sweeps,
            randomize=self.randomize,
            seed=self.seed,
            arrays=self._arrays,
        )
        other._infos = self._infos
        return other

    def _new_order(self) -> np.ndarray:
        idx = np.arange(self._n)
        if self.randomize:
            self._rng.shuffle(idx)
        return idx

    @property
    def samples_per_sweep(self) -> int:
        return self._n

    @property
    def sweeps_completed(self) -> int:
        return self._sweep

    def stream_infos(self) -> tuple[StreamInformation, ...]:
        return self._infos

    def stream_info(self, name: str) -> StreamInformation:
        for info in self._infos:
            if info.name == name:
                return info
        raise StreamNotFoundError(name, tuple(i.name for i in self._infos))

    def _exhausted(self) -> bool:
        return self.max_sweeps is not None and self._sweep >= self.max_sweeps

    def get_next_minibatch(self, size: int, ctx: ExecutionContext) -> dict[StreamInformation, MinibatchData]:
        if size <= 0:
            raise ValueError(f"minibatch size must be positive, got {size}")
        if self._exhausted():
            return {}

        picked: list[np.ndarray] = []
        remaining = int(size)
        sweep_end = False
        while remaining > 0 and not self._exhausted():
            take = min(remaining, self._n - self._cursor)
            picked.append(self._order[self._cursor : self._cursor + take])
            self._cursor += take
            remaining -= take
            if self._cursor >= self._n:
                sweep_end = True
                self._sweep += 1
                self._cursor = 0
                self._order = self._new_order()

        idx = np.concatenate(picked)
        out: dict[StreamInformation, MinibatchData] = {}
        for info in self._infos:
            data = ctx.tensor(self._arrays[info.name][idx])
            out[info] = MinibatchData(data=data, num_samples=int(len(idx)), sweep_end=sweep_end)
        return out


@torch.no_grad()
def compute_input_mean_and_inv_std(
    source: TextMinibatchSource,
    stream: StreamInformation,
    ctx: ExecutionContext,
    *,
    minibatch_size: int = 1024,
    eps: float = 1e-6,
) -> tuple[torch.Tensor, torch.Tensor]:
    """Per-dim mean and 1/std of one stream over exactly one sweep of a rewound source."""

    one_sweep = source.fresh_copy(max_sweeps=1)
    count = 0
    total = torch.zeros((stream.dim,), dtype=torch.float64, device=ctx.device)
    total_sq = torch.zeros((stream.dim,), dtype=torch.float64, device=ctx.device)
    while True:
        mb = one_sweep.get_next_minibatch(minibatch_size, ctx)
        if not mb:
            break
        x = mb[stream].data.to(torch.float64)
        total += x.sum(dim=0)
        total_sq += (x * x).sum(dim=0)
        count += int(x.shape[0])

    mean = total / count
    var = (total_sq / count - mean * mean).clamp(min=0.0)
    inv_std = 1.0 / var.sqrt().clamp(min=eps)
    return mean.to(ctx.dtype), inv_std.to(ctx.dtype)
