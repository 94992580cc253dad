from __future__ import annotations

from dataclasses import dataclass

import torch

from .errors import DeviceUnavailableError


@dataclass(frozen=True)
class ExecutionContext:
    """Where graphs are built and run. Passed explicitly, never kept as global state."""

    device: torch.device
    dtype: torch.dtype = torch.float32

    @classmethod
    def cpu(cls) -> "ExecutionContext":
        return cls(device=torch.device("cpu"))

    @classmethod
    def gpu(cls, index: int = 0) -> "ExecutionContext":
        if not torch.cuda.is_available():
            raise DeviceUnavailableError(f"GPU {index} requested but CUDA is not available")
        n = torch.cuda.device_count()
        if index < 0 or index >= n:
            raise DeviceUnavailableError(f"GPU {index} requested but only {n} device(s) present")
        return cls(device=torch.device("cuda", index))

    @classmethod
    def parse(cls, spec: str) -> "ExecutionContext":
        s = str(spec).strip().lower()
        if s == "cpu":
            return cls.cpu()
        if s == "auto":
            return cls.gpu(0) if torch.cuda.is_available() else cls.cpu()
        if s in ("gpu", "cuda"):
            return cls.gpu(0)
        for prefix in ("gpu:", "cuda:"):
            if s.startswith(prefix):
                try:
                    index = int(s[len(prefix):])
                except ValueError:
                    raise ValueError(f"Invalid device spec: {spec!r}") from None
                return cls.gpu(index)
        raise ValueError(f"Invalid device spec: {spec!r} (expected 'cpu', 'gpu', 'gpu:N' or 'auto')")

    def tensor(self, data, *, dtype: torch.dtype | None = None) -> torch.Tensor:
        return torch.as_tensor(data, dtype=self.dtype if dtype is None else dtype, device=self.device)

    def __str__(self) -> str:
        return str(self.device)
