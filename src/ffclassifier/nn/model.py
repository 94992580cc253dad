from __future__ import annotations

from typing import Callable

import torch
import torch.nn as nn

from ..context import ExecutionContext

Nonlinearity = Callable[[torch.Tensor], torch.Tensor]

NONLINEARITIES: dict[str, Nonlinearity] = {
    "sigmoid": torch.sigmoid,
    "tanh": torch.tanh,
    "relu": torch.relu,
}


def get_nonlinearity(name: str) -> Nonlinearity:
    try:
        return NONLINEARITIES[str(name).lower()]
    except KeyError:
        raise ValueError(f"Unsupported nonlinearity: {name!r} (expected one of {sorted(NONLINEARITIES)})") from None


def uniform_parameter(
    shape: tuple[int, ...],
    ctx: ExecutionContext,
    *,
    low: float = -0.05,
    high: float = 0.05,
    seed: int = 1,
) -> nn.Parameter:
    # Draw on CPU from a private generator so values do not depend on device or global RNG state.
    gen = torch.Generator(device="cpu").manual_seed(int(seed))
    t = torch.empty(shape, dtype=ctx.dtype).uniform_(float(low), float(high), generator=gen)
    return nn.Parameter(t.to(ctx.device))


class DenseLayer(nn.Module):
    """Affine transform ``W x + b`` followed by an optional elementwise nonlinearity.

    ``weight`` is (output_dim, input_dim), ``bias`` is (output_dim,); both are
    uniform in [-init_range, init_range] from a fixed seed.
    """

    def __init__(
        self,
        input_dim: int,
        output_dim: int,
        ctx: ExecutionContext,
        *,
        nonlinearity: Nonlinearity | None = None,
        init_range: float = 0.05,
        seed: int = 1,
    ):
        super().__init__()
        if input_dim <= 0 or output_dim <= 0:
            raise ValueError(f"DenseLayer dims must be positive, got {input_dim}->{output_dim}")
        self.input_dim = int(input_dim)
        self.output_dim = int(output_dim)
        self.nonlinearity = nonlinearity
        self.weight = uniform_parameter((output_dim, input_dim), ctx, low=-init_range, high=init_range, seed=seed)
        self.bias = uniform_parameter((output_dim,), ctx, low=-init_range, high=init_range, seed=seed)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        h = torch.addmm(self.bias, x, self.weight.t())
        if self.nonlinearity is not None:
            h = self.nonlinearity(h)
        return h

    def extra_repr(self) -> str:
        name = getattr(self.nonlinearity, "__name__", None)
        return f"{self.input_dim} -> {self.output_dim}, nonlinearity={name}"


class PerDimMeanVarianceNormalize(nn.Module):
    """(x - mean) * inv_std with constants computed ahead of training."""

    def __init__(self, mean: torch.Tensor, inv_std: torch.Tensor):
        super().__init__()
        self.register_buffer("mean", mean.detach().clone())
        self.register_buffer("inv_std", inv_std.detach().clone())

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return (x - self.mean) * self.inv_std


class ElementTimes(nn.Module):
    def __init__(self, scale: float):
        super().__init__()
        self.scale = float(scale)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return x * self.scale

    def extra_repr(self) -> str:
        return f"scale={self.scale}"


def build_classifier(
    *,
    input_dim: int,
    num_classes: int,
    hidden_dim: int,
    num_hidden_layers: int,
    nonlinearity: Nonlinearity | str,
    ctx: ExecutionContext,
    preprocess: nn.Module | None = None,
    init_range: float = 0.05,
    seed: int = 1,
) -> nn.Sequential:
    """Chain of ``num_hidden_layers`` dense+nonlinearity blocks, then a linear projection to classes."""

    if num_hidden_layers < 1:
        raise ValueError(f"num_hidden_layers must be >= 1, got {num_hidden_layers}")
    if num_classes < 2:
        raise ValueError(f"num_classes must be >= 2, got {num_classes}")
    if isinstance(nonlinearity, str):
        nonlinearity = get_nonlinearity(nonlinearity)

    layers: list[nn.Module] = []
    if preprocess is not None:
        layers.append(preprocess.to(ctx.device))

    d_in = input_dim
    for _ in range(num_hidden_layers):
        layers.append(
            DenseLayer(d_in, hidden_dim, ctx, nonlinearity=nonlinearity, init_range=init_range, seed=seed)
        )
        d_in = hidden_dim
    layers.append(DenseLayer(d_in, num_classes, ctx, nonlinearity=None, init_range=init_range, seed=seed))
    return nn.Sequential(*layers)
