from __future__ import annotations

from dataclasses import dataclass

import torch
import torch.nn as nn
import torch.nn.functional as F

from ..context import ExecutionContext
from ..schemas import Bindings, Placeholder
from .model import build_classifier

LOSS_NAME = "lossFunction"
ERROR_NAME = "classificationError"
OUTPUT_NAME = "classifierOutput"


def cross_entropy_with_softmax(output: torch.Tensor, labels: torch.Tensor) -> torch.Tensor:
    """Per-sample -sum(labels * log_softmax(output)); labels may be one-hot or soft."""
    return -(labels * F.log_softmax(output, dim=-1)).sum(dim=-1)


def classification_error(output: torch.Tensor, labels: torch.Tensor) -> torch.Tensor:
    """Per-sample 1.0 where argmax(output) != argmax(labels), else 0.0."""
    return (output.argmax(dim=-1) != labels.argmax(dim=-1)).to(output.dtype)


@dataclass(frozen=True)
class CompositeOutputs:
    loss: torch.Tensor  # (B,)
    error: torch.Tensor  # (B,)
    output: torch.Tensor  # (B, num_classes)

    def __getitem__(self, name: str) -> torch.Tensor:
        if name == LOSS_NAME:
            return self.loss
        if name == ERROR_NAME:
            return self.error
        if name == OUTPUT_NAME:
            return self.output
        raise KeyError(name)


class Composite(nn.Module):
    """Bundle of (loss, error, output) over one network and one parameter set."""

    def __init__(self, network: nn.Module, *, features: Placeholder, labels: Placeholder, name: str = "classifierModel"):
        super().__init__()
        self.network = network
        self.features = features
        self.labels = labels
        self.name = name

    @property
    def arguments(self) -> tuple[Placeholder, ...]:
        return (self.features, self.labels)

    def evaluate(self, x: torch.Tensor) -> torch.Tensor:
        return self.network(x)

    def forward(self, bindings: Bindings) -> CompositeOutputs:
        output = self.network(bindings[self.features])
        labels = bindings[self.labels]
        return CompositeOutputs(
            loss=cross_entropy_with_softmax(output, labels),
            error=classification_error(output, labels),
            output=output,
        )


def compose_classifier(
    *,
    features: Placeholder,
    labels: Placeholder,
    hidden_dim: int,
    num_hidden_layers: int,
    nonlinearity,
    ctx: ExecutionContext,
    preprocess: nn.Module | None = None,
    init_range: float = 0.05,
    seed: int = 1,
    name: str = "classifierModel",
) -> Composite:
    if len(features.shape) != 1 or len(labels.shape) != 1:
        raise ValueError("features and labels placeholders must be rank-1 per sample")
    for p in (features, labels):
        if p.dtype != ctx.dtype:
            raise ValueError(f"placeholder {p.name!r} has dtype {p.dtype}, execution context uses {ctx.dtype}")
    network = build_classifier(
        input_dim=features.shape[0],
        num_classes=labels.shape[0],
        hidden_dim=hidden_dim,
        num_hidden_layers=num_hidden_layers,
        nonlinearity=nonlinearity,
        ctx=ctx,
        preprocess=preprocess,
        init_range=init_range,
        seed=seed,
    )
    return Composite(network, features=features, labels=labels, name=name)
