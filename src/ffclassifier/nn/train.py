from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path

import numpy as np
import torch
from tqdm import tqdm

from ..context import ExecutionContext
from ..generate import make_digits_like, make_simple_data
from ..schemas import placeholder
from .model import ElementTimes, PerDimMeanVarianceNormalize
from .objective import Composite, compose_classifier
from .source import TextMinibatchSource, compute_input_mean_and_inv_std
from .trainer import LogFn, Trainer, TrainingSession, default_log_fn, num_minibatches_to_train


@dataclass(frozen=True)
class TrainConfig:
    name: str
    input_dim: int
    num_classes: int
    hidden_dim: int
    num_hidden_layers: int

    minibatch_size: int
    num_samples_per_sweep: int | None  # None -> size of the data file
    num_sweeps: int
    learning_rate_per_sample: float

    # "normalize": per-dim mean/inv-std from one sweep; "scale": multiply by input_scale; "none"
    input_transform: str = "none"
    input_scale: float = 1.0

    nonlinearity: str = "sigmoid"
    init_range: float = 0.05
    init_seed: int = 1

    data_path: str | None = None  # None -> synthetic data generated in memory
    synthetic_samples: int = 10000
    data_seed: int = 0
    randomize: bool = False

    output_frequency: int = 20
    device: str = "cpu"
    out_dir: str | None = None
    progress: bool = False


def simple_config(**overrides) -> TrainConfig:
    cfg = TrainConfig(
        name="simple",
        input_dim=2,
        num_classes=2,
        hidden_dim=50,
        num_hidden_layers=2,
        minibatch_size=25,
        num_samples_per_sweep=10000,
        num_sweeps=2,
        learning_rate_per_sample=0.02,
        input_transform="normalize",
        synthetic_samples=10000,
        device="cpu",
    )
    return replace(cfg, **overrides)


def mnist_config(**overrides) -> TrainConfig:
    cfg = TrainConfig(
        name="mnist",
        input_dim=784,
        num_classes=10,
        hidden_dim=200,
        num_hidden_layers=1,
        minibatch_size=32,
        num_samples_per_sweep=60000,
        num_sweeps=3,
        learning_rate_per_sample=0.003125,
        input_transform="scale",
        input_scale=0.00390625,
        synthetic_samples=60000,
        device="gpu:0",
    )
    return replace(cfg, **overrides)


@dataclass
class TrainResult:
    composite: Composite
    updates: int
    logged: list[tuple[int, float]] = field(default_factory=list)
    checkpoint: Path | None = None
    metrics_path: Path | None = None
    final_error: float | None = None


def _open_source(cfg: TrainConfig) -> TextMinibatchSource:
    streams = {"features": cfg.input_dim, "labels": cfg.num_classes}
    if cfg.data_path is not None:
        return TextMinibatchSource(cfg.data_path, streams, max_sweeps=None, randomize=cfg.randomize, seed=cfg.data_seed)

    if cfg.input_dim == 2 and cfg.num_classes == 2:
        arrays = make_simple_data(cfg.synthetic_samples, seed=cfg.data_seed)
    else:
        arrays = make_digits_like(
            cfg.synthetic_samples, seed=cfg.data_seed, input_dim=cfg.input_dim, num_classes=cfg.num_classes
        )
    return TextMinibatchSource.from_arrays(arrays, max_sweeps=None, randomize=cfg.randomize, seed=cfg.data_seed)


def build_composite(cfg: TrainConfig, source: TextMinibatchSource, ctx: ExecutionContext) -> Composite:
    features = placeholder("features", cfg.input_dim, ctx.dtype)
    labels = placeholder("labels", cfg.num_classes, ctx.dtype)

    transform = str(cfg.input_transform).lower()
    if transform == "normalize":
        mean, inv_std = compute_input_mean_and_inv_std(source, source.stream_info("features"), ctx)
        preprocess = PerDimMeanVarianceNormalize(mean, inv_std)
    elif transform == "scale":
        preprocess = ElementTimes(cfg.input_scale)
    elif transform == "none":
        preprocess = None
    else:
        raise ValueError(f"Unsupported input_transform: {cfg.input_transform!r} (expected 'normalize', 'scale' or 'none')")

    return compose_classifier(
        features=features,
        labels=labels,
        hidden_dim=cfg.hidden_dim,
        num_hidden_layers=cfg.num_hidden_layers,
        nonlinearity=cfg.nonlinearity,
        ctx=ctx,
        preprocess=preprocess,
        init_range=cfg.init_range,
        seed=cfg.init_seed,
    )


def train(cfg: TrainConfig, *, log_fn: LogFn | None = default_log_fn) -> TrainResult:
    ctx = ExecutionContext.parse(cfg.device)
    source = _open_source(cfg)

    features_info = source.stream_info("features")
    labels_info = source.stream_info("labels")

    composite = build_composite(cfg, source, ctx)
    trainer = Trainer(composite, learning_rate_per_sample=cfg.learning_rate_per_sample)

    samples_per_sweep = source.samples_per_sweep if cfg.num_samples_per_sweep is None else cfg.num_samples_per_sweep
    n_minibatches = num_minibatches_to_train(samples_per_sweep, cfg.num_sweeps, cfg.minibatch_size)

    out_dir = None if cfg.out_dir is None else Path(cfg.out_dir)
    metrics_path = None
    if out_dir is not None:
        out_dir.mkdir(parents=True, exist_ok=True)
        (out_dir / "config.json").write_text(json.dumps(asdict(cfg), ensure_ascii=False, indent=2), encoding="utf-8")
        metrics_path = out_dir / "metrics.jsonl"
        if metrics_path.exists():
            metrics_path.unlink()

    if cfg.progress:
        tqdm.write(
            f"[{cfg.name}] device={ctx} samples/sweep={samples_per_sweep} sweeps={cfg.num_sweeps} "
            f"minibatch={cfg.minibatch_size} -> {n_minibatches} minibatches"
        )

    session = TrainingSession(
        trainer=trainer,
        source=source,
        input_map={composite.features: features_info, composite.labels: labels_info},
        minibatch_size=cfg.minibatch_size,
        num_minibatches=n_minibatches,
        ctx=ctx,
        output_frequency=cfg.output_frequency,
        log_fn=log_fn,
        metrics_path=metrics_path,
        progress=cfg.progress,
    )
    logged = session.run()

    final_error = evaluate_error(composite, source, ctx)
    ckpt = None
    if out_dir is not None:
        ckpt = trainer.save_checkpoint(out_dir / "ckpt_final.pt", config=asdict(cfg), final_error=final_error)

    return TrainResult(
        composite=composite,
        updates=trainer.total_updates,
        logged=logged,
        checkpoint=ckpt,
        metrics_path=metrics_path,
        final_error=final_error,
    )


@torch.no_grad()
def evaluate_error(composite: Composite, source: TextMinibatchSource, ctx: ExecutionContext, *, minibatch_size: int = 1024) -> float:
    """Average classification error over one sweep of a rewound source."""

    composite.eval()
    one_sweep = source.fresh_copy(max_sweeps=1)
    features_info = one_sweep.stream_info("features")
    labels_info = one_sweep.stream_info("labels")
    errors: list[float] = []
    count = 0
    while True:
        mb = one_sweep.get_next_minibatch(minibatch_size, ctx)
        if not mb:
            break
        out = composite({composite.features: mb[features_info].data, composite.labels: mb[labels_info].data})
        errors.append(float(out.error.sum().item()))
        count += mb[features_info].num_samples
    composite.train()
    return float(np.sum(errors)) / max(1, count)
