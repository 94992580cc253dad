from __future__ import annotations

from pathlib import Path

import typer

from .dataset import write_ctf
from .errors import TrainingError
from .generate import make_digits_like, make_simple_data

app = typer.Typer(no_args_is_help=True)


@app.callback()
def _root() -> None:
    """Feed-forward classifier training: data export, SGD training runs, run reports."""
    return


@app.command("generate-simple")
def generate_simple(
    out: Path = typer.Option(..., help="Output text-minibatch file"),
    n: int = typer.Option(10000, help="Number of samples"),
    seed: int = typer.Option(0, help="Random seed"),
) -> None:
    """Two-class 2-D Gaussian blobs (features: 2 dense, labels: 2 one-hot)."""
    rows = write_ctf(out, make_simple_data(n, seed=seed))
    typer.echo(f"Wrote {rows} rows -> {out}")


@app.command("generate-digits")
def generate_digits(
    out: Path = typer.Option(..., help="Output text-minibatch file"),
    n: int = typer.Option(60000, help="Number of samples"),
    seed: int = typer.Option(0, help="Random seed"),
) -> None:
    """MNIST-shaped synthetic data (features: 784 pixels 0..255, labels: 10 one-hot)."""
    rows = write_ctf(out, make_digits_like(n, seed=seed), sparse=("labels",))
    typer.echo(f"Wrote {rows} rows -> {out}")


@app.command("fetch-mnist")
def fetch_mnist(
    out: Path = typer.Option(Path("datasets/Train-28x28_cntk_text.txt"), help="Output text-minibatch file"),
    split: str = typer.Option("train", help="train or test"),
    cache_dir: Path | None = typer.Option(None, help="Cache directory for the downloaded IDX files"),
    force: bool = typer.Option(False, help="Download again even if cached"),
) -> None:
    """Download MNIST and export it in the text-minibatch format."""

    from .realdata.mnist import MnistFetchConfig, default_cache_dir, export_ctf

    cfg = MnistFetchConfig(cache_dir=default_cache_dir() if cache_dir is None else cache_dir)
    try:
        rows = export_ctf(out, split, cfg, force=force)
    except TrainingError as e:
        typer.echo(f"ERROR: {e}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Wrote {rows} rows -> {out}")


def _run(cfg) -> None:
    from .nn.train import train

    try:
        result = train(cfg)
    except TrainingError as e:
        typer.echo(f"ERROR: {e}", err=True)
        raise typer.Exit(code=1)
    except ValueError as e:
        raise typer.BadParameter(str(e))

    typer.echo(f"Training done. {result.updates} minibatches, final classification error = {result.final_error:.4f}")
    if result.checkpoint is not None:
        typer.echo(f"Final checkpoint: {result.checkpoint}")


@app.command("train-simple")
def train_simple(
    data: Path | None = typer.Option(None, help="Text-minibatch file (default: synthetic data in memory)"),
    out_dir: Path | None = typer.Option(None, help="Output directory (config/metrics/checkpoint)"),
    device: str = typer.Option("cpu", help="cpu, gpu, gpu:N or auto"),
    minibatch_size: int = typer.Option(25, help="Minibatch size"),
    sweeps: int = typer.Option(2, help="Sweeps over the data"),
    samples_per_sweep: int = typer.Option(10000, help="Samples per sweep (0 = size of data)"),
    lr: float = typer.Option(0.02, help="Learning rate per sample"),
    hidden_dim: int = typer.Option(50, help="Hidden layer width"),
    hidden_layers: int = typer.Option(2, help="Number of hidden layers"),
    nonlinearity: str = typer.Option("sigmoid", help="sigmoid, tanh or relu"),
    output_frequency: int = typer.Option(20, help="Log every N minibatches"),
    seed: int = typer.Option(0, help="Seed for synthetic data"),
    randomize: bool = typer.Option(False, help="Shuffle samples every sweep"),
    progress: bool = typer.Option(False, help="Show a progress bar"),
) -> None:
    """Train the small 2-D classifier with per-dim input normalization."""

    from .nn.train import simple_config

    cfg = simple_config(
        data_path=None if data is None else str(data),
        out_dir=None if out_dir is None else str(out_dir),
        device=device,
        minibatch_size=int(minibatch_size),
        num_sweeps=int(sweeps),
        num_samples_per_sweep=(None if int(samples_per_sweep) == 0 else int(samples_per_sweep)),
        learning_rate_per_sample=float(lr),
        hidden_dim=int(hidden_dim),
        num_hidden_layers=int(hidden_layers),
        nonlinearity=nonlinearity,
        output_frequency=int(output_frequency),
        data_seed=int(seed),
        randomize=bool(randomize),
        progress=bool(progress),
    )
    _run(cfg)


@app.command("train-mnist")
def train_mnist(
    data: Path | None = typer.Option(None, help="Text-minibatch file, e.g. from fetch-mnist (default: synthetic)"),
    out_dir: Path | None = typer.Option(None, help="Output directory (config/metrics/checkpoint)"),
    device: str = typer.Option("gpu:0", help="cpu, gpu, gpu:N or auto"),
    minibatch_size: int = typer.Option(32, help="Minibatch size"),
    sweeps: int = typer.Option(3, help="Sweeps over the data"),
    samples_per_sweep: int = typer.Option(60000, help="Samples per sweep (0 = size of data)"),
    lr: float = typer.Option(0.003125, help="Learning rate per sample"),
    hidden_dim: int = typer.Option(200, help="Hidden layer width"),
    nonlinearity: str = typer.Option("sigmoid", help="sigmoid, tanh or relu"),
    output_frequency: int = typer.Option(20, help="Log every N minibatches"),
    seed: int = typer.Option(0, help="Seed for synthetic data"),
    synthetic_samples: int = typer.Option(60000, help="Synthetic sample count when no --data is given"),
    randomize: bool = typer.Option(False, help="Shuffle samples every sweep"),
    progress: bool = typer.Option(False, help="Show a progress bar"),
) -> None:
    """Train the one-hidden-layer 784->200->10 classifier with 1/256 input scaling."""

    from .nn.train import mnist_config

    cfg = mnist_config(
        data_path=None if data is None else str(data),
        out_dir=None if out_dir is None else str(out_dir),
        device=device,
        minibatch_size=int(minibatch_size),
        num_sweeps=int(sweeps),
        num_samples_per_sweep=(None if int(samples_per_sweep) == 0 else int(samples_per_sweep)),
        learning_rate_per_sample=float(lr),
        hidden_dim=int(hidden_dim),
        nonlinearity=nonlinearity,
        output_frequency=int(output_frequency),
        data_seed=int(seed),
        synthetic_samples=int(synthetic_samples),
        randomize=bool(randomize),
        progress=bool(progress),
    )
    _run(cfg)


@app.command("plot-run")
def plot_run(
    run_dir: Path = typer.Option(..., help="Training output directory (contains metrics.jsonl)"),
) -> None:
    """Render loss/error curves from a run's metrics.jsonl."""

    from .nn.plots import plot_metrics

    metrics_path = run_dir / "metrics.jsonl"
    if not metrics_path.exists():
        raise typer.BadParameter(f"no metrics.jsonl in {run_dir}")
    saved = plot_metrics(metrics_path, run_dir)
    for p in saved:
        typer.echo(f"Wrote {p}")


@app.command("summarize-run")
def summarize_run(
    run_dir: Path = typer.Option(..., help="Training output directory (contains metrics.jsonl)"),
    window: int = typer.Option(10, help="Logged points per window"),
    out_csv: Path | None = typer.Option(None, help="Optional CSV output"),
) -> None:
    """Per-window mean loss, to eyeball the training trend."""

    from .nn.plots import summarize_windows

    metrics_path = run_dir / "metrics.jsonl"
    if not metrics_path.exists():
        raise typer.BadParameter(f"no metrics.jsonl in {run_dir}")
    df = summarize_windows(metrics_path, window=window)
    typer.echo(df.to_string(index=False))
    if out_csv is not None:
        out_csv.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(out_csv, index=False)
        typer.echo(f"Wrote {len(df)} rows -> {out_csv}")


@app.command("version")
def version() -> None:
    from . import __version__

    typer.echo(__version__)


if __name__ == "__main__":
    app()
