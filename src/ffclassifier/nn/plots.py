from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

import pandas as pd


@dataclass(frozen=True)
class MetricRow:
    iteration: int
    name: str
    value: float


def read_metrics(path: str | Path) -> list[MetricRow]:
    rows: list[MetricRow] = []
    p = Path(path)
    if not p.exists():
        return rows
    with p.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            d = json.loads(line)
            rows.append(
                MetricRow(
                    iteration=int(d["iteration"]),
                    name=str(d["name"]),
                    value=float(d["value"]),
                )
            )
    return rows


def write_metric(
    *,
    path: Path,
    iteration: int,
    name: str,
    value: float,
) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    row = {"iteration": int(iteration), "name": name, "value": float(value)}
    with path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(row, ensure_ascii=False) + "\n")


def metrics_frame(path: str | Path) -> pd.DataFrame:
    rows = read_metrics(path)
    return pd.DataFrame(
        [{"iteration": r.iteration, "name": r.name, "value": r.value} for r in rows],
        columns=["iteration", "name", "value"],
    )


def summarize_windows(path: str | Path, *, window: int = 10, name: str = "loss") -> pd.DataFrame:
    """Mean/min/max of one metric over consecutive windows of logged points."""

    if window <= 0:
        raise ValueError(f"window must be positive, got {window}")
    df = metrics_frame(path)
    df = df[df["name"] == name].sort_values("iteration").reset_index(drop=True)
    if df.empty:
        return pd.DataFrame(columns=["window", "first_iteration", "last_iteration", "mean", "min", "max"])
    df["window"] = df.index // window
    out = df.groupby("window").agg(
        first_iteration=("iteration", "min"),
        last_iteration=("iteration", "max"),
        mean=("value", "mean"),
        min=("value", "min"),
        max=("value", "max"),
    )
    return out.reset_index()


def plot_metrics(metrics_path: str | Path, out_dir: str | Path, *, subdir: str = "plots") -> list[Path]:
    """Render one line chart per metric name from metrics.jsonl into out_dir/plots."""

    # Import lazily to keep core training usable without plotting deps.
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    for style in ["seaborn-v0_8-whitegrid", "seaborn-whitegrid", "ggplot"]:
        try:
            plt.style.use(style)
            break
        except OSError:
            pass

    rows = read_metrics(metrics_path)
    if not rows:
        return []

    out = Path(out_dir) / subdir
    out.mkdir(parents=True, exist_ok=True)

    saved: list[Path] = []
    for name in sorted({r.name for r in rows}):
        pts = sorted((r.iteration, r.value) for r in rows if r.name == name)
        xs = [p[0] for p in pts]
        ys = [p[1] for p in pts]
        plt.figure()
        plt.plot(xs, ys, linewidth=2)
        plt.title(name)
        plt.xlabel("minibatch")
        plt.ylabel(name)
        p = out / f"{name}.png"
        plt.grid(True, alpha=0.25)
        plt.tight_layout()
        plt.savefig(p, dpi=160)
        plt.close()
        saved.append(p)
    return saved
