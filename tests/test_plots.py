from __future__ import annotations

import pytest

from ffclassifier.nn.plots import plot_metrics, read_metrics, summarize_windows, write_metric


@pytest.fixture
def metrics_path(tmp_path):
    p = tmp_path / "metrics.jsonl"
    for i, v in enumerate([0.7, 0.6, 0.5, 0.4, 0.3]):
        write_metric(path=p, iteration=20 * i, name="loss", value=v)
        write_metric(path=p, iteration=20 * i, name="error", value=v / 2)
    return p


def test_read_metrics(metrics_path):
    rows = read_metrics(metrics_path)
    assert len(rows) == 10
    assert (rows[0].iteration, rows[0].name, rows[0].value) == (0, "loss", 0.7)


def test_read_missing_file(tmp_path):
    assert read_metrics(tmp_path / "nope.jsonl") == []


def test_summarize_windows(metrics_path):
    df = summarize_windows(metrics_path, window=2)
    assert df["first_iteration"].tolist() == [0, 40, 80]
    assert df["last_iteration"].tolist() == [20, 60, 80]
    assert df["mean"].tolist() == pytest.approx([0.65, 0.45, 0.3])


def test_summarize_rejects_bad_window(metrics_path):
    with pytest.raises(ValueError):
        summarize_windows(metrics_path, window=0)


def test_plot_metrics(metrics_path, tmp_path):
    saved = plot_metrics(metrics_path, tmp_path)
    assert sorted(p.name for p in saved) == ["error.png", "loss.png"]
    assert all(p.exists() for p in saved)
