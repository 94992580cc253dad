from __future__ import annotations

import copy

import pytest
import torch

from ffclassifier.errors import ShapeMismatchError, TrainerStateError, UnboundInputError
from ffclassifier.nn.objective import compose_classifier
from ffclassifier.nn.trainer import (
    SessionState,
    Trainer,
    TrainingSession,
    default_log_fn,
    num_minibatches_to_train,
)
from ffclassifier.schemas import placeholder


def _composite(ctx, hidden_dim: int = 50, num_hidden_layers: int = 2):
    return compose_classifier(
        features=placeholder("features", 2),
        labels=placeholder("labels", 2),
        hidden_dim=hidden_dim,
        num_hidden_layers=num_hidden_layers,
        nonlinearity="sigmoid",
        ctx=ctx,
    )


def _bindings(model, source, ctx, size: int = 25):
    mb = source.get_next_minibatch(size, ctx)
    return {
        model.features: mb[source.stream_info("features")].data,
        model.labels: mb[source.stream_info("labels")].data,
    }


def _snapshot(model) -> list[torch.Tensor]:
    return [p.detach().clone() for p in model.parameters()]


@pytest.mark.parametrize(
    "samples, sweeps, mb, expected",
    [(10000, 2, 25, 800), (60000, 3, 32, 5625), (10, 1, 3, 3), (5, 1, 10, 0)],
)
def test_num_minibatches_to_train(samples, sweeps, mb, expected):
    assert num_minibatches_to_train(samples, sweeps, mb) == expected


def test_update_touches_every_parameter(ctx, simple_source):
    model = _composite(ctx)
    trainer = Trainer(model, learning_rate_per_sample=0.02)
    before = _snapshot(model)
    trainer.train_minibatch(_bindings(model, simple_source, ctx), ctx)
    after = _snapshot(model)
    assert len(before) == 6
    for b, a in zip(before, after):
        assert not torch.equal(b, a)
    assert trainer.total_updates == 1
    assert trainer.previous_minibatch_sample_count() == 25


def test_update_is_sgd_on_summed_loss(ctx, simple_source):
    model = _composite(ctx, hidden_dim=8, num_hidden_layers=1)
    reference = copy.deepcopy(model)
    bindings = _bindings(model, simple_source, ctx)

    ref_bindings = {reference.features: bindings[model.features], reference.labels: bindings[model.labels]}
    loss = reference(ref_bindings).loss.sum()
    grads = torch.autograd.grad(loss, list(reference.parameters()))
    expected = [p.detach() - 0.02 * g for p, g in zip(reference.parameters(), grads)]

    trainer = Trainer(model, learning_rate_per_sample=0.02)
    trainer.train_minibatch(bindings, ctx)
    for p, e in zip(model.parameters(), expected):
        assert torch.allclose(p.detach(), e, atol=1e-6)
    assert trainer.previous_minibatch_average_training_loss() == pytest.approx(float(loss) / 25, rel=1e-5)


def test_batch_dimension_mismatch_rejected_before_update(ctx, simple_source):
    model = _composite(ctx)
    trainer = Trainer(model, learning_rate_per_sample=0.02)
    bindings = _bindings(model, simple_source, ctx)
    bindings[model.labels] = bindings[model.labels][:24]
    before = _snapshot(model)

    with pytest.raises(ShapeMismatchError, match="batch dimension"):
        trainer.train_minibatch(bindings, ctx)

    for b, a in zip(before, _snapshot(model)):
        assert torch.equal(b, a)
    assert trainer.total_updates == 0
    with pytest.raises(TrainerStateError):
        trainer.previous_minibatch_average_training_loss()


@pytest.mark.parametrize(
    "bad",
    [
        torch.zeros(25, 3),  # wrong width
        torch.zeros(25),  # missing feature axis
        torch.zeros(25, 2, dtype=torch.float64),  # wrong dtype
        torch.zeros(0, 2),  # empty
    ],
)
def test_bad_feature_tensor_rejected(ctx, bad):
    model = _composite(ctx)
    trainer = Trainer(model, learning_rate_per_sample=0.02)
    labels = torch.zeros(bad.shape[0], 2)
    with pytest.raises(ShapeMismatchError):
        trainer.train_minibatch({model.features: bad, model.labels: labels}, ctx)
    assert trainer.total_updates == 0


def test_unbound_input(ctx):
    model = _composite(ctx)
    trainer = Trainer(model, learning_rate_per_sample=0.02)
    with pytest.raises(UnboundInputError, match="labels"):
        trainer.train_minibatch({model.features: torch.zeros(4, 2)}, ctx)


def test_same_name_different_placeholder_is_unbound(ctx):
    model = _composite(ctx)
    trainer = Trainer(model, learning_rate_per_sample=0.02)
    impostor = placeholder("features", 2)
    with pytest.raises(UnboundInputError):
        trainer.train_minibatch({impostor: torch.zeros(4, 2), model.labels: torch.zeros(4, 2)}, ctx)


def test_invalid_learning_rate(ctx):
    with pytest.raises(ValueError):
        Trainer(_composite(ctx), learning_rate_per_sample=0.0)


def _session(ctx, source, *, num_minibatches: int, log_fn=None, **kw) -> TrainingSession:
    model = _composite(ctx)
    trainer = Trainer(model, learning_rate_per_sample=0.02)
    return TrainingSession(
        trainer=trainer,
        source=source,
        input_map={model.features: source.stream_info("features"), model.labels: source.stream_info("labels")},
        minibatch_size=25,
        num_minibatches=num_minibatches,
        ctx=ctx,
        log_fn=log_fn,
        **kw,
    )


def test_session_runs_exact_count_and_logs_on_cadence(ctx, simple_source):
    seen: list[int] = []
    session = _session(ctx, simple_source, num_minibatches=101, log_fn=lambda i, loss: seen.append(i))
    assert session.state is SessionState.READY
    logged = session.run()

    assert session.state is SessionState.DONE
    assert session.trainer.total_updates == 101
    assert session.iterations_done == 101
    assert seen == [0, 20, 40, 60, 80, 100]
    assert [i for i, _ in logged] == seen
    assert all(loss > 0 for _, loss in logged)


def test_session_cannot_run_twice(ctx, simple_source):
    session = _session(ctx, simple_source, num_minibatches=3)
    session.run()
    with pytest.raises(TrainerStateError):
        session.run()
    assert session.trainer.total_updates == 3


def test_session_writes_metrics(ctx, simple_source, tmp_path):
    from ffclassifier.nn.plots import read_metrics

    path = tmp_path / "metrics.jsonl"
    session = _session(ctx, simple_source, num_minibatches=41, metrics_path=path)
    session.run()
    rows = read_metrics(path)
    assert [r.iteration for r in rows if r.name == "loss"] == [0, 20, 40]
    assert [r.iteration for r in rows if r.name == "error"] == [0, 20, 40]


def test_session_rejects_stream_of_wrong_width(ctx):
    import numpy as np

    from ffclassifier.nn.source import TextMinibatchSource

    src = TextMinibatchSource.from_arrays({"features": np.zeros((10, 3)), "labels": np.zeros((10, 2))})
    with pytest.raises(ShapeMismatchError):
        _session(ctx, src, num_minibatches=1)


def test_session_fails_when_source_runs_dry(ctx, simple_arrays):
    from ffclassifier.nn.source import TextMinibatchSource

    src = TextMinibatchSource.from_arrays(simple_arrays, max_sweeps=1)  # 200 samples = 8 minibatches
    session = _session(ctx, src, num_minibatches=9)
    with pytest.raises(TrainerStateError, match="exhausted after 8"):
        session.run()
    assert session.trainer.total_updates == 8


def test_default_log_line(capsys):
    default_log_fn(20, 0.693147180559)
    assert capsys.readouterr().out == "Minibatch 20: CrossEntropy loss = 0.69314718\n"


def test_session_in_float64_context(simple_arrays):
    import numpy as np

    from ffclassifier.context import ExecutionContext
    from ffclassifier.nn.source import TextMinibatchSource

    ctx = ExecutionContext(device=torch.device("cpu"), dtype=torch.float64)
    model = compose_classifier(
        features=placeholder("features", 2, torch.float64),
        labels=placeholder("labels", 2, torch.float64),
        hidden_dim=8,
        num_hidden_layers=1,
        nonlinearity="sigmoid",
        ctx=ctx,
    )
    assert all(p.dtype == torch.float64 for p in model.parameters())

    src = TextMinibatchSource.from_arrays(simple_arrays)
    session = TrainingSession(
        trainer=Trainer(model, learning_rate_per_sample=0.02),
        source=src,
        input_map={model.features: src.stream_info("features"), model.labels: src.stream_info("labels")},
        minibatch_size=25,
        num_minibatches=21,
        ctx=ctx,
        log_fn=None,
    )
    logged = session.run()
    assert session.trainer.total_updates == 21
    assert [i for i, _ in logged] == [0, 20]
    assert np.isfinite([loss for _, loss in logged]).all()
