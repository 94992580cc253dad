from __future__ import annotations

import enum
from pathlib import Path
from typing import Callable, Mapping

import torch
from tqdm import tqdm

from ..context import ExecutionContext
from ..errors import ShapeMismatchError, TrainerStateError, UnboundInputError
from ..schemas import Bindings, Placeholder, StreamInformation
from .objective import Composite
from .plots import write_metric
from .source import TextMinibatchSource

LogFn = Callable[[int, float], None]


def num_minibatches_to_train(samples_per_sweep: int, sweeps: int, minibatch_size: int) -> int:
    if minibatch_size <= 0:
        raise ValueError(f"minibatch_size must be positive, got {minibatch_size}")
    return (int(samples_per_sweep) * int(sweeps)) // int(minibatch_size)


def default_log_fn(iteration: int, loss: float) -> None:
    tqdm.write(f"Minibatch {iteration}: CrossEntropy loss = {loss:.8g}")


class Trainer:
    """Plain SGD over every parameter of a composite.

    The learning rate is per sample: the gradient of the *summed* minibatch
    loss is applied, so the effective step grows with the minibatch size.
    """

    def __init__(self, composite: Composite, *, learning_rate_per_sample: float):
        if learning_rate_per_sample <= 0:
            raise ValueError(f"learning_rate_per_sample must be positive, got {learning_rate_per_sample}")
        self.composite = composite
        self.learning_rate_per_sample = float(learning_rate_per_sample)
        self.optimizer = torch.optim.SGD(composite.parameters(), lr=self.learning_rate_per_sample)

        self.total_updates = 0
        self.total_samples_seen = 0
        self._prev_loss: float | None = None
        self._prev_error: float | None = None
        self._prev_count = 0

    def validate_bindings(self, bindings: Bindings, ctx: ExecutionContext) -> int:
        """Check that every argument is bound with a matching tensor; return the batch size."""

        missing = [p.name for p in self.composite.arguments if p not in bindings]
        if missing:
            raise UnboundInputError(f"{self.composite.name}: unbound input(s): {', '.join(missing)}")

        batch: int | None = None
        for p in self.composite.arguments:
            t = bindings[p]
            if not isinstance(t, torch.Tensor):
                raise ShapeMismatchError(f"{p.name}: expected a torch.Tensor, got {type(t).__name__}")
            if tuple(t.shape[1:]) != p.shape or t.dim() != len(p.shape) + 1:
                raise ShapeMismatchError(f"{p.name}: expected (batch, {', '.join(map(str, p.shape))}), got {tuple(t.shape)}")
            if t.dtype != p.dtype:
                raise ShapeMismatchError(f"{p.name}: expected dtype {p.dtype}, got {t.dtype}")
            if t.device != ctx.device:
                raise ShapeMismatchError(f"{p.name}: tensor on {t.device}, execution context is {ctx.device}")
            if batch is None:
                batch = int(t.shape[0])
            elif int(t.shape[0]) != batch:
                raise ShapeMismatchError(f"{p.name}: batch dimension {int(t.shape[0])} does not match {batch}")

        if not batch:
            raise ShapeMismatchError(f"{self.composite.name}: empty minibatch")
        return batch

    def train_minibatch(self, bindings: Bindings, ctx: ExecutionContext) -> bool:
        n = self.validate_bindings(bindings, ctx)

        self.composite.train()
        self.optimizer.zero_grad(set_to_none=True)
        out = self.composite(bindings)
        loss_sum = out.loss.sum()
        loss_sum.backward()
        self.optimizer.step()

        self._prev_loss = float(loss_sum.item()) / n
        self._prev_error = float(out.error.sum().item()) / n
        self._prev_count = n
        self.total_updates += 1
        self.total_samples_seen += n
        return True

    def previous_minibatch_average_training_loss(self) -> float:
        if self._prev_loss is None:
            raise TrainerStateError("no minibatch has been trained yet")
        return self._prev_loss

    def previous_minibatch_evaluation_average(self) -> float:
        if self._prev_error is None:
            raise TrainerStateError("no minibatch has been trained yet")
        return self._prev_error

    def previous_minibatch_sample_count(self) -> int:
        return self._prev_count

    def save_checkpoint(self, path: str | Path, **extra) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        torch.save(
            {
                "model": self.composite.state_dict(),
                "optimizer": self.optimizer.state_dict(),
                "updates": self.total_updates,
                "samples": self.total_samples_seen,
                **extra,
            },
            path,
        )
        return path


class SessionState(enum.Enum):
    READY = "ready"
    RUNNING = "running"
    DONE = "done"


class TrainingSession:
    """Fixed-length minibatch loop: fetch, bind, update, log every ``output_frequency``.

    ``input_map`` ties each composite argument to the stream feeding it.
    There is no early stop; ``run`` performs exactly ``num_minibatches`` updates.
    """

    def __init__(
        self,
        *,
        trainer: Trainer,
        source: TextMinibatchSource,
        input_map: Mapping[Placeholder, StreamInformation],
        minibatch_size: int,
        num_minibatches: int,
        ctx: ExecutionContext,
        output_frequency: int = 20,
        log_fn: LogFn | None = default_log_fn,
        metrics_path: Path | None = None,
        progress: bool = False,
    ):
        if minibatch_size <= 0:
            raise ValueError(f"minibatch_size must be positive, got {minibatch_size}")
        if output_frequency <= 0:
            raise ValueError(f"output_frequency must be positive, got {output_frequency}")
        if num_minibatches < 0:
            raise ValueError(f"num_minibatches must be >= 0, got {num_minibatches}")

        unmapped = [p.name for p in trainer.composite.arguments if p not in input_map]
        if unmapped:
            raise UnboundInputError(f"no stream mapped to input(s): {', '.join(unmapped)}")
        known = set(source.stream_infos())
        for p, info in input_map.items():
            if info not in known:
                raise UnboundInputError(f"{p.name}: stream {info.name!r} does not belong to this source")
            if (info.dim,) != p.shape:
                raise ShapeMismatchError(f"{p.name}: stream {info.name!r} has dim {info.dim}, input expects {p.shape}")

        self.trainer = trainer
        self.source = source
        self.input_map = dict(input_map)
        self.minibatch_size = int(minibatch_size)
        self.num_minibatches = int(num_minibatches)
        self.ctx = ctx
        self.output_frequency = int(output_frequency)
        self.log_fn = log_fn
        self.metrics_path = metrics_path
        self.progress = bool(progress)

        self.state = SessionState.READY
        self.iterations_done = 0
        self.logged: list[tuple[int, float]] = []

    def _bind(self, minibatch) -> Bindings:
        return {p: minibatch[info].data for p, info in self.input_map.items()}

    def run(self) -> list[tuple[int, float]]:
        if self.state is not SessionState.READY:
            raise TrainerStateError(f"training session already {self.state.value}")
        self.state = SessionState.RUNNING

        it = range(self.num_minibatches)
        pbar = tqdm(it, desc="train", disable=not self.progress)
        for i in pbar:
            minibatch = self.source.get_next_minibatch(self.minibatch_size, self.ctx)
            if not minibatch:
                raise TrainerStateError(f"minibatch source exhausted after {i} of {self.num_minibatches} minibatches")
            self.trainer.train_minibatch(self._bind(minibatch), self.ctx)
            self.iterations_done += 1

            if i % self.output_frequency == 0:
                loss = self.trainer.previous_minibatch_average_training_loss()
                self.logged.append((i, loss))
                if self.log_fn is not None:
                    self.log_fn(i, loss)
                if self.metrics_path is not None:
                    write_metric(path=self.metrics_path, iteration=i, name="loss", value=loss)
                    write_metric(
                        path=self.metrics_path,
                        iteration=i,
                        name="error",
                        value=self.trainer.previous_minibatch_evaluation_average(),
                    )
                pbar.set_postfix({"loss": loss})

        self.state = SessionState.DONE
        return self.logged
