"""
Event handler registry for the Trainer.

``EventHandlers`` is a plain table of ten optional slots.  Each slot holds a
single callable taking the Trainer and returning a ``Signal`` (or ``None`` for
``Signal.CONTINUE``).  To run several observers from one slot, combine them
with ``chain`` or ``EventHandlers.merge``.

``Callback`` is the observer-style alternative: subclass it, override the
hooks you need, and hand ``callback.as_handlers()`` to the Trainer.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Any, Callable, Optional

from rich.console import Console

from learner.train.signals import Signal

if TYPE_CHECKING:
    from learner.train.trainer import Trainer

Handler = Callable[["Trainer"], Optional[Signal]]

console = Console()


@dataclass(slots=True)
class EventHandlers:
    """The ten lifecycle slots, in the order the loop reaches them."""

    fitting_start: Optional[Handler] = None
    epoch_start: Optional[Handler] = None
    batch_start: Optional[Handler] = None
    new_loss: Optional[Handler] = None
    new_gradient: Optional[Handler] = None
    optimizer_update_completion: Optional[Handler] = None
    batch_completion: Optional[Handler] = None
    validation_start: Optional[Handler] = None
    epoch_completion: Optional[Handler] = None
    fitting_completion: Optional[Handler] = None

    @classmethod
    def slot_names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    def merge(self, other: "EventHandlers") -> "EventHandlers":
        """Slot-wise ``chain``: this table's handler runs first."""
        return EventHandlers(**{
            name: chain(getattr(self, name), getattr(other, name))
            for name in self.slot_names()
        })

    def invoke(self, slot: str, trainer: "Trainer") -> Signal:
        handler = getattr(self, slot)
        if handler is None:
            return Signal.CONTINUE
        return Signal.coerce(handler(trainer))


def chain(*handlers: Optional[Handler]) -> Optional[Handler]:
    """
    Compose handlers into one.

    They run in order; the first one returning something other than
    ``Signal.CONTINUE`` ends the chain and its signal is the result.
    """
    active = [h for h in handlers if h is not None]
    if not active:
        return None
    if len(active) == 1:
        return active[0]

    def chained(trainer: "Trainer") -> Signal:
        for handler in active:
            signal = Signal.coerce(handler(trainer))
            if signal is not Signal.CONTINUE:
                return signal
        return Signal.CONTINUE

    return chained


class Callback:
    """Base observer.  Override any hook you need."""

    def fitting_start(self, trainer: "Trainer") -> Optional[Signal]: ...
    def epoch_start(self, trainer: "Trainer") -> Optional[Signal]: ...
    def batch_start(self, trainer: "Trainer") -> Optional[Signal]: ...
    def new_loss(self, trainer: "Trainer") -> Optional[Signal]: ...
    def new_gradient(self, trainer: "Trainer") -> Optional[Signal]: ...
    def optimizer_update_completion(self, trainer: "Trainer") -> Optional[Signal]: ...
    def batch_completion(self, trainer: "Trainer") -> Optional[Signal]: ...
    def validation_start(self, trainer: "Trainer") -> Optional[Signal]: ...
    def epoch_completion(self, trainer: "Trainer") -> Optional[Signal]: ...
    def fitting_completion(self, trainer: "Trainer") -> Optional[Signal]: ...

    def as_handlers(self) -> EventHandlers:
        """A handler table holding only the hooks this subclass overrides."""
        table = EventHandlers()
        for name in EventHandlers.slot_names():
            if getattr(type(self), name) is not getattr(Callback, name):
                setattr(table, name, getattr(self, name))
        return table


def combine(*tables: EventHandlers | Callback) -> EventHandlers:
    """Merge handler tables and callbacks, in the given order."""
    merged = EventHandlers()
    for table in tables:
        if isinstance(table, Callback):
            table = table.as_handlers()
        merged = merged.merge(table)
    return merged


# ---------------------------------------------------------------------------
# Built-in callbacks
# ---------------------------------------------------------------------------

class RichProgress(Callback):
    """Prints epoch headers, a loss line every N batches, and epoch summaries."""

    def __init__(self, log_every_n_batches: int = 50):
        self.log_every_n_batches = log_every_n_batches
        self._batch = 0
        self._loss_sum = 0.0
        self._epoch_start: float = 0.0

    def epoch_start(self, trainer: "Trainer") -> None:
        self._batch = 0
        self._loss_sum = 0.0
        self._epoch_start = time.time()
        console.print(
            f"\n[bold]Epoch {trainer.current_epoch + 1}/{trainer.epoch_count}[/bold]"
        )

    def new_loss(self, trainer: "Trainer") -> None:
        self._batch += 1
        loss = to_float(trainer.current_loss)
        self._loss_sum += loss
        if self._batch % self.log_every_n_batches != 0:
            return
        elapsed = time.time() - self._epoch_start
        console.print(
            f"  batch {self._batch:>6}  "
            f"loss [cyan]{loss:.4f}[/cyan]  "
            f"[dim]{self._batch / max(elapsed, 1e-6):.1f} batch/s[/dim]"
        )

    def epoch_completion(self, trainer: "Trainer") -> None:
        mean = self._loss_sum / max(self._batch, 1)
        line = f"  train_loss [cyan]{mean:.4f}[/cyan]  [dim]({self._batch} batches)[/dim]"
        if trainer.validation_loss is not None:
            line += f"  val_loss [magenta]{trainer.validation_loss:.4f}[/magenta]"
        console.print(line)


class LossHistory(Callback):
    """Records batch losses and per-epoch means across a fit call."""

    def __init__(self):
        self.history: dict[str, list] = {"batch_loss": [], "loss": [], "val_loss": [], "epochs": []}
        self._epoch_losses: list[float] = []

    def fitting_start(self, trainer: "Trainer") -> None:
        for values in self.history.values():
            values.clear()

    def epoch_start(self, trainer: "Trainer") -> None:
        self._epoch_losses = []

    def new_loss(self, trainer: "Trainer") -> None:
        loss = to_float(trainer.current_loss)
        self._epoch_losses.append(loss)
        self.history["batch_loss"].append(loss)

    def epoch_completion(self, trainer: "Trainer") -> None:
        losses = self._epoch_losses
        self.history["loss"].append(sum(losses) / len(losses) if losses else float("nan"))
        self.history["val_loss"].append(trainer.validation_loss)
        self.history["epochs"].append(trainer.current_epoch)


class EarlyStopping(Callback):
    """
    End training when the monitored loss stops improving.

    Monitors ``trainer.validation_loss`` when a validation pass ran, the
    epoch's mean training loss otherwise.  Once ``patience`` epochs pass
    without improvement it returns ``Signal.SKIP_EPOCH``, so
    ``fitting_completion`` still runs.
    """

    def __init__(self, patience: int = 10, min_delta: float = 0.0):
        if patience < 1:
            raise ValueError(f"patience must be >= 1, got {patience}")
        self.patience = patience
        self.min_delta = min_delta
        self.best = float("inf")
        self.best_epoch: Optional[int] = None
        self._no_improve = 0
        self._epoch_losses: list[float] = []

    def fitting_start(self, trainer: "Trainer") -> None:
        self.best = float("inf")
        self.best_epoch = None
        self._no_improve = 0

    def epoch_start(self, trainer: "Trainer") -> None:
        self._epoch_losses = []

    def new_loss(self, trainer: "Trainer") -> None:
        self._epoch_losses.append(to_float(trainer.current_loss))

    def epoch_completion(self, trainer: "Trainer") -> Optional[Signal]:
        if trainer.validation_loss is not None:
            value = trainer.validation_loss
        elif self._epoch_losses:
            value = sum(self._epoch_losses) / len(self._epoch_losses)
        else:
            return None

        if value < self.best - self.min_delta:
            self.best = value
            self.best_epoch = trainer.current_epoch
            self._no_improve = 0
            return None

        self._no_improve += 1
        if self._no_improve >= self.patience:
            console.print(
                f"\n[yellow]Early stopping: loss did not improve for "
                f"{self.patience} epochs (best {self.best:.4f} at epoch "
                f"{(self.best_epoch or 0) + 1}).[/yellow]"
            )
            return Signal.SKIP_EPOCH
        return None


class LRSchedule(Callback):
    """Steps a learning-rate scheduler after every optimizer update."""

    def __init__(self, scheduler):
        self.scheduler = scheduler

    def optimizer_update_completion(self, trainer: "Trainer") -> None:
        self.scheduler.step()


class NaNWatchdog(Callback):
    """Halt training immediately if a batch loss is NaN or infinite."""

    def new_loss(self, trainer: "Trainer") -> Optional[Signal]:
        loss = to_float(trainer.current_loss)
        if math.isnan(loss) or math.isinf(loss):
            console.print(
                f"\n[bold red]NaN/Inf detected in training loss at epoch "
                f"{trainer.current_epoch + 1}. Halting.[/bold red]"
            )
            return Signal.STOP
        return None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def to_float(value: Any) -> float:
    """Reduce a scalar or batched loss (float or tensor) to a Python float."""
    if hasattr(value, "detach"):
        value = value.detach()
    if hasattr(value, "mean") and hasattr(value, "item"):
        if hasattr(value, "float"):
            value = value.float()
        return float(value.mean().item())
    return float(value)
