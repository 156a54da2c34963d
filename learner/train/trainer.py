"""
learner.train.trainer
---------------------
The Trainer: a generic epoch/batch training loop with lifecycle hooks.

The loop itself knows nothing about tensors or autograd.  It pulls
``Example`` batches from the dataset, asks the injected differentiator for
``(loss, gradient)``, hands the gradient to the optimizer, and calls the
handler table at every transition.  Handlers steer the loop by returning a
``Signal``:

- ``SKIP_BATCH``  abandon the rest of this epoch's batches
- ``SKIP_EPOCH``  abandon this epoch and the remaining ones
- ``STOP``        abandon the fit call; nothing else fires

Usage::

    trainer = Trainer(
        model=model,
        dataset=train_examples,
        optimizer=optimizer,
        loss_function=loss_fn,
        differentiator=value_with_gradient,
        handlers=EventHandlers(new_loss=lambda t: print(t.current_loss)),
    )
    trainer.fit(10)
"""

from __future__ import annotations

from typing import Any, Callable, Generic, Iterable, Optional, Union

from rich.console import Console
from rich.markup import escape

from learner.train.callbacks import Callback, EventHandlers, to_float
from learner.train.example import Example
from learner.train.protocols import (
    Dataset,
    Differentiator,
    Input,
    Label,
    LossFunction,
    Model,
    Optimizer,
    Output,
    check_capability,
)
from learner.train.signals import Signal

console = Console()

Evaluator = Callable[[Model[Input, Output], LossFunction[Output, Label], Example[Input, Label]], Any]

_ABORTS_EPOCH = (Signal.SKIP_EPOCH, Signal.STOP)


def evaluate_loss(
    model: Model[Input, Output], loss_function: LossFunction[Output, Label], example: Example[Input, Label]
) -> Any:
    """Loss of *model* on *example*, without any gradient bookkeeping."""
    return loss_function(model(example.data), example.label)


class Trainer(Generic[Input, Output, Label]):
    """
    Generic training loop.

    Parameters
    ----------
    model : Model[Input, Output]
        Called on ``example.data``; its parameters are mutated by the optimizer.
    dataset : Iterable[Example[Input, Label]]
        Traversed once per epoch; must be re-iterable across epochs and fits.
    optimizer : Optimizer
        ``update(model, gradient)`` is called once per batch.
    loss_function : LossFunction[Output, Label]
        ``(model_output, label) -> loss``.
    differentiator : Differentiator[Input, Output, Label]
        ``(model, loss_function, example) -> (loss, gradient)``.
    handlers : EventHandlers | Callback | None
        Lifecycle hooks.  May be replaced or edited between fits.
    validation_dataset : Iterable[Example[Input, Label]] | None
        If given, evaluated after every epoch's batch loop.  Its loss is the
        mean over batches weighted by each batch's leading dimension.
    evaluator : Callable | None
        Computes one validation loss; defaults to ``evaluate_loss``.
    verbose : bool
        Print a header and an outcome line for every fit.
    """

    def __init__(
        self,
        model: Model[Input, Output],
        dataset: Iterable[Example[Input, Label]],
        optimizer: Optimizer,
        loss_function: LossFunction[Output, Label],
        differentiator: Differentiator[Input, Output, Label],
        handlers: Union[EventHandlers, Callback, None] = None,
        validation_dataset: Optional[Iterable[Example[Input, Label]]] = None,
        evaluator: Optional[Evaluator] = None,
        verbose: bool = False,
    ):
        check_capability(model, Model, "model")
        check_capability(dataset, Dataset, "dataset")
        check_capability(optimizer, Optimizer, "optimizer")
        check_capability(differentiator, Differentiator, "differentiator")
        if not callable(loss_function):
            raise TypeError(f"loss_function must be callable, got {type(loss_function).__name__}")
        if validation_dataset is not None:
            check_capability(validation_dataset, Dataset, "validation_dataset")

        self._model = model
        self._dataset = dataset
        self._optimizer = optimizer
        self._loss_function = loss_function
        self._differentiator = differentiator
        self._validation_dataset = validation_dataset
        self._evaluator = evaluator or evaluate_loss
        self.handlers = handlers
        self.verbose = verbose

        # State
        self._epoch_count = 0
        self._current_epoch = 0
        self._current_loss: Any = None
        self._current_gradient: Any = None
        self._validation_loss: Optional[float] = None

    @classmethod
    def from_initializer(
        cls,
        model_initializer: Callable[[], Model[Input, Output]],
        dataset: Iterable[Example[Input, Label]],
        optimizer_factory: Callable[[Model[Input, Output]], Optimizer],
        loss_function: LossFunction[Output, Label],
        differentiator: Differentiator[Input, Output, Label],
        **kwargs,
    ) -> "Trainer[Input, Output, Label]":
        """Build the model with *model_initializer* and its optimizer from it."""
        model = model_initializer()
        return cls(model, dataset, optimizer_factory(model), loss_function, differentiator, **kwargs)

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def handlers(self) -> EventHandlers:
        return self._handlers

    @handlers.setter
    def handlers(self, value: Union[EventHandlers, Callback, None]) -> None:
        if value is None:
            value = EventHandlers()
        elif isinstance(value, Callback):
            value = value.as_handlers()
        elif not isinstance(value, EventHandlers):
            raise TypeError(f"handlers must be EventHandlers or a Callback, got {type(value).__name__}")
        self._handlers = value

    @property
    def model(self) -> Model[Input, Output]:
        return self._model

    @property
    def dataset(self) -> Iterable[Example[Input, Label]]:
        return self._dataset

    @property
    def optimizer(self) -> Optimizer:
        return self._optimizer

    @property
    def loss_function(self) -> LossFunction[Output, Label]:
        return self._loss_function

    @property
    def differentiator(self) -> Differentiator[Input, Output, Label]:
        return self._differentiator

    @property
    def validation_dataset(self) -> Optional[Iterable[Example[Input, Label]]]:
        return self._validation_dataset

    @property
    def epoch_count(self) -> int:
        return self._epoch_count

    @property
    def current_epoch(self) -> int:
        return self._current_epoch

    @property
    def current_loss(self) -> Any:
        return self._current_loss

    @property
    def current_gradient(self) -> Any:
        return self._current_gradient

    @property
    def validation_loss(self) -> Optional[float]:
        return self._validation_loss

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    def fit(self, epoch_count: int) -> None:
        """
        Train for *epoch_count* epochs.

        Whether the run completed or was cut short by a signal, the state
        properties hold the last values computed.  Exceptions raised by
        handlers or collaborators are not caught.
        """
        if epoch_count < 0:
            raise ValueError(f"epoch_count must be >= 0, got {epoch_count}")
        self._epoch_count = epoch_count
        self._current_epoch = 0
        self._validation_loss = None

        if self.verbose:
            console.print()
            console.rule(f"[bold]Training — {epoch_count} epochs[/bold]")

        signal = self._dispatch("fitting_start")
        if signal is Signal.STOP:
            self._report("stopped")
            return

        status = "complete"
        if signal is Signal.SKIP_EPOCH:
            status = "ended early"
        else:
            for epoch in range(epoch_count):
                signal = self._perform_epoch(epoch)
                if signal is Signal.STOP:
                    self._report("stopped")
                    return
                if signal is Signal.SKIP_EPOCH:
                    status = "ended early"
                    break

        if self._dispatch("fitting_completion") is Signal.STOP:
            status = "stopped"
        self._report(status)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _perform_epoch(self, epoch: int) -> Signal:
        self._current_epoch = epoch

        signal = self._dispatch("epoch_start")
        if signal in _ABORTS_EPOCH:
            return signal

        if signal is not Signal.SKIP_BATCH:
            for batch in self._dataset:
                signal = self._perform_batch(batch)
                if signal in _ABORTS_EPOCH:
                    return signal
                if signal is Signal.SKIP_BATCH:
                    break

        if self._validation_dataset is not None:
            signal = self._dispatch("validation_start")
            if signal in _ABORTS_EPOCH:
                return signal
            if signal is not Signal.SKIP_BATCH:
                self._validate()

        signal = self._dispatch("epoch_completion")
        return signal if signal in _ABORTS_EPOCH else Signal.CONTINUE

    def _perform_batch(self, batch: Example[Input, Label]) -> Signal:
        signal = self._dispatch("batch_start")
        if signal is not Signal.CONTINUE:
            return signal
        signal = self._train_on_batch(batch)
        if signal is not Signal.CONTINUE:
            return signal
        return self._dispatch("batch_completion")

    def _train_on_batch(self, batch: Example[Input, Label]) -> Signal:
        if not isinstance(batch, Example):
            raise TypeError(f"dataset must yield Example values, got {type(batch).__name__}")

        loss, gradient = self._differentiator(self._model, self._loss_function, batch)
        self._current_loss = loss
        self._current_gradient = gradient

        for slot in ("new_loss", "new_gradient"):
            signal = self._dispatch(slot)
            if signal is not Signal.CONTINUE:
                return signal

        self._optimizer.update(self._model, gradient)
        return self._dispatch("optimizer_update_completion")

    def _validate(self) -> None:
        total = 0.0
        samples = 0
        for example in self._validation_dataset:
            if not isinstance(example, Example):
                raise TypeError(
                    f"validation_dataset must yield Example values, got {type(example).__name__}"
                )
            loss = to_float(self._evaluator(self._model, self._loss_function, example))
            size = _batch_size(example.data)
            total += loss * size
            samples += size
        self._validation_loss = total / samples if samples else None

    def _dispatch(self, slot: str) -> Signal:
        return self._handlers.invoke(slot, self)

    def _report(self, status: str) -> None:
        if not self.verbose:
            return
        style = "green" if status == "complete" else "yellow"
        line = f"\n[bold {style}]Training {status}.[/bold {style}]"
        if self._current_loss is not None:
            try:
                line += f"  Last loss: {to_float(self._current_loss):.4f}"
            except (TypeError, ValueError):
                line += f"  Last loss: {escape(repr(self._current_loss))}"
        console.print(line)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _batch_size(data: Any) -> int:
    """Leading dimension of a batched input; 1 for a single sample."""
    shape = getattr(data, "shape", None)
    if shape is not None:
        return int(shape[0]) if len(shape) > 0 else 1
    if isinstance(data, (list, tuple)):
        return len(data)
    return 1
