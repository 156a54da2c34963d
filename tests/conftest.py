# tests/conftest.py
from __future__ import annotations

from typing import Callable, Optional

import pytest

from learner.train import EventHandlers, Example, Signal, Trainer


class ScalarModel:
    """y = weight * x, with the weight as its only parameter."""

    def __init__(self, weight: float = 0.0):
        self.weight = weight

    def __call__(self, data):
        return self.weight * data

    def parameters(self):
        return iter([self.weight])


class SGD:
    def __init__(self, lr: float = 0.01):
        self.lr = lr
        self.updates = 0

    def update(self, model: ScalarModel, gradient: float) -> None:
        model.weight -= self.lr * gradient
        self.updates += 1


def squared_error(output, label):
    return (output - label) ** 2


class FakeDifferentiator:
    """Analytic (loss, d loss / d weight) for ScalarModel + squared_error."""

    def __init__(self):
        self.calls: list[Example] = []
        self.results: list[tuple[float, float]] = []

    def __call__(self, model, loss_function, example):
        self.calls.append(example)
        residual = model(example.data) - example.label
        result = (loss_function(model(example.data), example.label), 2 * residual * example.data)
        self.results.append(result)
        return result


class Recorder:
    """Builds a handler table that logs every slot it passes through."""

    def __init__(self):
        self.events: list[tuple[str, int]] = []

    def count(self, slot: str) -> int:
        return sum(1 for name, _ in self.events if name == slot)

    def slots(self) -> list[str]:
        return [name for name, _ in self.events]

    def table(self, **reactions: Callable[[Trainer, int], Optional[Signal]]) -> EventHandlers:
        """
        ``reactions[slot](trainer, n)`` runs after logging, where ``n`` is how
        many times that slot has fired in the current epoch (1-based).
        """
        handlers = EventHandlers()
        for slot in EventHandlers.slot_names():
            setattr(handlers, slot, self._make(slot, reactions.get(slot)))
        return handlers

    def _make(self, slot, reaction):
        def handler(trainer: Trainer):
            self.events.append((slot, trainer.current_epoch))
            if reaction is None:
                return None
            n = sum(1 for name, epoch in self.events
                    if name == slot and epoch == trainer.current_epoch)
            return reaction(trainer, n)
        return handler


@pytest.fixture
def dataset() -> list[Example]:
    return [Example(1.0, 2.0), Example(2.0, 4.0), Example(3.0, 6.0)]


@pytest.fixture
def differentiator() -> FakeDifferentiator:
    return FakeDifferentiator()


@pytest.fixture
def optimizer() -> SGD:
    return SGD(lr=0.01)


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def make_trainer(dataset, optimizer, differentiator):
    def build(handlers=None, **kwargs) -> Trainer:
        kwargs.setdefault("model", ScalarModel())
        kwargs.setdefault("dataset", dataset)
        kwargs.setdefault("optimizer", optimizer)
        kwargs.setdefault("loss_function", squared_error)
        kwargs.setdefault("differentiator", differentiator)
        return Trainer(handlers=handlers, **kwargs)
    return build
