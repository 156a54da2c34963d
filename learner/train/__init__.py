"""
learner.train
-------------
Training loop infrastructure.

Primary API::

    from learner.train import Trainer, EventHandlers, Signal, Example

    def stop_when_small(trainer):
        if trainer.current_loss < 1e-3:
            return Signal.STOP

    trainer = Trainer(model, examples, optimizer, loss_fn, differentiator,
                      handlers=EventHandlers(new_loss=stop_when_small))
    trainer.fit(10)

PyTorch collaborators live in ``learner.train.torch_backend``.
"""

from learner.train.callbacks import (
    Callback,
    EarlyStopping,
    EventHandlers,
    Handler,
    LossHistory,
    LRSchedule,
    NaNWatchdog,
    RichProgress,
    chain,
    combine,
)
from learner.train.config import TrainConfig
from learner.train.example import Example
from learner.train.signals import Signal
from learner.train.trainer import Trainer

__all__ = [
    "Trainer",
    "TrainConfig",
    "Example",
    "Signal",
    "EventHandlers",
    "Handler",
    "Callback",
    "chain",
    "combine",
    "RichProgress",
    "LossHistory",
    "EarlyStopping",
    "LRSchedule",
    "NaNWatchdog",
]
