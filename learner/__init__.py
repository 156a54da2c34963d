"""
learner
-------
A generic training loop with lifecycle hooks.

learner provides:
  - A Trainer that runs the epoch/batch loop over any model, optimizer,
    dataset, loss function and differentiator meeting small protocols
  - Ten optional event-handler slots, steered by returned control signals
    (skip the rest of the epoch, skip remaining epochs, stop)
  - Built-in callbacks: rich progress output, loss history, early stopping,
    NaN watchdog
  - PyTorch collaborators and a config-driven ``build_trainer`` factory

Quickstart::

    from learner.train import TrainConfig, LossHistory
    from learner.train.torch_backend import build_trainer

    config = TrainConfig(epochs=20, lr=1e-3, device="auto")
    history = LossHistory()
    trainer = build_trainer(model, train_loader, loss_fn, config,
                            val_loader=val_loader, handlers=history)
    trainer.fit(config.epochs)
    print(history.history["loss"])
"""

__version__ = "0.1.0"

from learner.train import (
    Callback,
    EventHandlers,
    Example,
    Signal,
    TrainConfig,
    Trainer,
)

__all__ = [
    "Trainer",
    "TrainConfig",
    "Example",
    "Signal",
    "EventHandlers",
    "Callback",
]
