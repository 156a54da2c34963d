"""
learner.train.torch_backend
---------------------------
PyTorch collaborators for the Trainer.

- ``value_with_gradient``: autograd differentiator, ``(loss, grads)`` per batch
- ``no_grad_loss``:        validation evaluator (eval mode, no autograd graph)
- ``TorchOptimizer``:      adapts a ``torch.optim.Optimizer`` to ``update(model, gradient)``
- ``ExampleLoader``:       turns a ``DataLoader`` of ``(x, y)`` into ``Example`` batches
- ``build_trainer``:       wires all of the above from a ``TrainConfig``

Usage::

    config = TrainConfig(epochs=20, lr=1e-3, device="cpu")
    trainer = build_trainer(model, train_loader, nn.MSELoss(), config, val_loader=val_loader)
    trainer.fit(config.epochs)
"""

from __future__ import annotations

from typing import Optional, Union

import torch
import torch.nn as nn

from learner.train.callbacks import (
    Callback,
    EarlyStopping,
    EventHandlers,
    LRSchedule,
    NaNWatchdog,
    RichProgress,
    combine,
)
from learner.train.config import TrainConfig
from learner.train.example import Example
from learner.train.trainer import Trainer

Gradient = tuple[torch.Tensor, ...]


def _trainable(model: nn.Module) -> list[torch.Tensor]:
    return [p for p in model.parameters() if p.requires_grad]


def value_with_gradient(model: nn.Module, loss_function, example: Example) -> tuple[torch.Tensor, Gradient]:
    """
    Evaluate ``loss_function(model(example.data), example.label)`` and its
    gradient with respect to every trainable parameter.

    A batched (non-scalar) loss is averaged before differentiation.  The
    returned loss is detached; the gradient tuple follows
    ``model.parameters()`` order, with zeros for unused parameters.
    """
    model.train()
    params = _trainable(model)
    loss = loss_function(model(example.data), example.label)
    objective = loss if loss.dim() == 0 else loss.mean()
    grads = torch.autograd.grad(objective, params, allow_unused=True)
    gradient = tuple(
        torch.zeros_like(p) if g is None else g for p, g in zip(params, grads)
    )
    return loss.detach(), gradient


def no_grad_loss(model: nn.Module, loss_function, example: Example) -> torch.Tensor:
    """Validation loss for one batch, in eval mode and without autograd."""
    model.eval()
    with torch.no_grad():
        return loss_function(model(example.data), example.label)


class TorchOptimizer:
    """
    Adapts a ``torch.optim.Optimizer`` to the ``update(model, gradient)``
    contract: the gradient is written into ``.grad`` of the model's
    trainable parameters, optionally clipped, and the optimizer steps.
    """

    def __init__(self, optimizer: torch.optim.Optimizer, grad_clip: float = 0.0):
        self.optimizer = optimizer
        self.grad_clip = grad_clip
        self.last_grad_norm: Optional[float] = None

    @property
    def lr(self) -> float:
        return self.optimizer.param_groups[0]["lr"]

    def update(self, model: nn.Module, gradient: Gradient) -> None:
        params = _trainable(model)
        if len(params) != len(gradient):
            raise ValueError(
                f"gradient has {len(gradient)} tensors but model has {len(params)} trainable parameters"
            )
        for p, g in zip(params, gradient):
            p.grad = g.detach().clone()
        if self.grad_clip > 0.0:
            self.last_grad_norm = nn.utils.clip_grad_norm_(params, self.grad_clip).item()
        self.optimizer.step()
        self.optimizer.zero_grad(set_to_none=True)


class ExampleLoader:
    """Re-iterable view of a ``DataLoader`` yielding ``Example`` batches on *device*."""

    def __init__(self, loader, device: Union[str, torch.device] = "cpu"):
        self.loader = loader
        self.device = torch.device(device)

    def __iter__(self):
        for batch in self.loader:
            x, y = _unpack_batch(batch, self.device)
            yield Example(x, y)

    def __len__(self) -> int:
        return len(self.loader)


def build_trainer(
    model: nn.Module,
    train_loader,
    loss_fn,
    config: Optional[TrainConfig] = None,
    val_loader=None,
    optimizer: Optional[torch.optim.Optimizer] = None,
    handlers: Union[EventHandlers, Callback, None] = None,
) -> Trainer:
    """
    Build a Trainer over PyTorch collaborators.

    Seeds torch, moves the model to ``config.device``, defaults the
    optimizer to AdamW, builds the learning-rate schedule over
    ``config.epochs`` epochs, and installs the built-in callbacks the
    config enables ahead of any user *handlers*.
    """
    cfg = config or TrainConfig()
    torch.manual_seed(cfg.seed)
    device = torch.device(cfg.device)
    model = model.to(device)

    if optimizer is None:
        optimizer = torch.optim.AdamW(
            model.parameters(), lr=cfg.lr, weight_decay=cfg.weight_decay
        )
    scheduler = _build_scheduler(optimizer, cfg, cfg.epochs * len(train_loader))

    builtin: list[Callback] = []
    if cfg.halt_on_nan:
        builtin.append(NaNWatchdog())
    if scheduler is not None:
        builtin.append(LRSchedule(scheduler))
    if cfg.log_every_n_batches > 0:
        builtin.append(RichProgress(cfg.log_every_n_batches))
    if cfg.early_stop_patience > 0:
        builtin.append(EarlyStopping(cfg.early_stop_patience))
    tables = [*builtin, handlers] if handlers is not None else builtin

    return Trainer(
        model=model,
        dataset=ExampleLoader(train_loader, device),
        optimizer=TorchOptimizer(optimizer, grad_clip=cfg.grad_clip),
        loss_function=loss_fn,
        differentiator=value_with_gradient,
        handlers=combine(*tables),
        validation_dataset=ExampleLoader(val_loader, device) if val_loader is not None else None,
        evaluator=no_grad_loss,
        verbose=cfg.verbose,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _build_scheduler(optimizer, cfg: TrainConfig, total_steps: int):
    warmup = cfg.warmup_steps
    if cfg.lr_schedule == "cosine":
        main = torch.optim.lr_scheduler.CosineAnnealingLR(
            optimizer, T_max=max(total_steps - warmup, 1)
        )
    elif cfg.lr_schedule == "step":
        main = torch.optim.lr_scheduler.StepLR(
            optimizer, step_size=cfg.step_lr_step_size, gamma=cfg.step_lr_gamma
        )
    else:
        main = None

    if warmup == 0:
        return main
    ramp = torch.optim.lr_scheduler.LinearLR(
        optimizer, start_factor=1.0 / (warmup + 1), total_iters=warmup
    )
    if main is None:
        return ramp
    return torch.optim.lr_scheduler.SequentialLR(optimizer, [ramp, main], milestones=[warmup])


def _unpack_batch(batch, device: torch.device) -> tuple[torch.Tensor, torch.Tensor]:
    if isinstance(batch, Example):
        x, y = batch.data, batch.label
    elif isinstance(batch, (list, tuple)) and len(batch) >= 2:
        x, y = batch[0], batch[1]
    else:
        raise ValueError(f"Expected batch to be (x, y), got {type(batch)}")
    x = x.to(device) if isinstance(x, torch.Tensor) else x
    y = y.to(device) if isinstance(y, torch.Tensor) else y
    return x, y
