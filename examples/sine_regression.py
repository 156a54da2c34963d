"""
examples/sine_regression.py
---------------------------
End-to-end example: fit a small MLP to a noisy sine wave.

This demonstrates:
  1. Procedural data generation (no external data needed)
  2. build_trainer wiring AdamW, a warmup + cosine LR schedule, progress
     output, early stopping and the NaN watchdog from a TrainConfig
  3. Custom handlers steering the loop with control signals
  4. Calling fit again on the same Trainer for a fine-tuning pass

Run with:
    python examples/sine_regression.py

Trains in a few seconds on CPU.
"""

from __future__ import annotations

import math

import torch
import torch.nn as nn
from torch.utils.data import DataLoader, TensorDataset

from learner.train import EventHandlers, LossHistory, Signal, TrainConfig, chain
from learner.train.callbacks import to_float
from learner.train.torch_backend import build_trainer


# ---------------------------------------------------------------------------
# Step 1: Data
# ---------------------------------------------------------------------------

def make_loader(n_samples: int, seed: int, shuffle: bool) -> DataLoader:
    gen = torch.Generator().manual_seed(seed)
    x = torch.rand(n_samples, 1, generator=gen) * 2 * math.pi
    y = torch.sin(x) + 0.05 * torch.randn(n_samples, 1, generator=gen)
    return DataLoader(TensorDataset(x, y), batch_size=32, shuffle=shuffle)


# ---------------------------------------------------------------------------
# Step 2: Model
# ---------------------------------------------------------------------------

class SineMLP(nn.Module):
    def __init__(self, hidden: int = 32):
        super().__init__()
        self.net = nn.Sequential(
            nn.Linear(1, hidden), nn.Tanh(),
            nn.Linear(hidden, hidden), nn.Tanh(),
            nn.Linear(hidden, 1),
        )

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.net(x)


# ---------------------------------------------------------------------------
# Step 3: Handlers
# ---------------------------------------------------------------------------

def good_enough(threshold: float):
    """Skip the remaining epochs once validation loss is below *threshold*."""
    def handler(trainer):
        if trainer.validation_loss is not None and trainer.validation_loss < threshold:
            return Signal.SKIP_EPOCH
        return None
    return handler


def skip_noisy_batches(limit: float):
    """Abandon the rest of an epoch when a batch loss spikes."""
    def handler(trainer):
        if to_float(trainer.current_loss) > limit:
            return Signal.SKIP_BATCH
        return None
    return handler


# ---------------------------------------------------------------------------
# Step 4: Train
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    train_loader = make_loader(1024, seed=0, shuffle=True)
    val_loader = make_loader(256, seed=1, shuffle=False)

    config = TrainConfig(epochs=200, lr=1e-2, device="auto", log_every_n_batches=16,
                         early_stop_patience=15, lr_schedule="cosine", warmup_steps=32)
    print(config.summary())

    history = LossHistory()
    custom = EventHandlers(
        new_loss=skip_noisy_batches(limit=10.0),
        epoch_completion=good_enough(threshold=5e-3),
    )
    trainer = build_trainer(
        SineMLP(), train_loader, nn.MSELoss(), config,
        val_loader=val_loader, handlers=history.as_handlers().merge(custom),
    )
    trainer.fit(config.epochs)
    print(f"\nFirst run: last epoch {trainer.current_epoch + 1}/{trainer.epoch_count}, "
          f"val_loss={trainer.validation_loss:.4f}")

    # Fine-tune with a short second run on the same Trainer.
    trainer.handlers.epoch_completion = chain(
        trainer.handlers.epoch_completion,
        lambda t: print(f"  fine-tune epoch {t.current_epoch + 1}/{t.epoch_count}"),
    )
    trainer.fit(5)
    print(f"Fine-tune: val_loss={trainer.validation_loss:.4f}")
