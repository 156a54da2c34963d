"""Training configuration dataclass."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass
class TrainConfig:
    """
    Hyperparameters and settings for ``torch_backend.build_trainer``.

    All fields have sensible defaults that work for a first run.
    """

    # --- Core hyperparameters ---
    epochs: int = 30
    lr: float = 1e-3
    weight_decay: float = 1e-4

    # --- Learning rate schedule ---
    lr_schedule: str = "cosine"         # "cosine" | "step" | "none"
    warmup_steps: int = 0               # 0 = no warmup; set to ~5% of total steps
    step_lr_step_size: int = 10         # only used when lr_schedule="step"
    step_lr_gamma: float = 0.1          # only used when lr_schedule="step"

    # --- Regularization ---
    grad_clip: float = 1.0              # 0.0 = disabled

    # --- Hardware ---
    device: str = "auto"                # "auto" | "cpu" | "cuda" | "mps"

    # --- Logging ---
    log_every_n_batches: int = 50       # 0 = no progress output
    verbose: bool = True                # header and outcome line per fit

    # --- Early stopping ---
    early_stop_patience: int = 10       # 0 = disabled
    halt_on_nan: bool = True

    # --- Misc ---
    seed: int = 42

    def __post_init__(self) -> None:
        if self.epochs < 0:
            raise ValueError(f"epochs must be >= 0, got {self.epochs}")
        if self.lr <= 0:
            raise ValueError(f"lr must be positive, got {self.lr}")
        if self.lr_schedule not in ("cosine", "step", "none"):
            raise ValueError(f"lr_schedule must be 'cosine', 'step', or 'none', got {self.lr_schedule!r}")
        if self.warmup_steps < 0:
            raise ValueError(f"warmup_steps must be >= 0, got {self.warmup_steps}")
        if self.step_lr_step_size < 1:
            raise ValueError(f"step_lr_step_size must be >= 1, got {self.step_lr_step_size}")
        if not 0.0 < self.step_lr_gamma <= 1.0:
            raise ValueError(f"step_lr_gamma must be in (0, 1], got {self.step_lr_gamma}")
        if self.grad_clip < 0:
            raise ValueError(f"grad_clip must be >= 0, got {self.grad_clip}")
        if self.log_every_n_batches < 0:
            raise ValueError(f"log_every_n_batches must be >= 0, got {self.log_every_n_batches}")
        if self.early_stop_patience < 0:
            raise ValueError(f"early_stop_patience must be >= 0, got {self.early_stop_patience}")
        if self.device not in ("auto", "cpu", "cuda", "mps"):
            raise ValueError(f"device must be 'auto', 'cpu', 'cuda', or 'mps', got {self.device!r}")
        if self.device == "auto":
            import torch
            if torch.cuda.is_available():
                self.device = "cuda"
            elif hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
                self.device = "mps"
            else:
                self.device = "cpu"

    def summary(self) -> str:
        lines = ["TrainConfig:"]
        for k, v in self.__dict__.items():
            lines.append(f"  {k}: {v}")
        return "\n".join(lines)
