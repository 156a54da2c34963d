"""The Example record: one (data, label) pair, sample or batch."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

Input = TypeVar("Input")
Label = TypeVar("Label")


@dataclass(frozen=True)
class Example(Generic[Input, Label]):
    """
    An immutable pairing of model input and supervision target.

    Whether it holds a single sample or a whole batch depends only on what
    is stored in the two fields.
    """

    data: Input
    label: Label
