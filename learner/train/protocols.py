"""
learner.train.protocols
-----------------------
Capability interfaces for the collaborators the Trainer drives.

The interfaces are generic so a type checker ties them together: a
``Trainer[Input, Output, Label]`` only accepts a ``Model[Input, Output]``,
a ``LossFunction[Output, Label]`` and a dataset of ``Example[Input, Label]``.
Each is also runtime-checkable, so the Trainer rejects a collaborator that
lacks the methods when it is constructed rather than mid-run.
``torch.nn.Module`` satisfies ``Model`` as-is; ``torch.optim`` optimizers
need the thin adapter in ``learner.train.torch_backend``.
"""

from __future__ import annotations

from typing import Any, Callable, Iterator, Protocol, Tuple, TypeVar, runtime_checkable

from learner.train.example import Example

Input = TypeVar("Input")
Output = TypeVar("Output")
Label = TypeVar("Label")
Input_contra = TypeVar("Input_contra", contravariant=True)
Output_co = TypeVar("Output_co", covariant=True)

LossFunction = Callable[[Output, Label], Any]


@runtime_checkable
class Model(Protocol[Input_contra, Output_co]):
    """A trainable parameterized function from ``Input`` to ``Output``."""

    def __call__(self, data: Input_contra) -> Output_co: ...

    def parameters(self) -> Iterator[Any]: ...


@runtime_checkable
class Optimizer(Protocol):
    """Mutates a model's parameters in place along a gradient."""

    def update(self, model: Model[Any, Any], gradient: Any) -> None: ...


@runtime_checkable
class Differentiator(Protocol[Input, Output, Label]):
    """Evaluates model and loss together, returning ``(loss, gradient)``."""

    def __call__(
        self,
        model: Model[Input, Output],
        loss_function: LossFunction[Output, Label],
        example: Example[Input, Label],
    ) -> Tuple[Any, Any]: ...


@runtime_checkable
class Dataset(Protocol[Input, Label]):
    """A finite, re-iterable source of ``Example`` values."""

    def __iter__(self) -> Iterator[Example[Input, Label]]: ...


def check_capability(value: Any, protocol: type, role: str) -> None:
    """Raise ``TypeError`` if *value* does not provide *protocol*."""
    if not isinstance(value, protocol):
        raise TypeError(
            f"{role} must implement {protocol.__name__}, got {type(value).__name__}"
        )


__all__ = [
    "Model",
    "Optimizer",
    "Differentiator",
    "Dataset",
    "LossFunction",
    "Input",
    "Output",
    "Label",
    "check_capability",
]
