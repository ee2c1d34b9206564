from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterator

from .errors import ConfigurationError

SIZE_BASE = 1024
MAX_SIZE = SIZE_BASE * SIZE_BASE * SIZE_BASE
MAX_LAYERS = 32

RESULT_COLUMNS: tuple[str, ...] = ("Num", "Size", "Layers", "Push", "Pull")


class HeaderPolicy(str, enum.Enum):
    """When the results file receives its header line."""

    ALWAYS = "always"
    IF_NEW = "if-new"


class FailurePolicy(str, enum.Enum):
    """What the sweep does when an iteration fails."""

    ABORT = "abort"
    CONTINUE = "continue"


@dataclass(frozen=True)
class SweepParameters:
    """Everything needed to drive one benchmark sweep."""

    registry_target: str
    size_scale_factor: int = 10
    layer_scale_factor: int = 2
    repeat_count: int = 1
    output_path: str = "output"
    header_policy: HeaderPolicy = HeaderPolicy.ALWAYS
    failure_policy: FailurePolicy = FailurePolicy.ABORT

    def __post_init__(self) -> None:
        if not self.registry_target:
            raise ConfigurationError("registry target must not be empty")
        # A factor of 1 never leaves the loop; 0 or less never grows.
        _require_int("size scale factor", self.size_scale_factor, minimum=2)
        _require_int("layer scale factor", self.layer_scale_factor, minimum=2)
        _require_int("repeat count", self.repeat_count, minimum=1)


@dataclass(frozen=True)
class IterationSpec:
    iteration_index: int
    size_bytes: int
    layer_count: int


def size_values(scale: int) -> list[int]:
    values: list[int] = []
    size = SIZE_BASE
    while size <= MAX_SIZE:
        values.append(size)
        size *= scale
    return values


def layer_values(scale: int) -> list[int]:
    values: list[int] = []
    layers = 1
    while layers <= MAX_LAYERS:
        values.append(layers)
        layers *= scale
    return values


def iter_specs(params: SweepParameters) -> Iterator[IterationSpec]:
    """Yield the sweep in size, layer, repeat order with a flat iteration counter."""

    index = 0
    for size in size_values(params.size_scale_factor):
        for layers in layer_values(params.layer_scale_factor):
            for _ in range(params.repeat_count):
                yield IterationSpec(iteration_index=index, size_bytes=size, layer_count=layers)
                index += 1


def expected_iterations(params: SweepParameters) -> int:
    return (
        params.repeat_count
        * len(size_values(params.size_scale_factor))
        * len(layer_values(params.layer_scale_factor))
    )


def _require_int(label: str, value: object, minimum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{label} must be an integer, got {value!r}")
    if value < minimum:
        raise ConfigurationError(f"{label} must be >= {minimum}, got {value}")


__all__ = [
    "SIZE_BASE",
    "MAX_SIZE",
    "MAX_LAYERS",
    "RESULT_COLUMNS",
    "HeaderPolicy",
    "FailurePolicy",
    "SweepParameters",
    "IterationSpec",
    "size_values",
    "layer_values",
    "iter_specs",
    "expected_iterations",
]
