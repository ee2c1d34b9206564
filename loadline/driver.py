from __future__ import annotations

import contextlib
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from .config import FailurePolicy, IterationSpec, SweepParameters, expected_iterations, iter_specs
from .errors import IterationFailed, LoadlineError
from .registry.client import DiscardWriter, ExportStats, RemoteImage
from .registry.reference import Reference
from .sink import ResultSink
from .synthetic import SyntheticImage, generate_image

LOGGER = logging.getLogger("loadline.driver")

IMAGE_REPOSITORY = "loadline"


@dataclass(frozen=True)
class BenchmarkResult:
    iteration_index: int
    size_bytes: int
    layer_count: int
    push_millis: int
    pull_millis: int

    def to_row(self) -> str:
        return (
            f"{self.iteration_index},{self.size_bytes},{self.layer_count},"
            f"{self.push_millis},{self.pull_millis}\n"
        )


class ReferenceNamer(Protocol):
    def destination(self, target: str, iteration_index: int) -> str:
        ...


class TimestampReferenceNamer:
    """Tags images with the wall-clock nanosecond and the iteration index.

    Two runs pushing to the same target at the same instant can collide.
    """

    def __init__(self, clock_ns: Callable[[], int] = time.time_ns) -> None:
        self._clock_ns = clock_ns

    def destination(self, target: str, iteration_index: int) -> str:
        nanos = self._clock_ns() % 1_000_000_000
        return f"{target.rstrip('/')}/{IMAGE_REPOSITORY}:{nanos}-{iteration_index}"


class RunScopedReferenceNamer:
    """Tags images with a per-run identifier so tags never repeat across runs."""

    def __init__(self, run_id: str | None = None) -> None:
        self.run_id = run_id or uuid.uuid4().hex[:12]

    def destination(self, target: str, iteration_index: int) -> str:
        return f"{target.rstrip('/')}/{IMAGE_REPOSITORY}:{self.run_id}-{iteration_index}"


class Registry(Protocol):
    def reference(self, value: str) -> Reference:
        ...

    def push(self, image: SyntheticImage, reference: Reference) -> Any:
        ...

    def pull(self, reference: Reference) -> RemoteImage:
        ...

    def export(self, image: RemoteImage, sink: DiscardWriter) -> ExportStats:
        ...


@dataclass
class SweepSummary:
    output_path: str
    completed: int = 0
    failed: int = 0


class SweepDriver:
    """Runs the size x layer x repeat sweep one iteration at a time."""

    def __init__(
        self,
        registry: Registry,
        *,
        generator: Callable[[int, int], SyntheticImage] = generate_image,
        namer: ReferenceNamer | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._registry = registry
        self._generator = generator
        self._namer = namer or TimestampReferenceNamer()
        self._clock = clock

    def run(self, params: SweepParameters) -> SweepSummary:
        summary = SweepSummary(output_path=params.output_path)
        LOGGER.info(
            "Starting sweep against %s: %d iterations, results appended to %s",
            params.registry_target,
            expected_iterations(params),
            params.output_path,
        )
        with ResultSink.open(params.output_path, params.header_policy) as sink:
            for spec in iter_specs(params):
                try:
                    result = self.run_iteration(params.registry_target, spec)
                except IterationFailed as exc:
                    if params.failure_policy is FailurePolicy.ABORT:
                        raise
                    summary.failed += 1
                    LOGGER.error("%s; continuing with the next iteration", exc)
                    continue
                sink.write_result(result)
                summary.completed += 1

        LOGGER.info(
            "Sweep finished: %d iterations recorded, %d failed",
            summary.completed,
            summary.failed,
        )
        return summary

    def run_iteration(self, target: str, spec: IterationSpec) -> BenchmarkResult:
        destination = self._namer.destination(target, spec.iteration_index)
        stage = "reference parsing"
        try:
            reference = self._registry.reference(destination)

            stage = "image generation"
            image = self._generator(spec.size_bytes, spec.layer_count)
            with contextlib.closing(image):
                stage = "push"
                started = self._clock()
                self._registry.push(image, reference)
                push_millis = self._elapsed_millis(started)

                stage = "pull"
                started = self._clock()
                remote = self._registry.pull(reference)
                stage = "export"
                self._registry.export(remote, DiscardWriter())
                pull_millis = self._elapsed_millis(started)
        except LoadlineError as exc:
            raise IterationFailed(spec.iteration_index, stage, destination, exc) from exc

        LOGGER.info(
            "Iteration %d: size=%d layers=%d push=%dms pull=%dms (%s)",
            spec.iteration_index,
            spec.size_bytes,
            spec.layer_count,
            push_millis,
            pull_millis,
            destination,
        )
        return BenchmarkResult(
            iteration_index=spec.iteration_index,
            size_bytes=spec.size_bytes,
            layer_count=spec.layer_count,
            push_millis=push_millis,
            pull_millis=pull_millis,
        )

    def _elapsed_millis(self, started: float) -> int:
        return int((self._clock() - started) * 1000)


__all__ = [
    "IMAGE_REPOSITORY",
    "BenchmarkResult",
    "ReferenceNamer",
    "TimestampReferenceNamer",
    "RunScopedReferenceNamer",
    "Registry",
    "SweepSummary",
    "SweepDriver",
]
