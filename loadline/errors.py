from __future__ import annotations


class LoadlineError(Exception):
    """Base class for every failure the benchmark treats as fatal."""


class ConfigurationError(LoadlineError, ValueError):
    """Raised when sweep parameters cannot guarantee a terminating sweep."""


class ResultWriteError(LoadlineError):
    """Raised when the results file cannot be opened, written or closed."""


class InvalidReferenceError(LoadlineError):
    """Raised when a destination string is not a valid image reference."""


class ImageGenerationError(LoadlineError):
    """Raised when a synthetic image cannot be produced."""


class TransportError(LoadlineError):
    """Raised when talking to the registry fails below the HTTP layer."""


class RegistryError(TransportError):
    """Raised when the registry answers with an unexpected status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(RegistryError):
    """Raised when the registry rejects our credentials."""


class ExportError(LoadlineError):
    """Raised when draining pulled layer content fails or the content is corrupt."""


class IterationFailed(LoadlineError):
    """Raised by the sweep driver when an iteration aborts the run."""

    def __init__(self, iteration_index: int, stage: str, destination: str, cause: Exception) -> None:
        super().__init__(
            f"iteration {iteration_index} failed during {stage} of {destination}: {cause}"
        )
        self.iteration_index = iteration_index
        self.stage = stage
        self.destination = destination
        self.cause = cause


__all__ = [
    "LoadlineError",
    "ConfigurationError",
    "ResultWriteError",
    "InvalidReferenceError",
    "ImageGenerationError",
    "TransportError",
    "RegistryError",
    "AuthenticationError",
    "ExportError",
    "IterationFailed",
]
