from __future__ import annotations

import contextlib
import logging
import time
from typing import Iterator

import docker
import docker.errors
import requests
from docker.models.containers import Container

from .errors import LoadlineError

LOGGER = logging.getLogger("loadline.docker")

REGISTRY_IMAGE = "registry:2"
REGISTRY_CONTAINER_PORT = "5000/tcp"


class LocalRegistryError(LoadlineError):
    """Raised when the throwaway registry container cannot be started."""


class LocalRegistry:
    """Provision a disposable registry container to benchmark against using the Docker API."""

    def __init__(
        self,
        image: str = REGISTRY_IMAGE,
        host_port: int | None = None,
        startup_grace_seconds: float = 20.0,
        poll_interval_seconds: float = 0.5,
    ) -> None:
        self._image = image
        self._host_port = host_port
        self._startup_grace_seconds = startup_grace_seconds
        self._poll_interval_seconds = poll_interval_seconds
        self._container: Container | None = None

    @contextlib.contextmanager
    def run(self) -> Iterator[str]:
        address = self._start()
        try:
            yield address
        finally:
            self._stop()

    def _start(self) -> str:
        LOGGER.info("Starting local registry container from %s", self._image)
        try:
            client = docker.from_env()
            self._container = client.containers.run(
                self._image,
                name=f"loadline-registry-{int(time.time())}",
                detach=True,
                ports={REGISTRY_CONTAINER_PORT: self._host_port},
            )
        except docker.errors.DockerException as exc:
            raise LocalRegistryError(f"starting {self._image}: {exc}") from exc

        address = f"localhost:{self._published_port()}"
        self._wait_for_startup(address)
        LOGGER.info("Local registry ready at %s", address)
        return address

    def _stop(self) -> None:
        if self._container is None:
            return
        LOGGER.info("Stopping local registry container %s", self._container.name)
        with contextlib.suppress(Exception):
            self._container.stop(timeout=10)
        with contextlib.suppress(Exception):
            self._container.remove(force=True)
        self._container = None

    def _published_port(self) -> str:
        deadline = time.time() + self._startup_grace_seconds
        while time.time() < deadline:
            try:
                self._container.reload()
            except docker.errors.DockerException as exc:
                self._stop()
                raise LocalRegistryError(f"inspecting registry container: {exc}") from exc
            bindings = self._container.attrs.get("NetworkSettings", {}).get("Ports") or {}
            for binding in bindings.get(REGISTRY_CONTAINER_PORT) or []:
                if binding.get("HostPort"):
                    return binding["HostPort"]
            time.sleep(self._poll_interval_seconds)
        self._stop()
        raise LocalRegistryError(f"{self._image} never published {REGISTRY_CONTAINER_PORT}")

    def _wait_for_startup(self, address: str) -> None:
        deadline = time.time() + self._startup_grace_seconds
        while time.time() < deadline:
            with contextlib.suppress(requests.RequestException):
                if requests.get(f"http://{address}/v2/", timeout=2).status_code in (200, 401):
                    return
            time.sleep(self._poll_interval_seconds)
        self._stop()
        raise LocalRegistryError(f"registry at {address} did not answer within {self._startup_grace_seconds}s")


__all__ = ["REGISTRY_IMAGE", "LocalRegistry", "LocalRegistryError"]
