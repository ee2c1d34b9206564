from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass

import docker.auth
import docker.errors
from docker.utils import parse_repository_tag

from ..errors import InvalidReferenceError

DEFAULT_TAG = "latest"
DOCKER_HUB_API_HOST = "registry-1.docker.io"

_PATH_COMPONENT = r"[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*"
REPOSITORY_PATTERN = re.compile(rf"^{_PATH_COMPONENT}(?:/{_PATH_COMPONENT})*$")
TAG_PATTERN = re.compile(r"^[\w][\w.-]{0,127}$")


@dataclass(frozen=True)
class Reference:
    """A tagged image location in a registry."""

    registry: str
    repository: str
    tag: str = DEFAULT_TAG
    insecure: bool = False

    @property
    def api_host(self) -> str:
        if self.registry == docker.auth.INDEX_NAME:
            return DOCKER_HUB_API_HOST
        return self.registry

    @property
    def scheme(self) -> str:
        if self.insecure or _is_local_host(self.registry):
            return "http"
        return "https"

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.api_host}/v2/{self.repository}"

    def __str__(self) -> str:
        return f"{self.registry}/{self.repository}:{self.tag}"


def parse_reference(value: str, insecure: bool = False) -> Reference:
    if not value:
        raise InvalidReferenceError("image reference must not be empty")
    if "@" in value:
        raise InvalidReferenceError(f"parsing {value!r}: digest references are not supported")

    repo, tag = parse_repository_tag(value)
    try:
        registry, repository = docker.auth.resolve_repository_name(repo)
    except docker.errors.InvalidRepository as exc:
        raise InvalidReferenceError(f"parsing {value!r}: {exc}") from exc

    if registry == docker.auth.INDEX_NAME and "/" not in repository:
        repository = f"library/{repository}"
    if not REPOSITORY_PATTERN.match(repository):
        raise InvalidReferenceError(
            f"parsing {value!r}: repository {repository!r} must be lowercase path components"
        )
    tag = tag or DEFAULT_TAG
    if not TAG_PATTERN.match(tag):
        raise InvalidReferenceError(f"parsing {value!r}: invalid tag {tag!r}")
    return Reference(registry=registry, repository=repository, tag=tag, insecure=insecure)


def _is_local_host(registry: str) -> bool:
    host = registry
    if host.startswith("["):
        host = host[1:].split("]", 1)[0]
    elif host.count(":") == 1:
        host = host.split(":", 1)[0]
    if host == "localhost" or host.endswith(".localhost") or host.endswith(".local"):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return address.is_loopback or address.is_private


__all__ = ["DEFAULT_TAG", "Reference", "parse_reference"]
