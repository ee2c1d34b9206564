from __future__ import annotations

import base64
import logging
import re
from dataclasses import dataclass
from typing import Mapping

import docker.auth
import docker.errors
import requests

from ..errors import AuthenticationError, TransportError
from .reference import Reference

LOGGER = logging.getLogger("loadline.registry.auth")

CLIENT_ID = "loadline"
_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


@dataclass(frozen=True)
class Credentials:
    username: str | None = None
    password: str | None = None
    identity_token: str | None = None

    @property
    def anonymous(self) -> bool:
        return not (self.username or self.identity_token)


ANONYMOUS = Credentials()


class DockerKeychain:
    """Ambient credential discovery backed by the Docker CLI configuration."""

    def __init__(self, config_path: str | None = None) -> None:
        self._config_path = config_path
        self._config: docker.auth.AuthConfig | None = None

    def resolve(self, registry: str) -> Credentials:
        if self._config is None:
            self._config = docker.auth.load_config(config_path=self._config_path)
        try:
            entry = self._config.resolve_authconfig(registry)
        except docker.errors.DockerException as exc:
            raise AuthenticationError(f"resolving credentials for {registry}: {exc}") from exc
        if not entry:
            LOGGER.debug("No credentials configured for %s, using anonymous access", registry)
            return ANONYMOUS
        return Credentials(
            username=_field(entry, "username"),
            password=_field(entry, "password"),
            identity_token=_field(entry, "identitytoken"),
        )


@dataclass(frozen=True)
class Challenge:
    scheme: str
    params: dict[str, str]


def parse_challenge(header: str) -> Challenge:
    scheme, _, rest = header.strip().partition(" ")
    return Challenge(scheme=scheme.lower(), params=dict(_CHALLENGE_PARAM.findall(rest)))


class RegistryAuthenticator:
    """Answers registry auth challenges and caches the resulting headers per repository."""

    def __init__(self, session: requests.Session, keychain: DockerKeychain) -> None:
        self._session = session
        self._keychain = keychain
        self._headers: dict[tuple[str, str], dict[str, str]] = {}

    def headers_for(self, reference: Reference) -> dict[str, str]:
        return dict(self._headers.get(_cache_key(reference), {}))

    def authenticate(self, reference: Reference, response: requests.Response) -> dict[str, str]:
        header = response.headers.get("WWW-Authenticate")
        if not header:
            raise AuthenticationError(
                f"{reference.registry} rejected the request without an auth challenge",
                status_code=response.status_code,
            )
        challenge = parse_challenge(header)
        credentials = self._keychain.resolve(reference.registry)

        if challenge.scheme == "basic":
            if credentials.anonymous or not credentials.password:
                raise AuthenticationError(
                    f"{reference.registry} requires basic auth but no credentials are configured",
                    status_code=response.status_code,
                )
            pair = f"{credentials.username}:{credentials.password}".encode("utf-8")
            headers = {"Authorization": "Basic " + base64.b64encode(pair).decode("ascii")}
        elif challenge.scheme == "bearer":
            headers = {"Authorization": f"Bearer {self._fetch_token(reference, challenge, credentials)}"}
        else:
            raise AuthenticationError(
                f"{reference.registry} sent an unsupported auth challenge {challenge.scheme!r}",
                status_code=response.status_code,
            )

        self._headers[_cache_key(reference)] = headers
        return dict(headers)

    def _fetch_token(self, reference: Reference, challenge: Challenge, credentials: Credentials) -> str:
        realm = challenge.params.get("realm")
        if not realm:
            raise AuthenticationError(f"{reference.registry} bearer challenge has no realm")
        scope = f"repository:{reference.repository}:pull,push"
        service = challenge.params.get("service", "")
        LOGGER.debug("Requesting token from %s for %s", realm, scope)

        try:
            if credentials.identity_token:
                response = self._session.post(
                    realm,
                    data={
                        "grant_type": "refresh_token",
                        "refresh_token": credentials.identity_token,
                        "service": service,
                        "scope": scope,
                        "client_id": CLIENT_ID,
                    },
                )
            else:
                auth = None
                if not credentials.anonymous:
                    auth = (credentials.username, credentials.password or "")
                response = self._session.get(
                    realm, params={"service": service, "scope": scope}, auth=auth
                )
        except requests.RequestException as exc:
            raise TransportError(f"fetching token from {realm}: {exc}") from exc

        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"token request to {realm} was rejected ({response.status_code})",
                status_code=response.status_code,
            )
        if not response.ok:
            raise AuthenticationError(
                f"token request to {realm} failed ({response.status_code})",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthenticationError(f"token response from {realm} is not JSON") from exc
        token = payload.get("token") or payload.get("access_token")
        if not token:
            raise AuthenticationError(f"token response from {realm} carries no token")
        return token


def _cache_key(reference: Reference) -> tuple[str, str]:
    return reference.api_host, reference.repository


def _field(entry: Mapping[str, object], name: str) -> str | None:
    for key, value in entry.items():
        if key.lower() == name and value:
            return str(value)
    return None


__all__ = [
    "ANONYMOUS",
    "Credentials",
    "DockerKeychain",
    "Challenge",
    "parse_challenge",
    "RegistryAuthenticator",
]
