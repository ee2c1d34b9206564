from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Protocol
from urllib.parse import urljoin

import requests

from ..errors import AuthenticationError, ExportError, RegistryError, TransportError
from ..synthetic import OCI_MANIFEST_MEDIA_TYPE, Descriptor, SyntheticImage, sha256_digest
from .auth import DockerKeychain, RegistryAuthenticator
from .reference import Reference, parse_reference

LOGGER = logging.getLogger("loadline.registry")

DOCKER_MANIFEST_MEDIA_TYPE = "application/vnd.docker.distribution.manifest.v2+json"
INDEX_MEDIA_TYPES = frozenset(
    {
        "application/vnd.oci.image.index.v1+json",
        "application/vnd.docker.distribution.manifest.list.v2+json",
    }
)
MANIFEST_ACCEPT = ", ".join((OCI_MANIFEST_MEDIA_TYPE, DOCKER_MANIFEST_MEDIA_TYPE))
DEFAULT_CHUNK_SIZE = 1024 * 1024
USER_AGENT = "loadline"


class Writer(Protocol):
    def write(self, data: bytes) -> Any:
        ...


class DiscardWriter:
    """Sink that throws bytes away while counting them."""

    def __init__(self) -> None:
        self.bytes_written = 0

    def write(self, data: bytes) -> int:
        self.bytes_written += len(data)
        return len(data)


@dataclass(frozen=True)
class RemoteImage:
    reference: Reference
    manifest_digest: str
    media_type: str
    config: dict[str, Any]
    layers: tuple[Descriptor, ...]

    @property
    def layer_count(self) -> int:
        return len(self.layers)

    @property
    def total_size(self) -> int:
        return sum(layer.size for layer in self.layers)


@dataclass(frozen=True)
class ExportStats:
    layer_count: int
    total_bytes: int


class RegistryClient:
    """Minimal OCI distribution client: monolithic blob upload, manifest push, pull and drain."""

    def __init__(
        self,
        session: requests.Session | None = None,
        keychain: DockerKeychain | None = None,
        insecure: bool = False,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._session = session or requests.Session()
        self._session.headers["User-Agent"] = USER_AGENT
        self._auth = RegistryAuthenticator(self._session, keychain or DockerKeychain())
        self._insecure = insecure
        self._chunk_size = chunk_size

    def reference(self, value: str) -> Reference:
        return parse_reference(value, insecure=self._insecure)

    def push(self, image: SyntheticImage, reference: Reference) -> str:
        for layer in image.layers:
            self._upload_blob(reference, layer.descriptor, layer.open())
        self._upload_blob(reference, image.config, image.config_bytes)

        response = self._request(
            "PUT",
            reference,
            f"{reference.base_url}/manifests/{reference.tag}",
            expected=(200, 201),
            headers={"Content-Type": OCI_MANIFEST_MEDIA_TYPE},
            data=image.manifest_bytes,
        )
        digest = response.headers.get("Docker-Content-Digest", image.manifest_digest)
        LOGGER.debug("Pushed %s (%s, %d layers)", reference, digest, image.layer_count)
        return digest

    def pull(self, reference: Reference) -> RemoteImage:
        url = f"{reference.base_url}/manifests/{reference.tag}"
        response = self._request(
            "GET", reference, url, expected=(200,), headers={"Accept": MANIFEST_ACCEPT}
        )
        body = response.content
        try:
            manifest = json.loads(body)
        except ValueError as exc:
            raise RegistryError(f"GET {url}: manifest is not valid JSON") from exc
        if not isinstance(manifest, dict):
            raise RegistryError(f"GET {url}: manifest is not a JSON object")

        media_type = (response.headers.get("Content-Type") or "").split(";", 1)[0].strip()
        media_type = manifest.get("mediaType") or media_type
        if media_type in INDEX_MEDIA_TYPES:
            raise RegistryError(f"GET {url}: {reference} is an image index, not an image")

        try:
            config_descriptor = _descriptor(manifest["config"])
            layers = tuple(_descriptor(item) for item in manifest.get("layers") or [])
        except (KeyError, TypeError, ValueError) as exc:
            raise RegistryError(f"GET {url}: malformed manifest: {exc}") from exc

        config_bytes = self._fetch_blob(reference, config_descriptor)
        try:
            config = json.loads(config_bytes)
        except ValueError as exc:
            raise RegistryError(f"config blob {config_descriptor.digest} is not valid JSON") from exc

        return RemoteImage(
            reference=reference,
            manifest_digest=response.headers.get("Docker-Content-Digest") or sha256_digest(body),
            media_type=media_type,
            config=config,
            layers=layers,
        )

    def export(self, image: RemoteImage, sink: Writer) -> ExportStats:
        """Stream every layer of ``image`` into ``sink``, verifying digests on the way."""

        total = 0
        for layer in image.layers:
            total += self._drain_layer(image.reference, layer, sink)
        return ExportStats(layer_count=image.layer_count, total_bytes=total)

    def close(self) -> None:
        self._session.close()

    def _upload_blob(self, reference: Reference, descriptor: Descriptor, data: Any) -> None:
        blob_url = f"{reference.base_url}/blobs/{descriptor.digest}"
        head = self._request("HEAD", reference, blob_url, expected=(200, 404))
        if head.status_code == 200:
            LOGGER.debug("Blob %s already present in %s", descriptor.digest, reference.repository)
            return

        start = self._request(
            "POST", reference, f"{reference.base_url}/blobs/uploads/", expected=(202,)
        )
        location = start.headers.get("Location")
        if not location:
            raise RegistryError(
                f"POST {reference.base_url}/blobs/uploads/: no upload location returned",
                status_code=start.status_code,
            )
        self._request(
            "PUT",
            reference,
            urljoin(start.url or reference.base_url, location),
            expected=(201,),
            params={"digest": descriptor.digest},
            headers={
                "Content-Type": "application/octet-stream",
                "Content-Length": str(descriptor.size),
            },
            data=data,
        )

    def _fetch_blob(self, reference: Reference, descriptor: Descriptor) -> bytes:
        url = f"{reference.base_url}/blobs/{descriptor.digest}"
        body = self._request("GET", reference, url, expected=(200,)).content
        if sha256_digest(body) != descriptor.digest:
            raise RegistryError(f"GET {url}: content does not match {descriptor.digest}")
        return body

    def _drain_layer(self, reference: Reference, layer: Descriptor, sink: Writer) -> int:
        url = f"{reference.base_url}/blobs/{layer.digest}"
        response = self._request("GET", reference, url, expected=(200,), stream=True)
        hasher = hashlib.sha256()
        size = 0
        try:
            for chunk in response.iter_content(chunk_size=self._chunk_size):
                hasher.update(chunk)
                sink.write(chunk)
                size += len(chunk)
        except (requests.RequestException, OSError) as exc:
            raise ExportError(f"exporting {layer.digest} from {reference}: {exc}") from exc
        finally:
            response.close()

        digest = "sha256:" + hasher.hexdigest()
        if digest != layer.digest or size != layer.size:
            raise ExportError(
                f"exporting {layer.digest} from {reference}: got {digest} ({size} bytes), "
                f"expected {layer.size} bytes"
            )
        return size

    def _request(
        self,
        method: str,
        reference: Reference,
        url: str,
        expected: Iterable[int],
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> requests.Response:
        request_headers = self._auth.headers_for(reference)
        request_headers.update(headers or {})
        response = self._send(method, url, request_headers, **kwargs)

        if response.status_code == 401:
            response.close()
            request_headers.update(self._auth.authenticate(reference, response))
            data = kwargs.get("data")
            if hasattr(data, "seek"):
                data.seek(0)
            response = self._send(method, url, request_headers, **kwargs)

        if response.status_code not in tuple(expected):
            raise _status_error(method, url, response)
        return response

    def _send(self, method: str, url: str, headers: dict[str, str], **kwargs: Any) -> requests.Response:
        try:
            return self._session.request(method, url, headers=headers, **kwargs)
        except requests.RequestException as exc:
            raise TransportError(f"{method} {url}: {exc}") from exc


def _descriptor(item: dict[str, Any]) -> Descriptor:
    return Descriptor(
        media_type=str(item.get("mediaType", "")),
        digest=str(item["digest"]),
        size=int(item["size"]),
    )


def _status_error(method: str, url: str, response: requests.Response) -> RegistryError:
    detail = ""
    try:
        if method != "HEAD":
            detail = response.text.strip()[:200]
    except requests.RequestException:
        detail = ""
    finally:
        response.close()
    message = f"{method} {url}: unexpected status {response.status_code}"
    if detail:
        message = f"{message}: {detail}"
    if response.status_code in (401, 403):
        return AuthenticationError(message, status_code=response.status_code)
    return RegistryError(message, status_code=response.status_code)


__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "DiscardWriter",
    "ExportStats",
    "RegistryClient",
    "RemoteImage",
]
