from __future__ import annotations

import hashlib
import io
import json
import re
import uuid
from urllib.parse import parse_qs, urlparse

import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from loadline.registry.auth import ANONYMOUS, Credentials

REGISTRY_HOST = "registry.test"
AUTH_HOST = "auth.test"
TOKEN = "test-token"

_UPLOADS = re.compile(r"^/v2/(?P<repo>.+)/blobs/uploads/(?P<upload>[^/]*)$")
_BLOB = re.compile(r"^/v2/(?P<repo>.+)/blobs/(?P<digest>sha256:[0-9a-f]{64})$")
_MANIFEST = re.compile(r"^/v2/(?P<repo>.+)/manifests/(?P<tag>[^/]+)$")


def _response(request, status: int, body: bytes = b"", headers: dict | None = None) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.headers = CaseInsensitiveDict(headers or {})
    response.raw = io.BytesIO(body)
    response.url = request.url
    response.request = request
    response.encoding = "utf-8"
    return response


def _body(request) -> bytes:
    body = request.body
    if body is None:
        return b""
    if hasattr(body, "read"):
        return body.read()
    if isinstance(body, str):
        return body.encode("utf-8")
    return bytes(body)


class InMemoryRegistry(BaseAdapter):
    """Just enough of the OCI distribution API, served as a requests transport."""

    def __init__(self, auth_scheme: str | None = None) -> None:
        super().__init__()
        self.auth_scheme = auth_scheme
        self.basic_header: str | None = None
        self.blobs: dict[tuple[str, str], bytes] = {}
        self.manifests: dict[tuple[str, str], tuple[bytes, str]] = {}
        self.uploads: dict[str, str] = {}
        self.log: list[tuple[str, str]] = []

    def send(self, request, **kwargs):
        url = urlparse(request.url)
        self.log.append((request.method, url.netloc + url.path))

        if url.netloc == AUTH_HOST:
            return _response(request, 200, json.dumps({"token": TOKEN}).encode())

        if not self._authorized(request):
            if self.auth_scheme == "bearer":
                challenge = f'Bearer realm="https://{AUTH_HOST}/token",service="{REGISTRY_HOST}"'
            else:
                challenge = f'Basic realm="{REGISTRY_HOST}"'
            return _response(request, 401, b"unauthorized", {"WWW-Authenticate": challenge})

        match = _UPLOADS.match(url.path)
        if match and request.method == "POST":
            upload = uuid.uuid4().hex
            self.uploads[upload] = match["repo"]
            return _response(
                request, 202, headers={"Location": f"/v2/{match['repo']}/blobs/uploads/{upload}"}
            )
        if match and request.method == "PUT":
            digest = parse_qs(url.query)["digest"][0]
            data = _body(request)
            if "sha256:" + hashlib.sha256(data).hexdigest() != digest:
                return _response(request, 400, b"digest invalid")
            self.blobs[(self.uploads.pop(match["upload"]), digest)] = data
            return _response(request, 201, headers={"Docker-Content-Digest": digest})

        match = _BLOB.match(url.path)
        if match:
            data = self.blobs.get((match["repo"], match["digest"]))
            if data is None:
                return _response(request, 404, b"")
            if request.method == "HEAD":
                return _response(request, 200, headers={"Content-Length": str(len(data))})
            return _response(request, 200, data)

        match = _MANIFEST.match(url.path)
        if match and request.method == "PUT":
            data = _body(request)
            self.manifests[(match["repo"], match["tag"])] = (data, request.headers["Content-Type"])
            digest = "sha256:" + hashlib.sha256(data).hexdigest()
            return _response(request, 201, headers={"Docker-Content-Digest": digest})
        if match and request.method == "GET":
            stored = self.manifests.get((match["repo"], match["tag"]))
            if stored is None:
                return _response(request, 404, b'{"errors":[{"code":"MANIFEST_UNKNOWN"}]}')
            data, media_type = stored
            return _response(request, 200, data, {"Content-Type": media_type})

        return _response(request, 405, b"unsupported")

    def close(self) -> None:
        pass

    def _authorized(self, request) -> bool:
        header = request.headers.get("Authorization")
        if self.auth_scheme is None:
            return True
        if self.auth_scheme == "bearer":
            return header == f"Bearer {TOKEN}"
        return header is not None and header == self.basic_header


class StaticKeychain:
    def __init__(self, credentials: Credentials = ANONYMOUS) -> None:
        self.credentials = credentials
        self.lookups: list[str] = []

    def resolve(self, registry: str) -> Credentials:
        self.lookups.append(registry)
        return self.credentials

