from __future__ import annotations

import datetime as dt
import hashlib
import io
import json
import os
import secrets
import tarfile
import tempfile
import time
from dataclasses import dataclass
from typing import BinaryIO

from .errors import ImageGenerationError

OCI_MANIFEST_MEDIA_TYPE = "application/vnd.oci.image.manifest.v1+json"
OCI_CONFIG_MEDIA_TYPE = "application/vnd.oci.image.config.v1+json"
OCI_LAYER_MEDIA_TYPE = "application/vnd.oci.image.layer.v1.tar"

HASH_CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class Descriptor:
    media_type: str
    digest: str
    size: int

    def to_dict(self) -> dict[str, object]:
        return {"mediaType": self.media_type, "digest": self.digest, "size": self.size}


@dataclass
class SyntheticLayer:
    descriptor: Descriptor
    payload_size: int
    _file: BinaryIO

    def open(self) -> BinaryIO:
        """Rewind the spooled tarball and hand it out for reading."""
        self._file.seek(0)
        return self._file

    def close(self) -> None:
        self._file.close()


class SyntheticImage:
    """A throwaway OCI image built from random tar layers held in temporary files."""

    def __init__(self, layers: list[SyntheticLayer], created: str) -> None:
        self.layers = layers
        diff_ids = [layer.descriptor.digest for layer in layers]
        self.config_bytes = _canonical_json(
            {
                "architecture": "amd64",
                "os": "linux",
                "created": created,
                "config": {},
                "rootfs": {"type": "layers", "diff_ids": diff_ids},
                "history": [
                    {"created": created, "created_by": "loadline synthetic layer"}
                    for _ in layers
                ],
            }
        )
        self.config = Descriptor(
            media_type=OCI_CONFIG_MEDIA_TYPE,
            digest=sha256_digest(self.config_bytes),
            size=len(self.config_bytes),
        )
        self.manifest_bytes = _canonical_json(
            {
                "schemaVersion": 2,
                "mediaType": OCI_MANIFEST_MEDIA_TYPE,
                "config": self.config.to_dict(),
                "layers": [layer.descriptor.to_dict() for layer in layers],
            }
        )
        self.manifest_digest = sha256_digest(self.manifest_bytes)

    @property
    def layer_count(self) -> int:
        return len(self.layers)

    @property
    def payload_size(self) -> int:
        return sum(layer.payload_size for layer in self.layers)

    @property
    def total_size(self) -> int:
        return sum(layer.descriptor.size for layer in self.layers)

    def close(self) -> None:
        for layer in self.layers:
            layer.close()

    def __enter__(self) -> "SyntheticImage":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class _RandomReader(io.RawIOBase):
    """File-like source of exactly ``size`` random bytes."""

    def __init__(self, size: int) -> None:
        self._remaining = size

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            size = self._remaining
        size = min(size, self._remaining)
        self._remaining -= size
        return os.urandom(size)


def split_payload(size_bytes: int, layer_count: int) -> list[int]:
    """Spread ``size_bytes`` over the layers; the last one takes the remainder."""

    base, remainder = divmod(size_bytes, layer_count)
    sizes = [base] * layer_count
    sizes[-1] += remainder
    return sizes


def generate_image(size_bytes: int, layer_count: int) -> SyntheticImage:
    if layer_count < 1:
        raise ImageGenerationError(f"layer count must be >= 1, got {layer_count}")
    if size_bytes < 0:
        raise ImageGenerationError(f"image size must be >= 0, got {size_bytes}")

    created = dt.datetime.now(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    layers: list[SyntheticLayer] = []
    try:
        for payload_size in split_payload(size_bytes, layer_count):
            layers.append(_build_layer(payload_size))
    except (OSError, tarfile.TarError) as exc:
        for layer in layers:
            layer.close()
        raise ImageGenerationError(
            f"generating {layer_count}-layer image of {size_bytes} bytes: {exc}"
        ) from exc
    return SyntheticImage(layers, created)


def sha256_digest(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


def _build_layer(payload_size: int) -> SyntheticLayer:
    spool = tempfile.TemporaryFile()
    try:
        info = tarfile.TarInfo(name=f"random_file_{secrets.token_hex(8)}")
        info.size = payload_size
        info.mode = 0o644
        info.mtime = int(time.time())
        with tarfile.open(fileobj=spool, mode="w") as archive:
            archive.addfile(info, _RandomReader(payload_size))

        spool.seek(0)
        hasher = hashlib.sha256()
        size = 0
        for chunk in iter(lambda: spool.read(HASH_CHUNK_SIZE), b""):
            hasher.update(chunk)
            size += len(chunk)
    except BaseException:
        spool.close()
        raise

    descriptor = Descriptor(
        media_type=OCI_LAYER_MEDIA_TYPE,
        digest="sha256:" + hasher.hexdigest(),
        size=size,
    )
    return SyntheticLayer(descriptor=descriptor, payload_size=payload_size, _file=spool)


def _canonical_json(document: dict[str, object]) -> bytes:
    return json.dumps(document, separators=(",", ":"), sort_keys=True).encode("utf-8")


__all__ = [
    "OCI_MANIFEST_MEDIA_TYPE",
    "OCI_CONFIG_MEDIA_TYPE",
    "OCI_LAYER_MEDIA_TYPE",
    "Descriptor",
    "SyntheticLayer",
    "SyntheticImage",
    "generate_image",
    "split_payload",
    "sha256_digest",
]
