"""
OCI distribution client used by the benchmark.

Covers exactly what a push/pull round trip needs: reference parsing, ambient
credential discovery through the Docker CLI configuration, token negotiation,
monolithic blob uploads, manifest push, and streaming layer export.
"""

from .auth import Credentials, DockerKeychain
from .client import DiscardWriter, ExportStats, RegistryClient, RemoteImage
from .reference import Reference, parse_reference

__all__ = [
    "Credentials",
    "DockerKeychain",
    "DiscardWriter",
    "ExportStats",
    "RegistryClient",
    "RemoteImage",
    "Reference",
    "parse_reference",
]
