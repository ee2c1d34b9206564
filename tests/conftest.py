from __future__ import annotations

import pytest
import requests

from fakes import AUTH_HOST, REGISTRY_HOST, InMemoryRegistry, StaticKeychain


@pytest.fixture
def fake_registry() -> InMemoryRegistry:
    return InMemoryRegistry()


@pytest.fixture
def registry_session(fake_registry: InMemoryRegistry) -> requests.Session:
    session = requests.Session()
    session.mount(f"https://{REGISTRY_HOST}/", fake_registry)
    session.mount(f"https://{AUTH_HOST}/", fake_registry)
    return session


@pytest.fixture
def keychain() -> StaticKeychain:
    return StaticKeychain()
