from __future__ import annotations

import pytest
import pytest_asyncio

from nsprovisioner.common.settings import ProvisionerSettings
from nsprovisioner.provisioner.cache import NamespaceCache
from nsprovisioner.provisioner.gateway import Deadline
from nsprovisioner.provisioner.scheduler import ExpiryScheduler
from tests.fakes import MASTER, SELECTOR, ExpiryRecorder, FakeClusterGateway


@pytest.fixture
def settings(monkeypatch) -> ProvisionerSettings:
    monkeypatch.setenv("NSP_CLUSTER_ROLE", "edit")
    monkeypatch.setenv("NSP_MASTER", MASTER)
    monkeypatch.setenv("NSP_SELECTOR", SELECTOR)
    monkeypatch.setenv("NSP_TOKEN_READ_INTERVAL", "0.01")
    monkeypatch.delenv("NSP_TOKEN", raising=False)
    monkeypatch.delenv("NSP_ROLE_PATH", raising=False)
    monkeypatch.delenv("NSP_METRICS_TOKEN", raising=False)
    return ProvisionerSettings()


@pytest.fixture
def namespace_cache() -> NamespaceCache:
    cache = NamespaceCache(None, SELECTOR)
    cache.mark_synced()
    return cache


@pytest.fixture
def gateway(namespace_cache: NamespaceCache) -> FakeClusterGateway:
    return FakeClusterGateway(namespace_cache)


@pytest.fixture
def deadline() -> Deadline:
    return Deadline.after(30.0)


@pytest.fixture
def expiry_recorder() -> ExpiryRecorder:
    return ExpiryRecorder()


@pytest_asyncio.fixture
async def scheduler(expiry_recorder: ExpiryRecorder):
    expiry = ExpiryScheduler(expiry_recorder, delete_timeout_seconds=5.0)
    yield expiry
    await expiry.drain(timeout=1.0)
