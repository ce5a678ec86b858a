"""Eventually consistent local view of the tenant namespaces.

The cache lists namespaces matching the provisioner's label selector and then
follows the watch stream. It can lag the API server in either direction, so
callers only use it to skip work, never to decide that an error occurred.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Iterable, Optional

import structlog
from kubernetes import client, watch
from kubernetes.client.rest import ApiException

from .gateway import NamespaceState, namespace_state

LOGGER = structlog.get_logger("nsprovisioner.cache")


class NamespaceCache:
    def __init__(
        self,
        api_client: Optional[client.ApiClient],
        label_selector: str,
        *,
        watch_timeout_seconds: int = 60,
        retry_delay_seconds: float = 1.0,
    ) -> None:
        self._core = client.CoreV1Api(api_client) if api_client is not None else None
        self._selector = label_selector
        self._watch_timeout_seconds = watch_timeout_seconds
        self._retry_delay_seconds = retry_delay_seconds
        self._items: dict[str, NamespaceState] = {}
        self._lock = threading.Lock()
        self._synced = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._watch: Optional[watch.Watch] = None
        self._stopping = False

    @property
    def synced(self) -> bool:
        return self._synced.is_set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def get(self, name: str) -> Optional[NamespaceState]:
        with self._lock:
            return self._items.get(name)

    def exists(self, name: str) -> bool:
        return self.get(name) is not None

    def replace(self, states: Iterable[NamespaceState]) -> None:
        with self._lock:
            self._items = {state.name: state for state in states}

    def apply_event(self, event_type: str, state: NamespaceState) -> None:
        with self._lock:
            if event_type == "DELETED":
                self._items.pop(state.name, None)
            elif event_type in ("ADDED", "MODIFIED"):
                self._items[state.name] = state

    def mark_synced(self) -> None:
        self._synced.set()

    async def start(self) -> None:
        if self._core is None:
            raise RuntimeError("namespace cache has no API client")
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="namespace-cache")

    async def wait_for_sync(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._synced.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def stop(self) -> None:
        self._stopping = True
        if self._watch is not None:
            self._watch.stop()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        LOGGER.info("Starting namespace cache", selector=self._selector)
        resource_version: Optional[str] = None
        while not self._stopping:
            try:
                if resource_version is None:
                    resource_version = await asyncio.to_thread(self._list)
                    if not self._synced.is_set():
                        self._synced.set()
                        LOGGER.info("Namespace cache synced", namespaces=len(self))
                resource_version = await asyncio.to_thread(self._watch_once, resource_version)
            except ApiException as exc:
                resource_version = None
                if exc.status == 410:
                    LOGGER.info("Namespace watch expired, relisting")
                    continue
                LOGGER.warning("Namespace cache request failed", status=exc.status, error=exc.reason)
                await asyncio.sleep(self._retry_delay_seconds)
            except Exception as exc:  # noqa: BLE001 - keep the watch alive
                resource_version = None
                LOGGER.warning("Namespace cache error", error=str(exc))
                await asyncio.sleep(self._retry_delay_seconds)

    def _list(self) -> str:
        result = self._core.list_namespace(label_selector=self._selector)
        self.replace(namespace_state(item) for item in result.items)
        return result.metadata.resource_version

    def _watch_once(self, resource_version: str) -> str:
        self._watch = watch.Watch()
        last = resource_version
        for event in self._watch.stream(
            self._core.list_namespace,
            label_selector=self._selector,
            resource_version=resource_version,
            timeout_seconds=self._watch_timeout_seconds,
        ):
            if event["type"] == "ERROR":
                raw = event.get("raw_object") or {}
                raise ApiException(status=raw.get("code"), reason=raw.get("message"))
            namespace = event["object"]
            self.apply_event(event["type"], namespace_state(namespace))
            last = namespace.metadata.resource_version
        return last
