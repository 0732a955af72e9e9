"""Application bootstrap for kuberelay.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config -> logging -> metrics -> K8s client -> cache
              -> notifier -> watcher handlers -> watcher start

Shutdown stops components in reverse startup order. Each component's stop
error is caught and logged independently.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from kuberelay.config import load_config, parse_duration
from kuberelay.models.config import KubeRelayConfig
from kuberelay.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    import structlog

    from kuberelay.cache import ReferenceTrackingCache
    from kuberelay.notifications import WebhookNotifier
    from kuberelay.watcher import Watcher

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class KubeRelayApp:
    """Application root. Owns every component and coordinates their lifecycle.

    Calling ``stop()`` on an app that was never started (or already
    stopped) is safe.
    """

    def __init__(self, config: KubeRelayConfig | None = None) -> None:
        self.config = config
        self._dynamic_client: object | None = None
        self._cache: ReferenceTrackingCache | None = None
        self._notifier: WebhookNotifier | None = None
        self._watcher: Watcher | None = None
        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        """
        if self.config is None:
            self.config = load_config()

        setup_logging(self.config.log.level)
        self._log = get_logger("app")
        self._log.info("kuberelay starting", version=_kuberelay_version())

        self._start_metrics()
        await self._start_k8s_client()
        await self._start_cache()
        self._start_notifier()
        self._build_watcher()
        await self._start_watcher()

        self._running = True
        self._log.info("kuberelay started")

    def _start_metrics(self) -> None:
        assert self._log is not None
        assert self.config is not None
        if not self.config.metrics.port:
            return
        try:
            from kuberelay.observability.metrics import start_metrics_server

            start_metrics_server(self.config.metrics.port)
            self._log.info("metrics exporter started", port=self.config.metrics.port)
        except OSError as exc:
            self._log.warning("metrics exporter failed to start", error=str(exc))

    async def _start_k8s_client(self) -> None:
        """Build a dynamic client from in-cluster config or kubeconfig."""
        assert self._log is not None
        self._log.debug("starting k8s client")
        try:
            from kubernetes import client as k8s_client
            from kubernetes import config as k8s_config
            from kubernetes.dynamic import DynamicClient

            try:
                k8s_config.load_incluster_config()
                self._log.info("k8s client configured from in-cluster service account")
            except k8s_config.ConfigException:
                # honours KUBECONFIG, falls back to ~/.kube/config
                k8s_config.load_kube_config()
                self._log.info("k8s client configured from kubeconfig")

            loop = asyncio.get_running_loop()
            # discovery performs blocking HTTP calls
            self._dynamic_client = await loop.run_in_executor(None, DynamicClient, k8s_client.ApiClient())
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    async def _start_cache(self) -> None:
        assert self._log is not None
        assert self.config is not None
        if not self.config.cache.enabled:
            self._log.info("reference cache disabled (cache.enabled=false)")
            return
        try:
            from kuberelay.cache import ReferenceTrackingCache

            cache = ReferenceTrackingCache(
                ttl_seconds=parse_duration(self.config.cache.ttl),
                sweep_interval=self.config.cache.sweep_interval_seconds,
            )
            await cache.start()
            self._cache = cache
            self._log.info("reference cache started", ttl=self.config.cache.ttl)
        except Exception as exc:
            raise _ComponentError("cache", exc) from exc

    def _start_notifier(self) -> None:
        assert self._log is not None
        assert self.config is not None
        try:
            from kuberelay.notifications import build_webhook_notifier

            self._notifier = build_webhook_notifier(self.config)
        except ValueError as exc:
            raise _ComponentError("notifier", exc) from exc

    def _build_watcher(self) -> None:
        assert self._log is not None
        assert self.config is not None
        try:
            from kuberelay.watcher import InformerFactory, Watcher

            watcher = Watcher(
                InformerFactory(self._dynamic_client),  # type: ignore[arg-type]
                sync_timeout=self.config.watcher.sync_timeout_seconds,
                relay_capacity=self.config.watcher.relay_capacity,
            )
            resources = self.config.watcher.resources
            if self._cache is not None:
                watcher.add_handler(self._cache.observe, resources, name="cache")
            if self._notifier is not None:
                watcher.add_handler(self._notifier.dispatch, resources, name="webhook")
            if not watcher.relays:
                self._log.warning("no handlers configured; changes will only be watched")
            self._watcher = watcher
        except Exception as exc:
            raise _ComponentError("watcher", exc) from exc

    async def _start_watcher(self) -> None:
        assert self._log is not None
        assert self._watcher is not None
        try:
            await self._watcher.start()
        except Exception as exc:
            raise _ComponentError("watcher", exc) from exc

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop all components in reverse startup order."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("kuberelay shutting down")
        self._running = False

        await self._stop_component("watcher", self._watcher)
        await self._stop_component("notifier", self._notifier)
        await self._stop_component("cache", self._cache)
        self._watcher = None
        self._notifier = None
        self._cache = None

        log.info("kuberelay stopped")

    async def _stop_component(self, name: str, component: object | None) -> None:
        """Call stop() on a component if it has that method, catching all errors."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, "stop", None)
        if stop_fn is None:
            return
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component stop timed out", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component stop raised an error", component=name, error=str(exc))


def _kuberelay_version() -> str:
    from kuberelay import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = KubeRelayApp()
    loop = asyncio.get_running_loop()

    shutdown_triggered = False

    def _request_shutdown() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            return
        shutdown_triggered = True
        asyncio.create_task(app.stop(), name="shutdown")

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown)

    try:
        await app.start()
        while app._running:
            await asyncio.sleep(1)
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
        )
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app._running:
            await app.stop()


def run() -> None:
    """Console-script entrypoint."""
    asyncio.run(main())
