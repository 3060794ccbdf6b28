"""
Network gateway: cached reads, invalidating mutations, batched transport
calls and classified failures.
"""

import asyncio
import copy
from contextlib import nullcontext
from typing import Any, Dict, Mapping, Optional

from shared.config import GatewayConfig
from shared.logging import configure_logging, get_logger, request_context
from shared.errors import SchedulerClosedError, TransportCancelledError
from shared.metrics import MetricsCollector, get_metrics_collector
from .adapters.transport import Transport, RawResult, TimeoutConfig
from .adapters.http_transport import HttpTransport
from .caching.keys import make_cache_key, invalidation_matcher
from .caching.ttl_cache import BoundedTTLCache
from .clock import Clock, SystemClock
from .failures.classifier import FailureClassifier
from .failures.models import Result
from .scheduling.batch_scheduler import BatchScheduler

_MISS = object()


class NetworkGateway:
    """Front door for all network access.

    ``read`` and ``mutate`` never raise for transport problems: every
    exception or non-2xx response is classified into a ``Failure`` and
    returned inside a ``Result``. The only exception that escapes is
    ``asyncio.CancelledError`` when the caller's own task is cancelled.

    All collaborators are injected; nothing here is process-global, so
    several gateways can share one event loop without sharing state.

    Each call runs under a request ID (the caller's, if one is bound via
    ``shared.logging.set_request_id``), which the correlation log processor
    attaches to every line logged for that call, the transport's included.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        config: Optional[GatewayConfig] = None,
        cache: Optional[BoundedTTLCache] = None,
        scheduler: Optional[BatchScheduler] = None,
        classifier: Optional[FailureClassifier] = None,
        clock: Optional[Clock] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config or GatewayConfig()
        self.transport = transport
        self.clock = clock or SystemClock()
        self.metrics = metrics
        self.logger = get_logger("gateway.network_gateway")

        self.cache = cache if cache is not None else BoundedTTLCache(
            self.config.cache_ttl_seconds,
            self.config.cache_max_size,
            clock=self.clock,
            metrics=metrics,
            name=self.config.service_name,
        )
        self.scheduler = scheduler if scheduler is not None else BatchScheduler(
            self.config.batch_delay_seconds,
            max_wait=self.config.batch_max_wait_seconds,
            metrics=metrics,
            name=self.config.service_name,
        )
        self.classifier = classifier or FailureClassifier(self.clock)
        self.timeout = TimeoutConfig.from_config(self.config)
        self.invalidation_mode = self.config.invalidation_mode

        self._sweeper: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start background work (the optional periodic expiry sweep)."""
        interval = self.config.cache_sweep_interval_seconds
        if interval and self._sweeper is None:
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_periodically(interval))
        self.logger.info(
            "Network gateway started",
            ttl=self.config.cache_ttl_seconds,
            max_size=self.config.cache_max_size,
            batch_delay=self.config.batch_delay_seconds,
            sweep_interval=interval,
        )

    async def shutdown(self) -> None:
        """Stop the sweep, drain the scheduler, drop cached data, close the transport."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
            self._sweeper = None

        await self.scheduler.shutdown()
        self.cache.clear()

        aclose = getattr(self.transport, "aclose", None)
        if aclose is not None:
            await aclose()
        self.logger.info("Network gateway shut down")

    async def __aenter__(self) -> "NetworkGateway":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    async def read(
        self,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        *,
        timeout: Optional[TimeoutConfig] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Result:
        """GET ``path``, serving from the cache when a live entry exists.

        A miss goes through the batch scheduler; only a 2xx body is cached.
        Failures, including cancellation, leave the cache untouched. Bodies are
        deep-copied into and out of the cache, so callers may modify what they
        receive without affecting other readers.
        """
        key = make_cache_key("GET", path, params)
        with request_context():
            cached = self.cache.get(key, _MISS)
            if cached is not _MISS:
                self._record_call("read", "cached")
                return Result.success(copy.deepcopy(cached))

            result = await self._call("read", "GET", path, params, None, timeout, cancel_event)
            if result.ok:
                self.cache.put(key, copy.deepcopy(result.value))
            return result

    async def mutate(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        params: Optional[Mapping[str, Any]] = None,
        timeout: Optional[TimeoutConfig] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Result:
        """Perform a state-changing call; never served from the cache.

        On success every cached entry matching ``path`` is invalidated after
        the transport call has completed. On failure the cache is unchanged.
        """
        with request_context():
            result = await self._call("mutate", method.upper(), path, params, body, timeout, cancel_event)
            if result.ok:
                removed = self.invalidate(path)
                self.logger.debug(
                    "Cache invalidated after mutation",
                    method=method.upper(),
                    path=path,
                    removed=removed,
                    mode=self.invalidation_mode,
                )
            return result

    def invalidate(self, path: str) -> int:
        """Remove cached entries matching ``path`` under the configured mode."""
        return self.cache.invalidate_where(invalidation_matcher(self.invalidation_mode, path))

    def stats(self) -> Dict[str, Any]:
        return {
            "cache": {**self.cache.stats().to_dict(), "size": self.cache.size()},
            "scheduler": {
                "pending": self.scheduler.pending_count,
                "in_flight": self.scheduler.in_flight_count,
                "flushes": self.scheduler.flush_count,
            },
        }

    async def _call(
        self,
        operation: str,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]],
        body: Any,
        timeout: Optional[TimeoutConfig],
        cancel_event: Optional[asyncio.Event],
    ) -> Result:
        call_timeout = timeout or self.timeout

        async def perform() -> RawResult:
            timer = (
                self.metrics.time_operation("transport_duration_seconds", method=method)
                if self.metrics else nullcontext()
            )
            with timer:
                return await self.transport.perform(method, path, params, body, timeout=call_timeout)

        try:
            future = self.scheduler.submit(perform)
        except SchedulerClosedError as exc:
            return self._fail(operation, method, path, exc)

        try:
            raw = await self._await_result(future, cancel_event)
        except asyncio.CancelledError as exc:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            return self._fail(operation, method, path, exc)
        except Exception as exc:
            return self._fail(operation, method, path, exc)

        if not raw.is_success:
            return self._fail(operation, method, path, raw)

        self._record_call(operation, "success")
        return Result.success(raw.body)

    @staticmethod
    async def _await_result(future: asyncio.Future, cancel_event: Optional[asyncio.Event]) -> RawResult:
        if cancel_event is None:
            return await future

        if cancel_event.is_set():
            future.cancel()
            raise TransportCancelledError("Request cancelled by caller")

        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({future, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            future.cancel()
            raise
        finally:
            waiter.cancel()

        if future in done:
            return future.result()
        future.cancel()
        raise TransportCancelledError("Request cancelled by caller")

    def _fail(self, operation: str, method: str, path: str, outcome: Any) -> Result:
        failure = self.classifier.classify(outcome)
        self.logger.warning(
            "Gateway call failed",
            operation=operation,
            method=method,
            path=path,
            kind=failure.kind.value,
            retryable=failure.retryable,
            code=failure.code,
            error=failure.message,
        )
        self._record_call(operation, "failure")
        if self.metrics:
            self.metrics.record_failure(failure.kind.value, failure.retryable)
        return Result.from_failure(failure)

    def _record_call(self, operation: str, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("gateway_calls_total", operation=operation, outcome=outcome)

    async def _sweep_periodically(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            removed = self.cache.sweep_expired()
            if removed:
                self.logger.debug("Expired cache entries swept", removed=removed)


def create_gateway(
    config: Optional[GatewayConfig] = None,
    *,
    metrics: Optional[MetricsCollector] = None,
    clock: Optional[Clock] = None,
) -> NetworkGateway:
    """Build a gateway talking HTTP to ``config.base_url``.

    Configures structured logging for the service and, unless a collector is
    passed, gives the gateway its own metrics registry.
    """
    config = config or GatewayConfig()
    configure_logging(config.service_name, config.log_level)
    metrics = metrics or get_metrics_collector(config.service_name)
    transport = HttpTransport(config.base_url, TimeoutConfig.from_config(config))
    return NetworkGateway(transport, config=config, metrics=metrics, clock=clock)
