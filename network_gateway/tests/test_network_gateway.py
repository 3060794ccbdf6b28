"""
Unit tests for NetworkGateway.
"""

import asyncio

import pytest
from prometheus_client import CollectorRegistry

from network_gateway.app.adapters.transport import RawResult, TimeoutConfig
from network_gateway.app.caching.keys import make_cache_key
from network_gateway.app.failures.models import FailureKind
from network_gateway.app.gateway import NetworkGateway
from shared.config import GatewayConfig
from shared.errors import TransportConnectionError, TransportTimeoutError
from shared.logging import clear_context, request_id_var, set_request_id
from shared.metrics import MetricsCollector
from shared.test_helpers import FakeTransport, ManualClock


async def wait_for_calls(transport, count=1):
    """Yield to the loop until the transport has seen ``count`` calls."""
    for _ in range(500):
        if len(transport.calls) >= count:
            return
        await asyncio.sleep(0.002)
    raise AssertionError(f"transport saw {len(transport.calls)} calls, expected {count}")


class TestNetworkGateway:
    """Test cases for NetworkGateway."""

    @pytest.fixture
    def clock(self):
        """Manual clock for cache expiry."""
        return ManualClock(1000.0)

    @pytest.fixture
    def config(self):
        """Gateway configuration with a short batch window."""
        return GatewayConfig(
            cache_ttl_seconds=60.0,
            cache_max_size=10,
            batch_delay_seconds=0.005,
            connect_timeout_seconds=1.0,
            send_timeout_seconds=2.0,
            receive_timeout_seconds=3.0,
        )

    @pytest.fixture
    def transport(self):
        """Scripted transport."""
        return FakeTransport(default=RawResult(200, {"ok": True}))

    @pytest.fixture
    def gateway(self, transport, config, clock):
        """Gateway wired to the fake transport."""
        return NetworkGateway(transport, config=config, clock=clock)

    @pytest.mark.asyncio
    async def test_read_miss_then_hit(self, gateway, transport):
        """Test the second read is served from cache without a transport call."""
        transport.script("GET", "/users", RawResult(200, [{"id": 1}]))

        first = await gateway.read("/users", {"page": 1})
        second = await gateway.read("/users", {"page": 1})

        assert first.ok and second.ok
        assert first.value == second.value == [{"id": 1}]
        assert len(transport.calls_to("GET", "/users")) == 1
        assert transport.calls[0].params == {"page": 1}

    @pytest.mark.asyncio
    async def test_param_order_shares_cache_entry(self, gateway, transport):
        """Test parameter order at the call site does not split the cache."""
        await gateway.read("/items", {"b": 2, "a": 1})
        result = await gateway.read("/items", {"a": 1, "b": 2})

        assert result.ok
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_empty_body_is_cached(self, gateway, transport):
        """Test a successful None body still counts as a cache hit."""
        transport.script("GET", "/ping", RawResult(204))

        await gateway.read("/ping")
        result = await gateway.read("/ping")

        assert result.ok and result.value is None
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_expired_entry_is_refetched(self, gateway, transport, clock):
        """Test reads after the TTL go back to the transport."""
        await gateway.read("/users")
        clock.advance(60.0)
        await gateway.read("/users")

        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_http_failure_is_classified_and_not_cached(self, gateway, transport):
        """Test a 404 becomes NOT_FOUND and leaves the cache empty."""
        transport.script("GET", "/users/9", RawResult(404, {"detail": "no such user"}))

        result = await gateway.read("/users/9")

        assert not result.ok
        assert result.failure.kind is FailureKind.NOT_FOUND
        assert result.failure.retryable is False
        assert result.failure.message == "no such user"
        assert gateway.cache.size() == 0

    @pytest.mark.asyncio
    async def test_transport_exception_never_escapes(self, gateway, transport):
        """Test transport exceptions come back as failures."""
        transport.script("GET", "/slow", TransportTimeoutError("receive"))
        transport.script("GET", "/down", TransportConnectionError())
        transport.script("GET", "/bug", ValueError("bad payload"))

        slow = await gateway.read("/slow")
        down = await gateway.read("/down")
        bug = await gateway.read("/bug")

        assert slow.failure.kind is FailureKind.TIMEOUT and slow.failure.retryable
        assert down.failure.kind is FailureKind.NETWORK_UNAVAILABLE and down.failure.retryable
        assert bug.failure.kind is FailureKind.UNKNOWN and not bug.failure.retryable
        assert gateway.cache.size() == 0

    @pytest.mark.asyncio
    async def test_failure_then_success_caches(self, gateway, transport):
        """Test a later success is cached after an earlier failure."""
        transport.script("GET", "/flaky", RawResult(503), RawResult(200, {"v": 2}))

        first = await gateway.read("/flaky")
        second = await gateway.read("/flaky")
        third = await gateway.read("/flaky")

        assert first.failure.kind is FailureKind.SERVER_ERROR
        assert second.value == third.value == {"v": 2}
        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_mutation_invalidates_cached_query(self, gateway, transport):
        """Test a successful POST /users purges the cached /users query."""
        await gateway.read("/users", {"page": 1})
        assert len(transport.calls_to("GET", "/users")) == 1

        result = await gateway.mutate("POST", "/users", {"name": "ada"})
        assert result.ok

        await gateway.read("/users", {"page": 1})
        assert len(transport.calls_to("GET", "/users")) == 2
        post = transport.calls_to("POST", "/users")[0]
        assert post.body == {"name": "ada"}

    @pytest.mark.asyncio
    async def test_invalidation_is_substring_based(self, gateway):
        """Test only keys containing the mutated path are removed."""
        for path in ("/users", "/users/42", "/users/42/posts", "/teams"):
            await gateway.read(path)

        await gateway.mutate("PUT", "/users/42", {"name": "grace"})

        remaining = gateway.cache.keys()
        assert all("/users/42" not in key for key in remaining)
        assert sorted(remaining) == sorted([
            make_cache_key("GET", "/users"),
            make_cache_key("GET", "/teams"),
        ])

    @pytest.mark.asyncio
    async def test_resource_mutation_leaves_collection_query_cached(self, gateway, transport):
        """Test a mutation of /users/42 does not purge the /users collection query."""
        await gateway.read("/users", {"team": 1})

        assert (await gateway.mutate("PUT", "/users/42", {"name": "grace"})).ok
        await gateway.read("/users", {"team": 1})

        assert len(transport.calls_to("GET", "/users")) == 1
        assert gateway.cache.keys() == [make_cache_key("GET", "/users", {"team": 1})]

    @pytest.mark.asyncio
    async def test_failed_mutation_keeps_cache(self, gateway, transport):
        """Test the cache is untouched when the mutation fails."""
        transport.script("DELETE", "/users/42", RawResult(403))
        await gateway.read("/users/42")

        result = await gateway.mutate("delete", "/users/42")

        assert result.failure.kind is FailureKind.AUTHORIZATION
        assert gateway.cache.size() == 1

    @pytest.mark.asyncio
    async def test_mutation_is_never_cached(self, gateway, transport):
        """Test repeated mutations always reach the transport."""
        await gateway.mutate("POST", "/events", {"n": 1})
        await gateway.mutate("POST", "/events", {"n": 1})

        assert len(transport.calls_to("POST", "/events")) == 2
        assert gateway.cache.size() == 0

    @pytest.mark.asyncio
    async def test_path_prefix_invalidation_mode(self, transport, clock):
        """Test the narrower prefix policy spares unrelated paths."""
        config = GatewayConfig(batch_delay_seconds=0.0, invalidation_mode="path_prefix")
        gateway = NetworkGateway(transport, config=config, clock=clock)
        for path in ("/users", "/users/42", "/admin/users"):
            await gateway.read(path)

        await gateway.mutate("POST", "/users")

        assert gateway.cache.keys() == [make_cache_key("GET", "/admin/users")]

    @pytest.mark.asyncio
    async def test_concurrent_reads_share_a_flush_but_not_a_call(self, gateway, transport):
        """Test identical concurrent misses each reach the transport in one batch."""
        results = await asyncio.gather(*[gateway.read("/users") for _ in range(3)])

        assert all(result.ok for result in results)
        assert len(transport.calls) == 3
        assert gateway.scheduler.flush_count == 1

    @pytest.mark.asyncio
    async def test_batch_member_failure_is_isolated(self, gateway, transport):
        """Test one failing read in a flush does not fail the others."""
        transport.script("GET", "/bad", RawResult(500))

        good, bad, other = await asyncio.gather(
            gateway.read("/good"), gateway.read("/bad"), gateway.read("/other")
        )

        assert good.ok and other.ok
        assert bad.failure.kind is FailureKind.SERVER_ERROR
        assert gateway.scheduler.flush_count == 1

    @pytest.mark.asyncio
    async def test_cancel_event_resolves_cancelled(self, gateway, transport):
        """Test caller-requested cancellation yields CANCELLED and caches nothing."""
        transport.release = asyncio.Event()
        cancel = asyncio.Event()

        pending = asyncio.ensure_future(gateway.read("/users", cancel_event=cancel))
        await wait_for_calls(transport)
        cancel.set()
        result = await asyncio.wait_for(pending, timeout=1.0)

        assert result.failure.kind is FailureKind.CANCELLED
        assert result.failure.retryable is False
        assert gateway.cache.size() == 0

    @pytest.mark.asyncio
    async def test_preset_cancel_event(self, gateway, transport):
        """Test an already-set event cancels before the transport is called."""
        cancel = asyncio.Event()
        cancel.set()

        result = await gateway.mutate("POST", "/users", {}, cancel_event=cancel)
        await asyncio.sleep(0.02)

        assert result.failure.kind is FailureKind.CANCELLED
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_cancel_event_after_completion_is_ignored(self, gateway):
        """Test an unset event does not interfere with a normal read."""
        result = await gateway.read("/users", cancel_event=asyncio.Event())
        assert result.ok

    @pytest.mark.asyncio
    async def test_caller_task_cancellation_propagates(self, gateway, transport):
        """Test cancelling the caller's own task raises CancelledError."""
        transport.release = asyncio.Event()

        task = asyncio.ensure_future(gateway.read("/users"))
        await wait_for_calls(transport)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0.01)
        assert gateway.cache.size() == 0
        assert gateway.scheduler.in_flight_count == 0

    @pytest.mark.asyncio
    async def test_default_and_per_call_timeouts(self, gateway, transport):
        """Test configured timeouts are sent unless overridden per call."""
        await gateway.read("/a")
        override = TimeoutConfig(connect=0.1, send=0.2, receive=0.3)
        await gateway.mutate("POST", "/b", timeout=override)

        assert transport.calls[0].timeout == TimeoutConfig(connect=1.0, send=2.0, receive=3.0)
        assert transport.calls[1].timeout == override

    @pytest.mark.asyncio
    async def test_shutdown_closes_and_rejects(self, gateway, transport):
        """Test shutdown clears state and later calls fail without raising."""
        await gateway.read("/users")
        await gateway.shutdown()

        assert transport.closed is True
        assert gateway.cache.size() == 0

        result = await gateway.read("/users")
        assert result.failure.kind is FailureKind.UNKNOWN
        assert result.failure.code == "SCHEDULER_CLOSED"

    @pytest.mark.asyncio
    async def test_periodic_sweep(self, transport, clock):
        """Test the optional sweep drops expired entries without reads."""
        config = GatewayConfig(
            cache_ttl_seconds=1.0,
            batch_delay_seconds=0.0,
            cache_sweep_interval_seconds=0.01,
        )
        async with NetworkGateway(transport, config=config, clock=clock) as gateway:
            await gateway.read("/users")
            assert gateway.cache.size() == 1

            clock.advance(5.0)
            await asyncio.sleep(0.05)
            assert gateway.cache.size() == 0

    @pytest.mark.asyncio
    async def test_lazy_expiry_without_sweep(self, gateway, clock):
        """Test expired entries stay resident until read when no sweep runs."""
        await gateway.start()
        await gateway.read("/users")
        clock.advance(120.0)
        await asyncio.sleep(0.02)

        assert gateway.cache.size() == 1
        await gateway.shutdown()

    @pytest.mark.asyncio
    async def test_independent_gateways_do_not_share_cache(self, transport, config, clock):
        """Test two gateways hold separate caches."""
        first = NetworkGateway(transport, config=config, clock=clock)
        second = NetworkGateway(transport, config=config, clock=clock)

        await first.read("/users")
        await second.read("/users")

        assert len(transport.calls) == 2
        assert first.cache is not second.cache

    @pytest.mark.asyncio
    async def test_metrics_and_stats(self, transport, config, clock):
        """Test call outcomes and failures are recorded."""
        metrics = MetricsCollector("test", registry=CollectorRegistry())
        gateway = NetworkGateway(transport, config=config, clock=clock, metrics=metrics)
        transport.script("GET", "/limited", RawResult(429, None, {"Retry-After": "1"}))

        await gateway.read("/users")
        await gateway.read("/users")
        limited = await gateway.read("/limited")

        assert limited.failure.retry_after == 1.0
        assert metrics.sample_value("gateway_calls_total", operation="read", outcome="success") == 1
        assert metrics.sample_value("gateway_calls_total", operation="read", outcome="cached") == 1
        assert metrics.sample_value("gateway_calls_total", operation="read", outcome="failure") == 1
        assert metrics.sample_value(
            "gateway_failures_total", kind="rate_limited", retryable="true"
        ) == 1
        assert metrics.sample_value("transport_duration_seconds_count", method="GET") == 2

        stats = gateway.stats()
        assert stats["cache"]["size"] == 1
        assert stats["cache"]["hits"] == 1
        assert stats["scheduler"]["flushes"] == 2

    @pytest.mark.asyncio
    async def test_returned_values_do_not_alias_cache(self, gateway, transport):
        """Test modifying a returned body does not change what later readers get."""
        transport.script("GET", "/users/1", RawResult(200, {"id": 1, "tags": ["a"]}))

        first = await gateway.read("/users/1")
        first.value["tags"].append("changed")
        second = await gateway.read("/users/1")
        second.value["name"] = "changed"
        third = await gateway.read("/users/1")

        assert third.value == {"id": 1, "tags": ["a"]}
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_caller_request_id_reaches_transport(self, gateway, transport):
        """Test a request ID bound by the caller is kept for the whole call."""
        set_request_id("req-42")
        try:
            await gateway.read("/users")
            await gateway.mutate("POST", "/users", {"name": "ada"})
        finally:
            clear_context()

        assert [call.request_id for call in transport.calls] == ["req-42", "req-42"]

    @pytest.mark.asyncio
    async def test_each_call_gets_its_own_request_id(self, gateway, transport):
        """Test batched calls keep separate generated IDs that do not leak to the caller."""
        await asyncio.gather(gateway.read("/a"), gateway.read("/b"))

        ids = {call.path: call.request_id for call in transport.calls}
        assert gateway.scheduler.flush_count == 1
        assert ids["/a"] and ids["/b"]
        assert ids["/a"] != ids["/b"]
        assert request_id_var.get() is None
