from __future__ import annotations

import asyncio
import random
import time
from collections import Counter

import pytest

import netdiag.engine.sockets as sockets
from netdiag.engine.envelope import DeadlineExceeded, NetworkError


class _FakeWriter:
    def __init__(self):
        self.close_calls = 0

    def close(self):
        self.close_calls += 1

    async def wait_closed(self):
        return None

    def get_extra_info(self, name):
        return None


def test_race_returns_work_value_when_it_finishes_first():
    async def scenario():
        async def work():
            await asyncio.sleep(0.01)
            return "done"

        return await sockets.race(work(), 1.0)

    assert asyncio.run(scenario()) == "done"


def test_race_propagates_work_exception():
    async def scenario():
        async def work():
            raise ConnectionRefusedError()

        await sockets.race(work(), 1.0)

    with pytest.raises(ConnectionRefusedError):
        asyncio.run(scenario())


def test_race_deadline_cancels_work():
    state = {"cancelled": False}

    async def scenario():
        async def work():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                state["cancelled"] = True
                raise

        started = time.monotonic()
        with pytest.raises(DeadlineExceeded) as info:
            await sockets.race(work(), 0.05, what="read timed out")
        await asyncio.sleep(0)
        return time.monotonic() - started, str(info.value)

    elapsed, message = asyncio.run(scenario())
    assert elapsed < 1.0
    assert message == "read timed out"
    assert state["cancelled"] is True


def test_race_discards_value_produced_after_losing():
    discarded = []

    async def scenario():
        async def stubborn():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                pass
            return "late-connection"

        with pytest.raises(DeadlineExceeded):
            await sockets.race(stubborn(), 0.01, on_discard=discarded.append)
        await asyncio.sleep(0.01)

    asyncio.run(scenario())
    assert discarded == ["late-connection"]


def test_connection_attempt_single_outcome_and_single_close_under_random_races():
    rng = random.Random(20240601)

    async def scenario():
        outcomes = Counter()
        writers = []
        for _ in range(1000):
            delay = rng.uniform(0, 0.002)
            fail = rng.random() < 0.3
            timeout = rng.uniform(0, 0.002)

            async def opener(delay=delay, fail=fail):
                await asyncio.sleep(delay)
                if fail:
                    raise ConnectionRefusedError()
                writer = _FakeWriter()
                writers.append(writer)
                return object(), writer

            observed = []
            try:
                async with sockets.ConnectionAttempt("fake.test", 1, timeout=timeout, opener=opener):
                    observed.append("connected")
            except DeadlineExceeded:
                observed.append("timeout")
            except NetworkError:
                observed.append("error")
            assert len(observed) == 1
            outcomes[observed[0]] += 1
        await asyncio.sleep(0.05)
        return outcomes, writers

    outcomes, writers = asyncio.run(scenario())
    assert sum(outcomes.values()) == 1000
    assert set(outcomes) == {"connected", "error", "timeout"}
    assert writers
    assert all(w.close_calls == 1 for w in writers)


def test_connection_attempt_closes_once_when_body_raises():
    writer = _FakeWriter()

    async def scenario():
        async def opener():
            return object(), writer

        attempt = sockets.ConnectionAttempt("fake.test", 1, timeout=1.0, opener=opener)
        with pytest.raises(RuntimeError):
            async with attempt:
                raise RuntimeError("probe bug")
        await attempt.close()

    asyncio.run(scenario())
    assert writer.close_calls == 1


def test_connection_attempt_maps_refusal_to_network_error():
    async def scenario():
        async def opener():
            raise ConnectionRefusedError(111, "Connection refused")

        async with sockets.ConnectionAttempt("fake.test", 1, timeout=1.0, opener=opener):
            pass

    with pytest.raises(NetworkError) as info:
        asyncio.run(scenario())
    assert str(info.value) == "connection refused"


def test_read_until_eof_truncates_at_limit():
    async def scenario():
        async def handler(reader, writer):
            writer.write(b"x" * 5000)
            await writer.drain()
            try:
                await reader.read()
            except ConnectionError:
                pass
            writer.close()

        server = await asyncio.start_server(handler, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        async with server:
            async with sockets.ConnectionAttempt("127.0.0.1", port, timeout=2.0) as conn:
                return await conn.read_until_eof(1000)

    data, truncated = asyncio.run(scenario())
    assert len(data) == 1000
    assert truncated is True


def test_describe_os_error_messages():
    assert sockets.describe_os_error(ConnectionRefusedError()) == "connection refused"
    assert sockets.describe_os_error(ConnectionResetError()) == "connection reset by peer"
    assert sockets.describe_os_error(OSError("No route to host")) == "OSError: No route to host"
