"""
End-to-end tests for SessionClient over a fake transport.
"""

import asyncio
import json

import pytest
from bson.timestamp import Timestamp

from logical_sessions._exceptions import (
    ClientClosedError,
    ClientConfigurationError,
    NetworkError,
    OperationFailure,
    SessionEndedError,
    SessionInUseError,
    UsageError,
)
from logical_sessions.client import SessionClient
from logical_sessions.config import CONFIG_ENV_VAR, ConfigManager
from logical_sessions.monitoring import session_key


def _ids(command):
    return {bytes(lsid["id"]) for lsid in command["endSessions"]}


# --- construction ---


def test_invalid_config_rejected(fake_transport):
    with pytest.raises(ClientConfigurationError):
        SessionClient(fake_transport, {"end_sessions_batch_size": 0})


@pytest.mark.asyncio
async def test_from_config(fake_transport, tmp_path, monkeypatch):
    path = tmp_path / "sessions.json"
    path.write_text(json.dumps({"client": {"causal_consistency": False, "session_timeout_minutes": 30}}))
    monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

    client = await SessionClient.from_config(fake_transport, ConfigManager())
    assert client.default_causal_consistency is False
    assert client.session_timeout_minutes == 30


@pytest.mark.parametrize("value", [0, -1, True, 1.5, "30"])
def test_update_session_timeout_rejects_invalid(client, value):
    with pytest.raises(ValueError, match="positive integer or None"):
        client.update_session_timeout(value)


def test_update_session_timeout(client):
    client.update_session_timeout(30)
    assert client.session_timeout_minutes == 30
    client.update_session_timeout(None)
    assert client.session_timeout_minutes is None


# --- explicit sessions ---


@pytest.mark.asyncio
async def test_close_ends_explicit_sessions_in_one_batch(client, fake_transport):
    first = await client.start_session()
    second = await client.start_session()
    expected = {session_key(first.session_id), session_key(second.session_id)}

    await client.run_command({"ping": 1}, session=first)
    await client.run_command({"ping": 1}, session=second)
    await client.close()

    [end_sessions] = fake_transport.started("endSessions")
    assert _ids(end_sessions) == expected
    assert end_sessions["$db"] == "admin"
    assert len(client.pool) == 0
    assert first.has_ended and second.has_ended


@pytest.mark.asyncio
async def test_commands_on_one_session_share_lsid(client, fake_transport):
    session = await client.start_session()
    for _ in range(10):
        await client.run_command({"find": "coll", "filter": {}}, session=session)

    lsids = {session_key(c["lsid"]) for c in fake_transport.started("find")}
    assert lsids == {session_key(session.session_id)}
    await session.end()


@pytest.mark.asyncio
async def test_read_after_write_is_causally_constrained(client, fake_transport):
    fake_transport.replies = [{"ok": 1, "operationTime": Timestamp(100, 1)}]
    session = await client.start_session()

    await client.run_command({"insert": "coll", "documents": [{}]}, session=session)
    await client.run_command({"find": "coll", "filter": {}}, session=session)

    insert, find = fake_transport.commands
    assert "readConcern" not in insert
    assert find["readConcern"]["afterClusterTime"] == Timestamp(100, 1)


@pytest.mark.asyncio
async def test_cluster_time_is_gossiped_across_sessions(client, fake_transport, make_cluster_time):
    fake_transport.replies = [{"ok": 1, "$clusterTime": make_cluster_time(50)}]
    await client.run_command({"ping": 1})

    session = await client.start_session()
    await client.run_command({"ping": 1}, session=session)
    assert fake_transport.commands[1]["$clusterTime"]["clusterTime"] == Timestamp(50, 1)
    assert client.cluster_time["clusterTime"] == Timestamp(50, 1)


@pytest.mark.asyncio
async def test_command_on_ended_session(client):
    session = await client.start_session()
    await session.end()
    with pytest.raises(SessionEndedError):
        await client.run_command({"ping": 1}, session=session)


@pytest.mark.asyncio
async def test_session_from_other_client_rejected(client, fake_transport):
    other = SessionClient(fake_transport)
    session = await other.start_session()
    with pytest.raises(UsageError, match="different client"):
        await client.run_command({"ping": 1}, session=session)


@pytest.mark.asyncio
async def test_concurrent_use_of_one_session_rejected():
    gate = asyncio.Event()

    class SlowTransport:
        async def run_command(self, command):
            await gate.wait()
            return {"ok": 1}

    client = SessionClient(SlowTransport())
    session = await client.start_session()
    first = asyncio.create_task(client.run_command({"ping": 1}, session=session))
    await asyncio.sleep(0)

    with pytest.raises(SessionInUseError):
        await client.run_command({"ping": 1}, session=session)

    gate.set()
    assert await first == {"ok": 1}
    # Usable again once the first command finished
    await client.run_command({"ping": 1}, session=session)


@pytest.mark.asyncio
async def test_server_error_keeps_session_clean(client, fake_transport):
    fake_transport.replies = [OperationFailure("duplicate key", code=11000)]
    session = await client.start_session()
    with pytest.raises(OperationFailure):
        await client.run_command({"insert": "coll", "documents": [{}]}, session=session)
    assert not session.is_dirty
    await session.end()
    assert len(client.pool) == 1


@pytest.mark.asyncio
async def test_dirty_explicit_session_never_sent_to_end_sessions(client, fake_transport):
    fake_transport.replies = [NetworkError("connection reset")]
    dirty = await client.start_session()
    clean = await client.start_session()
    with pytest.raises(NetworkError):
        await client.run_command({"ping": 1}, session=dirty)
    dirty_key = session_key(dirty.session_id)
    clean_key = session_key(clean.session_id)

    await client.close()
    [end_sessions] = fake_transport.started("endSessions")
    assert _ids(end_sessions) == {clean_key}
    assert dirty_key not in _ids(end_sessions)


# --- implicit sessions ---


@pytest.mark.asyncio
async def test_implicit_session_is_reused(client, fake_transport, listener):
    await client.run_command({"insert": "coll", "documents": [{}]})
    await client.run_command({"insert": "coll", "documents": [{}]})

    first, second = fake_transport.commands
    assert session_key(first["lsid"]) == session_key(second["lsid"])
    assert client.pool.created_count == 1
    assert len(client.pool) == 1
    assert client.active_session_count == 0
    assert all(e.implicit for e in listener.created)


@pytest.mark.asyncio
async def test_dirty_implicit_session_is_replaced(client, fake_transport):
    fake_transport.replies = [NetworkError("connection reset")]
    with pytest.raises(NetworkError):
        await client.run_command({"insert": "coll", "documents": [{}]})
    await client.run_command({"insert": "coll", "documents": [{}]})

    failed, retried = fake_transport.commands
    assert session_key(failed["lsid"]) != session_key(retried["lsid"])
    assert client.pool.discarded_count == 1


@pytest.mark.asyncio
async def test_retryable_implicit_command_carries_txn_number(client, fake_transport):
    await client.run_command({"insert": "coll", "documents": [{}]}, retryable=True)
    await client.run_command({"insert": "coll", "documents": [{}]}, retryable=True)
    assert [c["txnNumber"] for c in fake_transport.commands] == [1, 2]


@pytest.mark.asyncio
async def test_implicit_session_ended_when_command_cancelled(listener):
    class HangingTransport:
        async def run_command(self, command):
            await asyncio.sleep(3600)

    client = SessionClient(HangingTransport(), listeners=[listener])
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(client.run_command({"ping": 1}), timeout=0.01)
    assert client.active_session_count == 0
    assert len(client.pool) == 1
    assert len(listener.ended) == 1


# --- with_session ---


@pytest.mark.asyncio
async def test_with_session_runs_commands_on_one_session(client, fake_transport):
    async def operation(session):
        await client.run_command({"insert": "coll", "documents": [{}]}, session=session)
        await client.run_command({"find": "coll"}, session=session)
        return session

    session = await client.with_session(operation)
    assert session.has_ended
    assert session.is_explicit
    insert, find = fake_transport.commands
    assert session_key(insert["lsid"]) == session_key(find["lsid"])
    assert len(client.pool) == 1


# --- close ---


@pytest.mark.asyncio
async def test_close_is_idempotent(client, fake_transport):
    await client.run_command({"ping": 1})
    await client.close()
    await client.close()
    assert len(fake_transport.started("endSessions")) == 1
    assert client.is_closed


@pytest.mark.asyncio
async def test_close_with_empty_pool_sends_nothing(client, fake_transport):
    await client.close()
    assert fake_transport.commands == []


@pytest.mark.asyncio
async def test_use_after_close_raises(client):
    session = await client.start_session()
    await client.close()
    with pytest.raises(ClientClosedError):
        await client.start_session()
    with pytest.raises(ClientClosedError):
        await client.run_command({"ping": 1})
    with pytest.raises(ClientClosedError):
        await client.run_command({"ping": 1}, session=session)


@pytest.mark.asyncio
async def test_close_survives_unreachable_server(client, fake_transport, listener):
    await client.run_command({"ping": 1})
    fake_transport.replies = [NetworkError("server unreachable")]
    await client.close()
    assert client.is_closed
    assert listener.end_sessions[0].succeeded is False


@pytest.mark.asyncio
async def test_close_batches_by_configured_size(fake_transport):
    client = SessionClient(fake_transport, {"end_sessions_batch_size": 2})
    for _ in range(5):
        await client.start_session()
    await client.close()

    batches = fake_transport.started("endSessions")
    assert sorted(len(c["endSessions"]) for c in batches) == [1, 2, 2]
    assert len(set().union(*(_ids(c) for c in batches))) == 5


@pytest.mark.asyncio
async def test_async_context_manager_closes(fake_transport):
    async with SessionClient(fake_transport) as client:
        await client.run_command({"ping": 1})
    assert client.is_closed
    assert len(fake_transport.started("endSessions")) == 1


@pytest.mark.asyncio
async def test_every_created_session_is_ended(client, listener):
    async def worker():
        for _ in range(5):
            await client.run_command({"ping": 1})
            async with await client.start_session() as session:
                await client.run_command({"find": "coll"}, session=session)

    await asyncio.gather(*(worker() for _ in range(4)))
    await client.close()

    created = [e.session_key for e in listener.created]
    ended = [e.session_key for e in listener.ended]
    assert len(created) == len(ended) == 40
    assert sorted(created) == sorted(ended)

    idle_ids = set().union(*(set(session_key(i) for i in e.session_ids) for e in listener.end_sessions))
    assert idle_ids == set(created)


# --- ending a session while its command is in flight ---


class GatedTransport:
    """Holds session commands until ``gate`` is set and rejects an lsid already in flight."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.in_flight: set[bytes] = set()
        self.commands = []
        self.fail_next = None

    async def run_command(self, command):
        self.commands.append(command)
        if "endSessions" in command:
            return {"ok": 1}
        key = session_key(command["lsid"])
        assert key not in self.in_flight, "lsid used by two concurrent operations"
        self.in_flight.add(key)
        try:
            await self.gate.wait()
            if self.fail_next is not None:
                error, self.fail_next = self.fail_next, None
                raise error
            return {"ok": 1}
        finally:
            self.in_flight.discard(key)


@pytest.mark.asyncio
async def test_session_ended_in_flight_is_not_reused_until_done():
    transport = GatedTransport()
    client = SessionClient(transport)
    session = await client.start_session()
    key = session_key(session.session_id)

    first = asyncio.create_task(client.run_command({"find": "c"}, session=session))
    await asyncio.sleep(0)
    await session.end()
    assert session.has_ended
    assert len(client.pool) == 0

    second = asyncio.create_task(client.run_command({"find": "c"}))
    await asyncio.sleep(0)
    transport.gate.set()
    await asyncio.gather(first, second)

    assert session_key(transport.commands[1]["lsid"]) != key
    assert len(client.pool) == 2
    assert client.active_session_count == 0


@pytest.mark.asyncio
async def test_network_fault_after_in_flight_end_discards_session():
    transport = GatedTransport()
    transport.fail_next = NetworkError("connection reset")
    client = SessionClient(transport)
    session = await client.start_session()
    key = session_key(session.session_id)

    first = asyncio.create_task(client.run_command({"find": "c"}, session=session))
    await asyncio.sleep(0)
    await session.end()
    transport.gate.set()
    with pytest.raises(NetworkError):
        await first

    assert len(client.pool) == 0
    assert client.pool.discarded_count == 1
    await client.run_command({"find": "c"})
    assert session_key(transport.commands[-1]["lsid"]) != key


@pytest.mark.asyncio
async def test_close_does_not_end_sessions_still_in_flight():
    transport = GatedTransport()
    client = SessionClient(transport)
    idle = await client.start_session()
    idle_key = session_key(idle.session_id)
    await idle.end()
    busy = await client.start_session()
    busy_key = session_key(busy.session_id)

    first = asyncio.create_task(client.run_command({"find": "c"}, session=busy))
    await asyncio.sleep(0)
    await client.close()

    [end_sessions] = [c for c in transport.commands if "endSessions" in c]
    assert _ids(end_sessions) == {idle_key}
    assert busy_key not in _ids(end_sessions)

    transport.gate.set()
    assert await first == {"ok": 1}
    assert len(client.pool) == 0
    assert client.pool.discarded_count == 1
    assert client.active_session_count == 0
