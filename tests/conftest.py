from typing import Any

import pytest
from bson.timestamp import Timestamp

from logical_sessions.client import SessionClient
from logical_sessions.monitoring import SessionEventListener


class FakeTransport:
    """Records every command and answers from a queue of replies or exceptions."""

    def __init__(self):
        self.commands: list[dict[str, Any]] = []
        self.replies: list[Any] = []
        self.default_reply: dict[str, Any] = {"ok": 1}

    async def run_command(self, command: dict[str, Any]) -> dict[str, Any]:
        self.commands.append(command)
        if self.replies:
            reply = self.replies.pop(0)
            if isinstance(reply, BaseException):
                raise reply
            return reply
        return dict(self.default_reply)

    def started(self, command_name: str) -> list[dict[str, Any]]:
        return [c for c in self.commands if next(iter(c)) == command_name]


class RecordingListener(SessionEventListener):
    def __init__(self):
        self.created = []
        self.ended = []
        self.end_sessions = []

    def session_created(self, event):
        self.created.append(event)

    def session_ended(self, event):
        self.ended.append(event)

    def end_sessions_dispatched(self, event):
        self.end_sessions.append(event)


def cluster_time_doc(time: int, inc: int = 1) -> dict[str, Any]:
    return {"clusterTime": Timestamp(time, inc), "signature": {"hash": b"\x00" * 20, "keyId": 0}}


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def client(fake_transport, listener):
    return SessionClient(fake_transport, listeners=[listener])


@pytest.fixture
def make_cluster_time():
    return cluster_time_doc
