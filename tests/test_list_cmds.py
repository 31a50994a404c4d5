from __future__ import annotations

import pytest
from fakes import FakeServald
from typer.testing import CliRunner

from meshfeed import context
from meshfeed.cli import app
from meshfeed.errors import TransportError
from meshfeed.servald import MessagePlyList, PlyMessage, RhizomeBundle, RhizomeBundleList

runner = CliRunner()

FIRST = PlyMessage(offset=10, token="t1", text="hello mesh", timestamp=None)
SECOND = PlyMessage(offset=20, token="t2", text="second post", timestamp=None)
THIRD = PlyMessage(offset=30, token="t3", text="third post", timestamp=None)


def _bundle(manifest_id: str, service: str, name: str) -> RhizomeBundle:
    return RhizomeBundle(
        manifest_id=manifest_id,
        version=1,
        token=f"tok-{manifest_id}",
        service=service,
        name=name,
        sender="SID1",
        recipient=None,
        author=None,
        date=None,
        filesize=None,
    )


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> FakeServald:
    fake = FakeServald()
    monkeypatch.setattr(context, "ServaldClient", lambda *args, **kwargs: fake)
    return fake


def test_feed_prints_history_and_name(client: FakeServald) -> None:
    client.plies = [MessagePlyList(name="Alice", messages=[FIRST, SECOND], token="t2")]

    result = runner.invoke(app, ["feed", "KEY1"])

    assert result.exit_code == 0
    assert "10 hello mesh" in result.stdout
    assert "20 second post" in result.stdout
    assert "Alice (2 messages)" in result.stdout
    assert "list reset" not in result.stdout
    assert client.calls == [("messages", None)]


def test_feed_reloads_history_unless_resuming(client: FakeServald) -> None:
    client.plies = [
        MessagePlyList(name=None, messages=[FIRST, SECOND], token="t2"),
        MessagePlyList(name=None, messages=[FIRST, SECOND], token="t2"),
        MessagePlyList(name=None, messages=[THIRD], token="t3"),
    ]

    assert runner.invoke(app, ["feed", "KEY1"]).exit_code == 0
    again = runner.invoke(app, ["feed", "KEY1"])
    resumed = runner.invoke(app, ["feed", "KEY1", "--resume"])

    assert "hello mesh" in again.stdout
    assert resumed.exit_code == 0
    assert "third post" in resumed.stdout
    assert "hello mesh" not in resumed.stdout
    assert client.calls == [
        ("messages", None),
        ("messages", None),
        ("messages_since", "t2"),
    ]


def test_feed_exits_non_zero_when_daemon_is_unreachable(client: FakeServald) -> None:
    client.plies = [TransportError("daemon unreachable")]

    result = runner.invoke(app, ["feed", "KEY1"])

    assert result.exit_code == 1
    assert "daemon unreachable" in result.stdout


def test_bundles_filters_by_service(client: FakeServald) -> None:
    client.listings = [
        RhizomeBundleList(
            bundles=[
                _bundle("MID1", "file", "notes.txt"),
                _bundle("MID2", "MeshMB1", "Alice"),
            ],
            token="tok-MID2",
        )
    ]

    result = runner.invoke(app, ["bundles", "--service", "file"])

    assert result.exit_code == 0
    assert "notes.txt" in result.stdout
    assert "Alice" not in result.stdout
    assert client.calls == [("bundles", None)]
