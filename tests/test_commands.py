"""
Unit tests for the per-line command state machine
"""
from unittest.mock import Mock

import pytest

from server.client_connection import ClientConnection, ConnectionState
from server.commands import Outcome, process_line


def new_client(nickname=None):
    client = ClientConnection(Mock(), ('127.0.0.1', 1678), 1)
    if nickname:
        client.register(nickname)
    return client


@pytest.mark.fast
def test_valid_nick_registers():
    client = new_client()
    outcome = process_line(client, b"NICK alice")
    assert outcome == Outcome(reply=b"OK\n")
    assert client.registered
    assert client.state is ConnectionState.REGISTERED
    assert client.nickname == "alice"


@pytest.mark.fast
@pytest.mark.parametrize("line", [b"NICK ", b"NICK bad@name", b"NICK thirteenchars", b"NICK two words"])
def test_invalid_nick_rejected(line):
    client = new_client()
    assert process_line(client, line) == Outcome(reply=b"ERROR: Invalid nickname format\n")
    assert not client.registered
    assert client.nickname == ""


@pytest.mark.fast
@pytest.mark.parametrize("line", [b"MSG hi", b"", b"nick alice", b"NICK", b"HELLO 1.0"])
def test_anything_but_nick_before_registration(line):
    client = new_client()
    assert process_line(client, line) == Outcome(reply=b"ERROR: NICK command expected\n")
    assert client.state is ConnectionState.UNREGISTERED


@pytest.mark.fast
def test_registration_after_errors_still_works():
    client = new_client()
    process_line(client, b"MSG too early")
    process_line(client, b"NICK b@d")
    assert process_line(client, b"NICK bob").reply == b"OK\n"
    assert client.nickname == "bob"


@pytest.mark.fast
def test_msg_builds_broadcast_envelope():
    client = new_client("alice")
    outcome = process_line(client, b"MSG hello world")
    assert outcome == Outcome(broadcast=b"MSG alice hello world\n")


@pytest.mark.fast
def test_msg_with_empty_text():
    client = new_client("alice")
    assert process_line(client, b"MSG ").broadcast == b"MSG alice \n"


@pytest.mark.fast
def test_msg_at_limit_is_broadcast():
    client = new_client("alice")
    text = b"x" * 255
    assert process_line(client, b"MSG " + text).broadcast == b"MSG alice " + text + b"\n"


@pytest.mark.fast
def test_msg_over_limit_is_rejected():
    client = new_client("alice")
    outcome = process_line(client, b"MSG " + b"x" * 256)
    assert outcome == Outcome(reply=b"ERROR: Message too long\n")


@pytest.mark.fast
def test_msg_length_counts_bytes():
    client = new_client("alice")
    # 128 two-byte characters
    text = ("é" * 128).encode("utf-8")
    assert process_line(client, b"MSG " + text).reply == b"ERROR: Message too long\n"


@pytest.mark.fast
@pytest.mark.parametrize("line", [b"NICK carol", b"msg hi", b"MSG", b"QUIT", b""])
def test_unsupported_after_registration(line):
    client = new_client("alice")
    assert process_line(client, line) == Outcome(reply=b"ERROR: Unsupported command\n")
    assert client.nickname == "alice"
