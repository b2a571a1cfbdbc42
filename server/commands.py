"""
Per-line command handling.

Interprets one framed line according to the connection's registration
state and returns what the server should do about it.
"""

import logging
from typing import NamedTuple, Optional

from .protocol import (
    ERR_INVALID_NICK, ERR_MSG_TOO_LONG, ERR_NICK_EXPECTED, ERR_UNSUPPORTED,
    MAX_MESSAGE_LEN, MSG_PREFIX, NICK_PREFIX, REPLY_OK, chomp, is_valid_nickname,
)

logger = logging.getLogger(__name__)


class Outcome(NamedTuple):
    """Reply for the sender and/or a line to fan out to everybody else."""
    reply: Optional[bytes] = None
    broadcast: Optional[bytes] = None


def process_line(client, line: bytes) -> Outcome:
    """
    Apply one line to client and return the resulting actions.

    Unregistered clients may only send NICK; registered clients may only
    send MSG. Violations produce an ERROR reply and leave the state alone.
    """
    if not client.registered:
        return _handle_unregistered(client, line)
    return _handle_registered(client, line)


def _handle_unregistered(client, line: bytes) -> Outcome:
    if not line.startswith(NICK_PREFIX):
        return Outcome(reply=ERR_NICK_EXPECTED)
    nick = line[len(NICK_PREFIX):]
    if not is_valid_nickname(nick):
        logger.debug(f"{client.format_addr()} sent invalid nickname {nick!r}")
        return Outcome(reply=ERR_INVALID_NICK)
    client.register(nick.decode("ascii"))
    logger.info(f"Client registered with nickname: {client.nickname}")
    return Outcome(reply=REPLY_OK)


def _handle_registered(client, line: bytes) -> Outcome:
    if not line.startswith(MSG_PREFIX):
        return Outcome(reply=ERR_UNSUPPORTED)
    text = chomp(line[len(MSG_PREFIX):])
    if len(text) > MAX_MESSAGE_LEN:
        return Outcome(reply=ERR_MSG_TOO_LONG)
    full = MSG_PREFIX + client.nickname.encode("ascii") + b" " + text + b"\n"
    return Outcome(broadcast=full)
