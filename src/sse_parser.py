"""Incremental parser for server-sent-event chat streams.

The chat endpoint answers with UTF-8 lines of the form ``data: <payload>``, where
the payload is either a JSON chunk carrying a content fragment at
``choices[0].delta.content`` or the ``[DONE]`` terminator. Network reads can split
a line (or a multi-byte character) anywhere, so the parser carries its unfinished
tail between calls.

Key Functions:
    feed — consume one chunk of bytes, returning the new state and emitted fragments
    flush — process residual buffered text once the transport has closed
    extract_content — pull the content fragment out of one JSON payload

The functions are pure: state lives in the immutable StreamState passed in and
returned, so the parser can be tested without any network mocking.
"""

import codecs
import json
from dataclasses import dataclass
from typing import List, Optional, Tuple

from src.backend.utils.errors import MalformedFrame

DATA_PREFIX = "data: "
COMMENT_PREFIX = ":"
DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class StreamState:
    """Parser state between reads.

    Attributes:
        buffer: Decoded text not yet terminated by a newline
        pending_bytes: Trailing bytes of an incomplete UTF-8 sequence
        done: True once the [DONE] terminator has been seen
    """
    buffer: str = ""
    pending_bytes: bytes = b""
    done: bool = False


def extract_content(payload: str) -> Optional[str]:
    """Return the content fragment of one JSON payload, or None if it carries none.

    Raises:
        MalformedFrame: If payload is not valid JSON
    """
    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError as e:
        raise MalformedFrame(f"Incomplete or invalid stream payload: {e}") from e

    try:
        content = parsed["choices"][0]["delta"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None
    if not isinstance(content, str) or not content:
        return None
    return content


def _classify(line: str) -> Tuple[bool, Optional[str]]:
    """Classify one complete line.

    Returns:
        (is_done, fragment) where fragment is None for ignored lines

    Raises:
        MalformedFrame: If a data line's JSON payload cannot be parsed
    """
    if line.endswith("\r"):
        line = line[:-1]
    if not line or line.startswith(COMMENT_PREFIX):
        return False, None
    if not line.startswith(DATA_PREFIX):
        return False, None

    payload = line[len(DATA_PREFIX):].strip()
    if payload == DONE_SENTINEL:
        return True, None
    return False, extract_content(payload)


def feed(state: StreamState, chunk: bytes) -> Tuple[StreamState, List[str]]:
    """Consume one chunk of the stream.

    Complete lines are classified in order. Processing stops at the [DONE]
    terminator, or at a data line whose JSON does not parse yet; such a line is
    put back at the front of the buffer so the next chunk can complete it.

    Args:
        state: State returned by the previous call (StreamState() to start)
        chunk: Raw bytes as read from the transport

    Returns:
        (new_state, fragments) with fragments in stream order

    Example:
        >>> state, out = feed(StreamState(), b'data: {"choices":[{"delta":{"content":"Hel')
        >>> out
        []
        >>> state, out = feed(state, b'lo"}}]}\\n\\ndata: [DONE]\\n')
        >>> out, state.done
        (['Hello'], True)
    """
    if state.done:
        return state, []

    text, consumed = codecs.utf_8_decode(state.pending_bytes + chunk, "replace", False)
    pending_bytes = (state.pending_bytes + chunk)[consumed:]
    buffer = state.buffer + text
    fragments: List[str] = []
    done = False

    while "\n" in buffer:
        line, buffer = buffer.split("\n", 1)
        try:
            is_done, fragment = _classify(line)
        except MalformedFrame:
            buffer = line + "\n" + buffer
            break
        if is_done:
            done = True
            break
        if fragment is not None:
            fragments.append(fragment)

    return StreamState(buffer=buffer, pending_bytes=pending_bytes, done=done), fragments


def flush(state: StreamState) -> List[str]:
    """Process residual buffered text after the transport has closed.

    Every remaining line (including an unterminated final line) is classified once;
    lines that still fail to parse are dropped. Nothing is emitted once the
    terminator has been seen.
    """
    residual = state.buffer + state.pending_bytes.decode("utf-8", "replace")
    if state.done or not residual:
        return []

    fragments: List[str] = []
    for line in residual.split("\n"):
        try:
            is_done, fragment = _classify(line)
        except MalformedFrame:
            continue
        if is_done:
            break
        if fragment is not None:
            fragments.append(fragment)
    return fragments

