"""Streaming protocol: typed frames and their text/event-stream wire form.

Strategies and the orchestrator only ever produce :class:`Frame` values.
The HTTP layer turns them into wire text with :func:`encode_frame`::

    [CALL_TO]                      <- start marker
    data: STANDARD_STRATEGY        <- strategy name
    data: Hel                      <- one increment of assistant text
    data: lo!
    [ERROR]                        <- only on failure
    data: {"message": "..."}
    [DONE]                         <- always last

Every wire frame is terminated by a blank line.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum

START_MARKER = "[CALL_TO]"
ERROR_MARKER = "[ERROR]"
DONE_MARKER = "[DONE]"

STANDARD_STRATEGY = "STANDARD_STRATEGY"
RAG_STRATEGY = "RAG_STRATEGY"
AGENT_STRATEGY = "AGENT_STRATEGY"
STRATEGY_NAMES = frozenset({STANDARD_STRATEGY, RAG_STRATEGY, AGENT_STRATEGY})

GENERIC_ERROR_MESSAGE = "An error occurred while generating the response."


class FrameKind(StrEnum):
    START = "start"
    STRATEGY = "strategy"
    DATA = "data"
    ERROR = "error"
    DONE = "done"


@dataclass(frozen=True)
class Frame:
    """One unit of the response stream."""

    kind: FrameKind
    payload: str = ""

    @classmethod
    def start(cls) -> Frame:
        return cls(FrameKind.START)

    @classmethod
    def strategy(cls, name: str) -> Frame:
        return cls(FrameKind.STRATEGY, name)

    @classmethod
    def data(cls, text: str) -> Frame:
        return cls(FrameKind.DATA, text)

    @classmethod
    def error(cls, message: str) -> Frame:
        return cls(FrameKind.ERROR, message)

    @classmethod
    def done(cls) -> Frame:
        return cls(FrameKind.DONE)


def error_frames(message: str = GENERIC_ERROR_MESSAGE) -> tuple[Frame, Frame]:
    """The terminal sequence that replaces normal completion on failure."""
    return Frame.error(message), Frame.done()


def _data(payload: str) -> str:
    # Multi-line payloads become one ``data:`` line per line (SSE framing).
    return "".join(f"data: {line}\n" for line in payload.split("\n")) + "\n"


def encode_frame(frame: Frame) -> str:
    """Serialize a frame to its wire text."""
    match frame.kind:
        case FrameKind.START:
            return f"{START_MARKER}\n\n"
        case FrameKind.STRATEGY | FrameKind.DATA:
            return _data(frame.payload)
        case FrameKind.ERROR:
            return f"{ERROR_MARKER}\n\n" + _data(json.dumps({"message": frame.payload}))
        case FrameKind.DONE:
            return f"{DONE_MARKER}\n\n"
    msg = f"Unknown frame kind: {frame.kind}"
    raise ValueError(msg)


def extract_text(chunk: str) -> str:
    """Return the plain assistant text carried by one wire frame.

    Control markers, JSON payloads and strategy-name tokens yield ``""``.
    """
    lines = [line for line in chunk.split("\n") if line]
    if not lines or not all(line.startswith("data: ") for line in lines):
        return ""
    content = "\n".join(line[len("data: ") :] for line in lines)
    if content.startswith("[") or "{" in content or content in STRATEGY_NAMES:
        return ""
    return content


def decode_text(body: str) -> str:
    """Reconstruct the assistant text from a complete wire body."""
    return "".join(extract_text(chunk) for chunk in body.split("\n\n"))
