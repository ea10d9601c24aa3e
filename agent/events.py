from __future__ import annotations

"""Agent run events and final-reply extraction.

An agent run yields an ordered log of heterogeneous records. Only ``output``
records carry the reply; their payload may be plain text, a scalar, a mapping
with a text field, or a JSON string wrapping one of those. ``classify_payload``
maps any payload onto one of the variants below, and each variant knows how to
render itself as reply text.
"""

import json
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from pydantic import BaseModel


FALLBACK_REPLY = "I could not process that request."
TEXT_FIELDS = ("content", "message", "text")

INPUT = "input"
THOUGHT = "thought"
ACTION_CALL = "action_call"
ACTION_RESULT = "action_result"
OUTPUT = "output"


class AgentEvent(BaseModel):
    kind: str
    payload: Any = None
    name: Optional[str] = None


@dataclass(frozen=True)
class PlainText:
    text: str

    def render(self) -> Optional[str]:
        return self.text if self.text.strip() else None


@dataclass(frozen=True)
class ScalarText:
    value: Union[bool, int, float]

    def render(self) -> Optional[str]:
        if isinstance(self.value, bool):
            return "true" if self.value else "false"
        return str(self.value)


@dataclass(frozen=True)
class FieldText:
    field: str
    text: str

    def render(self) -> Optional[str]:
        return self.text


@dataclass(frozen=True)
class Opaque:
    value: Any

    def render(self) -> Optional[str]:
        if self.value is None:
            return None
        try:
            return json.dumps(self.value, ensure_ascii=False)
        except (TypeError, ValueError):
            return None


@dataclass(frozen=True)
class EncodedJson:
    raw: str
    inner: "Payload"

    def render(self) -> Optional[str]:
        # Re-serializing an unrecognized object would only reformat what the
        # agent already wrote, so keep its original text.
        if isinstance(self.inner, Opaque):
            return self.raw
        return self.inner.render() or self.raw


Payload = Union[PlainText, ScalarText, FieldText, EncodedJson, Opaque]


def _looks_like_json(text: str) -> bool:
    stripped = text.strip()
    return (stripped.startswith("{") and stripped.endswith("}")) or (
        stripped.startswith("[") and stripped.endswith("]")
    )


def _classify(payload: Any, unwrap: bool) -> Payload:
    if isinstance(payload, str):
        if unwrap and _looks_like_json(payload):
            try:
                decoded = json.loads(payload)
            except json.JSONDecodeError:
                return PlainText(payload)
            return EncodedJson(payload, _classify(decoded, unwrap=False))
        return PlainText(payload)
    if isinstance(payload, (bool, int, float)):
        return ScalarText(payload)
    if isinstance(payload, Mapping):
        for field in TEXT_FIELDS:
            value = payload.get(field)
            if isinstance(value, str) and value.strip():
                return FieldText(field, value)
    return Opaque(payload)


def classify_payload(payload: Any) -> Payload:
    """Total: every payload maps onto exactly one variant."""
    return _classify(payload, unwrap=True)


def decode_output_payload(payload: Any) -> Optional[str]:
    return classify_payload(payload).render()


def find_output(events: Sequence[AgentEvent]) -> Optional[AgentEvent]:
    for event in reversed(events):
        if event.kind == OUTPUT:
            return event
    return None


def extract_reply(events: Iterable[AgentEvent]) -> str:
    output = find_output(list(events or []))
    if output is None:
        return FALLBACK_REPLY
    return decode_output_payload(output.payload) or FALLBACK_REPLY
