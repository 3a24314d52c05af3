"""Single result type for everything the bridge hands back to the assistant.

Callers branch on ``result.ok`` (or the concrete class) and speak
``result.text``; nothing expected ever arrives as an exception.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration"
    AUTHENTICATION = "authentication"
    TRANSIENT = "transient"
    SERVICE_INVOCATION = "service_invocation"
    NOT_CONFIGURED = "not_configured"


@dataclass(frozen=True)
class Ok:
    message: str
    value: Any = None

    ok = True

    @property
    def text(self) -> str:
        return self.message


@dataclass(frozen=True)
class UserFacingMessage:
    message: str

    ok = False

    @property
    def text(self) -> str:
        return self.message


@dataclass(frozen=True)
class Fail:
    kind: ErrorKind
    detail: str

    ok = False

    @property
    def text(self) -> str:
        return self.detail


Result = Union[Ok, UserFacingMessage, Fail]


def as_dict(result: Result) -> dict:
    out = {"ok": result.ok, "kind": "ok", "text": result.text}
    if isinstance(result, Ok):
        out["value"] = result.value
    elif isinstance(result, UserFacingMessage):
        out["kind"] = "message"
    else:
        out["kind"] = result.kind.value
    return out


def not_found(query: str) -> UserFacingMessage:
    return UserFacingMessage(f"I couldn't find a device called \"{query}\"")
