from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from telegram.constants import InlineKeyboardButtonLimit

MAX_CALLBACK_BYTES = int(InlineKeyboardButtonLimit.MAX_CALLBACK_DATA)
PREFIX_SEP = "|"
FIELD_SEP = ":"


class CallbackError(ValueError):
    pass


class MalformedCallback(CallbackError):
    pass


class CallbackTooLong(CallbackError):
    pass


class CallbackType(str, Enum):
    SET_VALUE = "A"
    SET_VALUE_AND_BACK = "B"
    GO_TO = "C"
    BACK = "D"
    EXIT = "E"
    CLEAR_ALL = "F"
    ADD_VALUE = "G"


class _Absent:
    """Marker for an empty value field; distinct from None, 0 and ""."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT: Any = _Absent()


@dataclass(frozen=True)
class MenuAction:
    type: CallbackType
    option: Optional[str] = None
    value: Any = ABSENT

    @property
    def has_value(self) -> bool:
        return self.value is not ABSENT


class CallbackCodec:
    """
    Token layout: [<prefix>|]<tag>:<option>:<json value>

    The prefix keeps several menus apart inside one bot. Empty option or value
    fields mean "not present".
    """

    def __init__(self, prefix: str = "") -> None:
        if PREFIX_SEP in prefix or FIELD_SEP in prefix:
            raise ValueError(f"Callback prefix must not contain {PREFIX_SEP!r} or {FIELD_SEP!r}")
        self.prefix = prefix

    @property
    def _head(self) -> str:
        return f"{self.prefix}{PREFIX_SEP}" if self.prefix else ""

    def owns(self, token: str) -> bool:
        if not token:
            return False
        if self.prefix:
            return token.startswith(self._head)
        # unprefixed codec must not steal tokens of prefixed menus
        return PREFIX_SEP not in token.split(FIELD_SEP, 1)[0]

    def encode(self, callback_type: CallbackType, option: Optional[str] = None, value: Any = ABSENT) -> str:
        option = option or ""
        if FIELD_SEP in option:
            raise CallbackError(f"Option name {option!r} contains {FIELD_SEP!r}")

        payload = "" if value is ABSENT else json.dumps(value, ensure_ascii=False, separators=(",", ":"))
        token = f"{self._head}{CallbackType(callback_type).value}{FIELD_SEP}{option}{FIELD_SEP}{payload}"

        size = len(token.encode("utf-8"))
        if size > MAX_CALLBACK_BYTES:
            raise CallbackTooLong(f"Callback data is {size} bytes, limit is {MAX_CALLBACK_BYTES}: {token!r}")
        return token

    def decode(self, token: str) -> MenuAction:
        if not isinstance(token, str) or not token:
            raise MalformedCallback("Empty callback data")

        body = token
        if self.prefix:
            if not token.startswith(self._head):
                raise MalformedCallback(f"Callback {token!r} does not belong to menu {self.prefix!r}")
            body = token[len(self._head):]

        parts = body.split(FIELD_SEP, 2)
        if len(parts) != 3:
            raise MalformedCallback(f"Callback {token!r} has {len(parts)} fields, expected 3")

        tag, option, payload = parts
        try:
            callback_type = CallbackType(tag)
        except ValueError:
            raise MalformedCallback(f"Unknown callback type {tag!r} in {token!r}") from None

        value: Any = ABSENT
        if payload:
            try:
                value = json.loads(payload)
            except ValueError as e:
                raise MalformedCallback(f"Unparsable value in {token!r}: {e}") from e

        return MenuAction(type=callback_type, option=option or None, value=value)
