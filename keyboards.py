from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional, Sequence

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from callback_codec import ABSENT, CallbackCodec, CallbackError, CallbackType

logger = logging.getLogger(__name__)

# copies leaf: absolute quick-set rows, then one row of relative steps
COPIES_QUICK_SET_ROWS = ((1, 2, 5), (10, 20, 50))
COPIES_ADJUST_STEPS = (1, 5, 10, -1)

EXIT_LABEL = "✅ Done"
CLEAR_ALL_LABEL = "🗑 Clear all"
BACK_LABEL = "◀️ Back"
DEFAULT_LABEL = "↩️ Default"


def _button(codec: CallbackCodec, text: str, callback_type: CallbackType, option: Optional[str] = None, value: Any = ABSENT) -> Optional[InlineKeyboardButton]:
    try:
        data = codec.encode(callback_type, option, value)
    except CallbackError as e:
        logger.warning("Skipping button %r: %s", text, e)
        return None
    return InlineKeyboardButton(text, callback_data=data)


def _row(buttons: Iterable[Optional[InlineKeyboardButton]]) -> List[InlineKeyboardButton]:
    return [b for b in buttons if b is not None]


def _checked(label: str, selected: bool) -> str:
    return f"✅ {label}" if selected else label


def build_root(codec: CallbackCodec, option_names: Sequence[str]) -> InlineKeyboardMarkup:
    rows: List[List[InlineKeyboardButton]] = []
    for name in option_names:
        row = _row([_button(codec, name, CallbackType.GO_TO, name)])
        if row:
            rows.append(row)

    rows.append(
        _row(
            [
                _button(codec, EXIT_LABEL, CallbackType.EXIT),
                _button(codec, CLEAR_ALL_LABEL, CallbackType.CLEAR_ALL),
            ]
        )
    )
    return InlineKeyboardMarkup(rows)


def _footer(codec: CallbackCodec, option: str, default: Optional[Any]) -> List[InlineKeyboardButton]:
    # Without a known default the button drops the override instead
    value = ABSENT if default is None else default
    return _row(
        [
            _button(codec, BACK_LABEL, CallbackType.BACK),
            _button(codec, DEFAULT_LABEL, CallbackType.SET_VALUE, option, value),
        ]
    )


def build_copies_leaf(codec: CallbackCodec, option: str, current: Optional[Any], default: Optional[Any] = None) -> InlineKeyboardMarkup:
    rows: List[List[InlineKeyboardButton]] = []
    for quick_row in COPIES_QUICK_SET_ROWS:
        row = _row(
            _button(codec, _checked(str(n), n == current), CallbackType.SET_VALUE, option, n)
            for n in quick_row
        )
        if row:
            rows.append(row)

    adjust = _row(
        _button(codec, f"+{n}" if n > 0 else str(n), CallbackType.ADD_VALUE, option, n)
        for n in COPIES_ADJUST_STEPS
    )
    if adjust:
        rows.append(adjust)

    rows.append(_footer(codec, option, default))
    return InlineKeyboardMarkup(rows)


def build_leaf(
    codec: CallbackCodec,
    option: str,
    available_values: Sequence[Any],
    current: Optional[Any],
    default: Optional[Any] = None,
) -> InlineKeyboardMarkup:
    """
    One row per legal value; pressing one commits it and goes back to the root.
    An empty value list (attributes not loaded yet) leaves only Back/Default.
    """
    rows: List[List[InlineKeyboardButton]] = []
    for v in available_values:
        row = _row([_button(codec, _checked(str(v), v == current), CallbackType.SET_VALUE_AND_BACK, option, v)])
        if row:
            rows.append(row)

    rows.append(_footer(codec, option, default))
    return InlineKeyboardMarkup(rows)
