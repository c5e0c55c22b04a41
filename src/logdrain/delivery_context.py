from __future__ import annotations

import contextvars
import logging
import uuid
from typing import Optional

DELIVERY_ID = contextvars.ContextVar("delivery_id", default=None)


def new_delivery_id() -> str:
    return uuid.uuid4().hex[:16]


def set_delivery(delivery_id: str) -> contextvars.Token:
    return DELIVERY_ID.set(delivery_id)


def reset_delivery(token: contextvars.Token) -> None:
    DELIVERY_ID.reset(token)


def current_delivery() -> Optional[str]:
    return DELIVERY_ID.get()


class DeliveryContextFilter(logging.Filter):
    """Stamps ``delivery_id`` on every record so the formatter can print it."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.delivery_id = DELIVERY_ID.get() or "-"
        return True
