# src/services/notifier.py

"""User notification routing for the notifications queue."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

logger = logging.getLogger("price_engine.notifier")


@dataclass
class Notification:
    """A rendered message addressed to one user."""

    user_id: str
    type: str
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=lambda: dict[str, Any]())
    created_at: datetime = field(default_factory=datetime.now)


DeliveryChannel = Callable[[Notification], None]


def log_channel(notification: Notification) -> None:
    """Default channel: write the notification to the run log."""
    logger.info(
        "Notify %s [%s] %s: %s",
        notification.user_id,
        notification.type,
        notification.title,
        notification.body,
    )


def _fmt_price(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return "?"
    currency = data.get("currency", "USD")
    return f"{float(value):.2f} {currency}"


class NotificationDispatcher:
    """Renders a notification by type and hands it to a channel.

    Delivery errors propagate so the queue's retry policy applies.
    """

    def __init__(self, channel: DeliveryChannel | None = None) -> None:
        self.channel = channel or log_channel
        self._renderers: dict[
            str, Callable[[dict[str, Any]], tuple[str, str]]
        ] = {
            "price_alert": self._render_price_alert,
            "new_deal": self._render_new_deal,
            "scan_complete": self._render_scan_complete,
        }

    def dispatch(
        self, user_id: str, notification_type: str, data: dict[str, Any],
    ) -> Notification | None:
        renderer = self._renderers.get(notification_type)
        if renderer is None:
            logger.warning(
                "Unknown notification type '%s' for user %s",
                notification_type,
                user_id,
            )
            return None
        title, body = renderer(data)
        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title,
            body=body,
            data=dict(data),
        )
        self.channel(notification)
        return notification

    @staticmethod
    def _render_price_alert(data: dict[str, Any]) -> tuple[str, str]:
        name = data.get("product_name", data.get("product_id", "A product"))
        where = data.get("retailer_name", data.get("retailer_id", ""))
        body = f"{name} is now {_fmt_price(data, 'price')}"
        if where:
            body += f" at {where}"
        if data.get("previous_price") is not None:
            body += f" (was {_fmt_price(data, 'previous_price')})"
        return "Price alert", body

    @staticmethod
    def _render_new_deal(data: dict[str, Any]) -> tuple[str, str]:
        name = data.get("product_name", data.get("product_id", "A product"))
        pct = data.get("discount_percentage")
        body = f"{name} for {_fmt_price(data, 'price')}"
        if pct is not None:
            body += f", {float(pct):.0f}% off"
        return "New deal", body

    @staticmethod
    def _render_scan_complete(data: dict[str, Any]) -> tuple[str, str]:
        scan_id = data.get("scan_id", "")
        matches = data.get("matches", 0)
        return "Scan complete", f"Scan {scan_id} found {matches} matches"
