"""
Order Notifications
===================
Confirmation email after an order is paid (or accepted for COD).

pip install sendgrid structlog
"""

import asyncio
from abc import ABC, abstractmethod
from typing import List, Optional

import structlog
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from config import settings
from schemas.commerce import Order


class INotifier(ABC):
    """Notification channel interface"""

    @abstractmethod
    async def send_order_confirmation(self, order: Order) -> Optional[str]:
        """Returns the provider message id, or None when nothing was sent."""
        pass


def render_confirmation(order: Order) -> str:
    lines = "".join(
        f"<li>{item.quantity} x {item.variant_id} @ {item.price}</li>" for item in order.items
    )
    return (
        f"<h2>Order {order.order_number} confirmed</h2>"
        f"<ul>{lines}</ul>"
        f"<p>Subtotal: {order.subtotal}<br>Shipping: {order.shipping_cost}<br>"
        f"<strong>Total: {order.total_amount} {settings.CURRENCY}</strong></p>"
    )


class SendGridNotifier(INotifier):
    """SendGrid delivery. The SDK is blocking, so sends run in a worker thread."""

    def __init__(self, api_key: str = None, from_email: str = None):
        self.client = SendGridAPIClient(api_key or settings.SENDGRID_API_KEY)
        self.from_email = from_email or settings.SENDGRID_FROM_EMAIL
        self._logger = structlog.get_logger().bind(component="sendgrid_notifier")

    async def send_order_confirmation(self, order: Order) -> Optional[str]:
        if not order.contact_email:
            self._logger.info("confirmation_skipped_no_email", order_id=order.id)
            return None

        message = Mail(
            from_email=self.from_email,
            to_emails=order.contact_email,
            subject=f"Your order {order.order_number} is confirmed",
            html_content=render_confirmation(order),
        )
        response = await asyncio.to_thread(self.client.send, message)
        message_id = response.headers.get("X-Message-Id")

        self._logger.info("confirmation_sent",
                          order_id=order.id,
                          status_code=response.status_code,
                          message_id=message_id)
        return message_id


class InMemoryNotifier(INotifier):
    """Records confirmations instead of sending them."""

    def __init__(self):
        self.sent: List[Order] = []
        self.fail = False

    async def send_order_confirmation(self, order: Order) -> Optional[str]:
        if self.fail:
            raise ConnectionError("notification provider unavailable")
        self.sent.append(order)
        return f"local-{len(self.sent)}"
