"""
Notification Dispatcher — turns a paid order into an access email.

Resolves the order's product against the static catalog (title, access link,
template) and hands the rendered variables to the email collaborator.
Stateless, no retry policy: redelivery of the triggering webhook is the retry.

An unknown product, or one whose link/template is not configured, fails
closed with DispatchError before anything is sent.
"""
import logging
from typing import Any, Callable, Optional

from config import settings
from domain.errors import DispatchError
from services.email_service import EmailService, get_email_service
from services.order_store import OrderSnapshot

logger = logging.getLogger(__name__)


def resolve_product(product_id: Optional[str], catalog: dict[str, dict[str, str]]) -> dict[str, str]:
    """Look up a product; raise DispatchError if it cannot be delivered."""
    key = str(product_id or "").strip()
    product = catalog.get(key)
    if product is None:
        raise DispatchError("Unknown product", details={"productId": key})
    if not product.get("access_link") or not product.get("template"):
        raise DispatchError("Product access not configured", details={"productId": key})
    return product


class NotificationDispatcher:

    def __init__(
        self,
        sender: EmailService,
        catalog_getter: Callable[[], dict[str, dict[str, str]]] = lambda: settings.product_catalog,
    ):
        self._sender = sender
        self._catalog_getter = catalog_getter

    def build_message(self, order: OrderSnapshot) -> dict[str, Any]:
        """Resolve everything needed to send, without sending."""
        product = resolve_product(order.product_id, self._catalog_getter())

        email = (order.email or "").strip()
        if not email:
            raise DispatchError("Order has no email", details={"reference": order.reference})

        return {
            "destination": email,
            "template_reference": product["template"],
            "subject": settings.email_subject_template.format(title=product["title"])[:255],
            "variables": {
                "customer_name": (order.customer_name or "").strip(),
                "tariff_title": product["title"],
                "tg_link": product["access_link"],
            },
        }

    async def dispatch(self, order: OrderSnapshot) -> dict:
        """
        Send the access email for `order`.

        Returns:
            dict: the email provider's response

        Raises:
            DispatchError: product/email unresolvable or send rejected
            UpstreamError: email infrastructure unavailable
        """
        message = self.build_message(order)
        logger.info(
            f"Dispatching access email for {order.reference} "
            f"(product={order.product_id})"
        )
        return await self._sender.send(**message)


_dispatcher: NotificationDispatcher | None = None


def get_notification_dispatcher() -> NotificationDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher(get_email_service())
    return _dispatcher
