# services/data_hooks.py
# ============================================================================
# STOREFRONT CHECKOUT — POST-COMMIT HOOKS
# ============================================================================
# Side effects that run after an order's payment commits: clearing the cart,
# sending the confirmation. They never affect the committed order.
# ============================================================================

import logging
from typing import Awaitable, Callable, List

from schemas.commerce import Order
from services.notifications import INotifier
from storage.ports import IStore

logger = logging.getLogger("Storefront.DataHooks")

PostCommitHook = Callable[[Order], Awaitable[None]]


class PostCommitHooks:
    """Ordered list of hooks run after settlement commits."""

    def __init__(self, hooks: List[PostCommitHook] = None):
        self.hooks: List[PostCommitHook] = list(hooks or [])

    def register(self, hook: PostCommitHook) -> PostCommitHook:
        self.hooks.append(hook)
        return hook

    async def run(self, order: Order) -> int:
        """
        Run every hook for a committed order.

        Args:
            order: The order as committed

        Returns:
            Number of hooks that failed (failures are logged, never raised)
        """
        failures = 0
        for hook in self.hooks:
            name = getattr(hook, "__name__", repr(hook))
            try:
                await hook(order)
            except Exception as e:
                failures += 1
                logger.error(f"Post-commit hook {name} failed for order {order.order_number}: {e}")
        return failures


def clear_cart_hook(store: IStore) -> PostCommitHook:
    async def clear_cart(order: Order) -> None:
        removed = await store.run_in_transaction(lambda tx: tx.clear_cart(order.user_id))
        logger.info(f"Cart cleared for user {order.user_id} ({removed} items)")

    return clear_cart


def confirmation_hook(notifier: INotifier) -> PostCommitHook:
    async def send_confirmation(order: Order) -> None:
        message_id = await notifier.send_order_confirmation(order)
        logger.info(f"Confirmation for {order.order_number}: {message_id or 'not sent'}")

    return send_confirmation


def default_hooks(store: IStore, notifier: INotifier) -> PostCommitHooks:
    return PostCommitHooks([clear_cart_hook(store), confirmation_hook(notifier)])
