"""
Checkout Assembly
=================
Wires the checkout services around one store, cache, gateway and notifier.
"""

from services.cod_gate import CODRiskGate
from services.data_hooks import default_hooks
from services.gateway import IPaymentGateway
from services.idempotency import WebhookIdempotency
from services.inventory import InventoryLedger
from services.notifications import INotifier
from services.orders import OrderService
from storage.ports import ICache, IStore
from pipeline.settlement import PaymentSettlement
from pipeline.verification import PaymentVerificationService
from pipeline.webhooks import WebhookIngestion


class Checkout:
    """
    Service graph for one process.

    Example:
        checkout = Checkout(InMemoryStore(), InMemoryCache(), gateway, notifier)
        await checkout.orders.create_order(user_id, request)
        await checkout.verification.verify(verify_request, user_id)
        await checkout.webhooks.ingest(raw_body, signature)
    """

    def __init__(
        self,
        store: IStore,
        cache: ICache,
        gateway: IPaymentGateway,
        notifier: INotifier,
        key_secret: str = None,
        webhook_secret: str = None,
    ):
        self.store = store
        self.cache = cache
        self.gateway = gateway
        self.notifier = notifier

        self.ledger = InventoryLedger()
        self.hooks = default_hooks(store, notifier)
        self.cod_gate = CODRiskGate(cache)
        self.idempotency = WebhookIdempotency(cache)

        self.settlement = PaymentSettlement(store, ledger=self.ledger, hooks=self.hooks)
        self.orders = OrderService(
            store,
            gateway,
            cod_gate=self.cod_gate,
            ledger=self.ledger,
            hooks=self.hooks,
        )
        self.verification = PaymentVerificationService(
            store,
            gateway,
            self.settlement,
            key_secret=key_secret,
        )
        self.webhooks = WebhookIngestion(
            self.settlement,
            self.idempotency,
            webhook_secret=webhook_secret,
        )
