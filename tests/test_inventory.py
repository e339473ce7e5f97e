"""Inventory ledger against the in-memory store."""

from decimal import Decimal

import pytest

from schemas.commerce import OrderItem
from schemas.results import InsufficientStock, NotFound, ValidationFailed
from services.inventory import InventoryLedger
from storage.memory import InMemoryTransaction


@pytest.fixture
def ledger():
    return InventoryLedger()


def line(variant_id, quantity):
    return OrderItem(variant_id=variant_id, quantity=quantity, price=Decimal("1"))


async def test_decrement_returns_remaining_stock(store, ledger):
    async with store.transaction() as tx:
        remaining = await ledger.decrement(tx, "var-a", 3)

    assert remaining == 2
    assert store.stock_of("var-a") == 2


async def test_decrement_beyond_stock_aborts_transaction(store, ledger):
    with pytest.raises(InsufficientStock) as exc:
        async with store.transaction() as tx:
            await ledger.decrement(tx, "var-a", 1)
            await ledger.decrement(tx, "var-b", 2)

    assert exc.value.context["variant_id"] == "var-b"
    # The first decrement was rolled back with the transaction
    assert store.stock_of("var-a") == 5
    assert store.stock_of("var-b") == 1


async def test_decrement_unknown_variant(store, ledger):
    with pytest.raises(InsufficientStock):
        async with store.transaction() as tx:
            await ledger.decrement(tx, "var-missing", 1)


async def test_quantity_must_be_positive(store, ledger):
    with pytest.raises(ValidationFailed):
        async with store.transaction() as tx:
            await ledger.decrement(tx, "var-a", 0)


async def test_decrement_lines_checks_every_line_first(store, ledger):
    with pytest.raises(InsufficientStock):
        async with store.transaction() as tx:
            await ledger.decrement_lines(tx, [line("var-a", 2), line("var-b", 2)])

    assert store.stock_of("var-a") == 5
    assert store.stock_of("var-b") == 1


async def test_decrement_lines_can_empty_a_variant(store, ledger):
    async with store.transaction() as tx:
        await ledger.decrement_lines(tx, [line("var-a", 3), line("var-b", 1)])

    assert store.stock_of("var-a") == 2
    assert store.stock_of("var-b") == 0


async def test_increment_lines_restores(store, ledger):
    async with store.transaction() as tx:
        await ledger.decrement_lines(tx, [line("var-a", 3)])
    async with store.transaction() as tx:
        await ledger.increment_lines(tx, [line("var-a", 3)])

    assert store.stock_of("var-a") == 5


async def test_increment_unknown_variant(store, ledger):
    with pytest.raises(NotFound):
        async with store.transaction() as tx:
            await ledger.increment(tx, "var-missing", 1)


class LockRecordingTransaction(InMemoryTransaction):
    """Remembers which variants were read under a row lock, in order."""

    def __init__(self, tx):
        super().__init__(tx._t)
        self.locked = []

    async def get_variant(self, variant_id, for_update=False):
        if for_update:
            self.locked.append(variant_id)
        return await super().get_variant(variant_id, for_update)


@pytest.mark.parametrize("method", ["decrement_lines", "increment_lines"])
async def test_rows_are_locked_in_variant_id_order(store, ledger, method):
    items = [line("var-j", 1), line("var-b", 1), line("var-a", 1)]

    async with store.transaction() as tx:
        recording = LockRecordingTransaction(tx)
        await getattr(ledger, method)(recording, items)

    # decrement_lines checks then decrements, so it locks the rows in two passes
    passes = [recording.locked[i:i + 3] for i in range(0, len(recording.locked), 3)]
    assert passes and all(p == ["var-a", "var-b", "var-j"] for p in passes)
