"""COD risk gate and its cache counters."""

from decimal import Decimal

import pytest

from services.cod_gate import CODRiskGate


@pytest.fixture
def gate(cache):
    return CODRiskGate(cache)


async def test_new_user_is_allowed(gate):
    decision = await gate.can_place_cod_order("user-1", Decimal("1200"))

    assert decision.allowed
    assert decision.reason is None


async def test_value_limit_is_inclusive(gate):
    assert (await gate.can_place_cod_order("user-1", Decimal("5000"))).allowed
    assert not (await gate.can_place_cod_order("user-1", Decimal("5000.01"))).allowed


async def test_active_limit_checked_before_value(gate, cache):
    await cache.set("cod:active:user-1", "3")

    decision = await gate.can_place_cod_order("user-1", Decimal("9000"))

    assert decision.reason == "Maximum 3 active COD orders allowed"


async def test_placed_order_sets_counter_with_ttl(gate, cache):
    await gate.record_order_placed("user-1")
    await gate.record_order_placed("user-1")

    assert await gate.get_active_order_count("user-1") == 2
    assert 0 < cache.ttl_of("cod:active:user-1") <= 86400 * 7


async def test_closed_order_floors_at_zero(gate):
    await gate.record_order_closed("user-1")

    assert await gate.get_active_order_count("user-1") == 0


async def test_cancellation_updates_both_counters(gate, cache):
    await gate.record_order_placed("user-1")
    await gate.record_cancellation("user-1")
    await gate.record_cancellation("user-1")

    assert await gate.get_active_order_count("user-1") == 0
    assert await gate.get_cancellation_count("user-1") == 2
    assert 86400 * 7 < cache.ttl_of("cod:cancellations:user-1") <= 86400 * 30
    assert not (await gate.can_place_cod_order("user-1", Decimal("100"))).allowed


async def test_fails_open_when_cache_is_down(gate, cache):
    await cache.set("cod:active:user-1", "3")
    cache.available = False

    decision = await gate.can_place_cod_order("user-1", Decimal("100"))
    await gate.record_order_placed("user-1")
    await gate.record_cancellation("user-1")

    assert decision.allowed


async def test_garbage_counter_reads_as_zero(gate, cache):
    await cache.set("cod:active:user-1", "many")

    assert await gate.get_active_order_count("user-1") == 0
