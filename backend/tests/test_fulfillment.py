from decimal import Decimal
from uuid import uuid4

import pytest

from core.errors import DuplicateError, InsufficientStockError, NotFoundError, OrderStateError, ValidationError
from db.inventory.movement import MovementType
from db.order import OrderStatus
from services.fulfillment import OrderLineRequest


@pytest.fixture
async def gadget(services):
    return await services.catalog.create_product(name="Gadget", sku="GAD-001", cost=Decimal("2.50"))


async def _qty(services, product):
    return (await services.ledger.get_product_stock(product.id))["quantity"]


async def test_order_with_unavailable_line_leaves_no_trace(services, product, gadget, warehouse, actor_id, stock_in):
    await stock_in(product, warehouse, 5)
    await stock_in(gadget, warehouse, 1)

    with pytest.raises(InsufficientStockError):
        await services.fulfillment.create_order(
            [OrderLineRequest(product.id, 2), OrderLineRequest(gadget.id, 3)],
            actor_id,
            location_id=warehouse.id,
        )

    assert await _qty(services, product) == 5
    assert await _qty(services, gadget) == 1
    for p in (product, gadget):
        page = await services.ledger.get_stock_movements(p.id)
        assert [m.type for m in page.items] == [MovementType.IN]
    assert await services.fulfillment.list_orders() == []


async def test_order_with_unknown_product_is_not_found(services, product, warehouse, actor_id, stock_in, caplog):
    await stock_in(product, warehouse, 5)

    with pytest.raises(NotFoundError):
        await services.fulfillment.create_order(
            [OrderLineRequest(product.id, 1), OrderLineRequest(uuid4(), 1)],
            actor_id,
            location_id=warehouse.id,
        )

    # a missing product is not a write race: nothing was retried
    assert "retrying" not in caplog.text
    assert await services.fulfillment.list_orders() == []
    assert await _qty(services, product) == 5
    page = await services.ledger.get_stock_movements(product.id)
    assert [m.type for m in page.items] == [MovementType.IN]


async def test_create_order_reserves_stock(services, product, gadget, warehouse, actor_id, stock_in):
    await stock_in(product, warehouse, 5)
    await stock_in(gadget, warehouse, 4)

    order = await services.fulfillment.create_order(
        [OrderLineRequest(product.id, 2, Decimal("9.99")), OrderLineRequest(gadget.id, 3)],
        actor_id,
        location_id=warehouse.id,
        notes="counter sale",
    )

    assert order.status == OrderStatus.STOCK_RESERVED
    assert order.order_number == "ORD250101001"
    assert [ln.quantity for ln in order.lines] == [2, 3]
    assert await _qty(services, product) == 3
    assert await _qty(services, gadget) == 1

    movements = await services.fulfillment.get_order_movements(order.id)
    assert {(m.product_id, m.type, m.quantity) for m in movements} == {
        (product.id, MovementType.OUT, 2),
        (gadget.id, MovementType.OUT, 3),
    }
    assert all(m.order_id == order.id for m in movements)
    assert movements[0].reason == f"Order {order.order_number}"


async def test_order_numbers_are_sequential_per_day(services, product, warehouse, actor_id, clock, stock_in):
    await stock_in(product, warehouse, 10)
    first = await services.fulfillment.create_order([OrderLineRequest(product.id, 1)], actor_id, location_id=warehouse.id)
    second = await services.fulfillment.create_order([OrderLineRequest(product.id, 1)], actor_id, location_id=warehouse.id)
    clock.advance(days=1)
    next_day = await services.fulfillment.create_order([OrderLineRequest(product.id, 1)], actor_id, location_id=warehouse.id)

    assert first.order_number == "ORD250101001"
    assert second.order_number == "ORD250101002"
    assert next_day.order_number == "ORD250102001"


async def test_duplicate_order_number(services, product, warehouse, actor_id, stock_in):
    await stock_in(product, warehouse, 10)
    await services.fulfillment.create_order(
        [OrderLineRequest(product.id, 1)], actor_id, location_id=warehouse.id, order_number="WEB-1"
    )
    with pytest.raises(DuplicateError):
        await services.fulfillment.create_order(
            [OrderLineRequest(product.id, 1)], actor_id, location_id=warehouse.id, order_number="WEB-1"
        )
    assert await _qty(services, product) == 9


@pytest.mark.parametrize("lines", [[], [OrderLineRequest(uuid4(), 0)]])
async def test_invalid_order_input(services, warehouse, actor_id, lines):
    with pytest.raises(ValidationError):
        await services.fulfillment.create_order(lines, actor_id, location_id=warehouse.id)


async def test_order_needs_location_in_multi_mode(services, product, actor_id):
    with pytest.raises(ValidationError):
        await services.fulfillment.create_order([OrderLineRequest(product.id, 1)], actor_id)


async def test_cancel_restores_stock_with_compensating_movements(services, product, gadget, warehouse, actor_id, stock_in):
    await stock_in(product, warehouse, 5)
    await stock_in(gadget, warehouse, 4)
    order = await services.fulfillment.create_order(
        [OrderLineRequest(product.id, 2), OrderLineRequest(gadget.id, 3)], actor_id, location_id=warehouse.id
    )
    outs = await services.fulfillment.get_order_movements(order.id)

    cancelled = await services.fulfillment.cancel_order(order.id, actor_id)

    assert cancelled.status == OrderStatus.CANCELLED
    assert await _qty(services, product) == 5
    assert await _qty(services, gadget) == 4

    movements = await services.fulfillment.get_order_movements(order.id)
    ins = [m for m in movements if m.type == MovementType.IN]
    assert len(ins) == 2
    assert {m.compensates_id for m in ins} == {m.id for m in outs}
    # originals untouched
    still_out = [m for m in movements if m.type == MovementType.OUT]
    assert {(m.id, m.quantity) for m in still_out} == {(m.id, m.quantity) for m in outs}

    for p in (product, gadget):
        assert (await services.ledger.replay_product(p.id)).consistent


async def test_cancel_is_only_allowed_while_reserved(services, product, warehouse, actor_id, stock_in):
    await stock_in(product, warehouse, 5)
    order = await services.fulfillment.create_order([OrderLineRequest(product.id, 2)], actor_id, location_id=warehouse.id)
    await services.fulfillment.cancel_order(order.id, actor_id)

    with pytest.raises(OrderStateError):
        await services.fulfillment.cancel_order(order.id, actor_id)
    with pytest.raises(OrderStateError):
        await services.fulfillment.complete_order(order.id)
    assert await _qty(services, product) == 5


async def test_completed_order_uses_return_path(services, product, warehouse, actor_id, stock_in):
    await stock_in(product, warehouse, 5)
    order = await services.fulfillment.create_order([OrderLineRequest(product.id, 2)], actor_id, location_id=warehouse.id)

    completed = await services.fulfillment.complete_order(order.id)
    assert completed.status == OrderStatus.COMPLETED

    with pytest.raises(OrderStateError):
        await services.fulfillment.cancel_order(order.id, actor_id)

    restocked = await services.fulfillment.return_order(order.id, actor_id)
    assert len(restocked) == 1
    assert restocked[0].type == MovementType.IN
    assert restocked[0].quantity == 2
    assert await _qty(services, product) == 5

    again = await services.fulfillment.get_order(order.id)
    assert again.status == OrderStatus.COMPLETED

    with pytest.raises(OrderStateError):
        await services.fulfillment.return_order(order.id, actor_id)


async def test_return_requires_completed_order(services, product, warehouse, actor_id, stock_in):
    await stock_in(product, warehouse, 5)
    order = await services.fulfillment.create_order([OrderLineRequest(product.id, 2)], actor_id, location_id=warehouse.id)
    with pytest.raises(OrderStateError):
        await services.fulfillment.return_order(order.id, actor_id)


async def test_unknown_order(services, actor_id):
    with pytest.raises(NotFoundError):
        await services.fulfillment.get_order(uuid4())
    with pytest.raises(NotFoundError):
        await services.fulfillment.cancel_order(uuid4(), actor_id)


async def test_list_orders_by_status(services, product, warehouse, actor_id, clock, stock_in):
    await stock_in(product, warehouse, 5)
    kept = await services.fulfillment.create_order([OrderLineRequest(product.id, 1)], actor_id, location_id=warehouse.id)
    clock.advance(minutes=5)
    dropped = await services.fulfillment.create_order([OrderLineRequest(product.id, 1)], actor_id, location_id=warehouse.id)
    await services.fulfillment.cancel_order(dropped.id, actor_id)

    reserved = await services.fulfillment.list_orders(status=OrderStatus.STOCK_RESERVED)
    assert [o.id for o in reserved] == [kept.id]
    everything = await services.fulfillment.list_orders()
    assert [o.id for o in everything] == [dropped.id, kept.id]
