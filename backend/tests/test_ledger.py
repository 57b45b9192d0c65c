import asyncio
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from core.errors import (
    AppendOnlyViolation,
    ConfigurationError,
    ConflictError,
    InactiveLocationError,
    InsufficientStockError,
    NotFoundError,
    SameLocationError,
    TransactionTimeoutError,
    ValidationError,
)
from db.catalog import Product
from db.inventory.movement import MovementType, StockMovement
from services.ledger import MovementRequest, StockLedger, translate_db_error
from services.notifications import LowStockAlert, StockChangeEvent


async def _quantity(services, product_id):
    stock = await services.ledger.get_product_stock(product_id)
    return stock["quantity"]


async def test_out_drops_below_threshold_then_oversized_out_fails(services, product, warehouse, stock_in, stock_out, sink):
    await stock_in(product, warehouse, 10)

    applied = await stock_out(product, warehouse, 6)
    assert applied.aggregate_after == 4
    assert applied.stocks_after == {warehouse.id: 4}
    assert applied.movement.type == MovementType.OUT
    assert applied.movement.resulting_quantity == 4

    await services.notifier.drain()
    alerts = sink.of_type(LowStockAlert)
    assert len(alerts) == 1
    assert alerts[0].current_stock == 4
    assert alerts[0].reorder_threshold == 5

    with pytest.raises(InsufficientStockError) as excinfo:
        await stock_out(product, warehouse, 10)
    assert excinfo.value.available == 4
    assert excinfo.value.requested == 10

    assert await _quantity(services, product.id) == 4
    page = await services.ledger.get_stock_movements(product.id)
    assert page.total == 2


async def test_replay_reproduces_stored_quantities(services, product, warehouse, actor_id, stock_in, stock_out):
    await stock_in(product, warehouse, 7)
    await stock_out(product, warehouse, 3)
    await services.ledger.apply_movement(
        MovementRequest(product.id, MovementType.ADJUSTMENT, 10, actor_id, to_location_id=warehouse.id)
    )
    await stock_out(product, warehouse, 4)
    await stock_in(product, warehouse, 2)
    await services.ledger.apply_movement(
        MovementRequest(product.id, MovementType.ADJUSTMENT, 5, actor_id, to_location_id=warehouse.id)
    )

    replay = await services.ledger.replay_product(product.id)
    assert replay.movement_count == 6
    assert replay.aggregate == 5
    assert replay.by_location == {warehouse.id: 5}
    assert replay.stored_aggregate == 5
    assert replay.consistent


async def test_aggregate_is_sum_of_locations(services, product, warehouse, store, stock_in, stock_out):
    await stock_in(product, warehouse, 8)
    await stock_in(product, store, 3)
    await stock_out(product, store, 1)

    stock = await services.ledger.get_product_stock(product.id)
    per_location = {row["location_id"]: row["quantity"] for row in stock["locations"]}
    assert per_location == {warehouse.id: 8, store.id: 2}
    assert stock["quantity"] == sum(per_location.values()) == 10


async def test_adjustment_records_signed_delta_and_result(services, product, warehouse, actor_id, stock_in):
    await stock_in(product, warehouse, 10)

    down = await services.ledger.apply_movement(
        MovementRequest(product.id, MovementType.ADJUSTMENT, 4, actor_id, to_location_id=warehouse.id)
    )
    assert down.movement.quantity == -6
    assert down.movement.resulting_quantity == 4

    same = await services.ledger.apply_movement(
        MovementRequest(product.id, MovementType.ADJUSTMENT, 4, actor_id, to_location_id=warehouse.id)
    )
    assert same.movement.quantity == 0
    assert same.aggregate_after == 4

    to_zero = await services.ledger.apply_movement(
        MovementRequest(product.id, MovementType.ADJUSTMENT, 0, actor_id, to_location_id=warehouse.id)
    )
    assert to_zero.movement.quantity == -4
    assert to_zero.aggregate_after == 0


async def test_adjustment_on_fresh_location_creates_stock(services, product, warehouse, actor_id):
    applied = await services.ledger.apply_movement(
        MovementRequest(product.id, MovementType.ADJUSTMENT, 12, actor_id, to_location_id=warehouse.id)
    )
    assert applied.movement.quantity == 12
    assert applied.aggregate_after == 12


@pytest.mark.parametrize("quantity", [0, -1, 1.5, "3", True, None])
async def test_non_positive_or_non_integer_quantity_is_rejected(services, product, warehouse, actor_id, quantity):
    with pytest.raises(ValidationError):
        await services.ledger.apply_movement(
            MovementRequest(product.id, MovementType.IN, quantity, actor_id, to_location_id=warehouse.id)
        )
    page = await services.ledger.get_stock_movements(product.id)
    assert page.total == 0


async def test_negative_adjustment_target_is_rejected(services, product, warehouse, actor_id):
    with pytest.raises(ValidationError):
        await services.ledger.apply_movement(
            MovementRequest(product.id, MovementType.ADJUSTMENT, -1, actor_id, to_location_id=warehouse.id)
        )


async def test_unknown_product_and_location(services, product, warehouse, actor_id):
    with pytest.raises(NotFoundError):
        await services.ledger.apply_movement(
            MovementRequest(uuid4(), MovementType.IN, 1, actor_id, to_location_id=warehouse.id)
        )
    with pytest.raises(NotFoundError):
        await services.ledger.apply_movement(
            MovementRequest(product.id, MovementType.IN, 1, actor_id, to_location_id=uuid4())
        )


async def test_location_is_required_in_multi_mode(services, product, actor_id):
    with pytest.raises(ValidationError):
        await services.ledger.apply_movement(MovementRequest(product.id, MovementType.IN, 1, actor_id))
    with pytest.raises(ValidationError):
        await services.ledger.apply_movement(MovementRequest(product.id, MovementType.OUT, 1, actor_id))


async def test_wrong_side_location_is_rejected(services, product, warehouse, actor_id):
    with pytest.raises(ValidationError):
        await services.ledger.apply_movement(
            MovementRequest(product.id, MovementType.IN, 1, actor_id, from_location_id=warehouse.id)
        )


async def test_transfer_movement_through_ledger_requires_distinct_locations(services, product, warehouse, actor_id, stock_in):
    await stock_in(product, warehouse, 3)
    with pytest.raises(SameLocationError):
        await services.ledger.apply_movement(
            MovementRequest(
                product.id, MovementType.TRANSFER, 1, actor_id,
                from_location_id=warehouse.id, to_location_id=warehouse.id,
            )
        )
    with pytest.raises(ValidationError):
        await services.ledger.apply_movement(
            MovementRequest(product.id, MovementType.TRANSFER, 1, actor_id, from_location_id=warehouse.id)
        )


async def test_inactive_location_rejects_movements(services, product, actor_id):
    closed = await services.locations.create_location("Closed")
    await services.locations.deactivate_location(closed.id)
    with pytest.raises(InactiveLocationError):
        await services.ledger.apply_movement(
            MovementRequest(product.id, MovementType.IN, 1, actor_id, to_location_id=closed.id)
        )


async def test_movements_are_append_only(services, product, warehouse, stock_in):
    applied = await stock_in(product, warehouse, 2)

    async with services.session_maker() as db:
        movement = await db.get(StockMovement, applied.movement.id)
        movement.reason = "rewritten"
        with pytest.raises(AppendOnlyViolation):
            await db.flush()
        await db.rollback()

    async with services.session_maker() as db:
        movement = await db.get(StockMovement, applied.movement.id)
        await db.delete(movement)
        with pytest.raises(AppendOnlyViolation):
            await db.flush()
        await db.rollback()

    page = await services.ledger.get_stock_movements(product.id)
    assert page.total == 1
    assert page.items[0].reason is None


async def test_movement_history_is_newest_first_and_paginated(services, product, warehouse, clock, stock_in, stock_out):
    first = await stock_in(product, warehouse, 5)
    clock.advance(minutes=1)
    second = await stock_out(product, warehouse, 1)
    clock.advance(minutes=1)
    third = await stock_in(product, warehouse, 2)

    page = await services.ledger.get_stock_movements(product.id, limit=2, offset=0)
    assert page.total == 3
    assert [m.id for m in page.items] == [third.movement.id, second.movement.id]

    rest = await services.ledger.get_stock_movements(product.id, limit=2, offset=2)
    assert [m.id for m in rest.items] == [first.movement.id]


@pytest.mark.parametrize("limit,offset", [(0, 0), (1001, 0), (10, -1)])
async def test_invalid_pagination(services, product, limit, offset):
    with pytest.raises(ValidationError):
        await services.ledger.get_stock_movements(product.id, limit=limit, offset=offset)


async def test_stock_change_events_after_commit(services, product, warehouse, actor_id, stock_in, sink):
    applied = await stock_in(product, warehouse, 3)
    await services.notifier.drain()

    changes = sink.of_type(StockChangeEvent)
    assert len(changes) == 1
    ev = changes[0]
    assert ev.product_id == product.id
    assert ev.location_id == warehouse.id
    assert (ev.old_quantity, ev.new_quantity) == (0, 3)
    assert ev.actor_id == actor_id
    assert ev.movement_id == applied.movement.id


async def test_failed_movement_emits_nothing(services, product, warehouse, stock_out, sink):
    with pytest.raises(InsufficientStockError):
        await stock_out(product, warehouse, 1)
    await services.notifier.drain()
    assert sink.events == []


async def test_timed_out_transaction_leaves_no_trace(services, product, warehouse, actor_id, clock, settings_factory):
    ledger = StockLedger(
        services.session_maker,
        settings=settings_factory(tx_timeout_seconds=0.05),
        clock=clock,
    )

    async def slow(db, writer):
        await writer.apply(MovementRequest(product.id, MovementType.IN, 5, actor_id, to_location_id=warehouse.id))
        await asyncio.sleep(1)

    with pytest.raises(TransactionTimeoutError):
        await ledger.run_in_transaction(slow)

    assert await _quantity(services, product.id) == 0
    assert (await services.ledger.get_stock_movements(product.id)).total == 0


async def test_single_location_mode_uses_default(services, product, warehouse, actor_id, clock, settings_factory):
    ledger = StockLedger(
        services.session_maker,
        settings=settings_factory(location_mode="single", default_location_id=warehouse.id),
        clock=clock,
    )
    applied = await ledger.apply_movement(MovementRequest(product.id, MovementType.IN, 4, actor_id))
    assert applied.movement.to_location_id == warehouse.id

    applied = await ledger.apply_movement(MovementRequest(product.id, MovementType.OUT, 1, actor_id))
    assert applied.movement.from_location_id == warehouse.id
    assert applied.aggregate_after == 3


@pytest.mark.parametrize("default_location_id", [None, uuid4()])
async def test_single_location_mode_without_usable_default(services, product, actor_id, clock, settings_factory, default_location_id):
    ledger = StockLedger(
        services.session_maker,
        settings=settings_factory(location_mode="single", default_location_id=default_location_id),
        clock=clock,
    )
    with pytest.raises(ConfigurationError):
        await ledger.apply_movement(MovementRequest(product.id, MovementType.IN, 1, actor_id))


async def test_product_version_moves_with_stock(services, product, warehouse, stock_in):
    await stock_in(product, warehouse, 1)
    await stock_in(product, warehouse, 1)
    async with services.session_maker() as db:
        stored = (await db.execute(select(Product).where(Product.id == product.id))).scalar_one()
    assert stored.quantity == 2
    assert stored.version > product.version


async def test_same_timestamp_movements_keep_insertion_order(services, product, warehouse, stock_in, stock_out):
    # clock does not move: every movement shares one created_at
    await stock_in(product, warehouse, 10)
    await stock_out(product, warehouse, 2)
    await stock_out(product, warehouse, 3)

    page = await services.ledger.get_stock_movements(product.id)
    assert [(m.sequence, m.quantity) for m in page.items] == [(3, 3), (2, 2), (1, 10)]

    stored = await services.catalog.get_product(product.id)
    assert stored.movement_seq == 3


class _DriverError(Exception):
    def __init__(self, message, sqlstate=None):
        super().__init__(message)
        self.sqlstate = sqlstate


@pytest.mark.parametrize(
    "orig,is_conflict",
    [
        (_DriverError("duplicate key value violates unique constraint", "23505"), True),
        (_DriverError("insert violates foreign key constraint", "23503"), False),
        (_DriverError("new row violates check constraint", "23514"), False),
        (_DriverError("UNIQUE constraint failed: products.sku"), True),
        (_DriverError("FOREIGN KEY constraint failed"), False),
        (_DriverError("CHECK constraint failed: ck_product_stocks_quantity_nonnegative"), False),
    ],
)
def test_only_unique_violations_are_retryable(orig, is_conflict):
    translated = translate_db_error(IntegrityError("INSERT ...", {}, orig))
    assert isinstance(translated, ConflictError) is is_conflict


async def test_foreign_key_failure_is_not_retried(services, warehouse, actor_id, caplog):
    async def work(db, writer):
        db.add(
            StockMovement(
                type=MovementType.IN,
                quantity=1,
                resulting_quantity=1,
                product_id=uuid4(),
                to_location_id=warehouse.id,
                actor_id=actor_id,
                sequence=1,
                created_at=services.clock.now(),
            )
        )
        await writer.flush()

    with pytest.raises(IntegrityError):
        await services.ledger.run_in_transaction(work)
    assert "retrying" not in caplog.text
