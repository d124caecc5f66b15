import math
from datetime import datetime, timezone

import pytest

from bts import (
    Candle,
    Event,
    EventType,
    InvalidCandleTimes,
    InvalidEntryPrice,
    InvalidExitPrice,
    InvalidPriceOrder,
    InvalidTrailingStop,
    Limit,
    Market,
    MismatchedOrderType,
    NegativeExitLevel,
    NegativeVolume,
    NonPositiveQuantity,
    Order,
    OrderSide,
    Position,
    PositionSide,
    TakeProfitAndStopLoss,
    TrailingStop,
)


def _times():
    return datetime(2024, 1, 1, 0, 0), datetime(2024, 1, 1, 0, 59)


def test_candle_normalizes_naive_times_to_utc():
    open_time, close_time = _times()
    candle = Candle(100, 110, 90, 105, 50, open_time, close_time, bid=20)
    assert candle.open_time.tzinfo == timezone.utc
    assert candle.ask == 30.0
    assert candle.contains(90.0)
    assert candle.contains(110.0)
    assert not candle.contains(110.01)


@pytest.mark.parametrize(
    "prices",
    [
        (100, 99, 90, 95),  # open above high
        (100, 110, 101, 105),  # open below low
        (100, 110, 90, 111),  # close above high
        (math.nan, 110, 90, 100),
        (100, math.inf, 90, 100),
    ],
)
def test_candle_rejects_inconsistent_prices(prices):
    open_time, close_time = _times()
    with pytest.raises(InvalidPriceOrder):
        Candle(*prices, 1.0, open_time, close_time)


def test_candle_rejects_negative_volume():
    open_time, close_time = _times()
    with pytest.raises(NegativeVolume):
        Candle(100, 110, 90, 100, -1.0, open_time, close_time)


def test_candle_rejects_close_before_open():
    open_time, close_time = _times()
    with pytest.raises(InvalidCandleTimes):
        Candle(100, 110, 90, 100, 1.0, close_time, open_time)


def test_candle_validation_errors_are_value_errors():
    open_time, close_time = _times()
    with pytest.raises(ValueError):
        Candle(100, 90, 110, 100, 1.0, open_time, close_time)


def test_order_cost_and_side_normalization():
    order = Order(Market(110.0), 2.0, "long")
    assert order.side is OrderSide.BUY
    assert order.position_side is PositionSide.LONG
    assert order.cost == 220.0
    assert order.is_market


def test_order_ids_are_unique_and_define_equality():
    first = Order(Limit(100.0), 1.0, OrderSide.SELL)
    second = Order(Limit(100.0), 1.0, OrderSide.SELL)
    assert first.id != second.id
    assert first != second
    assert first == first
    assert len({first, second}) == 2


@pytest.mark.parametrize("quantity", [0.0, -1.0, math.nan])
def test_order_rejects_non_positive_quantity(quantity):
    with pytest.raises(NonPositiveQuantity):
        Order(Market(100.0), quantity, OrderSide.BUY)


@pytest.mark.parametrize("price", [0.0, -10.0, math.inf])
def test_entry_rules_reject_bad_prices(price):
    with pytest.raises(InvalidEntryPrice):
        Market(price)
    with pytest.raises(InvalidEntryPrice):
        Limit(price)


def test_order_rejects_swapped_rule_kinds():
    with pytest.raises(MismatchedOrderType):
        Order(TrailingStop(100.0, 1.0), 1.0, OrderSide.BUY)
    with pytest.raises(MismatchedOrderType):
        Order(Market(100.0), 1.0, OrderSide.BUY, exit_rule=Limit(90.0))


def test_exit_rules_validate_levels():
    with pytest.raises(NegativeExitLevel):
        TakeProfitAndStopLoss(take_profit=-1.0, stop_loss=0.0)
    with pytest.raises(NegativeExitLevel):
        TakeProfitAndStopLoss(take_profit=0.0, stop_loss=-1.0)
    with pytest.raises(InvalidTrailingStop):
        TrailingStop(0.0, 2.0)
    with pytest.raises(InvalidTrailingStop):
        TrailingStop(100.0, 0.0)
    assert TakeProfitAndStopLoss().to_dict()["take_profit"] == 0.0


def test_position_pnl_for_both_sides():
    long_position = Position(Order(Market(100.0), 2.0, OrderSide.BUY))
    short_position = Position(Order(Market(100.0), 2.0, OrderSide.SELL))
    assert long_position.estimate_pnl(110.0) == 20.0
    assert short_position.estimate_pnl(110.0) == -20.0
    assert long_position.pnl is None
    long_position.set_exit_price(95.0)
    assert long_position.pnl == -10.0


@pytest.mark.parametrize("price", [0.0, -1.0, math.nan])
def test_position_rejects_invalid_exit_price(price):
    position = Position(Order(Market(100.0), 1.0, OrderSide.BUY))
    with pytest.raises(InvalidExitPrice):
        position.set_exit_price(price)
    assert position.exit_price is None


def test_trailing_reference_only_moves_in_favour():
    long_position = Position(Order(Market(100.0), 1.0, OrderSide.BUY, exit_rule=TrailingStop(100.0, 5.0)))
    assert long_position.ratchet_trailing_stop(105.0)
    assert not long_position.ratchet_trailing_stop(101.0)
    assert long_position.exit_rule.price == 105.0
    assert long_position.order.exit_rule.price == 100.0

    short_position = Position(Order(Market(100.0), 1.0, OrderSide.SELL, exit_rule=TrailingStop(100.0, 5.0)))
    assert short_position.ratchet_trailing_stop(95.0)
    assert not short_position.ratchet_trailing_stop(99.0)
    assert short_position.exit_rule.price == 95.0


def test_ratchet_requires_trailing_stop():
    position = Position(Order(Market(100.0), 1.0, OrderSide.BUY))
    with pytest.raises(MismatchedOrderType):
        position.ratchet_trailing_stop(120.0)


def test_snapshot_is_detached_from_live_position():
    position = Position(Order(Market(100.0), 1.0, OrderSide.BUY, exit_rule=TrailingStop(100.0, 5.0)))
    snapshot = position.snapshot()
    position.ratchet_trailing_stop(130.0)
    assert snapshot.exit_rule.price == 100.0
    assert snapshot.id == position.id


def test_event_record_flattens_position_payload():
    position = Position(Order(Limit(50.0), 4.0, OrderSide.SELL))
    position.set_exit_price(45.0)
    event = Event(EventType.DEL_POSITION, datetime(2024, 1, 1, tzinfo=timezone.utc), position=position)
    record = event.to_dict()
    assert record["event_type"] == "DEL_POSITION"
    assert record["time_utc"] == "2024-01-01T00:00:00Z"
    assert record["entry_type"] == "LIMIT"
    assert record["side"] == "SELL"
    assert record["pnl"] == 20.0
    assert record["balance"] is None


@pytest.mark.parametrize("price", [0.0, -1.0])
def test_trailing_reference_ignores_non_positive_prices(price):
    position = Position(Order(Market(100.0), 1.0, OrderSide.SELL, exit_rule=TrailingStop(100.0, 5.0)))
    assert not position.ratchet_trailing_stop(price)
    assert position.exit_rule.price == 100.0
