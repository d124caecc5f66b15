"""Fold base candles into higher-timeframe candles for a set of integer factors."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from .errors import CandleDataEmpty, InvalidFactor
from .models import Candle


def _normalize_factors(raw_value: Iterable[int]) -> tuple[int, ...]:
    try:
        items = list(raw_value)
    except TypeError as exc:
        raise InvalidFactor(raw_value) from exc
    if not items:
        raise InvalidFactor(items)
    for item in items:
        if isinstance(item, bool) or not isinstance(item, int) or item <= 0:
            raise InvalidFactor(items)
    return tuple(sorted(set(items)))


class Aggregator:
    """
    Stateless aggregation policy.

    ``factors`` counts base candles per synthetic candle; ``1`` stands for the
    base resolution. Subclasses may override :meth:`aggregate` and
    :meth:`should_aggregate` to change how and when windows fold.
    """

    def __init__(self, factors: Iterable[int]):
        self._factors = _normalize_factors(factors)

    @property
    def factors(self) -> tuple[int, ...]:
        return self._factors

    def aggregate(self, candles: Sequence[Candle]) -> Candle:
        if not candles:
            raise CandleDataEmpty("Cannot aggregate an empty candle window")
        first = candles[0]
        last = candles[-1]
        open_price = first.open
        close_price = last.close
        return Candle(
            open=open_price,
            high=max(max(candle.high for candle in candles), open_price, close_price),
            low=min(min(candle.low for candle in candles), open_price, close_price),
            close=close_price,
            volume=sum(candle.volume for candle in candles),
            bid=sum(candle.bid for candle in candles),
            open_time=first.open_time,
            close_time=last.close_time,
        )

    def should_aggregate(self, factor: int, candles: Sequence[Candle]) -> bool:
        return len(candles) == factor

    def session(self) -> "AggregationWindows":
        return AggregationWindows(self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(factors={list(self._factors)})"


class AggregationWindows:
    """Per-run window state for one :class:`Aggregator`."""

    def __init__(self, aggregator: Aggregator):
        self.aggregator = aggregator
        self._windows: dict[int, list[Candle]] = {factor: [] for factor in aggregator.factors}
        self._latest: dict[int, Candle] = {}

    def push(self, candle: Candle) -> list[Candle]:
        """
        Advance every window by one base candle and return the tick view.

        The view holds the base candle first, then the latest completed
        aggregate for each factor above 1 in ascending order. Factors that have
        not completed a window yet are left out.
        """
        for factor, window in self._windows.items():
            window.append(candle)
            if self.aggregator.should_aggregate(factor, window):
                self._latest[factor] = self.aggregator.aggregate(window)
                window.clear()

        view = [candle]
        for factor in self.aggregator.factors:
            if factor > 1 and factor in self._latest:
                view.append(self._latest[factor])
        return view

    def latest(self, factor: int) -> Candle | None:
        return self._latest.get(factor)
