"""Percentage arithmetic shared by exit rules, strategies, and reports."""

from __future__ import annotations


def addpercent(value: float, percent: float) -> float:
    """Return ``value`` increased by ``percent`` percent."""
    return float(value) * (1.0 + float(percent) / 100.0)


def subpercent(value: float, percent: float) -> float:
    """Return ``value`` decreased by ``percent`` percent."""
    return float(value) * (1.0 - float(percent) / 100.0)


def how_many(value: float, percent: float) -> float:
    """Return the ``percent`` share of ``value`` (e.g. 2 % of a balance)."""
    return float(value) * float(percent) / 100.0


def change(old: float, new: float) -> float:
    """
    Percentage change going from ``old`` to ``new``.

    Raises:
        ValueError: if ``old`` is zero.
    """
    base = float(old)
    if base == 0:
        raise ValueError("Percentage change is undefined for a zero base value")
    return (float(new) - base) / base * 100.0
