"""Cash ledger for a single backtest: balance, locked funds, fees, and unrealized P&L."""

from __future__ import annotations

from .errors import (
    InsufficientFunds,
    NegativeFreeBalance,
    NonPositiveAmount,
    NonPositiveBalance,
    UnlockUnderflow,
)
from .models import WalletSnapshot

# Tolerance for float residue left by repeated lock/unlock sums.
_EPSILON = 1e-9


class Wallet:
    """
    Accounting ledger owned by one engine.

    Every mutating call either leaves ``balance - locked >= 0`` or raises
    before touching any field.
    """

    def __init__(self, initial_balance: float):
        initial = float(initial_balance)
        if not initial > 0:
            raise NonPositiveBalance(initial)
        self._initial_balance = initial
        self._balance = initial
        self._locked = 0.0
        self._fees = 0.0
        self._unrealized_pnl = 0.0

    @property
    def initial_balance(self) -> float:
        return self._initial_balance

    @property
    def balance(self) -> float:
        return self._balance

    @property
    def locked(self) -> float:
        return self._locked

    @property
    def fees(self) -> float:
        return self._fees

    @property
    def unrealized_pnl(self) -> float:
        return self._unrealized_pnl

    def free_balance(self) -> float:
        free = self._balance - self._locked
        if free < -_EPSILON:
            raise NegativeFreeBalance(self._balance, self._locked)
        return max(free, 0.0)

    def total_balance(self) -> float:
        return self._balance + self._unrealized_pnl

    def ensure_free(self, amount: float) -> float:
        """Raise :class:`InsufficientFunds` unless ``amount`` fits in the free balance."""
        free = self.free_balance()
        if amount > free + _EPSILON:
            raise InsufficientFunds(amount, free)
        return free

    def lock(self, amount: float) -> None:
        """Reserve ``amount`` of free balance for a pending order."""
        if not amount > 0:
            raise NonPositiveAmount(amount)
        self.ensure_free(amount)
        self._locked += amount

    def unlock(self, amount: float) -> None:
        """Release ``amount`` previously reserved with :meth:`lock`."""
        if not amount > 0:
            raise NonPositiveAmount(amount)
        self._locked = self._release(amount)

    def sub(self, amount: float) -> float:
        """Spend locked funds: the debit comes out of both balance and locked."""
        if not amount > 0:
            raise NonPositiveAmount(amount)
        self._locked = self._release(amount)
        self._balance -= amount
        return self.free_balance()

    def add(self, amount: float) -> float:
        """Credit ``amount`` (negative when a short loses more than its cost)."""
        if self._balance + amount - self._locked < -_EPSILON:
            raise NegativeFreeBalance(self._balance + amount, self._locked)
        self._balance += amount
        return self.free_balance()

    def sub_fees(self, amount: float) -> float:
        if amount < 0:
            raise NonPositiveAmount(amount)
        self.ensure_free(amount)
        self._balance -= amount
        self._fees += amount
        return self.free_balance()

    def set_unrealized_pnl(self, value: float) -> None:
        self._unrealized_pnl = float(value)

    def sub_pnl(self, value: float) -> None:
        self._unrealized_pnl -= float(value)

    def reset(self) -> None:
        self._balance = self._initial_balance
        self._locked = 0.0
        self._fees = 0.0
        self._unrealized_pnl = 0.0

    def snapshot(self) -> WalletSnapshot:
        return WalletSnapshot(
            balance=self._balance,
            locked=self._locked,
            fees=self._fees,
            pnl=self._unrealized_pnl,
            free=self.free_balance(),
        )

    def _release(self, amount: float) -> float:
        remaining = self._locked - amount
        if remaining < -_EPSILON:
            raise UnlockUnderflow(amount, self._locked)
        if remaining <= _EPSILON:
            return 0.0
        return remaining

    def __repr__(self) -> str:
        return (
            f"Wallet(balance={self._balance}, locked={self._locked}, fees={self._fees}, "
            f"unrealized_pnl={self._unrealized_pnl})"
        )
