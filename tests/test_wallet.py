import pytest

from bts import (
    InsufficientFunds,
    NegativeFreeBalance,
    NonPositiveAmount,
    NonPositiveBalance,
    UnlockUnderflow,
    Wallet,
)


def test_new_wallet_starts_free():
    wallet = Wallet(1000.0)
    assert wallet.balance == 1000.0
    assert wallet.locked == 0.0
    assert wallet.fees == 0.0
    assert wallet.free_balance() == 1000.0
    assert wallet.total_balance() == 1000.0


@pytest.mark.parametrize("balance", [0.0, -1.0])
def test_wallet_rejects_non_positive_balance(balance):
    with pytest.raises(NonPositiveBalance):
        Wallet(balance)


def test_lock_then_unlock_restores_free_balance():
    wallet = Wallet(1000.0)
    wallet.lock(110.0)
    assert wallet.free_balance() == 890.0
    wallet.unlock(110.0)
    assert wallet.free_balance() == 1000.0
    assert wallet.locked == 0.0


def test_lock_more_than_free_leaves_wallet_unchanged():
    wallet = Wallet(100.0)
    wallet.lock(60.0)
    with pytest.raises(InsufficientFunds):
        wallet.lock(50.0)
    assert wallet.locked == 60.0
    assert wallet.free_balance() == 40.0


@pytest.mark.parametrize("amount", [0.0, -5.0])
def test_lock_and_unlock_reject_non_positive_amounts(amount):
    wallet = Wallet(100.0)
    with pytest.raises(NonPositiveAmount):
        wallet.lock(amount)
    with pytest.raises(NonPositiveAmount):
        wallet.unlock(amount)


def test_unlock_more_than_locked_underflows():
    wallet = Wallet(100.0)
    wallet.lock(10.0)
    with pytest.raises(UnlockUnderflow):
        wallet.unlock(20.0)
    assert wallet.locked == 10.0


def test_sub_spends_locked_funds():
    wallet = Wallet(1000.0)
    wallet.lock(100.0)
    free = wallet.sub(100.0)
    assert wallet.balance == 900.0
    assert wallet.locked == 0.0
    assert free == 900.0


def test_sub_without_lock_underflows():
    wallet = Wallet(1000.0)
    with pytest.raises(UnlockUnderflow):
        wallet.sub(10.0)
    assert wallet.balance == 1000.0


def test_add_that_would_make_free_negative_is_rejected():
    wallet = Wallet(100.0)
    wallet.lock(80.0)
    with pytest.raises(NegativeFreeBalance):
        wallet.add(-30.0)
    assert wallet.balance == 100.0
    assert wallet.add(-20.0) == 0.0


def test_fees_accumulate_and_cannot_exceed_free_balance():
    wallet = Wallet(100.0)
    wallet.sub_fees(1.5)
    wallet.sub_fees(0.5)
    assert wallet.fees == 2.0
    assert wallet.balance == 98.0
    wallet.lock(90.0)
    with pytest.raises(InsufficientFunds):
        wallet.sub_fees(10.0)
    assert wallet.fees == 2.0
    with pytest.raises(NonPositiveAmount):
        wallet.sub_fees(-1.0)


def test_unrealized_pnl_only_affects_total_balance():
    wallet = Wallet(1000.0)
    wallet.set_unrealized_pnl(25.0)
    assert wallet.total_balance() == 1025.0
    assert wallet.free_balance() == 1000.0
    wallet.sub_pnl(10.0)
    assert wallet.unrealized_pnl == 15.0


def test_reset_restores_initial_state():
    wallet = Wallet(500.0)
    wallet.lock(100.0)
    wallet.sub(100.0)
    wallet.sub_fees(1.0)
    wallet.set_unrealized_pnl(3.0)
    wallet.reset()
    assert wallet.balance == 500.0
    assert wallet.locked == 0.0
    assert wallet.fees == 0.0
    assert wallet.unrealized_pnl == 0.0


def test_float_residue_from_repeated_locks_does_not_underflow():
    wallet = Wallet(1.0)
    amounts = [0.1, 0.2, 0.3, 0.7 / 3]
    for amount in amounts:
        wallet.lock(amount)
    for amount in amounts:
        wallet.unlock(amount)
    assert wallet.locked == 0.0
    assert wallet.free_balance() == 1.0


def test_snapshot_reports_current_figures():
    wallet = Wallet(1000.0)
    wallet.lock(100.0)
    snapshot = wallet.snapshot()
    assert snapshot.balance == 1000.0
    assert snapshot.locked == 100.0
    assert snapshot.free == 900.0
    assert snapshot.fees == 0.0


def test_ensure_free_checks_without_mutating():
    wallet = Wallet(100.0)
    wallet.lock(99.5)
    assert wallet.ensure_free(0.5) == pytest.approx(0.5)
    with pytest.raises(InsufficientFunds):
        wallet.ensure_free(0.6)
    assert wallet.balance == 100.0
    assert wallet.locked == 99.5
