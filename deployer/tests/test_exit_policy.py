"""Tests for the exit policy, ROI math and balance headroom."""

import asyncio
from datetime import timedelta

import pytest

from deployer.execution.balance import BalanceGuard, BalanceUnavailable
from deployer.execution.exit_policy import ExitAction, ExitPolicy, ExitReason
from deployer.models import MarketQuote, Position, compute_roi


@pytest.fixture
def policy():
    return ExitPolicy(
        take_profit_pct=50, stop_loss_pct=-50, dead_window_hours=24, dead_min_roi_pct=1,
    )


# ------------------------------------------------------------------
# Exit policy
# ------------------------------------------------------------------
@pytest.mark.parametrize(
    "roi_pct, inactive_hours, action, reason",
    [
        (51, 0, ExitAction.SELL, ExitReason.TAKE_PROFIT),
        (50, 0, ExitAction.HOLD, ExitReason.WITHIN_THRESHOLDS),
        (49, 0, ExitAction.HOLD, ExitReason.WITHIN_THRESHOLDS),
        (-51, 0, ExitAction.SELL, ExitReason.STOP_LOSS),
        (-50, 0, ExitAction.HOLD, ExitReason.WITHIN_THRESHOLDS),
        (10, 25, ExitAction.SELL, ExitReason.DEAD_TOKEN),
        (10, 24, ExitAction.HOLD, ExitReason.WITHIN_THRESHOLDS),
        (1, 25, ExitAction.HOLD, ExitReason.WITHIN_THRESHOLDS),
        (-10, 48, ExitAction.HOLD, ExitReason.WITHIN_THRESHOLDS),
        (200, 48, ExitAction.SELL, ExitReason.TAKE_PROFIT),
    ],
)
def test_decide(policy, roi_pct, inactive_hours, action, reason):
    decision = policy.decide(roi_pct, inactive_hours)
    assert decision.action == action
    assert decision.reason == reason


def test_holder_delta_does_not_move_decision(policy):
    assert policy.decide(20, 1, holder_delta=-500) == policy.decide(20, 1, holder_delta=500)


# ------------------------------------------------------------------
# ROI
# ------------------------------------------------------------------
def test_roi_includes_fees():
    assert compute_roi(0.375, 0.125, 0.5) == 0.0
    assert compute_roi(0.5, 0.25, 0.5) == 0.5


def test_roi_requires_positive_spend():
    with pytest.raises(ValueError):
        compute_roi(1.0, 0.0, 0.0)


def test_position_from_market(make_deployment, now):
    record = make_deployment(initial_spend=0.5)
    record.performance.holders = 40
    quote = MarketQuote(
        mint=record.mint,
        price=0.000001,
        market_cap=12_000,
        holders=55,
        fees=0.25,
        last_trade_at=now - timedelta(hours=3),
    )

    position = Position.from_market(record, quote, held_quantity=500_000, now=now)

    assert position.current_value == pytest.approx(0.5)
    assert position.roi_pct == pytest.approx(50.0)
    assert position.profit == pytest.approx(0.25)
    assert position.holder_delta == 15
    assert position.inactive_hours == pytest.approx(3.0)


def test_position_without_trades_measures_from_deploy(make_deployment, now):
    record = make_deployment(deployed_at=now - timedelta(hours=30))
    position = Position.from_market(record, MarketQuote(mint=record.mint), 0, now=now)

    assert position.inactive_hours == pytest.approx(30.0)
    assert position.roi == pytest.approx(-1.0)


# ------------------------------------------------------------------
# Balance
# ------------------------------------------------------------------
def test_balance_headroom_above_reserve(wallet):
    guard = BalanceGuard(wallet, wallet_address="w", reserve=0.3, minimum_action=0.05)

    low = guard.evaluate(0.32)
    assert low.available == pytest.approx(0.02)
    assert not low.sufficient

    ok = guard.evaluate(0.4)
    assert ok.sufficient

    empty = guard.evaluate(0.1)
    assert empty.available == 0.0


def test_balance_unavailable_without_wallet(wallet):
    guard = BalanceGuard(wallet, wallet_address="")
    with pytest.raises(BalanceUnavailable):
        asyncio.run(guard.check_balance())


def test_balance_unavailable_on_rpc_failure(wallet):
    wallet.fail = True
    guard = BalanceGuard(wallet, wallet_address="w")
    with pytest.raises(BalanceUnavailable):
        asyncio.run(guard.check_balance())
