"""Tests for the rolling summary store."""

import asyncio
from datetime import timedelta

from deployer.models import Outcome, Strategy
from deployer.summary import RollingSummary, StrategyStats, extract_learnings, render_summary


def closed(record, outcome, profit):
    record.performance.outcome = outcome
    record.performance.profit = profit
    return record


def test_empty_summary():
    summary = RollingSummary()
    assert summary.summary_text == "No deployments yet."
    assert extract_learnings(summary) == []


def test_repeated_outcome_not_double_counted(summary, make_deployment):
    record = make_deployment()

    async def _run():
        await summary.record_deployment(record)
        closed(record, Outcome.PROFITABLE, 0.04)
        await summary.record_outcome(record)
        await summary.record_outcome(record)

    asyncio.run(_run())
    totals = summary.get_rolling_summary()

    assert totals.total_deployed == 1
    assert totals.total_profitable == 1
    assert totals.total_profit == 0.04
    assert totals.strategy_performance[Strategy.SPECIFIC_MOMENT].profitable == 1


def test_performance_update_leaves_counters(summary, store, make_deployment):
    record = make_deployment()

    async def _run():
        await summary.record_deployment(record)
        record.performance.current_value = 0.07
        await summary.update_performance(record)

    asyncio.run(_run())

    assert summary.get_rolling_summary().total_deployed == 1
    assert store.records[record.mint].performance.current_value == 0.07


def test_rebuild_from_store(summary, store, make_deployment, now):
    records = [
        closed(make_deployment(mint="M1", deployed_at=now - timedelta(hours=5)), Outcome.PROFITABLE, 0.1),
        closed(make_deployment(mint="M2", deployed_at=now - timedelta(hours=4)), Outcome.LOSS, -0.03),
        closed(make_deployment(mint="M3", deployed_at=now - timedelta(hours=3),
                               strategy=Strategy.EMERGING_TREND), Outcome.DEAD, -0.05),
        make_deployment(mint="M4", deployed_at=now - timedelta(hours=2)),
    ]
    for record in records:
        store.records[record.mint] = record

    rebuilt = asyncio.run(summary.rebuild())

    assert rebuilt.total_deployed == 4
    assert rebuilt.total_profitable == 1
    assert rebuilt.total_loss == 1
    assert rebuilt.total_dead == 1
    assert abs(rebuilt.total_profit - 0.02) < 1e-9
    assert rebuilt.strategy_performance[Strategy.EMERGING_TREND].dead == 1
    assert "4 deployed" in rebuilt.summary_text
    assert "1 active" in rebuilt.summary_text


def test_rebuild_includes_pending_records(summary, store, make_deployment):
    store.fail_saves = True
    asyncio.run(summary.record_deployment(make_deployment(mint="Unsaved")))
    store.fail_saves = False

    rebuilt = asyncio.run(summary.rebuild())

    assert rebuilt.total_deployed == 1
    assert [r.mint for r in summary.pending] == ["Unsaved"]


def test_reconcile_keeps_failures_queued(summary, store, make_deployment):
    store.fail_saves = True

    async def _run():
        await summary.record_deployment(make_deployment(mint="A"))
        await summary.record_deployment(make_deployment(mint="B"))
        return await summary.reconcile()

    assert asyncio.run(_run()) == 2
    store.fail_saves = False
    assert asyncio.run(summary.reconcile()) == 0
    assert set(store.records) == {"A", "B"}


def test_learnings_rank_strategies():
    summary = RollingSummary()
    summary.strategy_performance[Strategy.SPECIFIC_MOMENT] = StrategyStats(
        deployed=4, profitable=3, loss=1, profit=0.2,
    )
    summary.strategy_performance[Strategy.PATTERN_BASED] = StrategyStats(
        deployed=3, profitable=0, loss=1, dead=2, profit=-0.1,
    )
    summary.total_profitable, summary.total_loss, summary.total_dead = 3, 2, 2

    learnings = extract_learnings(summary)

    assert learnings[0].startswith("specific_moment: 3/4 closed profitable (75%)")
    assert learnings[1].startswith("pattern_based: 0/3")
    assert learnings[2] == "Prefer specific_moment over pattern_based (75% vs 0% win rate)"
    assert len(learnings) == 3


def test_learnings_need_enough_closed_positions():
    summary = RollingSummary()
    summary.strategy_performance[Strategy.EMERGING_TREND] = StrategyStats(
        deployed=2, profitable=2, profit=0.3,
    )
    summary.total_profitable = 2

    assert extract_learnings(summary) == []


def test_dead_heavy_history_flagged():
    summary = RollingSummary()
    summary.strategy_performance[Strategy.EMERGING_TREND] = StrategyStats(
        deployed=4, dead=3, loss=1, profit=-0.2,
    )
    summary.total_deployed, summary.total_loss, summary.total_dead = 4, 1, 3

    learnings = extract_learnings(summary)

    assert learnings[-1].startswith("3/4 closed deployments went dead")
    assert render_summary(summary).startswith("4 deployed, 0 profitable, 1 loss, 3 dead, 0 active")


def test_rebuild_reads_full_history(summary, store, make_deployment, now):
    for i in range(650):
        record = make_deployment(mint=f"M{i}", deployed_at=now - timedelta(minutes=4 * (650 - i)))
        if i % 2 == 0:
            closed(record, Outcome.LOSS, -0.01)
        store.records[record.mint] = record

    rebuilt = asyncio.run(summary.rebuild())

    assert rebuilt.total_deployed == 650
    assert rebuilt.total_loss == 325
    assert rebuilt.strategy_performance[Strategy.SPECIFIC_MOMENT].deployed == 650
    assert abs(rebuilt.total_profit + 3.25) < 1e-9
