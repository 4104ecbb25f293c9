"""Tests for the trigger dedup cache."""

import asyncio

import pytest

from deployer.execution.dedup import extract_trigger_id


@pytest.mark.parametrize(
    "ref, expected",
    [
        ("https://x.com/someone/status/1790000000000000001", "1790000000000000001"),
        ("https://twitter.com/someone/status/42?s=20&t=abc", "42"),
        ("https://twitter.com/someone/statuses/99", "99"),
        ("https://x.com/someone", None),
        ("", None),
        (None, None),
    ],
)
def test_extract_trigger_id(ref, expected):
    assert extract_trigger_id(ref) == expected


def test_first_lookup_rebuilds_from_store(dedup, store, make_deployment):
    store.records["Mint1pump"] = make_deployment(trigger_id="111")

    result = asyncio.run(dedup.is_duplicate("https://x.com/a/status/111"))

    assert result.duplicate
    assert result.existing_label == "Lobster Way ($LBSTR)"
    assert store.refresh_calls == 1


def test_rebuild_only_after_ttl(dedup, store, clock):
    async def _run():
        await dedup.is_duplicate("https://x.com/a/status/1")
        clock.advance(299)
        await dedup.is_duplicate("https://x.com/a/status/2")
        calls_within_ttl = store.refresh_calls
        clock.advance(2)
        await dedup.is_duplicate("https://x.com/a/status/3")
        return calls_within_ttl

    assert asyncio.run(_run()) == 1
    assert store.refresh_calls == 2


def test_miss_falls_through_to_store_and_backfills(dedup, store, make_deployment):
    async def _run():
        await dedup.refresh()
        # Written by another process after the last rebuild
        store.records["Mint9pump"] = make_deployment(mint="Mint9pump", trigger_id="999")
        return await dedup.is_duplicate("https://x.com/a/status/999")

    result = asyncio.run(_run())

    assert result.duplicate
    assert "https://x.com/b/status/999" in dedup


def test_store_outage_fails_open(dedup, store):
    store.fail_reads = True

    result = asyncio.run(dedup.is_duplicate("https://x.com/a/status/5"))

    assert not result.duplicate
    assert not asyncio.run(dedup.refresh())


def test_outage_keeps_last_known_state(dedup, store, make_deployment):
    store.records["Mint1pump"] = make_deployment(trigger_id="7")

    async def _run():
        await dedup.refresh()
        store.fail_reads = True
        return await dedup.is_duplicate("https://x.com/a/status/7")

    assert asyncio.run(_run()).duplicate


def test_add_is_idempotent_and_ignores_unparseable(dedup):
    dedup.add("https://x.com/a/status/8", "A ($A)")
    dedup.add("https://x.com/a/status/8", "A ($A)")
    dedup.add("not a post", "B ($B)")

    assert dedup.size == 1
    assert dedup.unconfirmed == {"8"}


def test_unconfirmed_entry_kept_until_store_has_it(dedup, store, make_deployment):
    dedup.add("https://x.com/a/status/8", "A ($A)")

    async def _run():
        await dedup.refresh()
        kept = "https://x.com/a/status/8" in dedup
        store.records["Mint8pump"] = make_deployment(mint="Mint8pump", trigger_id="8")
        await dedup.refresh()
        return kept

    assert asyncio.run(_run())
    assert dedup.unconfirmed == set()
    assert "https://x.com/a/status/8" in dedup


def test_unparseable_ref_never_duplicate(dedup, store):
    result = asyncio.run(dedup.is_duplicate("https://example.com/post"))

    assert not result.duplicate
    assert store.refresh_calls == 0
