"""
History Assembler and Activity Aggregator Tests.

============================================================
PURPOSE
============================================================
Ordering, deduplication and summarization of asset events.

TEST CATEGORIES:
- Assembly tests: owner / minter / transfer count
- Ordering tests: determinism and tie-breaking
- Mint anomaly tests: duplicate and missing mints
- Aggregation tests: cross-asset feed and failed assets

============================================================
"""

import random

import pytest

from provenance_engine.abi import ZERO_ADDRESS
from provenance_engine.aggregator import ActivityAggregator, group_by_asset
from provenance_engine.assembler import HistoryAssembler, deduplicate, ordering_key
from provenance_engine.exceptions import DuplicateMintError, SourceUnavailableError
from provenance_engine.models import Event, EventKind


ALICE = "0x00000000000000000000000000000000000000a1"
BOB = "0x00000000000000000000000000000000000000b2"
CAROL = "0x00000000000000000000000000000000000000c3"


def mint(asset_id, to, timestamp, block=None, index=0, tx="m"):
    block = timestamp if block is None else block
    return Event(
        id=f"mint-0x{tx}{asset_id}-{index}",
        asset_id=asset_id,
        kind=EventKind.MINTED,
        from_address=ZERO_ADDRESS,
        to_address=to,
        timestamp=timestamp,
        block_number=block,
        log_index=index,
    )


def transfer(asset_id, sender, to, timestamp, block=None, index=0, tx=None):
    block = timestamp if block is None else block
    tx = tx or f"t{block}"
    return Event(
        id=f"transfer-0x{tx}-{index}",
        asset_id=asset_id,
        kind=EventKind.TRANSFERRED,
        from_address=sender,
        to_address=to,
        timestamp=timestamp,
        block_number=block,
        log_index=index,
    )


@pytest.fixture
def assembler() -> HistoryAssembler:
    return HistoryAssembler()


@pytest.fixture
def aggregator() -> ActivityAggregator:
    return ActivityAggregator()


# ============================================================
# ASSEMBLY TESTS
# ============================================================

class TestAssembly:
    """Tests for HistoryAssembler.assemble."""

    def test_chain_of_custody(self, assembler):
        """Asset 7: minted to Alice, Alice -> Bob -> Carol."""
        events = [
            transfer(7, BOB, CAROL, 200),
            mint(7, ALICE, 100),
            transfer(7, ALICE, BOB, 150),
        ]

        history = assembler.assemble(7, events)

        assert [e.timestamp for e in history.events] == [100, 150, 200]
        assert history.minter == ALICE
        assert history.current_owner == CAROL
        assert history.transfer_count == 2
        assert history.has_mint
        assert history.is_complete

    def test_mint_only(self, assembler):
        """Owner equals minter when nothing was transferred."""
        history = assembler.assemble(7, [mint(7, ALICE, 100)])

        assert history.current_owner == ALICE
        assert history.transfer_count == 0

    def test_other_assets_ignored(self, assembler):
        history = assembler.assemble(7, [mint(7, ALICE, 100), mint(8, BOB, 101)])

        assert len(history.events) == 1

    def test_duplicates_collapse(self, assembler):
        """The same event observed twice appears once."""
        first = transfer(7, ALICE, BOB, 150)

        history = assembler.assemble(7, [mint(7, ALICE, 100), first, first])

        assert history.transfer_count == 1
        assert len(history.events) == 2

    def test_dropped_events_carried(self, assembler):
        history = assembler.assemble(7, [mint(7, ALICE, 100)], dropped_events=2)

        assert history.dropped_events == 2
        assert not history.is_complete


# ============================================================
# ORDERING TESTS
# ============================================================

class TestOrdering:
    """Tests for deterministic ordering."""

    def test_permutations_give_identical_history(self, assembler):
        """Input order never changes the result."""
        events = [
            mint(7, ALICE, 100),
            transfer(7, ALICE, BOB, 150),
            transfer(7, BOB, CAROL, 150, block=151),
            transfer(7, CAROL, ALICE, 200, block=200, index=0),
            transfer(7, ALICE, BOB, 200, block=200, index=1),
        ]
        expected = assembler.assemble(7, events)

        rng = random.Random(42)
        for _ in range(10):
            shuffled = events[:]
            rng.shuffle(shuffled)
            assert assembler.assemble(7, shuffled) == expected

    def test_same_timestamp_breaks_on_block_then_log_index(self, assembler):
        events = [
            transfer(7, BOB, CAROL, 150, block=16, index=0),
            transfer(7, ALICE, BOB, 150, block=15, index=3),
            transfer(7, CAROL, ALICE, 150, block=16, index=1),
        ]

        history = assembler.assemble(7, events)

        assert [(e.block_number, e.log_index) for e in history.events] == [
            (15, 3), (16, 0), (16, 1),
        ]
        assert history.current_owner == ALICE

    def test_ordering_key_components(self):
        event = transfer(7, ALICE, BOB, 150, block=16, index=2)

        assert ordering_key(event)[:3] == (150, 16, 2)

    def test_deduplicate_keeps_first(self):
        first = transfer(7, ALICE, BOB, 150)

        assert deduplicate([first, first, mint(7, ALICE, 100)]) == [first, mint(7, ALICE, 100)]


# ============================================================
# MINT ANOMALY TESTS
# ============================================================

class TestMintAnomalies:
    """Tests for duplicate and missing mints."""

    def test_duplicate_mint_raises(self, assembler):
        events = [mint(7, ALICE, 100, tx="a"), mint(7, BOB, 120, tx="b")]

        with pytest.raises(DuplicateMintError) as exc_info:
            assembler.assemble(7, events)

        assert exc_info.value.asset_id == 7
        assert len(exc_info.value.event_ids) == 2

    def test_missing_mint_defaults_minter(self, assembler):
        """Mint outside the window: minter is the zero address default."""
        history = assembler.assemble(7, [transfer(7, ALICE, BOB, 150)])

        assert history.minter == ZERO_ADDRESS
        assert not history.has_mint
        assert history.current_owner == BOB


# ============================================================
# AGGREGATION TESTS
# ============================================================

class TestAggregation:
    """Tests for ActivityAggregator."""

    def test_newest_first_and_truncated(self, aggregator):
        """Asset A has 2 events, B has 3; limit 3 keeps the 3 newest."""
        per_asset = {
            1: [mint(1, ALICE, 100), transfer(1, ALICE, BOB, 300)],
            2: [
                mint(2, BOB, 150),
                transfer(2, BOB, CAROL, 250),
                transfer(2, CAROL, ALICE, 350),
            ],
        }

        feed = aggregator.aggregate(per_asset, limit=3)

        assert [e.timestamp for e in feed.events] == [350, 300, 250]
        assert len(feed) == 3
        assert feed.excluded_assets == ()

    def test_fewer_events_than_limit(self, aggregator):
        feed = aggregator.aggregate({1: [mint(1, ALICE, 100)]}, limit=10)

        assert len(feed) == 1

    def test_failed_asset_excluded(self, aggregator):
        """A failed asset never fails the feed."""
        per_asset = {
            1: [mint(1, ALICE, 100)],
            2: SourceUnavailableError("down", asset_id=2),
            3: None,
        }

        feed = aggregator.aggregate(per_asset, limit=5)

        assert [e.asset_id for e in feed.events] == [1]
        assert feed.excluded_assets == (2, 3)

    def test_cross_asset_duplicates_collapse(self, aggregator):
        shared = mint(1, ALICE, 100)

        feed = aggregator.aggregate({1: [shared], 2: [shared]}, limit=5)

        assert len(feed) == 1

    @pytest.mark.parametrize("limit", [0, -1, True, 2.5])
    def test_invalid_limit(self, aggregator, limit):
        with pytest.raises(ValueError):
            aggregator.aggregate({}, limit=limit)

    def test_aggregate_events_groups_flat_stream(self, aggregator):
        events = [mint(1, ALICE, 100), mint(2, BOB, 200), transfer(1, ALICE, BOB, 300)]

        assert sorted(group_by_asset(events)) == [1, 2]
        feed = aggregator.aggregate_events(events, limit=2, dropped_events=1)

        assert [e.timestamp for e in feed.events] == [300, 200]
        assert feed.dropped_events == 1
