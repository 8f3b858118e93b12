"""
History Assembler - Builds the ownership History of one asset.

The assembler orders and summarizes; it does not validate that transfers
form a consistent chain of custody.
"""

import logging
from typing import Iterable

from provenance_engine.abi import ZERO_ADDRESS
from provenance_engine.exceptions import DuplicateMintError
from provenance_engine.models import Event, EventKind, History


logger = logging.getLogger(__name__)


def ordering_key(event: Event) -> tuple[int, int, int, str]:
    """(timestamp, block_number, log_index), with id as a last resort."""
    return event.sort_key


def deduplicate(events: Iterable[Event]) -> list[Event]:
    """Drop repeated observations of the same event id, keeping the first."""
    seen: set[str] = set()
    unique = []
    for event in events:
        if event.id in seen:
            continue
        seen.add(event.id)
        unique.append(event)
    return unique


class HistoryAssembler:
    """Merges, deduplicates, orders and summarizes an asset's events."""

    name = "assembler"

    def assemble(
        self,
        asset_id: int,
        events: Iterable[Event],
        dropped_events: int = 0,
    ) -> History:
        """
        Assemble the History of ``asset_id``.

        Args:
            asset_id: Asset to assemble
            events: Events in any order; other assets' events are ignored
            dropped_events: Events lost upstream, carried into the snapshot

        Raises:
            DuplicateMintError: If more than one mint event is present
        """
        own = [e for e in events if e.asset_id == asset_id]
        ordered = sorted(deduplicate(own), key=ordering_key)

        mints = [e for e in ordered if e.kind == EventKind.MINTED]
        if len(mints) > 1:
            raise DuplicateMintError(
                f"{len(mints)} mint events found",
                asset_id=asset_id,
                event_ids=[e.id for e in mints],
            )

        if mints:
            minter = mints[0].to_address
        else:
            minter = ZERO_ADDRESS
            if ordered:
                logger.warning(
                    f"[{self.name}] Asset {asset_id} has {len(ordered)} events but no mint"
                )

        current_owner = ordered[-1].to_address if ordered else minter
        transfer_count = sum(1 for e in ordered if e.kind == EventKind.TRANSFERRED)

        return History(
            asset_id=asset_id,
            events=tuple(ordered),
            current_owner=current_owner,
            minter=minter,
            transfer_count=transfer_count,
            dropped_events=dropped_events,
        )
