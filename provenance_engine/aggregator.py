"""
Activity Aggregator - Cross-asset recent activity feed.
"""

import logging
from collections import defaultdict
from typing import Iterable, Mapping, Optional, Sequence, Union

from provenance_engine.assembler import deduplicate, ordering_key
from provenance_engine.models import ActivityFeed, Event


logger = logging.getLogger(__name__)

AssetEvents = Union[Sequence[Event], BaseException, None]


def group_by_asset(events: Iterable[Event]) -> dict[int, list[Event]]:
    """Split a flat event stream into per-asset sets."""
    grouped: dict[int, list[Event]] = defaultdict(list)
    for event in events:
        grouped[event.asset_id].append(event)
    return dict(grouped)


class ActivityAggregator:
    """Merges per-asset event sets into one feed, newest first."""

    name = "aggregator"

    def aggregate(
        self,
        per_asset_event_sets: Mapping[int, AssetEvents],
        limit: int,
        dropped_events: int = 0,
    ) -> ActivityFeed:
        """
        Build an ActivityFeed of at most ``limit`` events.

        An asset whose entry is an exception (or None) failed to fetch; it is
        excluded and reported in ``excluded_assets`` instead of failing the feed.
        """
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValueError(f"limit must be a positive integer, got {limit!r}")

        flattened: list[Event] = []
        excluded: list[int] = []
        for asset_id, event_set in per_asset_event_sets.items():
            if event_set is None or isinstance(event_set, BaseException):
                excluded.append(asset_id)
                logger.warning(
                    f"[{self.name}] Excluding asset {asset_id} from feed: "
                    f"{event_set if event_set is not None else 'no result'}"
                )
                continue
            flattened.extend(event_set)

        ordered = sorted(deduplicate(flattened), key=ordering_key, reverse=True)

        return ActivityFeed(
            events=tuple(ordered[:limit]),
            limit=limit,
            excluded_assets=tuple(sorted(excluded)),
            dropped_events=dropped_events,
        )

    def aggregate_events(
        self,
        events: Iterable[Event],
        limit: int,
        dropped_events: int = 0,
        failed_assets: Optional[Mapping[int, BaseException]] = None,
    ) -> ActivityFeed:
        """Aggregate a flat event stream (from a shared window fetch)."""
        per_asset: dict[int, AssetEvents] = dict(group_by_asset(events))
        for asset_id, error in (failed_assets or {}).items():
            per_asset[asset_id] = error
        return self.aggregate(per_asset, limit, dropped_events)
