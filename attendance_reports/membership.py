"""
Group and tag membership lookups, memoized for a single report invocation.

The same group or tag item is often referenced by the cohort filter and by
several restricted sessions; each id is fetched from the store at most once.
Concurrent callers asking for an id that is already being fetched wait on
that fetch instead of issuing their own.
"""

import logging
import threading
from concurrent.futures import Future
from typing import Callable, Dict, FrozenSet, Iterable, List

import pandas as pd

logger = logging.getLogger(__name__)


class MembershipIndex:
    """Per-invocation cache of group id -> member ids and tag item id -> member ids."""

    def __init__(self, store, organization_id: str):
        self.store = store
        self.organization_id = organization_id
        self._group_members: Dict[str, Future] = {}
        self._tag_members: Dict[str, Future] = {}
        self._lock = threading.Lock()

    def members_for_groups(self, group_ids: Iterable[str]) -> FrozenSet[str]:
        """Member ids belonging to any of the groups."""
        return self._lookup(
            self._group_members,
            group_ids,
            self.store.fetch_group_members,
            "group_id",
        )

    def members_for_tags(self, tag_item_ids: Iterable[str]) -> FrozenSet[str]:
        """Member ids holding any of the tag items."""
        return self._lookup(
            self._tag_members,
            tag_item_ids,
            lambda ids: self.store.fetch_tag_members(self.organization_id, ids),
            "tag_item_id",
        )

    def _lookup(
        self,
        cache: Dict[str, Future],
        ids: Iterable[str],
        fetch: Callable[[List[str]], pd.DataFrame],
        key_column: str
    ) -> FrozenSet[str]:
        ids = sorted({str(i) for i in ids if i})

        # Claim ids nobody has asked for yet; the claiming caller fetches them
        claimed: List[str] = []
        with self._lock:
            for key in ids:
                if key not in cache:
                    cache[key] = Future()
                    claimed.append(key)
            pending = [cache[key] for key in ids]

        if claimed:
            self._fill(cache, claimed, fetch, key_column)

        result = set()
        for future in pending:
            result.update(future.result())
        return frozenset(result)

    def _fill(
        self,
        cache: Dict[str, Future],
        claimed: List[str],
        fetch: Callable[[List[str]], pd.DataFrame],
        key_column: str
    ) -> None:
        grouped: Dict[str, set] = {key: set() for key in claimed}
        try:
            df = fetch(claimed)
            for key, member_id in zip(df[key_column], df["member_id"]):
                if key in grouped and member_id:
                    grouped[key].add(str(member_id))
        except Exception as e:
            # Waiting callers see the same failure
            for key in claimed:
                cache[key].set_exception(e)
            raise

        for key, members in grouped.items():
            cache[key].set_result(frozenset(members))
        logger.debug(f"Cached memberships for {len(claimed)} {key_column} values")
