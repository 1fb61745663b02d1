"""Seen-set reconciliation of emitted metric series.

A scrape job publishes one series per label tuple found by its latest
aggregation.  When an entity disappears upstream (a build type stops having
hung builds, a build leaves the queue) its series would otherwise keep
reporting the last value forever.  :class:`SeriesTracker` remembers which
tuples a job has published and tells it which ones to clear.

Semantics of :meth:`SeriesTracker.reconcile`:

* ``absent = seen - current`` is returned to the caller, who zeroes or
  removes those series.
* Cleared tuples leave ``seen``; current tuples join it.  A tuple is
  therefore cleared exactly once after it disappears, and tracked again as
  soon as it reappears.
* An empty ``current`` clears everything previously seen.

Each tracker is owned by a single job and only touched from that job's loop,
so it carries no lock.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from buildstats.core.models import LabelTuple

__all__ = ["SeriesTracker"]

logger = logging.getLogger(__name__)


class SeriesTracker:
    """Per-job record of published label tuples."""

    def __init__(self) -> None:
        self._seen: set[LabelTuple] = set()

    @property
    def seen(self) -> frozenset[LabelTuple]:
        return frozenset(self._seen)

    def reconcile(self, current: Iterable[LabelTuple]) -> frozenset[LabelTuple]:
        """Record *current* as published and return the tuples to clear.

        Args:
            current: Label tuples produced by the execution that just
                aggregated successfully.

        Returns:
            Tuples published by an earlier execution but missing from
            *current*.
        """
        current_set = frozenset(current)
        absent = frozenset(self._seen - current_set)
        self._seen -= absent
        self._seen |= current_set
        return absent

    def __len__(self) -> int:
        return len(self._seen)
