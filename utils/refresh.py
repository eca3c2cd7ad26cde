"""
Bulk refresh of every cached statistic for one user.

All variants are recomputed concurrently with force=True; individual failures
are logged and counted but never abort their siblings. Afterwards every key in
the user's namespace is deleted except the listening-time ledger.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from utils.cache_gateway import TIME_RANGES, is_ledger_key, user_prefix

logger = logging.getLogger(__name__)

REFRESH_LIMITS = (10, 20, 50)
REFRESH_DAY_WINDOWS = (7, 14, 30, 90)


@dataclass
class RefreshVariant:
    label: str
    run: Callable[[], object]


@dataclass
class RefreshOutcome:
    label: str
    ok: bool
    error: Optional[str] = None


@dataclass
class RefreshReport:
    outcomes: List[RefreshOutcome] = field(default_factory=list)
    deleted_keys: List[str] = field(default_factory=list)

    @property
    def refreshed(self):
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failed(self):
        return [o.label for o in self.outcomes if not o.ok]


def build_refresh_variants(stats_cache) -> List[RefreshVariant]:
    """Every cached resource/parameter combination, each bound to force=True"""
    variants = []
    for time_range in TIME_RANGES:
        for limit in REFRESH_LIMITS:
            variants.append(RefreshVariant(
                f"top-tracks:{time_range}:{limit}",
                lambda tr=time_range, l=limit: stats_cache.top_tracks(tr, l, force=True),
            ))
    for time_range in TIME_RANGES:
        for limit in REFRESH_LIMITS:
            variants.append(RefreshVariant(
                f"top-artists:{time_range}:{limit}",
                lambda tr=time_range, l=limit: stats_cache.top_artists(tr, l, force=True),
            ))
    for limit in REFRESH_LIMITS:
        variants.append(RefreshVariant(
            f"recently-played:{limit}",
            lambda l=limit: stats_cache.recently_played(l, force=True),
        ))
    for days in REFRESH_DAY_WINDOWS:
        variants.append(RefreshVariant(
            f"listening-time:{days}",
            lambda d=days: stats_cache.listening_time(d, force=True),
        ))
    variants.append(RefreshVariant('recommendations', lambda: stats_cache.recommendations(force=True)))
    return variants


class RefreshOrchestrator:
    """
    Coordinates a full refresh for one user.

    context_factory, when given, is entered around each task (the Flask app
    context for worker threads).
    """

    def __init__(self, kv, stats_cache, max_workers=8, context_factory=None):
        self.kv = kv
        self.stats_cache = stats_cache
        self.max_workers = max_workers
        self.context_factory = context_factory

    def _run_variant(self, variant):
        try:
            if self.context_factory is None:
                variant.run()
            else:
                with self.context_factory():
                    variant.run()
            return RefreshOutcome(variant.label, True)
        except Exception as e:
            logger.warning(f"Refresh of {variant.label} failed: {type(e).__name__}: {e}")
            return RefreshOutcome(variant.label, False, type(e).__name__)

    def refresh_all(self) -> RefreshReport:
        user_id = self.stats_cache.user_id
        variants = build_refresh_variants(self.stats_cache)
        logger.info(f"Refreshing {len(variants)} cached variants for {user_id}")

        report = RefreshReport()
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            report.outcomes = list(executor.map(self._run_variant, variants))

        if report.failed:
            logger.warning(f"{len(report.failed)} of {len(variants)} variants failed to refresh for {user_id}")

        for key in self.kv.list_keys(user_prefix(user_id)):
            if is_ledger_key(user_id, key):
                continue
            self.kv.delete(key)
            report.deleted_keys.append(key)

        logger.info(f"Deleted {len(report.deleted_keys)} cache entries for {user_id}")
        return report
