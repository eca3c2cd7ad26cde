import json

from conftest import make_play, make_track
from utils.cache_gateway import StatsCache
from utils.refresh import RefreshOrchestrator, build_refresh_variants


def seeded(kv):
    kv.put('user:u1:listening-time', json.dumps({'2024-01-01': 60000}))
    kv.put('user:u1:top-tracks:short_term:5', '[]', ttl=3600)
    kv.put('user:u1:playlists', '[]', ttl=3600)
    kv.put('user:u2:top-tracks:short_term:10', '[]', ttl=3600)


def test_variant_cross_product(kv, spotify, insight_generator):
    labels = [v.label for v in build_refresh_variants(StatsCache(kv, spotify, 'u1', insight_generator))]

    assert len(labels) == 9 + 9 + 3 + 4 + 1
    assert 'top-tracks:long_term:50' in labels
    assert 'top-artists:short_term:10' in labels
    assert 'recently-played:20' in labels
    assert 'listening-time:90' in labels
    assert 'recommendations' in labels
    assert len(set(labels)) == len(labels)


def test_refresh_preserves_ledger_and_clears_the_rest(kv, spotify, insight_generator):
    seeded(kv)
    spotify.recent_items = [make_play(make_track('a', duration_ms=30000), '2024-01-02T10:00:00Z')]
    stats_cache = StatsCache(kv, spotify, 'u1', insight_generator)

    report = RefreshOrchestrator(kv, stats_cache, max_workers=4).refresh_all()

    remaining = kv.list_keys('user:u1:')
    assert remaining == ['user:u1:listening-time', 'user:u1:listening-time:seen']
    ledger = json.loads(kv.get('user:u1:listening-time'))
    assert ledger['2024-01-01'] == 60000
    assert ledger['2024-01-02'] == 30000
    assert kv.get('user:u2:top-tracks:short_term:10') == '[]'
    assert report.failed == []
    assert report.refreshed == 26
    assert 'user:u1:playlists' in report.deleted_keys


def test_refresh_tolerates_partial_upstream_failure(kv, spotify, insight_generator):
    seeded(kv)
    spotify.failing.add('get_top_artists')
    stats_cache = StatsCache(kv, spotify, 'u1', insight_generator)

    report = RefreshOrchestrator(kv, stats_cache, max_workers=4).refresh_all()

    assert len(report.failed) == 9 + 1  # every top-artists variant plus recommendations
    assert all(label.startswith('top-artists') or label == 'recommendations' for label in report.failed)
    assert report.refreshed == 16
    assert kv.get('user:u1:listening-time') is not None
    assert kv.list_keys('user:u1:top-tracks') == []


def test_refresh_runs_each_task_in_the_given_context(kv, spotify, insight_generator):
    entered = []

    class Context:
        def __enter__(self):
            entered.append(1)

        def __exit__(self, *exc):
            return False

    stats_cache = StatsCache(kv, spotify, 'u1', insight_generator)
    RefreshOrchestrator(kv, stats_cache, max_workers=2, context_factory=Context).refresh_all()

    assert len(entered) == 26
