"""Engagement collection for settled posts."""
from conftest import NOW, make_record
from threadloop.history import Engagement, HistoryStore
from threadloop.engagement import collect_engagement


class FakeInsightsClient:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.requested = []

    def get_insights(self, post_id):
        self.requested.append(post_id)
        if post_id in self.failing:
            raise RuntimeError("insights unavailable")
        return Engagement(views=100, likes=4, replies=1)


def _store(data_dir, *post_ids):
    store = HistoryStore(data_dir=data_dir)
    for post_id in post_ids:
        store.append(make_record(post_id=post_id, hours_ago=30), now=NOW)
    return store


def test_updates_eligible_posts(data_dir, sleeps):
    store = _store(data_dir, "p1", "p2")
    store.append(make_record(post_id="fresh", hours_ago=1), now=NOW)

    result = collect_engagement(store, FakeInsightsClient(), pause=0.5, now=NOW)

    assert result.eligible == 2
    assert result.updated == ["p1", "p2"]
    scores = {r.post_id: r.engagement_score for r in store.load()}
    assert scores == {"p1": 8, "p2": 8, "fresh": None}
    assert sleeps == [0.5]


def test_limit_and_failures(data_dir):
    store = _store(data_dir, "p1", "p2", "p3")
    client = FakeInsightsClient(failing={"p1"})

    result = collect_engagement(store, client, limit=2, now=NOW)

    assert client.requested == ["p1", "p2"]
    assert result.failed == ["p1"]
    assert result.updated == ["p2"]
    assert [p.post_id for p in store.posts_needing_engagement(now=NOW)] == ["p1", "p3"]


def test_nothing_to_do(data_dir):
    result = collect_engagement(HistoryStore(data_dir=data_dir), FakeInsightsClient(), now=NOW)
    assert result.eligible == 0
    assert result.updated == []
