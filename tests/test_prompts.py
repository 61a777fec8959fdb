"""Prompt building, topic fallbacks and context hints."""
import random

import pytest

from conftest import NOW, make_record
from threadloop.accounts import Category, get_account
from threadloop.history import HistoryStore
from threadloop.prompts import FALLBACKS, LENGTH_HINTS, PromptBuilder
from threadloop.topics import TopicSource
from threadloop.trends import TrendResult

TREND = TrendResult(trending=[{
    "keyword": "mortgage",
    "total_score": 60,
    "prev_score": 0,
    "top_posts": [{"text": "Rates went up again", "insights": {"likes": 3, "replies": 1}}],
}])


@pytest.fixture
def store(data_dir):
    return HistoryStore(data_dir=data_dir)


@pytest.fixture
def source(config, city_data, knowledge_data):
    return TopicSource(config, city_data, knowledge_data, now=NOW)


def _builder(source, store, account=None):
    return PromptBuilder(source, store, account=account, rng=random.Random(3), now=NOW)


def test_every_category_has_fallbacks():
    assert set(FALLBACKS) == {
        "trend", "experience", "trivia", "data", "article", "area", "mistake",
        "loan", "seasonal", "relatable", "dispute", "regret",
    }


class TestBuild:
    def test_fresh_topic(self, source, store):
        request = _builder(source, store).build(Category("relatable", "R", 5))
        assert request.category == "relatable"
        assert request.topic_key == "relatable:0"
        assert "The three hour floor plan meeting" in request.user_prompt
        assert not request.allow_urls

    def test_falls_back_when_topics_cooling(self, source, store):
        store.append(make_record(category="relatable", topic_key="relatable:0", hours_ago=48), now=NOW)
        request = _builder(source, store).build(Category("relatable", "R", 5))
        assert request.category == "regret"
        assert request.topic_key == "regret:0"

    def test_fallback_posted_today_is_passed_over(self, source, store):
        store.append(make_record(category="relatable", topic_key="relatable:0", hours_ago=48), now=NOW)
        store.append(make_record(post_id="2", category="regret", topic_key="regret:x", hours_ago=2), now=NOW)
        assert _builder(source, store).build(Category("relatable", "R", 5)) is None

    def test_exhausted_chain_returns_none(self, source, store):
        store.append(make_record(post_id="1", topic_key="relatable:0", hours_ago=48), now=NOW)
        store.append(make_record(post_id="2", topic_key="regret:0", hours_ago=48), now=NOW)
        assert _builder(source, store).build(Category("relatable", "R", 5)) is None

    def test_old_topics_are_fresh_again(self, source, store):
        store.append(make_record(topic_key="relatable:0", hours_ago=15 * 24), now=NOW)
        request = _builder(source, store).build(Category("relatable", "R", 5))
        assert request.topic_key == "relatable:0"

    def test_trend_topic_key_is_per_day(self, source, store):
        request = _builder(source, store).build(Category("trend", "T", 40), TREND)
        assert request.category == "trend"
        assert request.topic_key == "trend:mortgage:2026-03-10"
        assert '"Rates went up again" (3 likes, 1 replies)' in request.user_prompt

    def test_trend_without_trends_falls_back(self, source, store):
        request = _builder(source, store).build(Category("trend", "T", 40), TrendResult())
        assert request.category == "relatable"

    def test_article_allows_urls(self, source, store):
        request = _builder(source, store).build(Category("article", "A", 4))
        assert request.allow_urls
        assert "https://example.com/knowledge/mortgage-basics/" in request.user_prompt


class TestContext:
    def test_length_hint_for_persona(self, config, source, store):
        account = get_account(config, "a1")
        request = _builder(source, store, account).build(Category("regret", "R", 5))
        assert LENGTH_HINTS["short"] in request.user_prompt

    def test_no_length_hint_for_business(self, source, store):
        assert _builder(source, store).length_hint() == ""

    def test_recent_posts_marked_when_they_did_well(self, source, store):
        store.append(make_record(post_id="1", text="Our skylight regret", hours_ago=10, score=35), now=NOW)
        store.append(make_record(post_id="2", text="Too old", hours_ago=9 * 24), now=NOW)
        context = _builder(source, store).recent_posts_context()
        assert "Our skylight regret ★ did well (score 35)" in context
        assert "Too old" not in context

    def test_performance_hint(self, source, store):
        for i, score in enumerate([12, 8, 2]):
            store.append(make_record(
                category="regret", post_id=str(i), text=f"Regret {i}", hours_ago=30, score=score,
            ), now=NOW)
        hint = _builder(source, store).performance_hint("regret")
        assert '"Regret 0" (score 12)' in hint
        assert '"Regret 1" (score 8)' in hint
        assert "Regret 2" not in hint
        assert "Short posts" in hint

    def test_no_performance_hint_without_data(self, source, store):
        assert _builder(source, store).performance_hint("regret") == ""
