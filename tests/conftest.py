"""Shared fixtures for threadloop tests."""
import random
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest

from threadloop.history import PostRecord

ROOT = Path(__file__).resolve().parent.parent

NOW = datetime(2026, 3, 10, 3, 0, tzinfo=timezone.utc)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.text = text if text is not None else str(self._payload)

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return self._payload


class FakeSession:
    """Replays canned responses in order and records every request."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    def request(self, method, url, params=None, data=None, timeout=None):
        self.calls.append({"method": method, "url": url, "params": params, "data": data})
        if not self.responses:
            raise AssertionError(f"unexpected request: {method} {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeMessages:
    def __init__(self, replies):
        self.replies = list(replies)
        self.prompts = []

    def create(self, model, max_tokens, system, messages):
        self.prompts.append({"system": system, "user": messages[0]["content"]})
        text = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        return SimpleNamespace(content=[SimpleNamespace(text=text)])


class FakeAnthropic:
    """Stands in for ``anthropic.Anthropic``; the last reply repeats forever."""

    def __init__(self, *replies):
        self.messages = FakeMessages(replies)


class FixedRandom(random.Random):
    """A Random whose ``random()`` always returns the same value."""

    def __init__(self, value, seed=0):
        super().__init__(seed)
        self.value = value

    def random(self):
        return self.value


def make_record(
    category="trivia",
    hours_ago=0.0,
    post_id="p1",
    topic_key=None,
    text="A post about houses",
    account="business",
    score=None,
    replied_to=None,
    now=NOW,
):
    record = PostRecord(
        date=(now - timedelta(hours=hours_ago)).isoformat(),
        account=account,
        category=category,
        topic_key=topic_key or f"{category}:{post_id}",
        text=text,
        post_id=post_id,
        char_count=len(text),
        replied_to=replied_to,
    )
    if score is not None:
        record.engagement = {"views": 0, "likes": score, "replies": 0, "reposts": 0, "quotes": 0}
        record.engagement_score = score
        record.engagement_updated_at = now.isoformat()
    return record


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture(autouse=True)
def sleeps(monkeypatch):
    """Never really sleep; record requested delays instead."""
    calls = []
    monkeypatch.setattr(time, "sleep", lambda seconds: calls.append(seconds))
    return calls


@pytest.fixture
def config():
    return {
        "timezone": "UTC",
        "site_url": "https://example.com",
        "categories": [
            {"id": "trend", "label": "Trend", "weight": 40},
            {"id": "experience", "label": "Experience", "weight": 10},
            {"id": "trivia", "label": "Trivia", "weight": 10},
            {"id": "relatable", "label": "Relatable", "weight": 5},
            {"id": "regret", "label": "Regret", "weight": 5},
        ],
        "personas": {
            "a1": {
                "voice": "first-time builder",
                "category_weights": {"relatable": 50, "regret": 50},
                "length_distribution": {"short": 1.0},
                "blocklist": ["our showroom"],
            },
        },
        "generation": {"system_prompt": "Write posts.", "reply_system_prompt": "Write replies."},
        "style": {
            "corporate_blocklist": ["our team"],
            "promo_blocklist": ["click here"],
            "jargon_blocklist": ["floor area ratio"],
            "stealth_blocklist": ["consultation"],
            "emoji_palette": ["🏠"],
        },
        "search_keywords": {"housing": ["custom home"], "local": ["Tsu city"], "seasonal": {}},
        "topics": {
            "relatable": ["The three hour floor plan meeting"],
            "regret": ["Not enough outlets"],
        },
        "seasonal_topics": {3: ["Moving day chaos"]},
    }


@pytest.fixture
def city_data():
    return {
        "tsu": {
            "name": "Tsu",
            "tips": [
                {"title": "Flood maps", "body": "Check the river side before buying."},
                {"title": "Wind", "body": "Coastal wind is strong in winter."},
            ],
            "seo_sections": {"overview": "Quiet prefectural capital.", "common_mistakes": "Ignoring drainage."},
        },
        "checklist": {"items": []},
    }


@pytest.fixture
def knowledge_data():
    return {
        "articles": [
            {
                "id": "mortgage-basics",
                "title": "Mortgage basics",
                "description": "How fixed and variable rates differ.",
                "category": "money",
                "sections": [
                    {"heading": "Fixed vs variable", "body": "Fixed rates cost more up front."},
                ],
            },
        ],
    }


def make_generator(*replies, config=None):
    """A ContentGenerator backed by FakeAnthropic, with no emoji decoration."""
    from threadloop.generator import ContentGenerator
    from threadloop.style import StyleRules

    rules = StyleRules.from_config(config or {})
    rules.emoji_palette = []
    return ContentGenerator(
        rules,
        system_prompt=((config or {}).get("generation") or {}).get("system_prompt", "Write posts."),
        reply_system_prompt="Write replies.",
        client=FakeAnthropic(*replies),
        rng=random.Random(0),
    )


class FakeThreads:
    """In-memory stand-in for ThreadsClient covering the calls the runners make."""

    def __init__(self, username="me", threads=None, replies=None, search=None,
                 insights=None, publish_error=None):
        self.username = username
        self.threads = threads or []
        self.replies = replies or {}
        self.search = search or {}
        self.insights = insights or {}
        self.publish_error = publish_error
        self.published = []

    def validate_token(self):
        return {"id": "1", "username": self.username}

    def get_my_threads(self, limit=25):
        return self.threads[:limit]

    def get_replies(self, thread_id):
        return self.replies.get(thread_id, [])

    def keyword_search(self, query, since=None, until=None, limit=None):
        return self.search.get(query, [])

    def get_insights(self, media_id):
        from threadloop.history import Engagement
        return self.insights.get(media_id, Engagement())

    def publish_text(self, text, reply_to_id=None):
        from threadloop.publishers.threads import PublishResult
        if self.publish_error:
            raise self.publish_error
        self.published.append({"text": text, "reply_to_id": reply_to_id})
        return PublishResult(post_id=f"post-{len(self.published)}", container_id="c")

    def publish_reply(self, reply_to_id, text):
        return self.publish_text(text, reply_to_id=reply_to_id)
