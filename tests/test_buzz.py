"""Buzz reply cascade from the business account to stealth posts."""
import pytest

from conftest import NOW, FakeThreads, FixedRandom, make_generator, make_record
from threadloop.history import Engagement, HistoryStore, ReplyLedger, ReplyLedgerEntry
from threadloop.buzz import BuzzSettings, classify_buzz, find_buzz_candidates, run_buzz_replies
from threadloop.publishers.threads import ThreadsAPIError

SUPER = Engagement(views=6000, likes=30)
QUIET = Engagement(views=10, likes=0)


@pytest.fixture
def ledger(data_dir):
    return ReplyLedger(data_dir)


@pytest.fixture
def stealth_posts(data_dir):
    store = HistoryStore("a1", data_dir)
    for record in [
        make_record(post_id="s1", hours_ago=5, account="a1", text="We forgot the shoe closet"),
        make_record(post_id="s2", hours_ago=20, account="a1"),
        make_record(post_id="dry-run", hours_ago=5, account="a1"),
        make_record(post_id="s3", hours_ago=5, account="a1", replied_to="x"),
        make_record(post_id="s4", hours_ago=72, account="a1"),
    ]:
        store.append(record, now=NOW)
    return store


def _entry(thread_id, when=NOW):
    return ReplyLedgerEntry(
        date=when.isoformat(), original_thread_id=thread_id, original_account="a1",
        reply_text="hi", reply_id="r", buzz_level="BUZZ",
    )


def _run(data_dir, ledger, reply_client, insights, rng, **kwargs):
    reader = FakeThreads(insights=insights)
    return run_buzz_replies(
        ["a1"], reply_client, lambda name: reader,
        make_generator("Good call. Check the entry closet depth too."),
        ledger, data_dir, rng=rng, now=NOW, **kwargs,
    )


class TestClassify:
    @pytest.mark.parametrize("engagement,level,probability", [
        (Engagement(views=5000), "SUPER_BUZZ", 1.0),
        (Engagement(likes=20), "SUPER_BUZZ", 1.0),
        (Engagement(views=2500, likes=1), "BUZZ", 0.8),
        (Engagement(views=1000, likes=4), "RISING", 0.5),
        (Engagement(likes=5), "RISING", 0.5),
        (Engagement(views=999, likes=4), "NORMAL", 0.2),
    ])
    def test_tiers(self, engagement, level, probability):
        tier = classify_buzz(engagement)
        assert (tier.level, tier.probability) == (level, probability)


class TestCandidates:
    def test_filters(self, data_dir, ledger, stealth_posts):
        ledger.append(_entry("s2"), now=NOW)
        found = find_buzz_candidates(["a1", "a2"], ledger, data_dir, 48, now=NOW)
        assert [(c.account, c.record.post_id) for c in found] == [("a1", "s1")]


class TestRun:
    def test_replies_to_busy_posts(self, data_dir, ledger, stealth_posts, sleeps):
        business = FakeThreads()
        result = _run(data_dir, ledger, business, {"s1": SUPER, "s2": SUPER}, FixedRandom(0.0))

        assert result.candidates == 2
        assert result.reply_attempts == 2
        assert len(result.replied) == 2
        assert [r["reply_to_id"] for r in business.published] == ["s1", "s2"]
        entries = ledger.load()
        assert [e.original_thread_id for e in entries] == ["s1", "s2"]
        assert entries[0].buzz_level == "SUPER_BUZZ"
        assert entries[0].reply_id == "post-1"
        assert entries[0].original_text == "We forgot the shoe closet"
        # insights pause, pre-reply delay; the interval only separates replies
        assert sleeps == [0.5, 30, 0.5, 60, 30]

    def test_dice_skip_is_not_a_failure(self, data_dir, ledger, stealth_posts):
        business = FakeThreads()
        result = _run(data_dir, ledger, business, {"s1": QUIET, "s2": QUIET}, FixedRandom(0.5))

        assert result.attempted == 2
        assert result.skipped == 2
        assert result.reply_attempts == 0
        assert result.failed == 0
        assert not result.total_failure
        assert business.published == []
        assert ledger.load() == []

    def test_skip_does_not_hide_failed_reply(self, data_dir, ledger, stealth_posts):
        business = FakeThreads(publish_error=ThreadsAPIError(403, "no reply permission"))
        result = _run(data_dir, ledger, business, {"s1": QUIET, "s2": SUPER}, FixedRandom(0.5))

        assert result.skipped == 1
        assert result.reply_attempts == 1
        assert result.replied == []
        assert result.failed == 1
        assert result.total_failure

    def test_daily_cap(self, data_dir, ledger, stealth_posts, sleeps):
        for i in range(9):
            ledger.append(_entry(f"old{i}"), now=NOW)
        business = FakeThreads()
        result = _run(data_dir, ledger, business, {"s1": SUPER, "s2": SUPER}, FixedRandom(0.0))
        assert len(result.replied) == 1
        assert len(business.published) == 1
        assert 60 not in sleeps

    def test_cap_already_reached(self, data_dir, ledger, stealth_posts):
        for i in range(10):
            ledger.append(_entry(f"old{i}"), now=NOW)
        result = _run(data_dir, ledger, FakeThreads(), {}, FixedRandom(0.0))
        assert result.attempted == 0
        assert not result.total_failure

    def test_every_reply_failing_is_total_failure(self, data_dir, ledger, stealth_posts):
        business = FakeThreads(publish_error=ThreadsAPIError(403, "no reply permission"))
        result = _run(data_dir, ledger, business, {"s1": SUPER, "s2": SUPER}, FixedRandom(0.0))
        assert result.reply_attempts == 2
        assert result.replied == []
        assert result.total_failure
        assert ledger.load() == []

    def test_every_insight_failing_is_total_failure(self, data_dir, ledger, stealth_posts):
        class BrokenReader(FakeThreads):
            def get_insights(self, media_id):
                raise ThreadsAPIError(190, "token expired")

        business = FakeThreads()
        reader = BrokenReader()
        result = run_buzz_replies(
            ["a1"], business, lambda name: reader, make_generator("Nice one."),
            ledger, data_dir, rng=FixedRandom(0.0), now=NOW,
        )

        assert result.insight_failures == 2
        assert result.reply_attempts == 0
        assert result.total_failure
        assert business.published == []

    def test_dry_run_uses_dummy_insights(self, data_dir, ledger, stealth_posts, sleeps):
        def no_reader(name):
            raise AssertionError("insights must not be read on dry run")

        business = FakeThreads()
        result = run_buzz_replies(
            ["a1"], business, no_reader, make_generator("Nice one."), ledger, data_dir,
            settings=BuzzSettings(min_interval=5), dry_run=True, rng=FixedRandom(0.5), now=NOW,
        )

        assert len(result.replied) == 2
        assert all(e.reply_id == "dry-run" and e.buzz_level == "BUZZ" for e in result.replied)
        assert business.published == []
        assert sleeps == [5]

    def test_no_candidates(self, data_dir, ledger):
        result = _run(data_dir, ledger, FakeThreads(), {}, FixedRandom(0.0))
        assert result.candidates == 0
        assert not result.total_failure


def test_settings_from_config():
    settings = BuzzSettings.from_config({"buzz": {"max_daily_replies": 3, "min_interval_seconds": 90}})
    assert settings.max_daily_replies == 3
    assert settings.min_interval == 90
    assert settings.delay_max == 120
