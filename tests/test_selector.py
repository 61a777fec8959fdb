"""Category selection: forced ids, trend gate, policies, cooldowns."""
import random

import pytest

from conftest import NOW, FixedRandom, make_record
from threadloop.accounts import Account, Category, Persona
from threadloop.history import HistoryStore
from threadloop.selector import (
    AdaptivePolicy, PersonaPolicy, policy_for, select_category, weighted_choice,
)

CATS = [
    Category("trend", "Trend", 40),
    Category("a", "A", 10),
    Category("b", "B", 10),
]


class TestWeightedChoice:
    def test_boundary_goes_to_next_candidate(self):
        picked = weighted_choice([Category("a", "A", 10), Category("b", "B", 10)], FixedRandom(0.5))
        assert picked.id == "b"

    def test_low_draw_picks_first(self):
        picked = weighted_choice([Category("a", "A", 10), Category("b", "B", 10)], FixedRandom(0.1))
        assert picked.id == "a"

    def test_follows_weights(self):
        rng = random.Random(7)
        cats = [Category("heavy", "H", 90), Category("light", "L", 10)]
        picks = [weighted_choice(cats, rng).id for _ in range(1000)]
        assert picks.count("heavy") > 800


class TestSelectCategory:
    def test_forced_known_id(self, data_dir):
        store = HistoryStore(data_dir=data_dir)
        store.append(make_record(category="a"), now=NOW)
        picked = select_category(CATS, False, store, forced_id="a", now=NOW)
        assert picked.id == "a"

    def test_forced_unknown_falls_back(self, data_dir):
        store = HistoryStore(data_dir=data_dir)
        picked = select_category(
            CATS, False, store, forced_id="nope", rng=FixedRandom(0.0), now=NOW,
        )
        assert picked.id == "a"

    def test_trend_dropped_without_trends(self, data_dir):
        store = HistoryStore(data_dir=data_dir)
        picks = {
            select_category(CATS, False, store, rng=FixedRandom(v), now=NOW).id
            for v in (0.0, 0.3, 0.6, 0.99)
        }
        assert "trend" not in picks

    def test_trend_kept_when_available(self, data_dir):
        store = HistoryStore(data_dir=data_dir)
        assert select_category(CATS, True, store, rng=FixedRandom(0.0), now=NOW).id == "trend"

    def test_cooldown_excludes_recent_category(self, data_dir):
        store = HistoryStore(data_dir=data_dir)
        store.append(make_record(category="a", hours_ago=3), now=NOW)
        for v in (0.0, 0.4, 0.9):
            assert select_category(CATS, False, store, rng=FixedRandom(v), now=NOW).id == "b"

    def test_everything_cooling_down_still_picks(self, data_dir):
        store = HistoryStore(data_dir=data_dir)
        store.append(make_record(category="a", post_id="1", hours_ago=3), now=NOW)
        store.append(make_record(category="b", post_id="2", hours_ago=3), now=NOW)
        picked = select_category(CATS, False, store, rng=random.Random(1), now=NOW)
        assert picked.id in {"a", "b"}

    def test_no_positive_weight_raises(self, data_dir):
        store = HistoryStore(data_dir=data_dir)
        with pytest.raises(ValueError):
            select_category([Category("a", "A", 0)], False, store, now=NOW)


class TestPolicies:
    def test_persona_replaces_weights_and_drops_missing(self, data_dir):
        store = HistoryStore("a1", data_dir)
        policy = PersonaPolicy(Persona(category_weights={"b": 100, "trend": 5}))
        weighed = policy.weigh(CATS, now=NOW)
        assert [(c.id, c.weight) for c in weighed] == [("trend", 5), ("b", 100)]

        picked = select_category(CATS, False, store, policy=policy, rng=FixedRandom(0.0), now=NOW)
        assert picked.id == "b"

    def test_policy_for(self, data_dir):
        store = HistoryStore(data_dir=data_dir)
        stealth = Account("a1", stealth=True, persona=Persona(category_weights={"a": 1}))
        assert isinstance(policy_for(stealth, store), PersonaPolicy)
        assert isinstance(policy_for(Account("business"), store), AdaptivePolicy)
