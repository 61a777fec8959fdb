"""
Category selection for threadloop.

Two weighting policies share one selector:

    AdaptivePolicy  business account; base weights scaled by learned
                    engagement (threadloop.learning)
    PersonaPolicy   stealth accounts; the persona's fixed ratios replace the
                    base weights, categories missing from the persona drop out

Selection order: forced category, trend gate, weighting policy, zero-weight
filter, 1-day category cooldown, weighted draw. If the cooldown empties the
pool, a uniform draw over the weighted pool wins: availability beats
freshness.
"""

import random
from datetime import datetime

from rich.console import Console

from threadloop.accounts import Account, Category, Persona
from threadloop.learning import adjust_weights

console = Console()

TREND_CATEGORY = "trend"


class WeightingPolicy:
    """Maps base categories to the effective weights for one account."""

    name = "base"

    def weigh(self, categories: list[Category], now: datetime | None = None) -> list[Category]:
        return list(categories)


class AdaptivePolicy(WeightingPolicy):
    name = "adaptive"

    def __init__(self, store):
        self.store = store

    def weigh(self, categories, now=None):
        return adjust_weights(categories, self.store, now=now)


class PersonaPolicy(WeightingPolicy):
    name = "override"

    def __init__(self, persona: Persona):
        self.persona = persona

    def weigh(self, categories, now=None):
        weights = self.persona.category_weights
        return [c.with_weight(weights[c.id]) for c in categories if c.id in weights]


def policy_for(account: Account, store) -> WeightingPolicy:
    if account.stealth and account.persona:
        return PersonaPolicy(account.persona)
    return AdaptivePolicy(store)


def weighted_choice(candidates: list[Category], rng: random.Random) -> Category:
    """
    Draw one category in proportion to its weight.

    Each candidate owns the half-open slice [before, before + weight) of
    [0, total). A draw landing exactly on a boundary belongs to the next
    candidate.
    """
    total = sum(c.weight for c in candidates)
    threshold = rng.random() * total
    for cat in candidates:
        threshold -= cat.weight
        if threshold < 0:
            return cat
    return candidates[-1]


def select_category(
    categories: list[Category],
    trend_available: bool,
    store,
    forced_id: str | None = None,
    policy: WeightingPolicy | None = None,
    rng: random.Random | None = None,
    now: datetime | None = None,
) -> Category:
    """
    Pick the category for this run.

    Args:
        categories: Base categories in config order.
        trend_available: Whether this run's trend scan found anything.
        store: The account's HistoryStore (category cooldown source).
        forced_id: Operator override; returned as-is when it is known.
        policy: Weighting policy; defaults to adaptive learning.
        rng: Random source (seedable for tests).
    """
    rng = rng or random.Random()

    if forced_id:
        forced = next((c for c in categories if c.id == forced_id), None)
        if forced:
            console.print(f"[cyan]Forced category: {forced.id} ({forced.label})[/cyan]")
            return forced
        console.print(
            f"[yellow]Unknown category '{forced_id}', falling back to random selection.[/yellow]"
        )

    pool = [c for c in categories if trend_available or c.id != TREND_CATEGORY]
    policy = policy or AdaptivePolicy(store)
    pool = [c for c in policy.weigh(pool, now=now) if c.weight > 0]
    if not pool:
        raise ValueError("No categories with a positive weight to choose from")

    available = [c for c in pool if not store.is_category_cooling_down(c.id, now=now)]
    if not available:
        console.print("[yellow]Every category is cooling down; ignoring cooldown.[/yellow]")
        return rng.choice(pool)

    return weighted_choice(available, rng)
