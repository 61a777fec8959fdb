"""
Engagement learning for threadloop.

Turns the engagement snapshots stored on post records into category weight
adjustments for the business account. Stealth accounts never learn; their
persona weights replace the base weights instead (see threadloop.selector).

Rules:
    - Only records from the last 30 days, with an engagement snapshot, that
      are not replies.
    - Fewer than 3 categories with data: weights untouched.
    - A category needs at least 2 samples before its weight moves.
    - multiplier = clamp(category_avg / overall_avg, 0.5, 1.5), where
      overall_avg is the mean of the per-category averages.
    - adjusted weight = base weight * multiplier, rounded half up.

Everything here is a pure function of the history file; nothing is written.
"""

import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from rich.console import Console
from rich.table import Table

from threadloop.accounts import Category
from threadloop.history import PostRecord, utcnow

console = Console()

LEARNING_WINDOW_DAYS = 30
MIN_CATEGORIES_WITH_DATA = 3
MIN_SAMPLES_PER_CATEGORY = 2
MULTIPLIER_FLOOR = 0.5
MULTIPLIER_CEILING = 1.5
TOP_POSTS_PER_CATEGORY = 3


@dataclass
class CategoryPerformance:
    """Aggregated engagement for one category."""
    category: str
    post_count: int
    avg_score: float
    top_posts: list[PostRecord] = field(default_factory=list)


def analyze_category_performance(
    records: list[PostRecord],
    now: datetime | None = None,
    window_days: int = LEARNING_WINDOW_DAYS,
) -> dict[str, CategoryPerformance]:
    """Average engagement score per category over the learning window."""
    cutoff = (now or utcnow()) - timedelta(days=window_days)
    by_category: dict[str, list[PostRecord]] = defaultdict(list)
    for record in records:
        if record.is_reply or not record.engagement:
            continue
        if record.posted_at <= cutoff:
            continue
        by_category[record.category].append(record)

    result = {}
    for category, posts in by_category.items():
        scores = [p.engagement_score or 0 for p in posts]
        ranked = sorted(posts, key=lambda p: p.engagement_score or 0, reverse=True)
        result[category] = CategoryPerformance(
            category=category,
            post_count=len(posts),
            avg_score=sum(scores) / len(scores),
            top_posts=ranked[:TOP_POSTS_PER_CATEGORY],
        )
    return result


def clamp_multiplier(ratio: float) -> float:
    if math.isnan(ratio):
        return 1.0
    return max(MULTIPLIER_FLOOR, min(MULTIPLIER_CEILING, ratio))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def adjust_weights(
    base_categories: list[Category],
    store,
    now: datetime | None = None,
) -> list[Category]:
    """
    Return copies of ``base_categories`` with engagement-adjusted weights.

    Args:
        base_categories: Categories carrying their configured base weight.
        store: The account's HistoryStore.
        now: Reference time for the learning window.
    """
    perf = analyze_category_performance(store.load(), now=now)
    if len(perf) < MIN_CATEGORIES_WITH_DATA:
        return list(base_categories)

    overall_avg = sum(p.avg_score for p in perf.values()) / len(perf)
    if overall_avg <= 0:
        return list(base_categories)

    adjusted = []
    for cat in base_categories:
        cat_perf = perf.get(cat.id)
        if not cat_perf or cat_perf.post_count < MIN_SAMPLES_PER_CATEGORY:
            adjusted.append(cat)
            continue

        multiplier = clamp_multiplier(cat_perf.avg_score / overall_avg)
        new_weight = round_half_up(cat.weight * multiplier)
        if multiplier != 1:
            console.print(
                f"[dim]  {cat.id}: weight {cat.weight:g} → {new_weight} "
                f"(avg {cat_perf.avg_score:.1f}, overall {overall_avg:.1f})[/dim]"
            )
        adjusted.append(cat.with_weight(new_weight))
    return adjusted


def print_performance_table(perf: dict[str, CategoryPerformance]) -> None:
    if not perf:
        console.print("[dim]No engagement data in the learning window yet.[/dim]")
        return

    overall = sum(p.avg_score for p in perf.values()) / len(perf)
    table = Table(title=f"Category performance (last {LEARNING_WINDOW_DAYS} days)")
    table.add_column("Category", style="bold")
    table.add_column("Posts", justify="right")
    table.add_column("Avg score", justify="right")
    table.add_column("Multiplier", justify="right")
    table.add_column("Best post", width=50)

    for cat_id, p in sorted(perf.items(), key=lambda kv: kv[1].avg_score, reverse=True):
        if p.post_count >= MIN_SAMPLES_PER_CATEGORY and len(perf) >= MIN_CATEGORIES_WITH_DATA and overall > 0:
            mult = f"{clamp_multiplier(p.avg_score / overall):.2f}"
        else:
            mult = "[dim]-[/dim]"
        best = p.top_posts[0].text.split("\n")[0][:48] if p.top_posts else ""
        table.add_row(cat_id, str(p.post_count), f"{p.avg_score:.1f}", mult, best)

    console.print(table)
