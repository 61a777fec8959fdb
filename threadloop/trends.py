"""
Trend scanning for threadloop.

Searches Threads for a rotating sample of housing keywords, scores the top
results by engagement, and compares against the previous scan to spot
topics that are heating up. The snapshot is shared by every account and
also feeds the engager's candidate list.

A keyword is trending when at least one post came back and:
    - its total score at least doubled since the last scan, or
    - it is new and scored 20 or more, or
    - it scored 50 or more outright.
"""

import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

from rich.console import Console

from threadloop.history import DATA_DIR, load_trends, save_trends, utcnow

console = Console()

HOUSING_PICKS = 6
LOCAL_PICKS = 2
SEASONAL_PICKS = 2
SEARCH_LIMIT = 10
SCORED_POSTS = 5
KEPT_TOP_POSTS = 3
NEW_KEYWORD_THRESHOLD = 20
ABSOLUTE_THRESHOLD = 50
SEARCH_PAUSE = 0.5


@dataclass
class TrendResult:
    trending: list[dict] = field(default_factory=list)
    keywords: dict = field(default_factory=dict)

    @property
    def available(self) -> bool:
        return bool(self.trending)


def _sample(pool: list, k: int, rng: random.Random) -> list:
    return rng.sample(list(pool), min(k, len(pool)))


def select_keywords(
    keywords_config: dict,
    month: int,
    rng: random.Random | None = None,
) -> list[str]:
    """Today's search terms: 6 housing, 2 local, 2 for the current month."""
    rng = rng or random.Random()
    seasonal = keywords_config.get("seasonal") or {}
    month_words = seasonal.get(month) or seasonal.get(str(month)) or []
    return (
        _sample(keywords_config.get("housing") or [], HOUSING_PICKS, rng)
        + _sample(keywords_config.get("local") or [], LOCAL_PICKS, rng)
        + _sample(month_words, SEASONAL_PICKS, rng)
    )


def _is_trending(data: dict, prev: dict | None) -> bool:
    score = data["total_score"]
    if prev and prev.get("total_score", 0) > 0 and score >= prev["total_score"] * 2:
        return True
    if not prev and score >= NEW_KEYWORD_THRESHOLD:
        return True
    return score >= ABSOLUTE_THRESHOLD


def _empty_entry() -> dict:
    return {"result_count": 0, "total_score": 0, "avg_score": 0, "top_posts": []}


def scan_trends(
    client,
    keywords_config: dict,
    data_dir: Path = DATA_DIR,
    now: datetime | None = None,
    rng: random.Random | None = None,
    pause: float = SEARCH_PAUSE,
) -> TrendResult:
    """
    Run one trend scan and save the snapshot.

    Args:
        client: ThreadsClient used for keyword search and insights.
        keywords_config: ``search_keywords`` block from config.yaml.
        data_dir: Where threads-trends.json lives.
    """
    now = now or utcnow()
    keywords = select_keywords(keywords_config, now.astimezone().month, rng)
    console.print(f"[dim]Trend scan: {', '.join(keywords) or '(no keywords)'}[/dim]")

    since = (now - timedelta(hours=24)).date().isoformat()
    previous = load_trends(data_dir).get("keywords") or {}
    scanned: dict[str, dict] = {}

    for keyword in keywords:
        try:
            posts = client.keyword_search(keyword, since=since, limit=SEARCH_LIMIT)
            enriched = []
            total = 0
            for post in posts[:SCORED_POSTS]:
                engagement = client.get_insights(post["id"])
                total += engagement.score
                enriched.append({
                    "id": post["id"],
                    "text": post.get("text", ""),
                    "username": post.get("username", ""),
                    "insights": engagement.to_dict(),
                    "score": engagement.score,
                })
            scored = min(len(posts), SCORED_POSTS)
            scanned[keyword] = {
                "result_count": len(posts),
                "total_score": total,
                "avg_score": total / scored if scored else 0,
                "top_posts": sorted(enriched, key=lambda p: p["score"], reverse=True)[:KEPT_TOP_POSTS],
            }
            console.print(f"[dim]  '{keyword}': {len(posts)} posts, score {total}[/dim]")
            time.sleep(pause)
        except Exception as e:
            console.print(f"[yellow]  Search for '{keyword}' failed: {e}[/yellow]")
            scanned[keyword] = _empty_entry()

    trending = [
        {
            "keyword": keyword,
            "total_score": data["total_score"],
            "prev_score": (previous.get(keyword) or {}).get("total_score", 0),
            "top_posts": data["top_posts"],
        }
        for keyword, data in scanned.items()
        if data["top_posts"] and _is_trending(data, previous.get(keyword))
    ]
    trending.sort(key=lambda t: t["total_score"], reverse=True)

    save_trends({"scanned_at": now.isoformat(), "keywords": scanned}, data_dir)

    if trending:
        for t in trending:
            console.print(
                f"[green]  Trending: '{t['keyword']}' score {t['total_score']} "
                f"(was {t['prev_score']})[/green]"
            )
    else:
        console.print("[dim]No trending keywords this scan.[/dim]")
    return TrendResult(trending=trending, keywords=scanned)


def build_trend_prompt(trend: dict, now: datetime | None = None) -> tuple[str, str]:
    """Return ``(user_prompt, topic_key)`` for one trending keyword."""
    lines = []
    for post in [p for p in trend["top_posts"] if p.get("text")][:KEPT_TOP_POSTS]:
        text = post["text"]
        snippet = text[:80] + ("..." if len(text) > 80 else "")
        insights = post.get("insights") or {}
        lines.append(
            f'"{snippet}" ({insights.get("likes", 0)} likes, '
            f'{insights.get("replies", 0)} replies)'
        )

    prompt = (
        "This topic is getting a lot of attention on Threads right now:\n"
        f"- Posts about \"{trend['keyword']}\" took off in the last 24 hours\n"
        "- The posts people are reacting to most:\n  "
        + "\n  ".join(lines)
        + "\n\nWrite a Threads post that joins this conversation naturally. "
        "Talk about it as your own experience or feeling. No jargon. "
        "Don't copy or directly mention the posts above. "
        "Aim for \"same here\" and \"I went through that too\" so readers feel "
        "someone gets it."
    )
    day = (now or utcnow()).date().isoformat()
    return prompt, f"trend:{trend['keyword']}:{day}"
