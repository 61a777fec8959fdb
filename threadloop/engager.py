"""
Search engagement for threadloop.

Comments on popular housing posts from other people. Candidates come from
the last trend scan's top posts; when that yields too few, one extra
keyword search over the last 48 hours tops the list up. Candidates are
ranked by engagement score and deduplicated by post id before commenting.

Every comment is stored with ``category="engage"``, ``replied_to`` and
the ``keyword`` that surfaced the post.
"""

import random
import time
from datetime import datetime, timedelta
from pathlib import Path

from rich.console import Console

from threadloop.history import DATA_DIR, DRY_RUN_POST_ID, HistoryStore, PostRecord, load_trends, utcnow
from threadloop.replier import ReplyRunResult

console = Console()

MIN_TREND_SCORE = 5
MIN_TEXT_LENGTH = 10
FALLBACK_LOOKBACK_HOURS = 48
FALLBACK_SEARCH_LIMIT = 10
COMMENT_PAUSE = 3.0


def _search_score(engagement) -> int:
    # quotes are not counted for search results
    return engagement.replies * 4 + engagement.reposts * 2 + engagement.likes


def find_engageable_posts(
    client,
    keywords_config: dict,
    max_comments: int,
    data_dir: Path = DATA_DIR,
    rng: random.Random | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """Candidate posts ``{id, text, keyword, score}``, best first, unique by id."""
    rng = rng or random.Random()
    candidates = []
    for keyword, data in (load_trends(data_dir).get("keywords") or {}).items():
        for post in data.get("top_posts", []):
            text = post.get("text") or ""
            if post.get("score", 0) > MIN_TREND_SCORE and len(text) > MIN_TEXT_LENGTH:
                candidates.append({**post, "keyword": keyword, "source": "trend"})

    if len(candidates) < max_comments:
        pool = (keywords_config.get("housing") or [])[:3] + (keywords_config.get("local") or [])[:2]
        if pool:
            keyword = rng.choice(pool)
            console.print(f"[dim]Topping up with a search for '{keyword}'[/dim]")
            since = ((now or utcnow()) - timedelta(hours=FALLBACK_LOOKBACK_HOURS)).date().isoformat()
            try:
                for post in client.keyword_search(keyword, since=since, limit=FALLBACK_SEARCH_LIMIT):
                    if len(post.get("text") or "") <= MIN_TEXT_LENGTH:
                        continue
                    engagement = client.get_insights(post["id"])
                    candidates.append({
                        **post,
                        "insights": engagement.to_dict(),
                        "score": _search_score(engagement),
                        "keyword": keyword,
                        "source": "search",
                    })
            except Exception as e:
                console.print(f"[yellow]Top-up search failed: {e}[/yellow]")

    seen = set()
    unique = []
    for post in sorted(candidates, key=lambda p: p.get("score") or 0, reverse=True):
        if post["id"] in seen:
            continue
        seen.add(post["id"])
        unique.append(post)
    return unique


def run_engagement(
    client,
    store: HistoryStore,
    generator,
    keywords_config: dict,
    max_comments: int = 10,
    dry_run: bool = False,
    data_dir: Path = DATA_DIR,
    pause: float = COMMENT_PAUSE,
    rng: random.Random | None = None,
    now: datetime | None = None,
) -> ReplyRunResult:
    """Comment on up to ``max_comments`` popular posts found by search."""
    posts = find_engageable_posts(client, keywords_config, max_comments, data_dir, rng, now)
    result = ReplyRunResult(candidates=len(posts))
    console.print(f"[dim]{len(posts)} posts to consider.[/dim]")

    for post in posts:
        if len(result.replied) >= max_comments:
            console.print(f"[dim]Reached the comment limit ({max_comments}).[/dim]")
            break
        if store.has_replied_to(post["id"]):
            console.print(f"  [dim]Already commented on {post['id']}[/dim]")
            continue

        console.print(f"  [{post['keyword']}] score {post.get('score', '?')}: \"{post['text'][:50]}\"")
        try:
            context = (
                f"Found by searching for \"{post['keyword']}\". Comment naturally "
                "as someone who recently built a house locally."
            )
            comment = generator.generate_reply(post["text"], context)
            if not comment:
                result.failed += 1
                continue

            comment_id = DRY_RUN_POST_ID
            if not dry_run:
                comment_id = client.publish_reply(post["id"], comment).post_id
                time.sleep(pause)
        except Exception as e:
            console.print(f"  [yellow]Comment failed: {e}[/yellow]")
            result.failed += 1
            continue

        record = PostRecord(
            date=(now or utcnow()).isoformat(),
            account=store.account,
            category="engage",
            topic_key=f"engage:{post['id']}",
            text=comment,
            post_id=comment_id,
            char_count=len(comment),
            replied_to=post["id"],
            keyword=post["keyword"],
        )
        store.append(record, now=now)
        result.replied.append(record)

    console.print(f"[green]Posted {len(result.replied)} comments.[/green]")
    return result
