"""
Engagement collection for threadloop.

Fetches insights for posts that have had a day to settle and stores the
snapshot (and the score derived from it) back on the post record. Runs as
the prologue of every scheduled post so the weight adjuster always sees
fresh numbers.

Only real, non-reply posts older than 24 hours without a snapshot are
eligible. At most ``limit`` posts are fetched per run, one at a time with
a short pause between them. A failed fetch is logged and skipped; the post
stays eligible for the next run.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime

from rich.console import Console

from threadloop.history import HistoryStore, utcnow

console = Console()

DEFAULT_LIMIT = 10
DEFAULT_PAUSE = 1.0


@dataclass
class CollectionResult:
    eligible: int = 0
    updated: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def collect_engagement(
    store: HistoryStore,
    client,
    limit: int = DEFAULT_LIMIT,
    pause: float = DEFAULT_PAUSE,
    now: datetime | None = None,
) -> CollectionResult:
    """
    Fetch and store engagement for settled posts.

    Args:
        store: History of the account whose posts are checked.
        client: ThreadsClient for the same account.
        limit: Maximum posts fetched this run.
        pause: Seconds to wait between fetches.
    """
    now = now or utcnow()
    pending = store.posts_needing_engagement(now=now)
    result = CollectionResult(eligible=len(pending))

    if not pending:
        console.print("[dim]No posts waiting for engagement data.[/dim]")
        return result

    batch = pending[:limit]
    console.print(
        f"[cyan]Collecting engagement for {len(batch)} of {len(pending)} posts...[/cyan]"
    )

    for i, record in enumerate(batch):
        if i > 0:
            time.sleep(pause)
        try:
            engagement = client.get_insights(record.post_id)
            store.update_engagement(record.post_id, engagement, now=now)
        except Exception as e:
            console.print(f"  [yellow]{record.post_id}: insights failed ({e})[/yellow]")
            result.failed.append(record.post_id)
            continue

        result.updated.append(record.post_id)
        console.print(
            f"  [{record.category}] {record.text.split(chr(10))[0][:35]:35s} "
            f"V:{engagement.views} L:{engagement.likes} R:{engagement.replies} "
            f"RP:{engagement.reposts} Q:{engagement.quotes} "
            f"→ {engagement.score}"
        )

    summary = f"Engagement updated for {len(result.updated)} posts"
    if result.failed:
        summary += f", {len(result.failed)} failed"
    console.print(f"[green]{summary}.[/green]")
    return result
