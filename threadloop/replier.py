"""
Reply helper for threadloop.

Reads replies left on the account's recent posts and answers them with a
short generated comment. Each answer is stored in the account's history
with ``category="reply"`` and ``replied_to`` set to the reply it answers,
which is also how already-answered replies are recognized next time.

Usage:
    python -m threadloop.main reply
    python -m threadloop.main reply --max 5 --dry
"""

import time
from dataclasses import dataclass, field
from datetime import datetime

from rich.console import Console

from threadloop.history import DRY_RUN_POST_ID, HistoryStore, PostRecord, utcnow

console = Console()

RECENT_THREADS = 10
MIN_REPLY_LENGTH = 5
REPLY_PAUSE = 2.0


@dataclass
class ReplyRunResult:
    """Outcome of one reply or engage run."""
    candidates: int = 0
    replied: list[PostRecord] = field(default_factory=list)
    failed: int = 0


def run_replies(
    client,
    store: HistoryStore,
    generator,
    max_replies: int = 10,
    dry_run: bool = False,
    pause: float = REPLY_PAUSE,
    now: datetime | None = None,
) -> ReplyRunResult:
    """
    Answer unanswered replies on the account's recent posts.

    Args:
        client: ThreadsClient for the account being replied to.
        store: That account's history (dedup and record keeping).
        generator: ContentGenerator; replies use the reply rules.
        max_replies: Stop after this many answers.
    """
    result = ReplyRunResult()
    own_username = client.validate_token().get("username")
    threads = client.get_my_threads(limit=RECENT_THREADS)
    console.print(f"[dim]Fetched {len(threads)} recent posts.[/dim]")

    for thread in threads:
        if len(result.replied) >= max_replies:
            console.print(f"[dim]Reached the reply limit ({max_replies}).[/dim]")
            break

        try:
            replies = client.get_replies(thread["id"])
        except Exception as e:
            console.print(f"  [yellow]Could not read replies for {thread['id']}: {e}[/yellow]")
            continue
        if not replies:
            continue

        console.print(f"[cyan]{thread['id']}: {len(replies)} replies[/cyan]")
        for reply in replies:
            if len(result.replied) >= max_replies:
                break
            if own_username and reply.get("username") == own_username:
                continue
            text = reply.get("text") or ""
            if len(text) < MIN_REPLY_LENGTH:
                continue
            if store.has_replied_to(reply["id"]):
                console.print(f"  [dim]Already answered {reply['id']}[/dim]")
                continue

            result.candidates += 1
            console.print(f'  Answering "{text[:50]}"')
            try:
                context = f"Original post: {thread['text'][:100]}" if thread.get("text") else ""
                answer = generator.generate_reply(text, context)
                if not answer:
                    result.failed += 1
                    continue

                reply_id = DRY_RUN_POST_ID
                if not dry_run:
                    reply_id = client.publish_reply(reply["id"], answer).post_id
                    time.sleep(pause)
            except Exception as e:
                console.print(f"  [yellow]Reply failed: {e}[/yellow]")
                result.failed += 1
                continue

            record = PostRecord(
                date=(now or utcnow()).isoformat(),
                account=store.account,
                category="reply",
                topic_key=f"reply:{reply['id']}",
                text=answer,
                post_id=reply_id,
                char_count=len(answer),
                replied_to=reply["id"],
            )
            store.append(record, now=now)
            result.replied.append(record)

    console.print(f"[green]Answered {len(result.replied)} replies.[/green]")
    return result
