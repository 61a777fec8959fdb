"""
Buzz reply cascade for threadloop.

Watches recent posts from the stealth accounts and, when one starts doing
well, replies to it from the business account. The busier the post, the
likelier a reply:

    SUPER_BUZZ  views >= 5000 or likes >= 20   always
    BUZZ        views >= 2000 or likes >= 10   80%
    RISING      views >= 1000 or likes >= 5    50%
    NORMAL      anything else                  20%

Limits: 10 replies per local day (counted from the reply ledger), at least
60 seconds between consecutive replies, and a random 30-120 second pause
before each reply (skipped on dry run). Posts already in the ledger are
never answered twice.

A candidate the probability draw passes over is skipped, not failed. The
run fails when no reply went out and either at least one reply was
attempted, or every candidate's insight fetch errored. Both usually mean
the tokens lost a permission.
"""

import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

from rich.console import Console

from threadloop.generator import GenerationOptions
from threadloop.history import (
    DATA_DIR, DRY_RUN_POST_ID, Engagement, HistoryStore, PostRecord,
    ReplyLedger, ReplyLedgerEntry, utcnow,
)

console = Console()

BUZZ_TIERS = [
    # (min views, min likes, level, reply probability)
    (5000, 20, "SUPER_BUZZ", 1.0),
    (2000, 10, "BUZZ", 0.8),
    (1000, 5, "RISING", 0.5),
]
NORMAL_TIER = ("NORMAL", 0.2)

DRY_RUN_INSIGHTS = Engagement(views=3000, likes=12, replies=3)
INSIGHTS_PAUSE = 0.5


@dataclass
class BuzzTier:
    level: str
    probability: float


@dataclass
class BuzzSettings:
    max_daily_replies: int = 10
    min_interval: float = 60
    delay_min: float = 30
    delay_max: float = 120
    lookback_hours: float = 48

    @classmethod
    def from_config(cls, config: dict) -> "BuzzSettings":
        buzz = config.get("buzz", {}) or {}
        defaults = cls()
        return cls(
            max_daily_replies=buzz.get("max_daily_replies", defaults.max_daily_replies),
            min_interval=buzz.get("min_interval_seconds", defaults.min_interval),
            delay_min=buzz.get("delay_min_seconds", defaults.delay_min),
            delay_max=buzz.get("delay_max_seconds", defaults.delay_max),
            lookback_hours=buzz.get("lookback_hours", defaults.lookback_hours),
        )


@dataclass
class BuzzCandidate:
    account: str
    record: PostRecord


@dataclass
class BuzzRunResult:
    """Counts for one cascade run.

    ``attempted`` counts candidates processed; ``reply_attempts`` only
    those the probability draw let through.
    """
    candidates: int = 0
    attempted: int = 0
    skipped: int = 0
    insight_failures: int = 0
    reply_attempts: int = 0
    replied: list[ReplyLedgerEntry] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return self.insight_failures + self.reply_attempts - len(self.replied)

    @property
    def total_failure(self) -> bool:
        if self.replied:
            return False
        every_insight_failed = self.attempted > 0 and self.insight_failures == self.attempted
        return self.reply_attempts > 0 or every_insight_failed


def classify_buzz(engagement: Engagement) -> BuzzTier:
    """Highest tier whose views or likes threshold is met."""
    for min_views, min_likes, level, probability in BUZZ_TIERS:
        if engagement.views >= min_views or engagement.likes >= min_likes:
            return BuzzTier(level, probability)
    return BuzzTier(*NORMAL_TIER)


def find_buzz_candidates(
    account_names: list[str],
    ledger: ReplyLedger,
    data_dir: Path = DATA_DIR,
    lookback_hours: float = 48,
    now: datetime | None = None,
) -> list[BuzzCandidate]:
    """Recent, real, top-level stealth posts that have not been answered."""
    now = now or utcnow()
    cutoff = now - timedelta(hours=lookback_hours)
    answered = ledger.replied_thread_ids()

    candidates = []
    for name in account_names:
        posts = [
            p for p in HistoryStore(name, data_dir).load()
            if p.posted_at >= cutoff
            and p.has_real_post_id
            and not p.is_reply
            and p.post_id not in answered
        ]
        console.print(f"[dim]{name}: {len(posts)} recent posts to check[/dim]")
        candidates.extend(BuzzCandidate(name, p) for p in posts)
    return candidates


def _business_reply_prompt(original_text: str) -> str:
    return (
        "You run a small custom-home advice account. Reply to the Threads post "
        "below as a friendly local expert. One or two short sentences. Add one "
        "useful point the poster didn't mention. No selling, no links.\n\n"
        f'Post: "{original_text}"'
    )


def run_buzz_replies(
    account_names: list[str],
    reply_client,
    insight_client_for,
    generator,
    ledger: ReplyLedger,
    data_dir: Path = DATA_DIR,
    settings: BuzzSettings | None = None,
    dry_run: bool = False,
    rng: random.Random | None = None,
    now: datetime | None = None,
) -> BuzzRunResult:
    """
    Reply from the business account to stealth posts that are taking off.

    Args:
        account_names: Stealth accounts whose history is scanned.
        reply_client: ThreadsClient for the business account.
        insight_client_for: ``(account_name) -> ThreadsClient`` used to read
            insights with the owning account's token.
        generator: ContentGenerator for reply text.
        ledger: Reply ledger (dedup and daily cap).
    """
    settings = settings or BuzzSettings()
    rng = rng or random.Random()
    now = now or utcnow()
    result = BuzzRunResult()

    today = ledger.today_count(now=now)
    if today >= settings.max_daily_replies:
        console.print(
            f"[yellow]Daily reply limit reached ({today}/{settings.max_daily_replies}).[/yellow]"
        )
        return result
    remaining = settings.max_daily_replies - today
    console.print(f"[dim]Reply slots left today: {remaining}[/dim]")

    candidates = find_buzz_candidates(
        account_names, ledger, data_dir, settings.lookback_hours, now=now,
    )
    result.candidates = len(candidates)
    if not candidates:
        console.print("[dim]No stealth posts to consider.[/dim]")
        return result

    for candidate in candidates:
        if len(result.replied) >= remaining:
            console.print("[dim]Used every reply slot for today.[/dim]")
            break

        record = candidate.record
        result.attempted += 1

        if dry_run:
            engagement = DRY_RUN_INSIGHTS
        else:
            try:
                engagement = insight_client_for(candidate.account).get_insights(record.post_id)
                time.sleep(INSIGHTS_PAUSE)
            except Exception as e:
                console.print(f"  [yellow]{record.post_id}: insights failed ({e})[/yellow]")
                result.insight_failures += 1
                continue

        tier = classify_buzz(engagement)
        console.print(
            f"  {candidate.account}/{record.post_id}: {tier.level} "
            f"(views={engagement.views}, likes={engagement.likes})"
        )
        if rng.random() >= tier.probability:
            console.print(f"  [dim]Skipped ({tier.probability:.0%} chance)[/dim]")
            result.skipped += 1
            continue

        result.reply_attempts += 1
        if result.replied:
            # spacing between consecutive replies
            time.sleep(settings.min_interval)

        if not dry_run:
            delay = rng.uniform(settings.delay_min, settings.delay_max)
            console.print(f"  [dim]Waiting {delay:.0f}s before replying...[/dim]")
            time.sleep(delay)

        try:
            reply_text = generator.generate(
                _business_reply_prompt(record.text),
                GenerationOptions(
                    max_length=generator.rules.reply_max_length,
                    allow_urls=False,
                    system_prompt=generator.reply_system_prompt,
                ),
            )
            if not reply_text:
                console.print("  [yellow]No usable reply text; skipping.[/yellow]")
                continue

            reply_id = DRY_RUN_POST_ID
            if not dry_run:
                reply_id = reply_client.publish_reply(record.post_id, reply_text).post_id
        except Exception as e:
            console.print(f"  [red]Reply to {record.post_id} failed: {e}[/red]")
            continue

        entry = ReplyLedgerEntry(
            date=now.isoformat(),
            original_thread_id=record.post_id,
            original_account=candidate.account,
            original_text=record.text[:100],
            reply_text=reply_text,
            reply_id=reply_id,
            buzz_level=tier.level,
            insights={
                "views": engagement.views,
                "likes": engagement.likes,
                "replies": engagement.replies,
            },
        )
        ledger.append(entry, now=now)
        result.replied.append(entry)
        console.print(
            f"  [green]Replied ({len(result.replied)}/{remaining}): {reply_text}[/green]"
        )

    console.print(
        f"[bold]Buzz replies: {len(result.replied)} sent, "
        f"{result.failed} failed, {result.candidates} candidates.[/bold]"
    )
    return result
