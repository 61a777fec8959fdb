"""
Scheduled post run for threadloop.

One call to :func:`run_post` is one scheduled invocation for one account:

    1. Check (and if needed refresh) the access token
    2. Collect engagement for settled posts
    3. Scan Threads for trending keywords
    4. Pick a category (adaptive or persona weights, cooldowns)
    5. Build the prompt for a fresh topic in that category
    6. Generate text that passes the house style
    7. Publish through the two-phase container flow
    8. Append the post record

Steps 1-3 are skipped on dry run. The record is appended only after the
publish reached DONE; any publish error propagates and nothing is written.
"""

import random
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.panel import Panel

from threadloop.accounts import Account, load_categories
from threadloop.engagement import collect_engagement
from threadloop.generator import ContentGenerator, GenerationOptions
from threadloop.history import DATA_DIR, DRY_RUN_POST_ID, HistoryStore, PostRecord, utcnow
from threadloop.prompts import PromptBuilder
from threadloop.publishers.threads import ThreadsClient
from threadloop.selector import TREND_CATEGORY, policy_for, select_category
from threadloop.token_manager import check_and_refresh_token
from threadloop.topics import TopicSource
from threadloop.trends import TrendResult, scan_trends

console = Console()

STATUS_PUBLISHED = "published"
STATUS_DRY_RUN = "dry-run"
STATUS_NOTHING_TO_DO = "nothing-to-do"
STATUS_ABANDONED = "abandoned"


@dataclass
class PostRunResult:
    status: str
    category: str | None = None
    record: PostRecord | None = None


def _wants_trends(config: dict, account: Account) -> bool:
    if not any(c.get("id") == TREND_CATEGORY for c in config.get("categories", [])):
        return False
    if account.persona is not None:
        return account.persona.category_weights.get(TREND_CATEGORY, 0) > 0
    return True


def _run_trend_scan(client, config: dict, data_dir: Path, rng, now) -> TrendResult:
    try:
        return scan_trends(client, config.get("search_keywords", {}) or {}, data_dir, now=now, rng=rng)
    except Exception as e:
        console.print(f"[yellow]Trend scan failed, continuing without trends: {e}[/yellow]")
        return TrendResult()


def run_post(
    config: dict,
    account: Account,
    dry_run: bool = False,
    forced_category: str | None = None,
    data_dir: Path = DATA_DIR,
    client: ThreadsClient | None = None,
    generator: ContentGenerator | None = None,
    source: TopicSource | None = None,
    rng: random.Random | None = None,
    now: datetime | None = None,
) -> PostRunResult:
    """
    Run one scheduled post for ``account``.

    Raises:
        AuthenticationError: The token is invalid and could not be refreshed.
        ThreadsAPIError, ContainerError, ContainerTimeoutError: Publish failed.
    """
    rng = rng or random.Random()
    now = now or utcnow()
    store = HistoryStore(account.name, data_dir)

    lines = [
        f"Account: [bold]{account.name}[/bold]{' (stealth)' if account.stealth else ''}",
        f"Time: {now.isoformat(timespec='seconds')}",
    ]
    if dry_run:
        lines.append("[yellow]DRY RUN: nothing will be published[/yellow]")
    console.print(Panel("\n".join(lines), title="Threads post", border_style="cyan"))

    trend_result = TrendResult()
    if not dry_run:
        client = client or ThreadsClient.for_account(account)
        check_and_refresh_token(client, token_var=account.token_var)
        collect_engagement(store, client, now=now)
        if _wants_trends(config, account):
            trend_result = _run_trend_scan(client, config, data_dir, rng, now)

    source = source or TopicSource.load(config, now=now)
    categories = source.available_categories(load_categories(config))
    category = select_category(
        categories,
        trend_available=trend_result.available,
        store=store,
        forced_id=forced_category,
        policy=policy_for(account, store),
        rng=rng,
        now=now,
    )
    console.print(f"[cyan]Category: {category.id} ({category.label})[/cyan]")

    request = PromptBuilder(source, store, account=account, rng=rng, now=now).build(
        category, trend_result,
    )
    if request is None:
        console.print("[yellow]Nothing fresh to post about. Done.[/yellow]")
        return PostRunResult(STATUS_NOTHING_TO_DO, category=category.id)
    console.print(f"[dim]Topic key: {request.topic_key}[/dim]")

    generator = generator or ContentGenerator.from_config(config, rng=rng)
    system_prompt = generator.system_prompt
    persona = account.persona
    if persona and persona.voice:
        system_prompt = f"{system_prompt}\n\n{persona.voice}".strip()

    text = generator.generate(request.user_prompt, GenerationOptions(
        max_length=generator.rules.max_length,
        stealth=account.stealth,
        allow_urls=request.allow_urls,
        extra_blocklist=list(persona.blocklist) if persona else [],
        system_prompt=system_prompt,
    ))
    if text is None:
        console.print("[yellow]No compliant text; abandoning this run.[/yellow]")
        return PostRunResult(STATUS_ABANDONED, category=request.category)

    console.print(Panel(text, title=f"{request.category} ({len(text)} chars)", border_style="green"))

    post_id = DRY_RUN_POST_ID
    if not dry_run:
        post_id = client.publish_text(text).post_id
    else:
        console.print("[yellow]DRY RUN: skipping publish.[/yellow]")

    record = PostRecord(
        date=now.isoformat(),
        account=account.name,
        category=request.category,
        topic_key=request.topic_key,
        text=text,
        post_id=post_id,
        char_count=len(text),
    )
    store.append(record, now=now)
    console.print(f"[green]Saved to {store.path.name}[/green]")
    return PostRunResult(
        STATUS_DRY_RUN if dry_run else STATUS_PUBLISHED,
        category=request.category,
        record=record,
    )
