#!/usr/bin/env python3
"""
threadloop: unattended Threads publishing loop

Usage:
    python -m threadloop.main post                      # Scheduled post (business account)
    python -m threadloop.main post --account a1         # Scheduled post for a stealth account
    python -m threadloop.main post --dry                # Generate only, publish nothing
    python -m threadloop.main post --category trivia    # Force a category
    python -m threadloop.main collect-engagement        # Fetch insights for settled posts
    python -m threadloop.main buzz-reply                # Reply to stealth posts that took off
    python -m threadloop.main reply                     # Answer replies on our recent posts
    python -m threadloop.main engage                    # Comment on popular housing posts
    python -m threadloop.main scan-trends               # Run a trend scan on its own
    python -m threadloop.main token-status              # Check every account's token
    python -m threadloop.main refresh-token             # Refresh a long-lived token now
    python -m threadloop.main performance               # Category performance and weights

Environment:
    DRY_RUN=true          same as --dry
    FORCE_CATEGORY=<id>   same as --category
"""

import os
import sys
import json
import random
import yaml
import click
import anthropic
from pathlib import Path
from datetime import datetime
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from dotenv import load_dotenv

from threadloop.accounts import get_account, load_accounts, load_categories, stealth_accounts
from threadloop.history import BUSINESS_ACCOUNT, DATA_DIR, HistoryConflictError, HistoryStore, ReplyLedger
from threadloop.publishers.threads import ContainerTimeoutError, ThreadsAPIError, ThreadsClient

load_dotenv()

console = Console()
PROJECT_ROOT = Path(__file__).parent.parent
CONFIG_PATH = PROJECT_ROOT / "config.yaml"
LOG_DIR = PROJECT_ROOT / "logs"

# Errors that end a scheduled run with exit code 1. RuntimeError covers a
# missing ANTHROPIC_API_KEY; ValueError covers missing Threads credentials.
FATAL_ERRORS = (
    ThreadsAPIError, ContainerTimeoutError, HistoryConflictError,
    anthropic.APIError, RuntimeError, ValueError,
)


def _load_config() -> dict:
    with open(CONFIG_PATH) as f:
        return yaml.safe_load(f)


def _log_run(action: str, results: dict):
    """Append run results to the log."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_file = LOG_DIR / f"{datetime.now().strftime('%Y-%m-%d')}.log"
    entry = {
        "timestamp": datetime.now().isoformat(),
        "action": action,
        "results": results,
    }
    with open(log_file, "a") as f:
        f.write(json.dumps(entry) + "\n")


def _env_dry_run() -> bool:
    return os.getenv("DRY_RUN", "").strip().lower() in ("1", "true", "yes")


def _fail(action: str, error: Exception | str, config: dict, account: str | None = None):
    """Report a fatal error, notify, log, and exit 1."""
    message = str(error)
    console.print(f"[bold red]{action} failed: {message}[/bold red]")
    try:
        from threadloop.notifier import notify_run_failure
        notify_run_failure(action, message, account=account, config=config)
    except Exception as e:
        console.print(f"[yellow]Notification failed: {e}[/yellow]")
    _log_run(action, {"account": account, "status": "failed", "error": message})
    sys.exit(1)


def _client_for(config: dict, name: str) -> ThreadsClient:
    return ThreadsClient.for_account(get_account(config, name))


@click.group()
def cli():
    """threadloop: unattended Threads publishing loop"""


@cli.command()
@click.option("--account", "account_name", default=BUSINESS_ACCOUNT, show_default=True,
              help="Account to post as")
@click.option("--dry", is_flag=True, help="Dry run: generate and record, don't publish")
@click.option("--category", default=None, help="Force a category id")
def post(account_name, dry, category):
    """Run one scheduled post: select, generate, publish, record."""
    from threadloop.poster import run_post

    config = _load_config()
    dry = dry or _env_dry_run()
    category = category or os.getenv("FORCE_CATEGORY") or None

    try:
        account = get_account(config, account_name)
        result = run_post(config, account, dry_run=dry, forced_category=category)
    except FATAL_ERRORS as e:
        _fail("post", e, config, account=account_name)
        return

    _log_run("post", {
        "account": account_name,
        "dry_run": dry,
        "status": result.status,
        "category": result.category,
        "topic_key": result.record.topic_key if result.record else None,
        "post_id": result.record.post_id if result.record else None,
    })


@cli.command(name="collect-engagement")
@click.option("--account", "account_name", default=None,
              help="Only this account (default: every account)")
@click.option("--limit", default=10, show_default=True, help="Max posts per account")
def collect_engagement_cmd(account_name, limit):
    """Fetch insights for posts older than 24h and store them."""
    from threadloop.engagement import collect_engagement

    config = _load_config()
    names = [account_name] if account_name else list(load_accounts(config))

    summary = {}
    for name in names:
        console.print(Panel.fit(f"[bold cyan]Engagement: {name}[/bold cyan]", border_style="cyan"))
        try:
            client = _client_for(config, name)
        except ValueError as e:
            console.print(f"[yellow]Skipping {name}: {e}[/yellow]")
            summary[name] = "skipped"
            continue
        result = collect_engagement(HistoryStore(name), client, limit=limit)
        summary[name] = {"updated": len(result.updated), "failed": len(result.failed)}

    _log_run("collect-engagement", summary)


@cli.command(name="buzz-reply")
@click.option("--dry", is_flag=True, help="Dry run: dummy insights, no replies published")
def buzz_reply(dry):
    """Reply from the business account to stealth posts that are taking off."""
    from threadloop.buzz import BuzzSettings, run_buzz_replies
    from threadloop.generator import ContentGenerator
    from threadloop.notifier import notify_buzz_summary
    from threadloop.token_manager import check_and_refresh_token

    config = _load_config()
    dry = dry or _env_dry_run()
    names = [a.name for a in stealth_accounts(config)]

    console.print(Panel.fit(
        f"[bold cyan]Buzz reply cascade[/bold cyan]\n"
        f"{'DRY RUN' if dry else 'Live'} | stealth accounts: {', '.join(names) or 'none'}",
        border_style="cyan",
    ))

    clients: dict[str, ThreadsClient] = {}

    def insight_client_for(name: str) -> ThreadsClient:
        if name not in clients:
            clients[name] = _client_for(config, name)
        return clients[name]

    try:
        reply_client = None
        if not dry:
            reply_client = _client_for(config, BUSINESS_ACCOUNT)
            check_and_refresh_token(reply_client, token_var=get_account(config, BUSINESS_ACCOUNT).token_var)
        result = run_buzz_replies(
            names,
            reply_client,
            insight_client_for,
            ContentGenerator.from_config(config),
            ReplyLedger(),
            settings=BuzzSettings.from_config(config),
            dry_run=dry,
        )
    except FATAL_ERRORS as e:
        _fail("buzz-reply", e, config, account=BUSINESS_ACCOUNT)
        return

    if result.total_failure:
        _fail(
            "buzz-reply",
            f"{result.candidates} candidates, {result.reply_attempts} replies attempted, "
            f"{result.insight_failures} insight reads failed, none sent; "
            "check the account tokens and the business reply permission",
            config, account=BUSINESS_ACCOUNT,
        )
        return

    if not dry:
        notify_buzz_summary(result.replied, result.candidates, config=config)
    _log_run("buzz-reply", {
        "dry_run": dry,
        "candidates": result.candidates,
        "attempted": result.attempted,
        "skipped": result.skipped,
        "replied": len(result.replied),
        "failed": result.failed,
    })


@cli.command()
@click.option("--account", "account_name", default=BUSINESS_ACCOUNT, show_default=True)
@click.option("--max", "max_replies", default=10, show_default=True, help="Max answers this run")
@click.option("--dry", is_flag=True, help="Dry run: generate answers, publish nothing")
def reply(account_name, max_replies, dry):
    """Answer replies left on our recent posts."""
    from threadloop.generator import ContentGenerator
    from threadloop.replier import run_replies
    from threadloop.token_manager import check_and_refresh_token

    config = _load_config()
    dry = dry or _env_dry_run()
    console.print(Panel.fit(
        f"[bold cyan]Reply to replies[/bold cyan] ({account_name})\n{'DRY RUN' if dry else 'Live'}",
        border_style="cyan",
    ))

    try:
        account = get_account(config, account_name)
        client = ThreadsClient.for_account(account)
        if not dry:
            check_and_refresh_token(client, token_var=account.token_var)
        result = run_replies(
            client, HistoryStore(account_name), ContentGenerator.from_config(config),
            max_replies=max_replies, dry_run=dry,
        )
    except FATAL_ERRORS as e:
        _fail("reply", e, config, account=account_name)
        return

    _log_run("reply", {
        "account": account_name,
        "dry_run": dry,
        "replied": len(result.replied),
        "failed": result.failed,
    })


@cli.command()
@click.option("--max", "max_comments", default=10, show_default=True, help="Max comments this run")
@click.option("--dry", is_flag=True, help="Dry run: generate comments, publish nothing")
def engage(max_comments, dry):
    """Comment on popular housing posts found by search."""
    from threadloop.engager import run_engagement
    from threadloop.generator import ContentGenerator
    from threadloop.token_manager import check_and_refresh_token

    config = _load_config()
    dry = dry or _env_dry_run()
    console.print(Panel.fit(
        f"[bold cyan]Search engagement[/bold cyan]\n{'DRY RUN' if dry else 'Live'}",
        border_style="cyan",
    ))

    try:
        account = get_account(config, BUSINESS_ACCOUNT)
        client = ThreadsClient.for_account(account)
        if not dry:
            check_and_refresh_token(client, token_var=account.token_var)
        result = run_engagement(
            client, HistoryStore(BUSINESS_ACCOUNT), ContentGenerator.from_config(config),
            config.get("search_keywords", {}) or {},
            max_comments=max_comments, dry_run=dry,
        )
    except FATAL_ERRORS as e:
        _fail("engage", e, config, account=BUSINESS_ACCOUNT)
        return

    _log_run("engage", {
        "dry_run": dry,
        "candidates": result.candidates,
        "commented": len(result.replied),
        "failed": result.failed,
    })


@cli.command(name="scan-trends")
def scan_trends_cmd():
    """Run a trend scan and save the snapshot."""
    from threadloop.trends import scan_trends

    config = _load_config()
    try:
        client = _client_for(config, BUSINESS_ACCOUNT)
        result = scan_trends(client, config.get("search_keywords", {}) or {}, DATA_DIR, rng=random.Random())
    except FATAL_ERRORS as e:
        _fail("scan-trends", e, config)
        return

    table = Table(title="Trend scan")
    table.add_column("Keyword", style="bold")
    table.add_column("Posts", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Trending")
    trending = {t["keyword"] for t in result.trending}
    for keyword, data in sorted(result.keywords.items(), key=lambda kv: kv[1]["total_score"], reverse=True):
        table.add_row(
            keyword,
            str(data["result_count"]),
            str(data["total_score"]),
            "[green]yes[/green]" if keyword in trending else "",
        )
    console.print(table)

    _log_run("scan-trends", {"keywords": len(result.keywords), "trending": sorted(trending)})


@cli.command(name="token-status")
def token_status():
    """Validate every configured account's token."""
    from threadloop.token_manager import check_token_health

    config = _load_config()
    console.print(Panel.fit("[bold cyan]Threads Token Status[/bold cyan]", border_style="cyan"))

    health = check_token_health(load_accounts(config).values())

    table = Table(title="Token Health")
    table.add_column("Account", style="bold", width=10)
    table.add_column("Token", width=28)
    table.add_column("Status", width=10)
    table.add_column("Username / detail", width=30)
    table.add_column("Quota (24h)", width=28)

    styles = {"valid": "green", "expired": "red", "missing": "dim", "error": "yellow"}
    for name, info in health.items():
        status = info["status"]
        style = styles.get(status, "white")
        table.add_row(
            name,
            info["token"],
            f"[{style}]{status}[/{style}]",
            info.get("username") or info.get("detail", ""),
            info.get("quota") or "",
        )
    console.print(table)

    if any(info["status"] == "expired" for info in health.values()):
        console.print(
            "\n[bold red]Expired tokens need a manual re-authorization.[/bold red]"
        )

    _log_run("token-status", {name: info["status"] for name, info in health.items()})


@cli.command(name="refresh-token")
@click.option("--account", "account_name", default=None,
              help="Only this account (default: every account with a token)")
def refresh_token_cmd(account_name):
    """Refresh long-lived tokens now and write them to .env.

    Threads tokens expire after ~60 days. Scheduled runs refresh on demand
    when a token is rejected; run this monthly to stay ahead of expiry.
    """
    from threadloop.publishers.threads import AuthenticationError
    from threadloop.token_manager import refresh_token

    config = _load_config()
    accounts = load_accounts(config)
    names = [account_name] if account_name else list(accounts)

    console.print(Panel.fit("[bold cyan]Threads Token Refresh[/bold cyan]", border_style="cyan"))

    results = {}
    for name in names:
        try:
            account = get_account(config, name)
            client = ThreadsClient.for_account(account)
        except ValueError as e:
            console.print(f"  [dim]- {name}: skipped ({e})[/dim]")
            results[name] = "skipped"
            continue
        try:
            info = refresh_token(client, token_var=account.token_var)
            console.print(f"  [green]✓ {name}: refreshed (~{info['expires_in_days']} days)[/green]")
            results[name] = "refreshed"
        except AuthenticationError as e:
            console.print(f"  [red]✗ {name}: {e.message}[/red]")
            results[name] = "failed"

    _log_run("refresh-token", results)
    if "failed" in results.values():
        _fail("refresh-token", f"refresh failed for {', '.join(n for n, s in results.items() if s == 'failed')}", config)


@cli.command()
@click.option("--account", "account_name", default=BUSINESS_ACCOUNT, show_default=True)
def performance(account_name):
    """Show category performance and the weights it produces."""
    from threadloop.learning import analyze_category_performance, print_performance_table
    from threadloop.selector import policy_for

    config = _load_config()
    account = get_account(config, account_name)
    store = HistoryStore(account_name)

    console.print(Panel.fit(
        f"[bold cyan]Performance[/bold cyan] ({account_name})", border_style="cyan",
    ))
    print_performance_table(analyze_category_performance(store.load()))

    base = load_categories(config)
    weighted = {c.id: c.weight for c in policy_for(account, store).weigh(base)}
    table = Table(title=f"Category weights ({policy_for(account, store).name})")
    table.add_column("Category", style="bold")
    table.add_column("Base", justify="right")
    table.add_column("Effective", justify="right")
    table.add_column("Cooling down")
    for cat in base:
        effective = weighted.get(cat.id)
        table.add_row(
            cat.id,
            f"{cat.weight:g}",
            f"{effective:g}" if effective is not None else "[dim]-[/dim]",
            "[yellow]yes[/yellow]" if store.is_category_cooling_down(cat.id) else "",
        )
    console.print(table)


if __name__ == "__main__":
    cli()
