"""
Notification dispatcher for threadloop.

Sends alerts via webhook (Slack, Discord, or generic JSON) when:
- A scheduled run fails (token, publish, buzz cascade)
- A buzz reply run sends replies

Notifications must NEVER break the pipeline. All public functions
catch exceptions internally and log warnings instead of raising.
"""

import os
from datetime import datetime
from pathlib import Path

import requests
import yaml
from rich.console import Console

console = Console()

PROJECT_ROOT = Path(__file__).parent.parent
FOOTER = "threadloop"


def _load_notification_config(config: dict | None = None) -> dict:
    """Return the ``notifications`` section of config (or config.yaml)."""
    if config and "notifications" in config:
        return config["notifications"] or {}

    try:
        with open(PROJECT_ROOT / "config.yaml") as f:
            cfg = yaml.safe_load(f) or {}
        return cfg.get("notifications", {}) or {}
    except (OSError, yaml.YAMLError):
        return {}


def _build_payload(fmt: str, title: str, message: str, level: str) -> dict:
    emoji = {"info": "ℹ️", "warning": "⚠️", "error": "\U0001f6a8"}.get(level, "")
    color = {"info": "#4ecdc4", "warning": "#f2cc8f", "error": "#e07a5f"}.get(level, "#999999")

    if fmt == "slack":
        return {
            "text": f"{emoji} {title}",
            "attachments": [{
                "color": color,
                "text": message,
                "footer": FOOTER,
                "ts": int(datetime.now().timestamp()),
            }],
        }
    if fmt == "discord":
        return {
            "content": f"{emoji} **{title}**",
            "embeds": [{
                "description": message,
                "color": int(color.lstrip("#"), 16),
                "footer": {"text": FOOTER},
                "timestamp": datetime.now().isoformat(),
            }],
        }
    return {
        "title": title,
        "message": message,
        "level": level,
        "timestamp": datetime.now().isoformat(),
        "source": FOOTER,
    }


def send_notification(
    title: str,
    message: str,
    level: str = "info",
    config: dict | None = None,
) -> bool:
    """Send a notification via the configured webhook.

    Args:
        title: Short summary (e.g., "post (a1) failed").
        message: Detail body (markdown supported for Slack/Discord).
        level: Severity, one of ``"info"``, ``"warning"``, ``"error"``.
        config: Full project config dict. If None, reads config.yaml.

    Returns:
        True if sent successfully (or notifications disabled), False on error.
    """
    ncfg = _load_notification_config(config)

    if not ncfg.get("enabled", False):
        return True

    webhook_url = ncfg.get("webhook_url") or os.getenv("NOTIFICATION_WEBHOOK_URL", "")
    if not webhook_url:
        console.print("[dim]Notification skipped: no webhook_url configured.[/dim]")
        return True

    payload = _build_payload(ncfg.get("format", "generic"), title, message, level)
    try:
        resp = requests.post(
            webhook_url,
            json=payload,
            timeout=10,
            headers={"Content-Type": "application/json"},
        )
        if resp.status_code >= 400:
            console.print(
                f"[yellow]Webhook returned {resp.status_code}: "
                f"{resp.text[:100]}[/yellow]"
            )
            return False

        console.print(f"[dim]Notification sent: {title}[/dim]")
        return True

    except requests.Timeout:
        console.print("[yellow]Notification webhook timed out (10s).[/yellow]")
        return False
    except Exception as e:
        console.print(f"[yellow]Notification failed: {e}[/yellow]")
        return False


def notify_run_failure(
    command: str,
    error: str,
    account: str | None = None,
    config: dict | None = None,
) -> None:
    """Alert that a scheduled command exited nonzero."""
    ncfg = _load_notification_config(config)
    if not ncfg.get("notify_on_failure", True):
        return

    who = f" ({account})" if account else ""
    title = f"{command}{who} failed"
    message = "\n".join([
        f"*{datetime.now().strftime('%A, %B %d %H:%M')}*",
        error[:500],
    ])
    try:
        send_notification(title, message, level="error", config=config)
    except Exception as e:
        console.print(f"[yellow]Failed to send failure notification: {e}[/yellow]")


def notify_buzz_summary(
    replied: list,
    candidates: int,
    config: dict | None = None,
) -> None:
    """Summarize a buzz reply run that sent at least one reply.

    Args:
        replied: ReplyLedgerEntry-like objects (``original_account``,
            ``buzz_level``, ``reply_text``).
        candidates: How many stealth posts were considered.
    """
    ncfg = _load_notification_config(config)
    if not ncfg.get("notify_buzz_replies", False) or not replied:
        return

    title = f"Buzz replies: {len(replied)} sent"
    lines = [f"Candidates: {candidates}", ""]
    for entry in replied[:10]:
        text = getattr(entry, "reply_text", "")
        if len(text) > 80:
            text = text[:80] + "..."
        lines.append(
            f"  • `{getattr(entry, 'original_account', '?')}` "
            f"{getattr(entry, 'buzz_level', '?')}: {text}"
        )
    try:
        send_notification(title, "\n".join(lines), level="info", config=config)
    except Exception as e:
        console.print(f"[yellow]Failed to send buzz summary notification: {e}[/yellow]")
