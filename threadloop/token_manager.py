"""
Threads Token Manager for threadloop
====================================

Threads long-lived tokens last ~60 days and can be refreshed via:

    GET https://graph.threads.net/refresh_access_token
        ?grant_type=th_refresh_token&access_token=<current_token>

Every scheduled entrypoint calls ``check_and_refresh_token`` before it
publishes. The token is validated with GET /me; on an auth failure the
refresh endpoint is tried once. A successful refresh is written back to
.env so the next run picks it up. A failed refresh raises
AuthenticationError and the run exits nonzero.

This module provides:
    - check_and_refresh_token() - validate, refresh once if needed
    - refresh_token()           - unconditional refresh, written to .env
    - check_token_health()      - validation status and quota for every account
"""

import json
import os
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console

from threadloop.publishers.threads import (
    AuthenticationError, ThreadsAPIError, ThreadsClient,
)

console = Console()

PROJECT_ROOT = Path(__file__).parent.parent
ENV_PATH = PROJECT_ROOT / ".env"
TOKEN_LOG_DIR = PROJECT_ROOT / "logs"


def _update_env_var(var_name: str, new_value: str, env_path: Path = ENV_PATH):
    """
    Update a single variable in the .env file.

    Reads the entire file, replaces the matching line, writes back.
    Preserves comments and formatting.
    """
    if not env_path.exists():
        raise FileNotFoundError(f".env file not found at {env_path}")

    content = env_path.read_text()
    pattern = rf"^{re.escape(var_name)}=.*$"

    if re.search(pattern, content, re.MULTILINE):
        new_content = re.sub(
            pattern, lambda _: f"{var_name}={new_value}", content, flags=re.MULTILINE
        )
    else:
        new_content = content.rstrip() + f"\n{var_name}={new_value}\n"

    env_path.write_text(new_content)


def _log_token_refresh(token_name: str, success: bool, details: str,
                       log_dir: Path = TOKEN_LOG_DIR):
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"{datetime.now().strftime('%Y-%m-%d')}.log"
    entry = {
        "timestamp": datetime.now().isoformat(),
        "action": "token-refresh",
        "token": token_name,
        "success": success,
        "details": details,
    }
    with open(log_file, "a") as f:
        f.write(json.dumps(entry) + "\n")


def check_and_refresh_token(
    client: ThreadsClient,
    token_var: str = "THREADS_ACCESS_TOKEN",
    env_path: Path = ENV_PATH,
    log_dir: Path = TOKEN_LOG_DIR,
) -> dict:
    """
    Make sure the client's token works, refreshing it once if it does not.

    Returns:
        ``{"valid": True, "refreshed": bool}``

    Raises:
        AuthenticationError: If the token is invalid and the refresh failed.
        ThreadsAPIError: For failures that are not about the token.
    """
    try:
        client.validate_token()
        return {"valid": True, "refreshed": False}
    except ThreadsAPIError as e:
        if not e.is_auth_error:
            raise
        console.print(f"[yellow]{token_var} rejected ({e.message}), refreshing...[/yellow]")

    refresh_token(client, token_var, env_path, log_dir)
    return {"valid": True, "refreshed": True}


def refresh_token(
    client: ThreadsClient,
    token_var: str = "THREADS_ACCESS_TOKEN",
    env_path: Path = ENV_PATH,
    log_dir: Path = TOKEN_LOG_DIR,
) -> dict:
    """
    Exchange the client's token for a fresh one and persist it.

    Returns:
        ``{"access_token": ..., "expires_in_days": int | "unknown"}``

    Raises:
        AuthenticationError: If the refresh endpoint rejects the token.
    """
    try:
        data = client.refresh_token()
    except ThreadsAPIError as e:
        _log_token_refresh(token_var, False, f"Refresh failed: {e}", log_dir)
        raise AuthenticationError(
            e.status, f"{token_var} is invalid and refresh failed: {e.message}", e.code,
        ) from e

    new_token = data["access_token"]
    client.access_token = new_token
    os.environ[token_var] = new_token
    expires_in = data.get("expires_in", 0)
    new_days = expires_in // 86400 if expires_in else "unknown"
    console.print(f"[green]✓ {token_var} refreshed (valid for ~{new_days} days)[/green]")

    try:
        _update_env_var(token_var, new_token, env_path)
        console.print("[green]✓ .env updated with new token[/green]")
    except OSError as e:
        console.print(
            f"[yellow]Could not update .env ({e}). New token (copy manually): "
            f"{new_token[:20]}...{new_token[-10:]}[/yellow]"
        )
    _log_token_refresh(token_var, True, f"Refreshed, valid for ~{new_days} days", log_dir)
    return {"access_token": new_token, "expires_in_days": new_days}


def describe_quota(limit: dict) -> str:
    """Format a publishing-limit entry as "posts 3/250, replies 1/1000"."""
    parts = []
    for label, usage_key, config_key in (
        ("posts", "quota_usage", "config"),
        ("replies", "reply_quota_usage", "reply_config"),
    ):
        total = (limit.get(config_key) or {}).get("quota_total", "?")
        parts.append(f"{label} {limit.get(usage_key, 0)}/{total}")
    return ", ".join(parts)


def check_token_health(accounts, client_for=ThreadsClient.for_account) -> dict:
    """
    Validate every account's token without refreshing.

    Returns ``{account_name: {"token": var, "status": ..., "username": ..., "quota": ...}}``
    where status is "valid", "expired", "missing" or "error". ``quota`` is
    the 24h publishing usage for valid tokens, None when it can't be read.
    """
    health = {}
    for account in accounts:
        token_var = account.token_var
        try:
            client = client_for(account)
        except ValueError:
            health[account.name] = {
                "token": token_var, "status": "missing", "username": None, "quota": None,
            }
            continue

        try:
            profile = client.validate_token()
        except ThreadsAPIError as e:
            health[account.name] = {
                "token": token_var,
                "status": "expired" if e.is_auth_error else "error",
                "username": None,
                "quota": None,
                "detail": e.message,
            }
            continue

        try:
            quota = describe_quota(client.get_publishing_limit())
        except ThreadsAPIError as e:
            console.print(
                f"[yellow]{account.name}: publishing quota unavailable ({e.message})[/yellow]"
            )
            quota = None
        health[account.name] = {
            "token": token_var,
            "status": "valid",
            "username": profile.get("username", profile.get("id")),
            "quota": quota,
        }
    return health
