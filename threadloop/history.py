"""
Persisted state for threadloop.

Three kinds of JSON files live under ``data/``:

    threads-history.json            business account post records
    threads-history-<account>.json  one file per stealth account
    threads-reply-history.json      buzz-reply ledger (shared)
    threads-trends.json             last trend scan snapshot (shared)

History and ledger files are read-modify-write on every mutation. Each file
carries a ``version`` counter; a writer re-reads the file just before it
writes and retries its mutation when another process bumped the version in
between. Records older than 90 days are pruned on every write.
"""

import json
import os
import tempfile
from dataclasses import dataclass, asdict, field, fields
from datetime import datetime, timedelta, timezone
from pathlib import Path

from rich.console import Console

console = Console()

PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = PROJECT_ROOT / "data"

BUSINESS_ACCOUNT = "business"
DRY_RUN_POST_ID = "dry-run"

HISTORY_RETENTION_DAYS = 90
TOPIC_COOLDOWN_DAYS = 14
CATEGORY_COOLDOWN_DAYS = 1
ENGAGEMENT_SETTLE_HOURS = 24
MAX_WRITE_ATTEMPTS = 3


class HistoryConflictError(RuntimeError):
    """Another process kept rewriting the file while we tried to save."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_date(value: str) -> datetime:
    """Parse an ISO timestamp; naive values are treated as UTC."""
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _from_dict(cls, data: dict):
    """Build a dataclass from a dict, ignoring keys it does not know."""
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in names})


@dataclass
class Engagement:
    """A point-in-time snapshot of a post's reactions."""
    views: int = 0
    likes: int = 0
    replies: int = 0
    reposts: int = 0
    quotes: int = 0

    @property
    def score(self) -> int:
        """Weighted engagement: replies > quotes > reposts > likes."""
        return (
            self.replies * 4
            + self.reposts * 2
            + self.quotes * 3
            + self.likes
        )

    @classmethod
    def from_dict(cls, data: dict | None) -> "Engagement":
        data = data or {}
        return cls(**{
            f.name: int(data.get(f.name) or 0) for f in fields(cls)
        })

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PostRecord:
    """One published (or dry-run) post or reply."""
    date: str                   # ISO datetime, UTC
    account: str
    category: str
    topic_key: str
    text: str
    post_id: str                # platform id, or "dry-run"
    char_count: int
    engagement: dict | None = None
    engagement_score: int | None = None
    engagement_updated_at: str | None = None
    replied_to: str | None = None
    keyword: str | None = None

    @property
    def posted_at(self) -> datetime:
        return parse_date(self.date)

    @property
    def is_reply(self) -> bool:
        return bool(self.replied_to)

    @property
    def has_real_post_id(self) -> bool:
        return bool(self.post_id) and self.post_id != DRY_RUN_POST_ID

    def set_engagement(self, engagement: Engagement, now: datetime | None = None):
        """Overwrite the engagement snapshot and the score derived from it."""
        self.engagement = engagement.to_dict()
        self.engagement_score = engagement.score
        self.engagement_updated_at = (now or utcnow()).isoformat()


@dataclass
class ReplyLedgerEntry:
    """A buzz reply sent from the business account to a stealth post."""
    date: str
    original_thread_id: str
    original_account: str
    reply_text: str
    reply_id: str
    buzz_level: str
    insights: dict = field(default_factory=dict)
    original_text: str = ""


class _VersionedJsonFile:
    """A JSON object ``{"version": n, "<key>": [...]}`` on disk."""

    def __init__(self, path: Path, key: str):
        self.path = path
        self.key = key

    def read(self) -> tuple[int, list[dict]]:
        if not self.path.exists():
            return 0, []
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            aside = self._move_aside()
            console.print(
                f"[yellow]{self.path.name} is not valid JSON ({e}); "
                f"moved to {aside.name} and starting fresh[/yellow]"
            )
            return 0, []
        except OSError as e:
            console.print(f"[yellow]Could not read {self.path.name}: {e}[/yellow]")
            return 0, []
        if isinstance(data, list):
            return 0, data
        return int(data.get("version", 0)), list(data.get(self.key, []))

    def _move_aside(self) -> Path:
        """Keep an unreadable file next to the original instead of overwriting it."""
        stamp = utcnow().strftime("%Y%m%dT%H%M%S%f")
        aside = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        os.replace(self.path, aside)
        return aside

    def _write(self, version: int, items: list[dict]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"version": version, self.key: items}
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def mutate(self, fn) -> list[dict]:
        """Apply ``fn(items) -> items`` and save, retrying on version conflict."""
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            version, items = self.read()
            new_items = fn(list(items))
            current_version, _ = self.read()
            if current_version != version:
                console.print(
                    f"[yellow]{self.path.name} changed during write "
                    f"(v{version} -> v{current_version}), retrying "
                    f"({attempt}/{MAX_WRITE_ATTEMPTS})[/yellow]"
                )
                continue
            self._write(version + 1, new_items)
            return new_items
        raise HistoryConflictError(
            f"{self.path.name} kept changing; gave up after {MAX_WRITE_ATTEMPTS} attempts"
        )


def _prune(items: list[dict], now: datetime) -> list[dict]:
    cutoff = now - timedelta(days=HISTORY_RETENTION_DAYS)
    kept = []
    for item in items:
        try:
            if parse_date(item["date"]) > cutoff:
                kept.append(item)
        except (KeyError, ValueError, TypeError):
            continue
    return kept


def history_path(account: str | None, data_dir: Path = DATA_DIR) -> Path:
    if account and account != BUSINESS_ACCOUNT:
        return data_dir / f"threads-history-{account}.json"
    return data_dir / "threads-history.json"


class HistoryStore:
    """Post history for a single account."""

    def __init__(self, account: str | None = None, data_dir: Path = DATA_DIR):
        self.account = account or BUSINESS_ACCOUNT
        self._file = _VersionedJsonFile(history_path(account, data_dir), "posts")

    @property
    def path(self) -> Path:
        return self._file.path

    def load(self) -> list[PostRecord]:
        _, items = self._file.read()
        records = []
        for item in items:
            try:
                records.append(_from_dict(PostRecord, item))
            except TypeError:
                continue
        return records

    def append(self, record: PostRecord, now: datetime | None = None) -> None:
        """Append a record and drop everything past the retention window."""
        now = now or utcnow()

        def _append(items):
            items.append(asdict(record))
            return _prune(items, now)

        self._file.mutate(_append)

    def update_engagement(
        self,
        post_id: str,
        engagement: Engagement,
        now: datetime | None = None,
    ) -> bool:
        """Store a fresh engagement snapshot on the record with ``post_id``.

        Returns True if a matching record was found.
        """
        now = now or utcnow()
        found = False

        def _update(items):
            nonlocal found
            found = False
            for item in items:
                if item.get("post_id") == post_id:
                    record = _from_dict(PostRecord, item)
                    record.set_engagement(engagement, now)
                    item.update(asdict(record))
                    found = True
                    break
            return items

        self._file.mutate(_update)
        return found

    # ── Cooldown checks ──────────────────────────────────────────────

    def is_category_cooling_down(
        self, category_id: str, now: datetime | None = None,
    ) -> bool:
        """True if the category was posted within the last day (trend exempt)."""
        if category_id == "trend":
            return False
        cutoff = (now or utcnow()) - timedelta(days=CATEGORY_COOLDOWN_DAYS)
        return any(
            p.category == category_id and p.posted_at > cutoff
            for p in self.load()
        )

    def cooling_topic_keys(self, now: datetime | None = None) -> set[str]:
        """Every topic key used within the topic cooldown window."""
        cutoff = (now or utcnow()) - timedelta(days=TOPIC_COOLDOWN_DAYS)
        return {p.topic_key for p in self.load() if p.posted_at > cutoff}

    def has_replied_to(self, thread_id: str) -> bool:
        return any(p.replied_to == thread_id for p in self.load())

    # ── Queries ──────────────────────────────────────────────────────

    def posts_needing_engagement(self, now: datetime | None = None) -> list[PostRecord]:
        """Real, non-reply posts older than 24h that have no snapshot yet."""
        cutoff = (now or utcnow()) - timedelta(hours=ENGAGEMENT_SETTLE_HOURS)
        return [
            p for p in self.load()
            if p.has_real_post_id
            and not p.is_reply
            and not p.engagement
            and p.posted_at < cutoff
        ]

    def recent_posts(
        self,
        hours: float,
        now: datetime | None = None,
        include_replies: bool = False,
    ) -> list[PostRecord]:
        cutoff = (now or utcnow()) - timedelta(hours=hours)
        return [
            p for p in self.load()
            if p.posted_at >= cutoff and (include_replies or not p.is_reply)
        ]


class ReplyLedger:
    """Dedup and daily-cap ledger for the buzz reply cascade."""

    def __init__(self, data_dir: Path = DATA_DIR):
        self._file = _VersionedJsonFile(
            data_dir / "threads-reply-history.json", "replies"
        )

    @property
    def path(self) -> Path:
        return self._file.path

    def load(self) -> list[ReplyLedgerEntry]:
        _, items = self._file.read()
        entries = []
        for item in items:
            try:
                entries.append(_from_dict(ReplyLedgerEntry, item))
            except TypeError:
                continue
        return entries

    def append(self, entry: ReplyLedgerEntry, now: datetime | None = None) -> None:
        now = now or utcnow()

        def _append(items):
            items.append(asdict(entry))
            return _prune(items, now)

        self._file.mutate(_append)

    def replied_thread_ids(self) -> set[str]:
        """Ids of every stealth post the business account already answered."""
        return {e.original_thread_id for e in self.load()}

    def today_count(self, now: datetime | None = None) -> int:
        """Replies sent since local midnight."""
        today = (now or utcnow()).astimezone().date()
        return sum(
            1 for e in self.load()
            if parse_date(e.date).astimezone().date() == today
        )


def trends_path(data_dir: Path = DATA_DIR) -> Path:
    return data_dir / "threads-trends.json"


def load_trends(data_dir: Path = DATA_DIR) -> dict:
    """Load the last trend scan snapshot."""
    path = trends_path(data_dir)
    if not path.exists():
        return {"scanned_at": None, "keywords": {}}
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError):
        return {"scanned_at": None, "keywords": {}}


def save_trends(trends: dict, data_dir: Path = DATA_DIR) -> None:
    path = trends_path(data_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(trends, f, indent=2, ensure_ascii=False)
