"""
Threads Client for threadloop
=============================

Talks to Meta Threads via the Threads Graph API (HTTP).

Publishing is a two-phase flow:
    1. Create a media container (POST /{user_id}/threads), optionally with
       reply_to_id when answering another post
    2. Poll container status (GET /{container_id}?fields=status) until FINISHED
    3. Publish the container (POST /{user_id}/threads_publish)

The client tracks the publish state machine on ``self.state``:

    CREATING -> POLLING -> FINISHED -> PUBLISHING -> DONE
                                      (any step) -> ERROR

Read endpoints used by the rest of the package: own recent threads, replies
to a thread, per-post insights, keyword search, publishing quota, and the
token check/refresh pair.

Transient failures (connection errors, timeouts, HTTP 429 and 5xx) are
retried with exponential backoff. Everything else raises ThreadsAPIError.
"""

import enum
import time
from dataclasses import dataclass

import requests
from dotenv import load_dotenv
from rich.console import Console

from threadloop.history import Engagement

load_dotenv()
console = Console()

BASE_URL = "https://graph.threads.net/v1.0"
REFRESH_URL = "https://graph.threads.net/refresh_access_token"
MAX_TEXT_LENGTH = 500
PUBLISH_POLL_INTERVAL = 2  # seconds between status checks
PUBLISH_MAX_POLLS = 10
TRANSIENT_RETRIES = 3
REQUEST_TIMEOUT = 15
AUTH_ERROR_CODE = 190  # Graph API "invalid OAuth access token"


class ThreadsAPIError(RuntimeError):
    """A non-transient error returned by the Threads API."""

    def __init__(self, status: int | None, message: str, code: int | None = None):
        self.status = status
        self.message = message
        self.code = code
        super().__init__(f"Threads API {status}: {message}")

    @classmethod
    def from_response(cls, response: requests.Response) -> "ThreadsAPIError":
        message = response.text[:200]
        code = None
        try:
            error = response.json().get("error", {})
            message = error.get("message", message)
            code = error.get("code")
        except ValueError:
            pass
        return cls(response.status_code, message, code)

    @property
    def is_auth_error(self) -> bool:
        return self.status == 401 or self.code == AUTH_ERROR_CODE

    @property
    def is_not_found(self) -> bool:
        return self.status == 404 or "does not exist" in (self.message or "")


class AuthenticationError(ThreadsAPIError):
    """Access token is invalid and could not be refreshed."""


class ContainerError(ThreadsAPIError):
    """The platform reported the media container as ERROR."""


class ContainerTimeoutError(TimeoutError):
    """The media container never became ready within the poll budget."""


class PublishState(enum.Enum):
    CREATING = "creating"
    POLLING = "polling"
    FINISHED = "finished"
    PUBLISHING = "publishing"
    DONE = "done"
    ERROR = "error"


@dataclass
class PublishResult:
    post_id: str
    container_id: str


class ThreadsClient:
    """Client for one Threads account."""

    def __init__(
        self,
        access_token: str,
        user_id: str,
        session: requests.Session | None = None,
        poll_interval: float = PUBLISH_POLL_INTERVAL,
        max_polls: int = PUBLISH_MAX_POLLS,
    ):
        self.access_token = access_token
        self.user_id = user_id
        self.session = session or requests.Session()
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.state: PublishState | None = None
        self.transitions: list[PublishState] = []

    @classmethod
    def for_account(cls, account, **kwargs) -> "ThreadsClient":
        """Build a client from an Account's .env credentials."""
        token, user_id = account.credentials()
        return cls(token, user_id, **kwargs)

    # ── HTTP ─────────────────────────────────────────────────────────

    def _request(self, method: str, url: str, params: dict | None = None,
                 data: dict | None = None) -> dict:
        """Send a request, retrying transient failures with backoff."""
        if not url.startswith("http"):
            url = f"{BASE_URL}/{url.lstrip('/')}"
        if method == "GET":
            params = {**(params or {}), "access_token": self.access_token}
        else:
            data = {**(data or {}), "access_token": self.access_token}

        for attempt in range(1, TRANSIENT_RETRIES + 1):
            try:
                response = self.session.request(
                    method, url, params=params, data=data, timeout=REQUEST_TIMEOUT,
                )
            except (requests.ConnectionError, requests.Timeout) as e:
                if attempt == TRANSIENT_RETRIES:
                    raise ThreadsAPIError(None, f"network error: {e}") from e
                self._backoff(attempt, str(e))
                continue

            if response.status_code == 429 or response.status_code >= 500:
                if attempt < TRANSIENT_RETRIES:
                    self._backoff(attempt, f"HTTP {response.status_code}")
                    continue

            if not response.ok:
                raise ThreadsAPIError.from_response(response)
            return response.json()

        raise ThreadsAPIError(None, "retries exhausted")

    @staticmethod
    def _backoff(attempt: int, reason: str):
        delay = 2 ** attempt
        console.print(
            f"[yellow]Threads API transient failure ({reason}), "
            f"retry {attempt}/{TRANSIENT_RETRIES - 1} in {delay}s[/yellow]"
        )
        time.sleep(delay)

    # ── Publishing ───────────────────────────────────────────────────

    def _enter(self, state: PublishState):
        self.state = state
        self.transitions.append(state)

    def _create_container(self, text: str, reply_to_id: str | None = None) -> str:
        payload = {"media_type": "TEXT", "text": text}
        if reply_to_id:
            payload["reply_to_id"] = reply_to_id
        data = self._request("POST", f"{self.user_id}/threads", data=payload)
        container_id = data["id"]
        console.print(f"[dim]Threads container created: {container_id}[/dim]")
        return container_id

    def _wait_for_container(self, container_id: str) -> str:
        """
        Poll the container status until it is FINISHED.

        Containers that are not visible yet come back as 404 ("The requested
        resource does not exist"); those polls count against the budget but
        are not fatal.

        Raises:
            ContainerError: If the container enters an ERROR state.
            ContainerTimeoutError: If it is not ready after max_polls checks.
        """
        for i in range(1, self.max_polls + 1):
            time.sleep(self.poll_interval)
            try:
                data = self._request(
                    "GET", container_id, params={"fields": "status,error_message"},
                )
            except ThreadsAPIError as e:
                if e.is_not_found:
                    console.print(
                        f"[dim]Container not visible yet ({i}/{self.max_polls})[/dim]"
                    )
                    continue
                raise

            status = data.get("status")
            if status == "FINISHED":
                console.print(f"[dim]Container {container_id} ready.[/dim]")
                return status
            if status == "ERROR":
                raise ContainerError(
                    None,
                    f"container {container_id} failed: "
                    f"{data.get('error_message') or 'unknown error'}",
                )
            console.print(
                f"[dim]Container status: {status or 'unknown'} ({i}/{self.max_polls})[/dim]"
            )

        raise ContainerTimeoutError(
            f"Threads container {container_id} never became ready after "
            f"{self.max_polls} checks"
        )

    def _publish_container(self, container_id: str) -> str:
        data = self._request(
            "POST", f"{self.user_id}/threads_publish",
            data={"creation_id": container_id},
        )
        return data["id"]

    def publish_text(self, text: str, reply_to_id: str | None = None) -> PublishResult:
        """
        Publish a text post, or a reply when ``reply_to_id`` is given.

        Returns:
            PublishResult with the final post id.

        Raises:
            ThreadsAPIError, ContainerError, ContainerTimeoutError. The state
            is left at ERROR and nothing was published.
        """
        if len(text) > MAX_TEXT_LENGTH:
            console.print(
                f"[bold yellow]Warning: Threads posts are limited to "
                f"{MAX_TEXT_LENGTH} characters. Text will be truncated.[/bold yellow]"
            )
            text = text[:MAX_TEXT_LENGTH]

        self.transitions = []
        try:
            self._enter(PublishState.CREATING)
            container_id = self._create_container(text, reply_to_id)
            self._enter(PublishState.POLLING)
            self._wait_for_container(container_id)
            self._enter(PublishState.FINISHED)
            self._enter(PublishState.PUBLISHING)
            post_id = self._publish_container(container_id)
        except Exception as e:
            self._enter(PublishState.ERROR)
            console.print(f"[bold red]Failed to publish to Threads: {e}[/bold red]")
            raise

        self._enter(PublishState.DONE)
        console.print(f"[bold green]Published to Threads:[/bold green] {post_id}")
        return PublishResult(post_id=post_id, container_id=container_id)

    def publish_reply(self, reply_to_id: str, text: str) -> PublishResult:
        return self.publish_text(text, reply_to_id=reply_to_id)

    # ── Reading ──────────────────────────────────────────────────────

    def get_my_threads(self, limit: int = 25) -> list[dict]:
        data = self._request(
            "GET", "me/threads",
            params={"fields": "id,text,timestamp,permalink", "limit": limit},
        )
        return data.get("data", [])

    def get_replies(self, thread_id: str) -> list[dict]:
        data = self._request(
            "GET", f"{thread_id}/replies",
            params={"fields": "id,text,username,timestamp"},
        )
        return data.get("data", [])

    def get_insights(self, media_id: str) -> Engagement:
        """
        Fetch engagement metrics for a post.

        Parses ``{"data": [{"name": "likes", "values": [{"value": N}]}, ...]}``.
        """
        data = self._request(
            "GET", f"{media_id}/insights",
            params={"metric": "views,likes,replies,reposts,quotes"},
        )
        metrics = {}
        for entry in data.get("data", []):
            values = entry.get("values") or [{}]
            metrics[entry.get("name", "")] = values[0].get("value", 0)
        return Engagement.from_dict(metrics)

    def keyword_search(
        self,
        query: str,
        since: str | None = None,
        until: str | None = None,
        limit: int | None = None,
    ) -> list[dict]:
        params = {"q": query, "fields": "id,text,username,timestamp,permalink"}
        if since:
            params["since"] = since
        if until:
            params["until"] = until
        if limit:
            params["limit"] = limit
        data = self._request("GET", "keyword_search", params=params)
        return data.get("data", [])

    def get_publishing_limit(self) -> dict:
        """Usage and allowance for the rolling 24h publishing window."""
        data = self._request(
            "GET", "me/threads_publishing_limit",
            params={"fields": "quota_usage,reply_quota_usage,config,reply_config"},
        )
        return (data.get("data") or [{}])[0]

    # ── Token ────────────────────────────────────────────────────────

    def validate_token(self) -> dict:
        """Fetch the profile; raises ThreadsAPIError if the token is bad."""
        return self._request("GET", "me", params={"fields": "id,username"})

    def refresh_token(self) -> dict:
        """Exchange the current long-lived token for a fresh ~60 day one."""
        data = self._request(
            "GET", REFRESH_URL, params={"grant_type": "th_refresh_token"},
        )
        if "access_token" not in data:
            raise ThreadsAPIError(None, f"token refresh failed: {data}")
        return data
