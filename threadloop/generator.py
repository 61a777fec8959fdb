"""
Post and reply generation for threadloop.

Wraps the Anthropic Messages API and the house style pipeline
(threadloop.style). Each attempt sends the prompt once, normalizes the
text, and runs every check. Failed attempts re-send the same prompt with a
progressively blunter correction appended:

    attempt 2  "shorten it, drop the jargon"
    attempt 3  "two sentences, no jargon at all"

After three failed attempts a business-account post is truncated to the
length limit and shipped anyway. A stealth-account post returns None and
the caller abandons the run: a stealth post that still sounds like a
business must never go out.
"""

import os
import random
import time
from dataclasses import dataclass, field

import anthropic
from dotenv import load_dotenv
from rich.console import Console

from threadloop.style import (
    StyleRules, apply_transforms, build_checks, build_transforms, run_checks,
    truncate_to_limit,
)

load_dotenv()
console = Console()

DEFAULT_MODEL = "claude-haiku-4-5-20251001"
MAX_ATTEMPTS = 3
API_RETRIES = 3

CORRECTIONS = {
    2: (
        "\n\n[Retry] The last draft didn't work. Make it shorter and say just "
        "one thing. Drop the jargon and use words anyone would use. "
        "No hashtags."
    ),
    3: (
        "\n\n[Final retry] Two sentences, that's it. Casual is fine. "
        "No jargon at all, no hashtags."
    ),
}


@dataclass
class GenerationOptions:
    """Per-call knobs for :meth:`ContentGenerator.generate`."""
    max_length: int = 500
    stealth: bool = False
    allow_urls: bool = True
    extra_blocklist: list[str] = field(default_factory=list)
    system_prompt: str | None = None


class ContentGenerator:
    """Generate text that passes the house style, or give up cleanly."""

    def __init__(
        self,
        rules: StyleRules,
        system_prompt: str = "",
        reply_system_prompt: str = "",
        model: str = DEFAULT_MODEL,
        client=None,
        rng: random.Random | None = None,
        max_tokens: int = 1024,
    ):
        self.rules = rules
        self.system_prompt = system_prompt
        self.reply_system_prompt = reply_system_prompt or system_prompt
        self.model = model
        self.max_tokens = max_tokens
        self.rng = rng or random.Random()
        self._client = client

    @classmethod
    def from_config(cls, config: dict, **kwargs) -> "ContentGenerator":
        gen_cfg = config.get("generation", {}) or {}
        return cls(
            rules=StyleRules.from_config(config),
            system_prompt=gen_cfg.get("system_prompt", ""),
            reply_system_prompt=gen_cfg.get("reply_system_prompt", ""),
            model=gen_cfg.get("model", DEFAULT_MODEL),
            max_tokens=gen_cfg.get("max_tokens", 1024),
            **kwargs,
        )

    @property
    def client(self):
        if self._client is None:
            api_key = os.getenv("ANTHROPIC_API_KEY")
            if not api_key:
                raise RuntimeError("ANTHROPIC_API_KEY is not set")
            self._client = anthropic.Anthropic(api_key=api_key)
        return self._client

    def _call(self, system_prompt: str, user_prompt: str) -> str:
        """One generation request, retrying API failures with backoff."""
        for attempt in range(1, API_RETRIES + 1):
            try:
                response = self.client.messages.create(
                    model=self.model,
                    max_tokens=self.max_tokens,
                    system=system_prompt,
                    messages=[{"role": "user", "content": user_prompt}],
                )
                return response.content[0].text if response.content else ""
            except anthropic.APIError as e:
                console.print(
                    f"[yellow]Claude API failed ({attempt}/{API_RETRIES}): {e}[/yellow]"
                )
                if attempt == API_RETRIES:
                    raise
                time.sleep(2 ** attempt)
        return ""

    def generate(self, prompt: str, options: GenerationOptions | None = None) -> str | None:
        """
        Generate text for ``prompt`` that satisfies the style rules.

        Returns:
            The compliant text; the truncated last draft for a non-stealth
            call that never complied; or None for a stealth call that never
            complied.
        """
        options = options or GenerationOptions()
        system_prompt = options.system_prompt or self.system_prompt
        transforms = build_transforms(self.rules, self.rng)
        checks = build_checks(
            self.rules,
            max_length=options.max_length,
            stealth=options.stealth,
            extra_blocklist=options.extra_blocklist,
            allow_urls=options.allow_urls,
        )

        text = ""
        for attempt in range(1, MAX_ATTEMPTS + 1):
            attempt_prompt = prompt + CORRECTIONS.get(attempt, "")
            raw = self._call(system_prompt, attempt_prompt).strip()
            text = apply_transforms(raw, transforms)
            violations = run_checks(text, checks)
            if not violations:
                return text

            console.print(
                f"[yellow]Style check failed ({attempt}/{MAX_ATTEMPTS}): "
                f"{', '.join(str(v) for v in violations)}[/yellow]"
            )

        if options.stealth:
            console.print(
                "[yellow]Stealth text never passed the style checks; "
                "abandoning this post.[/yellow]"
            )
            return None

        console.print("[yellow]Retries exhausted; truncating last draft to fit.[/yellow]")
        return truncate_to_limit(text, options.max_length)

    def generate_reply(self, original_text: str, context: str = "") -> str | None:
        """Short reply to another post: reply length limit, no URLs."""
        prompt = (
            "Reply to the Threads post below. One or two short sentences. "
            "Share just one thing from your own experience.\n\n"
            f'Post: "{original_text}"'
        )
        if context:
            prompt += f"\n\nBackground: {context}"
        return self.generate(prompt, GenerationOptions(
            max_length=self.rules.reply_max_length,
            allow_urls=False,
            system_prompt=self.reply_system_prompt,
        ))
