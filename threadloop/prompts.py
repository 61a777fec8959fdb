"""
Prompt building for threadloop.

Each category has one branch that turns a Topic into the user prompt sent
to the generator. A branch walks its candidates in random order and takes
the first whose key has not been posted in the last 14 days. When every
candidate is cooling down the builder moves down the category's FALLBACKS
list, passing over fallbacks posted within the last day. Each category
is tried at most once per build. If the whole chain is exhausted there
is nothing fresh to say and ``build`` returns None.

Extra context appended to every prompt:
    - persona length hint (stealth accounts)
    - the account's posts from the last 7 days, so it doesn't repeat itself
    - the best-performing posts in the chosen category, as a style hint
"""

import random
from dataclasses import dataclass
from datetime import datetime

from rich.console import Console

from threadloop.accounts import Account, Category
from threadloop.history import utcnow
from threadloop.learning import analyze_category_performance
from threadloop.topics import Topic, TopicSource
from threadloop.trends import TrendResult, build_trend_prompt

console = Console()

RECENT_CONTEXT_DAYS = 7
RECENT_CONTEXT_MAX = 20
STAR_SCORE = 30
HINT_MIN_SCORE = 5
HINT_EXAMPLES = 2

FALLBACKS = {
    "trend": ["relatable", "trivia"],
    "experience": ["trivia", "regret"],
    "trivia": ["experience", "relatable"],
    "data": ["trivia", "area"],
    "article": ["trivia"],
    "area": ["experience", "mistake"],
    "mistake": ["experience", "regret"],
    "loan": ["trivia", "regret"],
    "seasonal": ["relatable", "trivia"],
    "relatable": ["dispute", "regret"],
    "dispute": ["relatable", "regret"],
    "regret": ["mistake", "relatable"],
}

LENGTH_HINTS = {
    "short": "Keep it very short: one or two lines, under 60 characters.",
    "medium": "Keep it to about 60-140 characters.",
    "long": "You can go a little longer this time, around 140-300 characters.",
}


@dataclass
class PromptRequest:
    category: str
    topic_key: str
    user_prompt: str
    allow_urls: bool = False


def _first_line(text: str, limit: int = 60) -> str:
    return (text or "").split("\n")[0][:limit]


class PromptBuilder:
    """Builds the generation prompt for one account's run."""

    def __init__(
        self,
        source: TopicSource,
        store,
        account: Account | None = None,
        rng: random.Random | None = None,
        now: datetime | None = None,
    ):
        self.source = source
        self.store = store
        self.account = account
        self.rng = rng or random.Random()
        self.now = now or utcnow()
        self._cooling: set[str] | None = None

    @property
    def cooling_keys(self) -> set[str]:
        if self._cooling is None:
            self._cooling = self.store.cooling_topic_keys(now=self.now)
        return self._cooling

    def _pick(self, candidates: list[Topic]) -> Topic | None:
        shuffled = list(candidates)
        self.rng.shuffle(shuffled)
        return next((t for t in shuffled if t.key not in self.cooling_keys), None)

    def build(
        self,
        category: Category,
        trend_result: TrendResult | None = None,
    ) -> PromptRequest | None:
        """
        Build the prompt for ``category``, falling back when its topics are spent.

        Returns:
            PromptRequest, or None when no category in the chain has a fresh
            topic.
        """
        chain = [category.id] + FALLBACKS.get(category.id, [])
        tried: set[str] = set()
        for category_id in chain:
            if category_id in tried:
                continue
            tried.add(category_id)
            if category_id != category.id and self.store.is_category_cooling_down(
                category_id, now=self.now
            ):
                console.print(f"[dim]Fallback '{category_id}' posted within the last day; skipping.[/dim]")
                continue

            request = self._build_branch(category_id, trend_result)
            if request:
                if category_id != category.id:
                    console.print(
                        f"[dim]'{category.id}' topics are all cooling down; "
                        f"using '{category_id}' instead.[/dim]"
                    )
                request.user_prompt += self._extra_context(request.category)
                return request

        console.print(
            f"[yellow]No fresh topic for '{category.id}' or its fallbacks "
            f"({', '.join(chain[1:]) or 'none'}).[/yellow]"
        )
        return None

    # ── Branches ─────────────────────────────────────────────────────

    def _build_branch(self, category_id: str, trend_result: TrendResult | None) -> PromptRequest | None:
        if category_id == "trend":
            return self._trend(trend_result)

        topic = self._pick(self.source.candidates(category_id))
        if topic is None:
            return None

        p = topic.payload
        if category_id == "experience":
            tip = p.get("tip") or {}
            prompt = (
                "Using the information below, write a Threads post that reads like "
                "your own experience, as if you actually built a house in that area.\n\n"
                f"Information: {p['city']}, {tip.get('title') or 'local housing'} - "
                f"{tip.get('body') or 'what it was like building here'}\n\n"
                f"Mention \"{p['city']}\" in the post."
            )
        elif category_id in ("trivia", "loan"):
            section = p.get("section") or {}
            body = (section.get("body") or "")[:300]
            if category_id == "trivia":
                prompt = (
                    "Turn the information below into a \"wait, I never knew that\" "
                    "tidbit post. Share it like telling a friend something that "
                    "surprised you.\n\n"
                    f"Information: {section.get('heading') or p.get('title') or 'housing tidbit'} - {body}\n\n"
                    "Openers like \"Did you know...\" or \"Honestly had no idea\" work well."
                )
            else:
                prompt = (
                    "Using the home cost and mortgage information below, write a post "
                    "about it as your own experience.\n\n"
                    f"Information: {section.get('heading') or 'mortgage and budgeting'} - {body}\n\n"
                    "Angles like \"here's how our mortgage turned out\" or \"how we "
                    "thought about the budget\". Work in concrete amounts so it feels real."
                )
        elif category_id == "data":
            prompt = (
                "Using the real transaction data below, write a Threads post that "
                "makes people go \"huh, really?\"\n\n"
                f"Data: {p['insight']['text']}\n\n"
                "Weave the numbers into the conversation naturally. A light mention "
                "that it comes from public land transaction records is fine. Angles "
                "like \"I looked it up and...\" or \"someone told me...\"."
            )
        elif category_id == "article":
            article = p["article"]
            prompt = (
                "Write a post recommending the article below the way you'd tell a "
                "friend \"you should read this\".\n\n"
                f"Title: {article.get('title', '')}\n"
                f"Summary: {article.get('description', '')}\n"
                f"URL: {p['url']}\n\n"
                "Put the URL naturally in the second half. Nothing corporate like "
                "\"learn more here\"; keep it as casual as \"wrote this up, take a look\"."
            )
        elif category_id == "area":
            prompt = (
                "Using the area information below, write a Threads post that makes "
                "people think \"this area might be a hidden gem\".\n\n"
                f"Area: {p['city']}\n"
                f"Overview: {(p.get('overview') or '')[:300]}\n\n"
                "Write from the point of view of someone who lives there, with a "
                "concrete episode."
            )
        elif category_id == "mistake":
            prompt = (
                "Pick one of the mistakes below and write a post about it as if it "
                "happened to you.\n\n"
                f"Area: {p['city']}\n"
                f"Common mistakes: {p['mistakes'][:400]}\n\n"
                "Angles like \"wish I'd done this differently\" or \"I really regret "
                "this one\". End with a natural heads-up for readers."
            )
        elif category_id == "seasonal":
            prompt = (
                "Write a Threads post on the theme below.\n\n"
                f"Theme: {p['text']}\n\n"
                "Make it a housing story that fits this time of year, with your own "
                "experience mixed in."
            )
        elif category_id == "relatable":
            prompt = (
                "Write a \"so true\" Threads post about this home-building moment.\n\n"
                f"Theme: {p['text']}\n\n"
                "Something anyone who has built a house would nod along to."
            )
        elif category_id == "dispute":
            prompt = (
                "Write a Threads post about a disagreement that came up while "
                "building a house.\n\n"
                f"Theme: {p['text']}\n\n"
                "Tell it as your own story. Light and honest, not bitter."
            )
        elif category_id == "regret":
            prompt = (
                "Write a Threads post about a regret after building a house.\n\n"
                f"Theme: {p['text']}\n\n"
                "Tell it as something you'd do differently, in your own words."
            )
        else:
            console.print(f"[yellow]No prompt branch for category '{category_id}'[/yellow]")
            return None

        return PromptRequest(
            category=category_id,
            topic_key=topic.key,
            user_prompt=prompt,
            allow_urls=category_id == "article",
        )

    def _trend(self, trend_result: TrendResult | None) -> PromptRequest | None:
        if not trend_result or not trend_result.trending:
            return None
        for trend in trend_result.trending:
            prompt, topic_key = build_trend_prompt(trend, now=self.now)
            if topic_key not in self.cooling_keys:
                return PromptRequest(category="trend", topic_key=topic_key, user_prompt=prompt)
        return None

    # ── Context ──────────────────────────────────────────────────────

    def _extra_context(self, category_id: str) -> str:
        return (
            self.length_hint()
            + self.recent_posts_context()
            + self.performance_hint(category_id)
        )

    def length_hint(self) -> str:
        """Persona length bucket for stealth accounts; empty otherwise."""
        if not self.account or not self.account.persona:
            return ""
        dist = {
            k: v for k, v in self.account.persona.length_distribution.items()
            if k in LENGTH_HINTS and v > 0
        }
        if not dist:
            return ""
        bucket = self.rng.choices(list(dist), weights=list(dist.values()))[0]
        return f"\n\n[Length] {LENGTH_HINTS[bucket]}"

    def recent_posts_context(self) -> str:
        posts = self.store.recent_posts(RECENT_CONTEXT_DAYS * 24, now=self.now)
        posts = sorted(posts, key=lambda p: p.posted_at, reverse=True)[:RECENT_CONTEXT_MAX]
        if not posts:
            return ""

        lines = []
        for post in posts:
            d = post.posted_at.astimezone()
            score = post.engagement_score or 0
            star = f" ★ did well (score {score})" if score >= STAR_SCORE else ""
            lines.append(f"[{d.month}/{d.day} {post.category}] {_first_line(post.text)}{star}")

        return (
            "\n\n[Recent posts] Don't repeat these or contradict them. Posts marked "
            "★ went over well, so it's fine to refer back to them.\n"
            + "\n".join(lines)
        )

    def performance_hint(self, category_id: str) -> str:
        perf = analyze_category_performance(self.store.load(), now=self.now).get(category_id)
        if not perf:
            return ""
        good = [p for p in perf.top_posts if (p.engagement_score or 0) >= HINT_MIN_SCORE]
        if not good:
            return ""

        examples = "\n".join(
            f'"{_first_line(p.text)}" (score {p.engagement_score})'
            for p in good[:HINT_EXAMPLES]
        )
        avg_chars = sum(p.char_count for p in good) / len(good)
        if avg_chars < 50:
            length = "Short posts"
        elif avg_chars < 120:
            length = "Medium-length posts"
        else:
            length = "Slightly longer posts"
        return (
            "\n\n[What worked] Posts in this category that got a good response:\n"
            f"{examples}\n"
            f"{length} tend to do well. Use a similar structure and tone."
        )
