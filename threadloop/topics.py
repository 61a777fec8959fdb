"""
Topic sources for threadloop.

Topics are seeds for a single post, each with a stable ``key`` used for the
14-day topic cooldown. They are drawn from data files produced elsewhere
(the site build and data fetch jobs) plus fixed lists in config.yaml:

    city_data       {city_id: {name, tips: [{title, body}],
                               seo_sections: {overview, common_mistakes}}}
    knowledge_data  {articles: [{id, title, description, category,
                                 sections: [{heading, body}]}]}
    live_data       {areas: {area_id: {name, transactions: [{Period, Type,
                              Area, TradePrice, District}]}}}

A missing or unreadable file is not an error: the categories it feeds just
have no candidates this run and are left out of selection.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from rich.console import Console

from threadloop.history import utcnow

console = Console()

PROJECT_ROOT = Path(__file__).parent.parent

TSUBO_SQM = 3.30579  # square metres per tsubo
DEFAULT_SITE_URL = "https://example.com"


@dataclass
class Topic:
    key: str
    category: str
    payload: dict = field(default_factory=dict)


def _load_json(path: Path) -> dict:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        console.print(f"[yellow]Topic data not found: {path}[/yellow]")
    except (json.JSONDecodeError, OSError) as e:
        console.print(f"[yellow]Topic data unreadable ({path.name}): {e}[/yellow]")
    return {}


class TopicSource:
    """Enumerates every candidate topic for a category."""

    def __init__(self, config: dict, city_data: dict | None = None,
                 knowledge_data: dict | None = None, live_data: dict | None = None,
                 now: datetime | None = None):
        self.config = config
        self.city_data = city_data or {}
        self.knowledge_data = knowledge_data or {}
        self.live_data = live_data or {}
        tz = ZoneInfo(config.get("timezone", "Asia/Tokyo"))
        self.now = (now or utcnow()).astimezone(tz)

    @classmethod
    def load(cls, config: dict, base_dir: Path = PROJECT_ROOT,
             now: datetime | None = None) -> "TopicSource":
        paths = config.get("sources", {}) or {}
        return cls(
            config,
            city_data=_load_json(base_dir / paths.get("city_data", "data/city-data.json")),
            knowledge_data=_load_json(base_dir / paths.get("knowledge_data", "data/knowledge-data.json")),
            live_data=_load_json(base_dir / paths.get("live_data", "data/live-data.json")),
            now=now,
        )

    # ── Helpers ──────────────────────────────────────────────────────

    def _cities(self) -> list[tuple[str, dict]]:
        # city_data also carries non-city blocks (checklists, tooltips)
        return [
            (cid, c) for cid, c in self.city_data.items()
            if isinstance(c, dict) and c.get("name") and c.get("tips")
        ]

    def _articles(self) -> list[dict]:
        return [a for a in self.knowledge_data.get("articles", []) if a.get("id")]

    def _fixed_list(self, name: str) -> list[str]:
        return list((self.config.get("topics", {}) or {}).get(name, []) or [])

    # ── Branches ─────────────────────────────────────────────────────

    def _experience(self):
        for cid, city in self._cities():
            for i, tip in enumerate(city["tips"]):
                yield Topic(f"experience:{cid}:tip:{i}", "experience",
                            {"city": city["name"], "tip": tip})

    def _trivia(self):
        for article in self._articles():
            for i, section in enumerate(article.get("sections", [])):
                yield Topic(f"trivia:{article['id']}:section:{i}", "trivia",
                            {"title": article.get("title", ""), "section": section})

    def _data(self):
        recent_periods = self.config.get("data", {}).get("recent_periods", [])
        land_type = self.config.get("data", {}).get("land_type", "Residential Land(Land Only)")
        for area_id, area in (self.live_data.get("areas") or {}).items():
            recent = [
                t for t in area.get("transactions", [])
                if any(p in (t.get("Period") or "") for p in recent_periods)
            ]
            if not recent:
                continue
            for insight in _insights(area.get("name", area_id), recent, land_type):
                yield Topic(f"data:{area_id}:{insight['type']}", "data",
                            {"city": area.get("name", area_id), "insight": insight})

    def _article(self):
        site_url = self.config.get("site_url", DEFAULT_SITE_URL).rstrip("/")
        for article in self._articles():
            yield Topic(f"article:{article['id']}", "article", {
                "article": article,
                "url": f"{site_url}/knowledge/{article['id']}/",
            })

    def _area(self):
        for cid, city in self._cities():
            yield Topic(f"area:{cid}", "area", {
                "city": city["name"],
                "overview": (city.get("seo_sections") or {}).get("overview", ""),
            })

    def _mistake(self):
        for cid, city in self._cities():
            mistakes = (city.get("seo_sections") or {}).get("common_mistakes", "")
            if mistakes:
                yield Topic(f"mistake:{cid}", "mistake",
                            {"city": city["name"], "mistakes": mistakes})

    def _loan(self):
        articles = self._articles()
        money = [a for a in articles if a.get("category") == "money"] or articles
        for article in money:
            for i, section in enumerate(article.get("sections", [])):
                yield Topic(f"loan:{article['id']}:section:{i}", "loan",
                            {"title": article.get("title", ""), "section": section})

    def _seasonal(self):
        table = self.config.get("seasonal_topics", {}) or {}
        month = self.now.month
        topics = table.get(month) or table.get(str(month)) or []
        for i, text in enumerate(topics):
            yield Topic(f"seasonal:{month}:{i}", "seasonal", {"text": text})

    def _fixed(self, category_id: str):
        for i, text in enumerate(self._fixed_list(category_id)):
            yield Topic(f"{category_id}:{i}", category_id, {"text": text})

    def candidates(self, category_id: str) -> list[Topic]:
        """All topics for a category; empty if its data is unavailable."""
        branches = {
            "experience": self._experience,
            "trivia": self._trivia,
            "data": self._data,
            "article": self._article,
            "area": self._area,
            "mistake": self._mistake,
            "loan": self._loan,
            "seasonal": self._seasonal,
        }
        if category_id in branches:
            return list(branches[category_id]())
        if category_id in ("relatable", "dispute", "regret"):
            return list(self._fixed(category_id))
        return []

    def available_categories(self, categories: list) -> list:
        """Drop categories with nothing to post about; trend is gated elsewhere."""
        kept = []
        for cat in categories:
            if cat.id == "trend" or self.candidates(cat.id):
                kept.append(cat)
            else:
                console.print(f"[dim]No topics available for '{cat.id}', skipping it.[/dim]")
        return kept


def _insights(area_name: str, recent: list[dict], land_type: str) -> list[dict]:
    """Statistical one-liners about recent land transactions in an area."""
    insights = []

    land = [t for t in recent if t.get("Type") == land_type and (t.get("Area") or 0) > 0]
    if land:
        avg_per_tsubo = sum(
            t["TradePrice"] / (t["Area"] / TSUBO_SQM) for t in land
        ) / len(land)
        insights.append({
            "type": "avg_price",
            "text": (
                f"Average land price in {area_name} across {len(land)} recent "
                f"sales: about ¥{avg_per_tsubo / 10000:.1f} man per tsubo"
            ),
        })

    priced = [t["TradePrice"] for t in recent if (t.get("TradePrice") or 0) > 0]
    if priced:
        insights.append({
            "type": "price_range",
            "text": (
                f"Recent sales in {area_name} ({len(priced)} deals) ranged from "
                f"¥{min(priced) / 10000:.0f} man to ¥{max(priced) / 10000:.0f} man"
            ),
        })

    districts: dict[str, int] = {}
    for t in recent:
        if t.get("District"):
            districts[t["District"]] = districts.get(t["District"], 0) + 1
    if districts:
        top = sorted(districts.items(), key=lambda kv: kv[1], reverse=True)[:3]
        insights.append({
            "type": "popular_district",
            "text": (
                f"Busiest districts in {area_name} lately: "
                + ", ".join(f"{d} ({c} sales)" for d, c in top)
            ),
        })

    if not insights:
        insights.append({
            "type": "count",
            "text": f"{area_name} had {len(recent)} recorded sales recently",
        })
    return insights
