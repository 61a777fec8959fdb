"""Topic enumeration from data files and config lists."""
import json

import pytest

from conftest import NOW
from threadloop.accounts import load_categories
from threadloop.topics import TopicSource

LIVE_DATA = {
    "areas": {
        "tsu": {
            "name": "Tsu",
            "transactions": [
                {
                    "Period": "2025 Q4",
                    "Type": "Residential Land(Land Only)",
                    "Area": 330.579,
                    "TradePrice": 10000000,
                    "District": "Shimmachi",
                },
                {"Period": "2019 Q1", "Type": "Other", "TradePrice": 1, "District": "Old"},
            ],
        },
        "ise": {"name": "Ise", "transactions": [{"Period": "2018 Q2", "TradePrice": 5}]},
    },
}


@pytest.fixture
def source(config, city_data, knowledge_data):
    config["data"] = {"recent_periods": ["2025", "2026"]}
    return TopicSource(config, city_data, knowledge_data, LIVE_DATA, now=NOW)


def _keys(source, category):
    return [t.key for t in source.candidates(category)]


class TestCandidates:
    def test_experience_skips_non_city_blocks(self, source):
        assert _keys(source, "experience") == ["experience:tsu:tip:0", "experience:tsu:tip:1"]
        assert source.candidates("experience")[0].payload["city"] == "Tsu"

    def test_article_sections_and_loans(self, source):
        assert _keys(source, "trivia") == ["trivia:mortgage-basics:section:0"]
        assert _keys(source, "loan") == ["loan:mortgage-basics:section:0"]

    def test_article_url(self, source):
        topic = source.candidates("article")[0]
        assert topic.key == "article:mortgage-basics"
        assert topic.payload["url"] == "https://example.com/knowledge/mortgage-basics/"

    def test_area_and_mistake(self, source):
        assert _keys(source, "area") == ["area:tsu"]
        assert source.candidates("mistake")[0].payload["mistakes"] == "Ignoring drainage."

    def test_data_insights_only_recent(self, source):
        assert _keys(source, "data") == [
            "data:tsu:avg_price", "data:tsu:price_range", "data:tsu:popular_district",
        ]
        avg = source.candidates("data")[0].payload["insight"]["text"]
        assert "¥10.0 man per tsubo" in avg

    def test_seasonal_uses_current_month(self, source):
        assert _keys(source, "seasonal") == ["seasonal:3:0"]

    def test_fixed_lists(self, source):
        assert _keys(source, "relatable") == ["relatable:0"]
        assert _keys(source, "dispute") == []
        assert _keys(source, "unknown") == []


class TestAvailability:
    def test_empty_data_drops_categories(self, config):
        source = TopicSource(config, now=NOW)
        kept = source.available_categories(load_categories(config))
        assert [c.id for c in kept] == ["trend", "relatable", "regret"]

    def test_load_tolerates_missing_and_broken_files(self, config, tmp_path):
        (tmp_path / "data").mkdir()
        (tmp_path / "data" / "city-data.json").write_text("{not json")
        source = TopicSource.load(config, base_dir=tmp_path, now=NOW)
        assert source.city_data == {}
        assert source.knowledge_data == {}

    def test_load_reads_configured_paths(self, config, tmp_path, city_data):
        (tmp_path / "cities.json").write_text(json.dumps(city_data))
        config["sources"] = {"city_data": "cities.json"}
        source = TopicSource.load(config, base_dir=tmp_path, now=NOW)
        assert _keys(source, "area") == ["area:tsu"]
