import json
import tempfile
import unittest
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

from marketdigest.config import ConfigError, FeedSource, Rules, RunConfig
from marketdigest.event_ids import make_event_id
from marketdigest.events import NEWS_DISCLAIMER, NEWS_FORBIDDEN_FIELDS
from marketdigest.feed_fetch import FetchError
from marketdigest.pipeline import collect_source, run_event_pipeline

NOW = datetime(2026, 10, 18, 0, 0, 0, tzinfo=UTC)

OFFICIAL_RSS = """\
<rss version="2.0"><channel>
  <item>
    <title>아프리카돼지열병(ASF) 추가 확진, 긴급 방역</title>
    <link>https://gov.example/1</link>
    <pubDate>Fri, 16 Oct 2026 09:00:00 +0900</pubDate>
  </item>
  <item>
    <title>한우 경매가 소폭 상승</title>
    <link>https://gov.example/2</link>
    <pubDate>Thu, 15 Oct 2026 09:00:00 +0900</pubDate>
  </item>
  <item>
    <title>축산물 수급 동향</title>
    <link>https://gov.example/3</link>
    <pubDate>Wed, 14 Oct 2026 09:00:00 +0900</pubDate>
  </item>
</channel></rss>
"""

NEWS_ATOM = """\
<feed xmlns="http://www.w3.org/2005/Atom">
  <entry>
    <title>계란값 상승 우려</title>
    <link href="https://news.example/a"/>
    <updated>2026-10-17T01:00:00Z</updated>
    <summary>기사 요약은 저장하지 않는다</summary>
  </entry>
</feed>
"""

SOURCES = {
    "rules": {"max_items_per_feed": 30, "days_keep": 45, "default_news_severity": "LOW"},
    "official_rss": [
        {"id": "gov_ok", "name": "Gov OK", "url": "https://gov.example/rss", "category": "방역", "severity_default": "MID"},
        {"id": "gov_down", "name": "Gov Down", "url": "https://down.example/rss", "category": "방역"},
    ],
    "news_rss": [
        {"id": "news", "name": "News", "url": "https://news.example/atom", "tags": ["가격"]},
    ],
}


def _write_sources(root: Path, data: dict | None = None) -> RunConfig:
    cfg = RunConfig.for_home(root)
    cfg.sources_path.parent.mkdir(parents=True, exist_ok=True)
    cfg.sources_path.write_text(json.dumps(data or SOURCES, ensure_ascii=False), encoding="utf-8")
    return cfg


def _fake_fetch(url: str) -> str:
    if url == "https://gov.example/rss":
        return OFFICIAL_RSS
    if url == "https://news.example/atom":
        return NEWS_ATOM
    raise FetchError(f"Fetch failed 500: {url}", url=url, status_code=500)


def _read(p: Path) -> dict:
    return json.loads(p.read_text(encoding="utf-8"))


class TestCollectSource(unittest.TestCase):
    def test_fetch_error_becomes_status(self) -> None:
        feed = FeedSource(id="down", name="Down", url="https://down.example/rss")
        out = collect_source(feed, "OFFICIAL", fetch=_fake_fetch, rules=Rules(), now=NOW)
        self.assertFalse(out.status.ok)
        self.assertEqual(out.status.count, 0)
        self.assertIn("500", out.status.error or "")
        self.assertEqual(out.events, [])

    def test_unexpected_error_becomes_status(self) -> None:
        def boom(url: str) -> str:
            raise ValueError("bad payload")

        feed = FeedSource(id="x", name="X", url="https://x")
        out = collect_source(feed, "NEWS", fetch=boom, rules=Rules(), now=NOW)
        self.assertFalse(out.status.ok)
        self.assertEqual(out.status.error, "bad payload")

    def test_unrecognised_feed_is_ok_with_zero_items(self) -> None:
        feed = FeedSource(id="html", name="HTML", url="https://x")
        out = collect_source(feed, "NEWS", fetch=lambda url: "<html><body>hi</body></html>", rules=Rules(), now=NOW)
        self.assertTrue(out.status.ok)
        self.assertEqual(out.status.count, 0)
        self.assertIsNone(out.status.error)

    def test_max_items_cap_in_feed_order(self) -> None:
        feed = FeedSource(id="gov", name="Gov", url="https://gov.example/rss")
        out = collect_source(feed, "OFFICIAL", fetch=_fake_fetch, rules=Rules(max_items_per_feed=2), now=NOW)
        self.assertEqual(out.status.count, 2)
        self.assertEqual([e["source_url"] for e in out.events], ["https://gov.example/1", "https://gov.example/2"])


class TestRunEventPipeline(unittest.TestCase):
    def test_partial_failure_is_isolated_and_reported(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            cfg = _write_sources(Path(td))
            summary = run_event_pipeline(cfg, now=NOW, fetch=_fake_fetch)

            official = _read(cfg.official_path)
            self.assertEqual(len(official["items"]), 3)
            self.assertTrue(all(e["source_url"].startswith("https://gov.example/") for e in official["items"]))
            by_id = {s["id"]: s for s in official["_sources"]}
            self.assertEqual(by_id["gov_ok"], {"id": "gov_ok", "name": "Gov OK", "url": "https://gov.example/rss", "ok": True, "count": 3, "error": None})
            self.assertFalse(by_id["gov_down"]["ok"])
            self.assertIn("500", by_id["gov_down"]["error"])

            news = _read(cfg.news_path)
            self.assertEqual([s["id"] for s in news["_sources"]], ["news"])
            self.assertEqual(news["disclaimer"], NEWS_DISCLAIMER)
            self.assertNotIn("disclaimer", official)

            self.assertEqual(summary.official_count, 3)
            self.assertEqual(summary.news_count, 1)
            self.assertEqual(summary.sources_ok, 2)
            self.assertEqual(summary.sources_failed, 1)
            self.assertEqual(summary.to_dict()["errors"][0]["source"], "gov_down")

    def test_classification_flows_into_records(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            cfg = _write_sources(Path(td))
            run_event_pipeline(cfg, now=NOW, fetch=_fake_fetch)
            official = {e["source_url"]: e for e in _read(cfg.official_path)["items"]}
            asf = official["https://gov.example/1"]
            self.assertEqual(asf["event_id"], make_event_id("OFFICIAL", "https://gov.example/1"))
            self.assertEqual(asf["severity"], "HIGH")
            self.assertIn("PORK", asf["species"])
            self.assertEqual(asf["template_id"], "OFFICIAL_DISEASE_UPDATE")
            hanwoo = official["https://gov.example/2"]
            self.assertEqual(hanwoo["severity"], "MID")
            self.assertIn("BEEF", hanwoo["species"])

            news = _read(cfg.news_path)["items"]
            self.assertEqual(news[0]["severity"], "MID")
            self.assertEqual(news[0]["species"], ["EGG"])
            self.assertEqual(news[0]["tags"], ["가격"])
            self.assertFalse(NEWS_FORBIDDEN_FIELDS & set(news[0]))

    def test_output_sorted_newest_first(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            cfg = _write_sources(Path(td))
            run_event_pipeline(cfg, now=NOW, fetch=_fake_fetch)
            dates = [e["published_at"] for e in _read(cfg.official_path)["items"]]
            self.assertEqual(dates, sorted(dates, reverse=True))

    def test_rerun_with_unchanged_feed_does_not_grow(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            cfg = _write_sources(Path(td))
            run_event_pipeline(cfg, now=NOW, fetch=_fake_fetch)
            first = cfg.official_path.read_text(encoding="utf-8")
            run_event_pipeline(cfg, now=NOW, fetch=_fake_fetch)
            second = cfg.official_path.read_text(encoding="utf-8")
            self.assertEqual(len(_read(cfg.official_path)["items"]), 3)
            self.assertEqual(first, second)
            self.assertEqual(len(_read(cfg.news_path)["items"]), 1)

    def test_failed_source_keeps_prior_items(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            cfg = _write_sources(Path(td))
            run_event_pipeline(cfg, now=NOW, fetch=_fake_fetch)

            def all_down(url: str) -> str:
                raise FetchError("Fetch failed 503", url=url, status_code=503)

            summary = run_event_pipeline(cfg, now=NOW, fetch=all_down)
            self.assertEqual(summary.official_count, 3)
            self.assertEqual(summary.news_count, 1)
            self.assertEqual(summary.sources_ok, 0)

    def test_prior_items_outside_window_dropped(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            cfg = _write_sources(Path(td))
            cfg.out_dir.mkdir(parents=True, exist_ok=True)
            prior = {
                "generated_at": "2026-08-01T00:00:00.000Z",
                "items": [
                    {"event_id": "OFF_old", "date": "2026-08-01", "published_at": "2026-08-01T00:00:00.000Z", "facts": {"x": 1}},
                    {"event_id": "OFF_undated", "date": "", "published_at": ""},
                ],
            }
            cfg.official_path.write_text(json.dumps(prior), encoding="utf-8")
            run_event_pipeline(cfg, now=NOW, fetch=_fake_fetch)
            ids = [e["event_id"] for e in _read(cfg.official_path)["items"]]
            self.assertNotIn("OFF_old", ids)
            self.assertEqual(ids[-1], "OFF_undated")
            self.assertEqual(len(ids), 4)

    def test_very_long_retention_window_keeps_everything(self) -> None:
        data = dict(SOURCES, rules={"max_items_per_feed": 30, "days_keep": 1000000})
        with tempfile.TemporaryDirectory() as td:
            cfg = _write_sources(Path(td), data)
            cfg.out_dir.mkdir(parents=True, exist_ok=True)
            prior = {"items": [{"event_id": "OFF_ancient", "date": "1990-01-01", "published_at": "1990-01-01T00:00:00.000Z"}]}
            cfg.official_path.write_text(json.dumps(prior), encoding="utf-8")
            summary = run_event_pipeline(cfg, now=NOW, fetch=_fake_fetch)
            ids = [e["event_id"] for e in _read(cfg.official_path)["items"]]
            self.assertIn("OFF_ancient", ids)
            self.assertEqual(summary.official_count, 4)

    def test_prior_news_body_fields_stripped(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            cfg = _write_sources(Path(td))
            cfg.out_dir.mkdir(parents=True, exist_ok=True)
            prior = {"items": [{"event_id": "NEWS_x", "date": "2026-10-10", "published_at": "", "summary": "요약"}]}
            cfg.news_path.write_text(json.dumps(prior, ensure_ascii=False), encoding="utf-8")
            run_event_pipeline(cfg, now=NOW, fetch=_fake_fetch)
            items = _read(cfg.news_path)["items"]
            self.assertEqual(len(items), 2)
            for ev in items:
                self.assertFalse(NEWS_FORBIDDEN_FIELDS & set(ev))

    def test_corrupt_prior_output_degrades(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            cfg = _write_sources(Path(td))
            cfg.out_dir.mkdir(parents=True, exist_ok=True)
            cfg.official_path.write_text("{not json", encoding="utf-8")
            summary = run_event_pipeline(cfg, now=NOW, fetch=_fake_fetch)
            self.assertEqual(summary.official_count, 3)

    def test_concurrent_run_matches_sequential(self) -> None:
        with tempfile.TemporaryDirectory() as td1, tempfile.TemporaryDirectory() as td2:
            seq = _write_sources(Path(td1))
            par = RunConfig.for_home(Path(td2), sources_path=seq.sources_path, max_workers=4)
            run_event_pipeline(seq, now=NOW, fetch=_fake_fetch)
            run_event_pipeline(par, now=NOW, fetch=_fake_fetch)
            self.assertEqual(seq.official_path.read_text(encoding="utf-8"), par.official_path.read_text(encoding="utf-8"))
            self.assertEqual(seq.news_path.read_text(encoding="utf-8"), par.news_path.read_text(encoding="utf-8"))

    def test_missing_config_is_fatal(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            cfg = RunConfig.for_home(Path(td))
            with self.assertRaises(ConfigError):
                run_event_pipeline(cfg, now=NOW, fetch=_fake_fetch)
            self.assertFalse(cfg.official_path.exists())

    @patch("marketdigest.feed_fetch.requests.get")
    def test_default_fetcher_http_500(self, mock_get: MagicMock) -> None:
        def fake_get(url: str, **kwargs) -> MagicMock:
            r = MagicMock()
            r.encoding = "utf-8"
            r.headers = {"Content-Type": "application/xml; charset=utf-8"}
            if url == "https://down.example/rss":
                r.status_code = 500
                r.text = "error"
            else:
                r.status_code = 200
                r.text = OFFICIAL_RSS if "gov" in url else NEWS_ATOM
            return r

        mock_get.side_effect = fake_get
        with tempfile.TemporaryDirectory() as td:
            cfg = _write_sources(Path(td))
            summary = run_event_pipeline(cfg, now=NOW)
            self.assertEqual(summary.official_count, 3)
            down = [s for s in summary.official_sources if s["id"] == "gov_down"][0]
            self.assertFalse(down["ok"])
            self.assertEqual(down["error"], "Fetch failed 500: https://down.example/rss")
            for call in mock_get.call_args_list:
                self.assertEqual(call.kwargs["timeout"], 20.0)


if __name__ == "__main__":
    unittest.main()
