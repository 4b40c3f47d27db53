"""End-to-end pipeline tests with an in-memory session."""

import sys
import tempfile
import unittest
from pathlib import Path

import pandas as pd

sys.path.insert(0, str(Path(__file__).parent.parent))

from asin_mapper.models import NO_VALID_PRODUCT, Query, QueryKind, RawCandidate, RawDetail
from asin_mapper.pipeline import (
    run_brand_lookup,
    run_brand_search,
    run_detail_scrape,
    run_keyword_search,
    run_retry_invalid,
)
from asin_mapper.session import NavigationTimeout, SelectorNotFound


def candidate(asin, brand_text, title="Product"):
    return RawCandidate(asin=asin, title=title, brand_text=brand_text, link=f"https://www.amazon.com/dp/{asin}")


class Responses:
    """Per-call responses; the last one repeats once the others are used."""

    def __init__(self, *items):
        self.items = list(items)

    def next(self):
        if len(self.items) > 1:
            return self.items.pop(0)
        return self.items[0]


class FakeSession:
    """Small in-memory session fake to avoid browser usage in tests."""

    product_url_template = "https://www.amazon.com/dp/{asin}"

    def __init__(self, search_results=None, details=None, brands=None):
        self.search_results = search_results or {}
        self.details = details or {}
        self.brands = brands or {}
        self.calls = []
        self.regions = []
        self.title_required = []

    def set_delivery_region(self, code):
        self.regions.append(code)
        return True

    def search(self, query, require_title=True):
        self.calls.append(("search", query))
        self.title_required.append(require_title)
        return self._next(self.search_results, query, [])

    def fetch_detail(self, url):
        self.calls.append(("fetch_detail", url))
        return self._next(self.details, url, None)

    def fetch_brand(self, asin):
        self.calls.append(("fetch_brand", asin))
        return self._next(self.brands, asin, "")

    @staticmethod
    def _next(table, key, default):
        value = table.get(key, default)
        if isinstance(value, Responses):
            value = value.next()
        if isinstance(value, BaseException):
            raise value
        return value


def read_output(path):
    return pd.read_csv(path, dtype=str, keep_default_na=False)


class PipelineTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name)
        self.sleeps = []
        self.config = {
            "pipeline": {"cooldown_seconds": 3, "delivery_region": "10001"},
            "retry": {
                "brand_search": {"max_attempts": 3, "base_seconds": 2.0, "jitter_seconds": 0.0},
                "keyword_search": {"max_attempts": 2, "base_seconds": 2.0, "jitter_seconds": 0.0},
                "detail_scrape": {"max_attempts": 4, "base_seconds": 2.0, "jitter_seconds": 0.0},
                "brand_lookup": {"max_attempts": 2, "base_seconds": 1.0, "jitter_seconds": 0.0},
                "retry_invalid": {"max_attempts": 2, "base_seconds": 2.0, "jitter_seconds": 0.0},
            },
        }

    def tearDown(self):
        self.tmpdir.cleanup()


class TestBrandSearch(PipelineTestCase):

    def test_no_result_brand_then_real_brand(self):
        session = FakeSession(
            search_results={
                "NoResultBrand": [],
                "RealBrand": [candidate("B0REAL", "RealBrand", title="Real Widget")],
            }
        )
        queries = [Query("NoResultBrand", QueryKind.BRAND), Query("RealBrand", QueryKind.BRAND)]
        output = self.root / "brand_asin_map.csv"

        summary = run_brand_search(queries, session, self.config, output_path=str(output), sleep=self.sleeps.append)

        df = read_output(output)
        self.assertEqual(len(df), 2)
        self.assertEqual(df.loc[0, "asin"], NO_VALID_PRODUCT)
        self.assertEqual(df.loc[0, "query"], "NoResultBrand")
        self.assertEqual(df.loc[0, "status"], "no_valid_product")
        self.assertEqual(df.loc[1, "asin"], "B0REAL")
        self.assertEqual(df.loc[1, "query"], "RealBrand")
        self.assertEqual(df.loc[1, "matched_word"], "Exact Match")
        self.assertEqual(df.loc[1, "status"], "success")

        self.assertEqual(summary["succeeded"], 1)
        self.assertEqual(summary["failed"], 1)
        self.assertEqual(summary["rows_written"], 2)
        # three empty searches for the first brand, then one for the second
        self.assertEqual([c[1] for c in session.calls], ["NoResultBrand"] * 3 + ["RealBrand"])
        self.assertEqual(session.regions, ["10001"])

    def test_cooldown_after_every_query_and_backoff_between_attempts(self):
        session = FakeSession(search_results={"Ghost": [], "Nike": [candidate("B1", "Nike")]})
        queries = [Query("Ghost", QueryKind.BRAND), Query("Nike", QueryKind.BRAND)]

        run_brand_search(queries, session, self.config, output_path=str(self.root / "o.csv"), sleep=self.sleeps.append)

        self.assertEqual(self.sleeps, [2.0, 2.0, 3.0, 3.0])

    def test_searches_with_sanitized_name_but_records_original(self):
        session = FakeSession(search_results={"Nike": [candidate("B1", "Nike Golf"), candidate("B2", "Nike")]})
        output = self.root / "o.csv"

        run_brand_search([Query("Nike Inc.", QueryKind.BRAND)], session, self.config, output_path=str(output), sleep=self.sleeps.append)

        df = read_output(output)
        self.assertEqual(session.calls, [("search", "Nike")])
        self.assertEqual(list(df["asin"]), ["B2"])
        self.assertEqual(list(df["query"]), ["Nike Inc."])

    def test_partial_matches_capped_by_max_cards(self):
        session = FakeSession(
            search_results={
                "Under Armour": [
                    candidate("B1", "Armour Co"),
                    candidate("B2", "Under Sea"),
                    candidate("B3", "Armourx"),
                ]
            }
        )
        output = self.root / "o.csv"

        run_brand_search([Query("Under Armour", QueryKind.BRAND)], session, self.config, max_cards=2, output_path=str(output), sleep=self.sleeps.append)

        df = read_output(output)
        self.assertEqual(list(df["asin"]), ["B1", "B2"])
        self.assertEqual(list(df["matched_word"]), ["Word 2", "Word 1"])

    def test_transient_errors_absorbed(self):
        session = FakeSession(
            search_results={"Nike": Responses(NavigationTimeout("slow"), SelectorNotFound("no cards"), [candidate("B1", "Nike")])}
        )
        output = self.root / "o.csv"

        summary = run_brand_search([Query("Nike", QueryKind.BRAND)], session, self.config, output_path=str(output), sleep=self.sleeps.append)

        self.assertEqual(summary["succeeded"], 1)
        self.assertEqual(list(read_output(output)["asin"]), ["B1"])

    def test_sentinel_query_skipped_without_session_call(self):
        session = FakeSession()
        output = self.root / "o.csv"

        summary = run_brand_search([Query("No Valid Product", QueryKind.BRAND)], session, self.config, output_path=str(output), sleep=self.sleeps.append)

        self.assertEqual(summary["skipped"], 1)
        self.assertEqual(session.calls, [])
        self.assertFalse(output.exists())

    def test_brand_empty_after_sanitizing_gets_sentinel_without_search(self):
        session = FakeSession()
        output = self.root / "o.csv"

        run_brand_search([Query("Inc. LLC", QueryKind.BRAND)], session, self.config, output_path=str(output), sleep=self.sleeps.append)

        self.assertEqual(session.calls, [])
        self.assertEqual(list(read_output(output)["asin"]), [NO_VALID_PRODUCT])

    def test_programming_error_is_not_retried(self):
        session = FakeSession(search_results={"Nike": RuntimeError("Browser not started")})

        with self.assertRaises(RuntimeError):
            run_brand_search([Query("Nike", QueryKind.BRAND)], session, self.config, output_path=str(self.root / "o.csv"), sleep=self.sleeps.append)

        self.assertEqual(session.calls, [("search", "Nike")])
        self.assertEqual(self.sleeps, [])

    def test_retry_invalid_uses_own_budget(self):
        session = FakeSession(search_results={"Ghost": []})
        output = self.root / "retry.csv"

        run_retry_invalid([Query("Ghost", QueryKind.BRAND)], session, self.config, output_path=str(output), sleep=self.sleeps.append)

        self.assertEqual(len(session.calls), 2)
        self.assertEqual(list(read_output(output)["asin"]), [NO_VALID_PRODUCT])


class TestKeywordSearch(PipelineTestCase):

    def test_keyword_rows_capped_and_failures_recorded(self):
        session = FakeSession(
            search_results={
                "trail shoes": [candidate("K1", ""), candidate("K2", ""), candidate("K3", "")],
                "nothing here": [],
            }
        )
        queries = [Query("trail shoes", QueryKind.KEYWORD), Query("nothing here", QueryKind.KEYWORD)]
        output = self.root / "kw.csv"

        summary = run_keyword_search(queries, session, self.config, max_cards=2, output_path=str(output), sleep=self.sleeps.append)

        df = read_output(output)
        self.assertEqual(list(df["asin"]), ["K1", "K2", NO_VALID_PRODUCT])
        self.assertEqual(list(df["query"]), ["trail shoes", "trail shoes", "nothing here"])
        self.assertEqual(summary["failed"], 1)
        self.assertEqual(session.calls.count(("search", "nothing here")), 2)

    def test_keyword_search_keeps_cards_without_title(self):
        session = FakeSession(search_results={"kettle": [candidate("K1", "", title="")]})
        output = self.root / "kw.csv"

        summary = run_keyword_search([Query("kettle", QueryKind.KEYWORD)], session, self.config, output_path=str(output), sleep=self.sleeps.append)

        df = read_output(output)
        self.assertEqual(summary["succeeded"], 1)
        self.assertEqual(list(df["asin"]), ["K1"])
        self.assertEqual(df.loc[0, "title"], "")
        self.assertEqual(session.title_required, [False])

    def test_brand_search_requires_titles(self):
        session = FakeSession(search_results={"Nike": [candidate("B1", "Nike")]})

        run_brand_search([Query("Nike", QueryKind.BRAND)], session, self.config, output_path=str(self.root / "o.csv"), sleep=self.sleeps.append)

        self.assertEqual(session.title_required, [True])


class TestDetailScrape(PipelineTestCase):

    def test_detail_success_failure_and_skip(self):
        ok_url = "https://www.amazon.com/dp/B1"
        bad_url = "https://www.amazon.com/dp/B2"
        session = FakeSession(
            details={
                ok_url: Responses(SelectorNotFound("No breadcrumbs"), RawDetail("Widget", ["Home", "Kitchen"], "Acme")),
                bad_url: NavigationTimeout("down"),
            }
        )
        queries = [
            Query("no valid product", QueryKind.ASIN_LOOKUP, link="no valid product", label="Ghost"),
            Query("B1", QueryKind.ASIN_LOOKUP, link=ok_url, label="Acme"),
            Query("B2", QueryKind.ASIN_LOOKUP, link=bad_url, label="Acme"),
        ]
        output = self.root / "details.csv"

        summary = run_detail_scrape(queries, session, self.config, output_path=str(output), sleep=self.sleeps.append)

        df = read_output(output)
        self.assertEqual(list(df["asin"]), ["B1", "B2"])
        self.assertEqual(df.loc[0, "breadcrumbs"], "Home > Kitchen")
        self.assertEqual(df.loc[0, "searched_brand"], "Acme")
        self.assertEqual(df.loc[0, "status"], "success")
        self.assertEqual(df.loc[1, "product_title"], "failed to scrape")
        self.assertEqual(df.loc[1, "status"], "failed")
        self.assertEqual(summary["skipped"], 1)
        self.assertEqual(session.calls.count(("fetch_detail", bad_url)), 4)
        self.assertNotIn(("fetch_detail", "no valid product"), session.calls)


class TestBrandLookup(PipelineTestCase):

    def test_full_snapshot_rewritten_after_each_asin(self):
        session = FakeSession(brands={"B1": Responses("", "Acme"), "B2": ""})
        queries = [
            Query("B1", QueryKind.ASIN_LOOKUP, label="kettle"),
            Query("B2", QueryKind.ASIN_LOOKUP, label="kettle"),
        ]
        output = self.root / "brands.csv"

        summary = run_brand_lookup(queries, session, self.config, output_path=str(output), sleep=self.sleeps.append)

        df = read_output(output)
        self.assertEqual(list(df["asin"]), ["B1", "B2"])
        self.assertEqual(list(df["brand_name"]), ["Acme", ""])
        self.assertEqual(list(df["status"]), ["success", "failed"])
        self.assertEqual(df.loc[0, "product_url"], "https://www.amazon.com/dp/B1")
        self.assertEqual(summary["rows_written"], 2)
        self.assertEqual(output.read_text(encoding="utf-8").count("asin,keyword"), 1)


if __name__ == "__main__":
    unittest.main()
