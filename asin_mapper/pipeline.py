"""Sequential query-resolution pipelines.

Each pipeline walks its input in order against one shared automation
session: resolve the query through the retry controller, turn the outcome
into records and persist them before moving on, then cool down.
"""

import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from loguru import logger

from asin_mapper.config_loader import get_pipeline_config, get_retry_policy, get_storage_paths
from asin_mapper.matcher import match_candidates
from asin_mapper.models import (
    BrandRecord,
    DetailRecord,
    Query,
    RecordStatus,
    ResultRecord,
    SanitizedQuery,
    is_sentinel,
)
from asin_mapper.retry import RetryController, non_empty
from asin_mapper.sanitizer import sanitize_brand_name
from asin_mapper.session import AutomationSession, SessionError
from asin_mapper.writer import IncrementalWriter


DEFAULT_COOLDOWN_SECONDS = 3.0
DEFAULT_DELIVERY_REGION = "10001"


def _new_summary(output_path: str, total: int) -> Dict[str, Any]:
    return {
        "queries": total,
        "succeeded": 0,
        "failed": 0,
        "skipped": 0,
        "rows_written": 0,
        "output_path": output_path,
    }


def _controller(
    config: Dict[str, Any],
    call_site: str,
    accept: Optional[Callable[[Any], bool]],
    sleep: Callable[[float], None],
    label: str,
) -> RetryController:
    max_attempts, backoff = get_retry_policy(config, call_site)
    return RetryController(
        max_attempts, backoff, accept=accept, retry_on=(SessionError,), sleep=sleep, label=label
    )


def _cooldown(config: Dict[str, Any], sleep: Callable[[float], None]) -> None:
    seconds = float(get_pipeline_config(config).get("cooldown_seconds", DEFAULT_COOLDOWN_SECONDS))
    if seconds > 0:
        sleep(seconds)


def _prepare_region(session: AutomationSession, config: Dict[str, Any]) -> None:
    code = get_pipeline_config(config).get("delivery_region", DEFAULT_DELIVERY_REGION)
    if code:
        session.set_delivery_region(str(code))


def resolve_brand(
    query: Query,
    session: AutomationSession,
    controller: RetryController,
    max_cards: Optional[int] = None,
) -> List[ResultRecord]:
    """Search a sanitized brand until matching products appear.

    Returns:
        One record per retained candidate, or a single sentinel record.
    """
    sanitized = SanitizedQuery(cleaned_text=sanitize_brand_name(query.raw_text))
    logger.info(f'Original: "{query.raw_text}" -> Cleaned: "{sanitized.cleaned_text}"')

    if not sanitized.cleaned_text:
        logger.warning(f'"{query.raw_text}" is empty after sanitizing; recording no valid product')
        return [ResultRecord.no_valid_product(query.raw_text)]

    outcome = controller.resolve(
        lambda: match_candidates(sanitized.cleaned_text, session.search(sanitized.cleaned_text), max_cards)
    )
    if outcome.exhausted:
        return [ResultRecord.no_valid_product(query.raw_text)]

    return [ResultRecord.from_match(query.raw_text, candidate, match) for candidate, match in outcome.value]


def _run_brand_queries(
    queries: Sequence[Query],
    session: AutomationSession,
    config: Dict[str, Any],
    output_path: str,
    call_site: str,
    max_cards: Optional[int],
    sleep: Callable[[float], None],
) -> Dict[str, Any]:
    writer = IncrementalWriter(output_path, ResultRecord.columns())
    summary = _new_summary(output_path, len(queries))

    _prepare_region(session, config)

    for query in queries:
        if is_sentinel(query.raw_text):
            logger.info(f"Skipping {query.raw_text} (marked as no valid product)")
            summary["skipped"] += 1
            continue

        controller = _controller(config, call_site, non_empty, sleep, query.raw_text)
        records = resolve_brand(query, session, controller, max_cards)
        summary["rows_written"] += writer.append(records)

        if records[0].status == RecordStatus.SUCCESS:
            summary["succeeded"] += 1
            logger.info(f"[{query.raw_text}] Saved {len(records)} product(s)")
        else:
            summary["failed"] += 1
            logger.info(f"[{query.raw_text}] No valid product found")

        _cooldown(config, sleep)

    return summary


def run_brand_search(
    queries: Sequence[Query],
    session: AutomationSession,
    config: Dict[str, Any],
    max_cards: Optional[int] = None,
    output_path: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """Map brand names to matching ASINs, appending after every brand."""
    output_path = output_path or get_storage_paths(config)["asin_map"]
    return _run_brand_queries(queries, session, config, output_path, "brand_search", max_cards, sleep)


def run_retry_invalid(
    queries: Sequence[Query],
    session: AutomationSession,
    config: Dict[str, Any],
    output_path: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """Search again for brands that previously ended with no valid product."""
    output_path = output_path or get_storage_paths(config)["retry_output"]
    return _run_brand_queries(queries, session, config, output_path, "retry_invalid", None, sleep)


def run_keyword_search(
    queries: Sequence[Query],
    session: AutomationSession,
    config: Dict[str, Any],
    max_cards: Optional[int] = None,
    output_path: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """Collect product links for free-text keywords."""
    output_path = output_path or get_storage_paths(config)["keyword_map"]
    writer = IncrementalWriter(output_path, ResultRecord.columns())
    summary = _new_summary(output_path, len(queries))

    _prepare_region(session, config)

    for query in queries:
        if is_sentinel(query.raw_text):
            logger.info(f"Skipping {query.raw_text} (marked as no valid product)")
            summary["skipped"] += 1
            continue

        keyword = query.raw_text
        controller = _controller(config, "keyword_search", non_empty, sleep, keyword)
        outcome = controller.resolve(lambda: session.search(keyword, require_title=False))

        if outcome.succeeded:
            candidates = outcome.value if max_cards is None else outcome.value[:max_cards]
            records = [ResultRecord.from_candidate(keyword, candidate) for candidate in candidates]
            summary["succeeded"] += 1
            logger.info(f"[{keyword}] Found {len(records)} product(s)")
        else:
            records = [ResultRecord.no_valid_product(keyword)]
            summary["failed"] += 1
            logger.info(f"[{keyword}] No results found")

        summary["rows_written"] += writer.append(records)
        _cooldown(config, sleep)

    return summary


def run_detail_scrape(
    queries: Sequence[Query],
    session: AutomationSession,
    config: Dict[str, Any],
    output_path: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """Scrape breadcrumbs, title and byline for every mapped ASIN."""
    output_path = output_path or get_storage_paths(config)["product_details"]
    writer = IncrementalWriter(output_path, DetailRecord.columns())
    summary = _new_summary(output_path, len(queries))

    for query in queries:
        if is_sentinel(query.raw_text):
            logger.info(f"Skipping ASIN: {query.raw_text} (marked as no valid product)")
            summary["skipped"] += 1
            continue

        logger.info(f"Scraping ASIN: {query.raw_text}")
        controller = _controller(config, "detail_scrape", None, sleep, query.raw_text)
        outcome = controller.resolve(lambda: session.fetch_detail(query.link))

        if outcome.succeeded:
            record = DetailRecord.from_detail(query, outcome.value)
            summary["succeeded"] += 1
            logger.info(f"Successfully scraped: {query.raw_text}")
        else:
            record = DetailRecord.failed(query)
            summary["failed"] += 1
            logger.info(f"Failed to scrape after {outcome.attempts} attempts: {query.raw_text}")

        summary["rows_written"] += writer.append(record)
        _cooldown(config, sleep)

    return summary


def run_brand_lookup(
    queries: Sequence[Query],
    session: AutomationSession,
    config: Dict[str, Any],
    output_path: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """Read the brand of every keyword-mapped ASIN.

    The destination is rewritten from the accumulated list after each ASIN,
    so it is always a complete snapshot of the run so far.
    """
    output_path = output_path or get_storage_paths(config)["keyword_brands"]
    writer = IncrementalWriter(output_path, BrandRecord.columns())
    summary = _new_summary(output_path, len(queries))
    template = getattr(session, "product_url_template", "https://www.amazon.com/dp/{asin}")
    records: List[BrandRecord] = []

    for query in queries:
        if is_sentinel(query.raw_text):
            logger.info(f"Skipping ASIN: {query.raw_text} (marked as no valid product)")
            summary["skipped"] += 1
            continue

        asin = query.raw_text
        controller = _controller(config, "brand_lookup", non_empty, sleep, asin)
        outcome = controller.resolve(lambda: session.fetch_brand(asin))

        if outcome.succeeded:
            status = RecordStatus.SUCCESS
            summary["succeeded"] += 1
            logger.info(f"{asin} -> {outcome.value} (attempt {outcome.attempts})")
        else:
            status = RecordStatus.FAILED
            summary["failed"] += 1
            logger.info(f"{asin} -> no brand after {outcome.attempts} attempts")

        records.append(
            BrandRecord(
                asin=asin,
                keyword=query.label,
                product_url=template.format(asin=asin),
                brand_name=outcome.value if outcome.succeeded else None,
                status=status,
            )
        )
        summary["rows_written"] = writer.write_all(records)
        _cooldown(config, sleep)

    return summary
