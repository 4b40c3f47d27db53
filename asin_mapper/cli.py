"""Command-line interface for the Amazon ASIN mapper."""

import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
from loguru import logger

from asin_mapper.config_loader import ensure_directories, get_storage_paths, load_config
from asin_mapper.dedupe import remove_duplicates
from asin_mapper.inputs import (
    read_asin_queries,
    read_brand_queries,
    read_invalid_brand_queries,
    read_keyword_queries,
)
from asin_mapper.pipeline import (
    run_brand_lookup,
    run_brand_search,
    run_detail_scrape,
    run_keyword_search,
    run_retry_invalid,
)
from asin_mapper.session import AmazonSession


class MaxCardsParamType(click.ParamType):
    """Click param type for the per-query result cap: ``all`` or a positive integer."""

    name = "max_cards"

    def convert(self, value, param, ctx):
        if value is None or isinstance(value, int):
            return value

        text = str(value).strip().lower()
        if text == "all":
            return None
        try:
            cap = int(text)
        except ValueError:
            self.fail(f"Expected 'all' or a positive integer, got {value!r}.", param, ctx)
        if cap < 1:
            self.fail(f"Result cap must be at least 1, got {cap}.", param, ctx)
        return cap


MAX_CARDS = MaxCardsParamType()


def setup_logging(config: dict):
    """Setup logging configuration."""
    log_config = config.get("logging", {})
    level = log_config.get("level", "INFO")
    log_file = log_config.get("file", "data/logs/asin_mapper.log")

    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    logger.remove()
    logger.add(
        sys.stdout,
        level=level,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )
    logger.add(
        log_file,
        level=level,
        rotation=log_config.get("rotation", "10 MB"),
        retention=log_config.get("retention", "1 month"),
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name} | {message}",
    )


def _echo_summary(title: str, results: Dict[str, Any]):
    click.echo(f"\n{'='*60}")
    click.echo(title)
    click.echo(f"{'='*60}")
    click.echo(f"Queries: {results.get('queries', 0)}")
    click.echo(f"Succeeded: {results.get('succeeded', 0)}")
    click.echo(f"Failed: {results.get('failed', 0)}")
    click.echo(f"Skipped: {results.get('skipped', 0)}")
    click.echo(f"Rows written: {results.get('rows_written', 0)}")
    click.echo(f"Output: {results.get('output_path', 'N/A')}")
    click.echo(f"{'='*60}")


def _fail(message: str, error: Exception):
    logger.exception(message)
    click.echo(f"Error: {error}", err=True)
    sys.exit(1)


headless_option = click.option(
    "--headless/--no-headless", default=None, help="Override browser headless mode from config"
)
input_option = click.option("--input", "-i", "input_path", type=click.Path(), default=None, help="Input CSV")
output_option = click.option("--output", "-o", "output_path", type=click.Path(), default=None, help="Output CSV")


@click.group()
@click.option("--config", "-c", type=click.Path(exists=True), help="Path to config file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx, config: Optional[str], verbose: bool):
    """Amazon ASIN mapper - match brands and keywords to Amazon products."""
    ctx.ensure_object(dict)

    try:
        cfg = load_config(config)
        if verbose:
            cfg.setdefault("logging", {})["level"] = "DEBUG"
        ctx.obj["config"] = cfg
        ctx.obj["config_path"] = config

        ensure_directories(cfg)
        setup_logging(cfg)

        logger.info("ASIN mapper initialized")

    except Exception as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        sys.exit(1)


@cli.command("map-brands")
@click.argument("max_cards", type=MAX_CARDS, default="all", required=False)
@headless_option
@input_option
@output_option
@click.pass_context
def map_brands(ctx, max_cards: Optional[int], headless: Optional[bool], input_path, output_path):
    """Map company names to matching ASINs (MAX_CARDS: 'all' or N per brand)."""
    config = ctx.obj["config"]
    paths = get_storage_paths(config)

    try:
        queries = read_brand_queries(input_path or paths["brands_input"])
        if not queries:
            click.echo("No brands to process.")
            return
        with AmazonSession(config, headless=headless) as session:
            results = run_brand_search(
                queries,
                session,
                config,
                max_cards=max_cards,
                output_path=output_path or paths["asin_map"],
            )
        _echo_summary("BRAND -> ASIN MAPPING", results)
    except Exception as e:
        _fail("Brand mapping failed", e)


@cli.command("map-keywords")
@click.argument("max_cards", type=MAX_CARDS, default="all", required=False)
@headless_option
@input_option
@output_option
@click.pass_context
def map_keywords(ctx, max_cards: Optional[int], headless: Optional[bool], input_path, output_path):
    """Collect product links for keywords (MAX_CARDS: 'all' or N per keyword)."""
    config = ctx.obj["config"]
    paths = get_storage_paths(config)

    try:
        queries = read_keyword_queries(input_path or paths["keywords_input"])
        if not queries:
            click.echo("No keywords to process.")
            return
        with AmazonSession(config, headless=headless) as session:
            results = run_keyword_search(
                queries,
                session,
                config,
                max_cards=max_cards,
                output_path=output_path or paths["keyword_map"],
            )
        _echo_summary("KEYWORD -> ASIN MAPPING", results)
    except Exception as e:
        _fail("Keyword mapping failed", e)


@cli.command("scrape-details")
@headless_option
@input_option
@output_option
@click.pass_context
def scrape_details(ctx, headless: Optional[bool], input_path, output_path):
    """Scrape title, breadcrumbs and brand for every mapped ASIN."""
    config = ctx.obj["config"]
    paths = get_storage_paths(config)

    try:
        queries = read_asin_queries(input_path or paths["asin_map"])
        if not queries:
            click.echo("No ASINs to process.")
            return
        logger.info(f"ASINs to be scraped: {', '.join(q.raw_text for q in queries)}")
        with AmazonSession(config, headless=headless) as session:
            results = run_detail_scrape(
                queries,
                session,
                config,
                output_path=output_path or paths["product_details"],
            )
        _echo_summary("PRODUCT DETAILS", results)
    except Exception as e:
        _fail("Detail scrape failed", e)


@cli.command("lookup-brands")
@headless_option
@input_option
@output_option
@click.pass_context
def lookup_brands(ctx, headless: Optional[bool], input_path, output_path):
    """Read the brand name of every keyword-mapped ASIN."""
    config = ctx.obj["config"]
    paths = get_storage_paths(config)

    try:
        queries = read_asin_queries(input_path or paths["keyword_map"], require_link=False)
        if not queries:
            click.echo("No ASINs to process.")
            return
        with AmazonSession(config, headless=headless) as session:
            results = run_brand_lookup(
                queries,
                session,
                config,
                output_path=output_path or paths["keyword_brands"],
            )
        _echo_summary("BRAND LOOKUP", results)
    except Exception as e:
        _fail("Brand lookup failed", e)


@cli.command("retry-invalid")
@headless_option
@input_option
@output_option
@click.pass_context
def retry_invalid(ctx, headless: Optional[bool], input_path, output_path):
    """Search again for brands recorded as 'no valid product'."""
    config = ctx.obj["config"]
    paths = get_storage_paths(config)

    try:
        queries = read_invalid_brand_queries(input_path or paths["asin_map"])
        if not queries:
            click.echo("No invalid brands to retry.")
            return
        with AmazonSession(config, headless=headless) as session:
            results = run_retry_invalid(
                queries,
                session,
                config,
                output_path=output_path or paths["retry_output"],
            )
        _echo_summary("RETRY INVALID BRANDS", results)
    except Exception as e:
        _fail("Retry of invalid brands failed", e)


@cli.command()
@input_option
@output_option
@click.option("--duplicates", "duplicates_path", type=click.Path(), default=None, help="Duplicates CSV")
@click.pass_context
def dedupe(ctx, input_path, output_path, duplicates_path):
    """Remove repeated company names from the raw input list."""
    config = ctx.obj["config"]
    paths = get_storage_paths(config)

    try:
        stats = remove_duplicates(
            input_path or paths["dedupe_input"],
            output_path or paths["dedupe_output"],
            duplicates_path or paths["duplicates_output"],
        )
        click.echo(
            f"Names: {stats['total']} | unique: {stats['unique']} | duplicated: {stats['duplicates']}"
        )
    except Exception as e:
        _fail("Deduplication failed", e)


if __name__ == "__main__":
    cli()
