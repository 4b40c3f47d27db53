"""Input readers turning CSV rows into validated queries."""

from pathlib import Path
from typing import List, Sequence, Union

import pandas as pd
from loguru import logger

from asin_mapper.models import Query, QueryKind, is_sentinel


BRAND_COLUMN = "Company Names"
KEYWORD_COLUMN = "Keywords"


class InputReadError(Exception):
    """Raised when an input source is missing or unreadable."""
    pass


def read_table(path: Union[str, Path], required_columns: Sequence[str]) -> pd.DataFrame:
    """Read a CSV as strings, with blanks as empty strings.

    Raises:
        InputReadError: If the file is absent, unparsable or lacks a column.
    """
    path = Path(path)
    if not path.exists():
        raise InputReadError(f"Input file not found: {path}")

    try:
        df = pd.read_csv(path, dtype=str, keep_default_na=False, skip_blank_lines=True)
    except (OSError, ValueError, pd.errors.ParserError) as e:
        raise InputReadError(f"Failed to read {path}: {e}") from e

    df.columns = [str(c).strip() for c in df.columns]
    missing = [c for c in required_columns if c not in df.columns]
    if missing:
        raise InputReadError(f"{path} is missing required column(s): {', '.join(missing)}")

    return df


def _column_values(df: pd.DataFrame, column: str) -> List[str]:
    return [value.strip() for value in df[column].tolist() if value and value.strip()]


def read_brand_queries(path: Union[str, Path], column: str = BRAND_COLUMN) -> List[Query]:
    df = read_table(path, [column])
    queries = [Query(raw_text=value, kind=QueryKind.BRAND) for value in _column_values(df, column)]
    logger.info(f"Loaded {len(queries)} brand(s) from {path}")
    return queries


def read_keyword_queries(path: Union[str, Path], column: str = KEYWORD_COLUMN) -> List[Query]:
    df = read_table(path, [column])
    queries = [Query(raw_text=value, kind=QueryKind.KEYWORD) for value in _column_values(df, column)]
    logger.info(f"Loaded {len(queries)} keyword(s) from {path}")
    return queries


def read_asin_queries(
    path: Union[str, Path],
    label_column: str = "query",
    require_link: bool = True,
) -> List[Query]:
    """Read ASIN rows produced by a search pipeline.

    Rows without an ASIN (or without a link when ``require_link``) are
    dropped. Sentinel rows are kept so the pipeline can report the skip.
    """
    required = ["asin", label_column] + (["link"] if require_link else [])
    df = read_table(path, required)

    queries = []
    for row in df.to_dict(orient="records"):
        asin = (row.get("asin") or "").strip()
        link = (row.get("link") or "").strip() or None
        if not asin or (require_link and not link):
            continue
        queries.append(
            Query(
                raw_text=asin,
                kind=QueryKind.ASIN_LOOKUP,
                link=link,
                label=(row.get(label_column) or "").strip() or None,
            )
        )

    logger.info(f"Loaded {len(queries)} ASIN row(s) from {path}")
    return queries


def read_invalid_brand_queries(path: Union[str, Path]) -> List[Query]:
    """Unique brands whose earlier search ended on the sentinel row."""
    df = read_table(path, ["asin", "query"])

    brands = []
    seen = set()
    for row in df.to_dict(orient="records"):
        brand = (row.get("query") or "").strip()
        if is_sentinel(row.get("asin")) and brand and brand not in seen:
            seen.add(brand)
            brands.append(brand)

    logger.info(f"Found {len(brands)} brand(s) without a valid product in {path}")
    return [Query(raw_text=brand, kind=QueryKind.BRAND) for brand in brands]
