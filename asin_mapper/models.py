"""Record types flowing through the ASIN mapping pipelines."""

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


NO_VALID_PRODUCT = "no valid product"
NO_MATCH = "no match"
FAILED_TO_SCRAPE = "failed to scrape"


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_sentinel(value: Optional[str]) -> bool:
    """True when a value is the literal no-valid-product marker."""
    return (value or "").strip().lower() == NO_VALID_PRODUCT


class QueryKind(str, Enum):
    BRAND = "brand"
    KEYWORD = "keyword"
    ASIN_LOOKUP = "asin_lookup"


class RecordStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    NO_VALID_PRODUCT = "no_valid_product"


@dataclass(frozen=True)
class Query:
    """One unit of input work.

    For ``ASIN_LOOKUP`` queries ``raw_text`` holds the ASIN, ``link`` the
    product page and ``label`` the brand or keyword it was found under.
    """

    raw_text: str
    kind: QueryKind
    link: Optional[str] = None
    label: Optional[str] = None


@dataclass(frozen=True)
class SanitizedQuery:
    cleaned_text: str


@dataclass(frozen=True)
class RawCandidate:
    """A product card extracted from one search results page."""

    asin: str
    title: str
    brand_text: str
    link: str


@dataclass(frozen=True)
class RawDetail:
    """Fields extracted from a product detail page."""

    title: str
    breadcrumbs: List[str] = field(default_factory=list)
    brand_info: str = ""


@dataclass(frozen=True)
class MatchResult:
    matched: bool
    matched_word: Optional[str] = None
    rank: int = 0
    exact: bool = False

    @property
    def label(self) -> str:
        """Human-readable match description stored in the CSV."""
        if not self.matched:
            return NO_MATCH
        if self.exact:
            return "Exact Match"
        return f"Word {self.rank}"


class _CsvRecord:
    """Mixin giving frozen dataclass records a flat CSV row shape."""

    @classmethod
    def columns(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        for key, value in row.items():
            if isinstance(value, Enum):
                row[key] = value.value
        return row


@dataclass(frozen=True)
class ResultRecord(_CsvRecord):
    """Outcome of a brand or keyword search, one row per retained candidate."""

    asin: str
    query: str
    title: Optional[str]
    link: str
    matched_word: Optional[str]
    status: RecordStatus
    scraped_at: str = field(default_factory=utcnow_iso)

    @classmethod
    def from_match(cls, query: str, candidate: RawCandidate, match: MatchResult) -> "ResultRecord":
        return cls(
            asin=candidate.asin,
            query=query,
            title=candidate.title,
            link=candidate.link,
            matched_word=match.label,
            status=RecordStatus.SUCCESS,
        )

    @classmethod
    def from_candidate(cls, query: str, candidate: RawCandidate) -> "ResultRecord":
        return cls(
            asin=candidate.asin,
            query=query,
            title=candidate.title or None,
            link=candidate.link,
            matched_word=None,
            status=RecordStatus.SUCCESS,
        )

    @classmethod
    def no_valid_product(cls, query: str) -> "ResultRecord":
        return cls(
            asin=NO_VALID_PRODUCT,
            query=query,
            title=NO_VALID_PRODUCT,
            link=NO_VALID_PRODUCT,
            matched_word=NO_MATCH,
            status=RecordStatus.NO_VALID_PRODUCT,
        )


@dataclass(frozen=True)
class DetailRecord(_CsvRecord):
    asin: str
    searched_brand: Optional[str]
    product_title: str
    breadcrumbs: str
    brand_info: str
    link: str
    status: RecordStatus
    scraped_at: str = field(default_factory=utcnow_iso)

    @classmethod
    def from_detail(cls, query: Query, detail: RawDetail) -> "DetailRecord":
        return cls(
            asin=query.raw_text,
            searched_brand=query.label,
            product_title=detail.title,
            breadcrumbs=" > ".join(detail.breadcrumbs),
            brand_info=detail.brand_info,
            link=query.link or "",
            status=RecordStatus.SUCCESS,
        )

    @classmethod
    def failed(cls, query: Query) -> "DetailRecord":
        return cls(
            asin=query.raw_text,
            searched_brand=query.label,
            product_title=FAILED_TO_SCRAPE,
            breadcrumbs=FAILED_TO_SCRAPE,
            brand_info=FAILED_TO_SCRAPE,
            link=query.link or "",
            status=RecordStatus.FAILED,
        )


@dataclass(frozen=True)
class BrandRecord(_CsvRecord):
    asin: str
    keyword: Optional[str]
    product_url: str
    brand_name: Optional[str]
    status: RecordStatus
    scraped_at: str = field(default_factory=utcnow_iso)
