"""Playwright-based automation session for Amazon search and product pages."""

import random
import re
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import quote, urljoin

from loguru import logger
from playwright.sync_api import Error as PlaywrightError, Page, sync_playwright, TimeoutError as PlaywrightTimeout

from asin_mapper.config_loader import get_browser_config, get_website_config
from asin_mapper.models import RawCandidate, RawDetail


class SessionError(Exception):
    """Base class for transient automation-session failures."""
    pass


class NavigationTimeout(SessionError):
    """Raised when a page does not load within its timeout."""
    pass


class SelectorNotFound(SessionError):
    """Raised when an expected element is absent from the page."""
    pass


class AutomationSession(Protocol):
    """Capabilities the pipelines need from a browser session."""

    def search(self, query: str, require_title: bool = True) -> List[RawCandidate]:
        ...

    def fetch_detail(self, url: str) -> RawDetail:
        ...

    def fetch_brand(self, asin: str) -> str:
        ...

    def set_delivery_region(self, code: str) -> bool:
        ...


DEFAULT_SELECTORS: Dict[str, str] = {
    "result_item": "div.s-main-slot div.s-result-item[data-asin]",
    "result_title": "h2 span",
    "result_brand": "div[data-cy='title-recipe'] h2 span",
    "result_link": "a.a-link-normal.s-no-outline",
    "product_title": "#productTitle",
    "breadcrumbs": "#wayfinding-breadcrumbs_feature_div ul.a-unordered-list li span.a-list-item a",
    "byline": "#bylineInfo",
    "overview_brand": ".po-brand td.a-span9 span.a-size-base.po-break-word",
    "location_trigger": "#nav-global-location-popover-link",
    "zip_input": "#GLUXZipUpdateInput",
    "zip_apply": "#GLUXZipUpdate",
    "zip_confirm": "#GLUXConfirmClose",
}

BYLINE_BRAND_PATTERN = re.compile(r"Brand:\s*(.+)", re.IGNORECASE)


def random_user_agent() -> str:
    """Desktop Chrome user agent with a randomized major version."""
    return (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        f"(KHTML, like Gecko) Chrome/{random.randint(100, 109)}.0.0.0 Safari/537.36"
    )


class AmazonSession:
    """Single shared browser page driving Amazon search and product pages.

    Not safe for concurrent navigation: callers issue one call at a time.
    """

    def __init__(self, config: Dict[str, Any], headless: Optional[bool] = None):
        """Initialize the session.

        Args:
            config: Configuration dictionary
            headless: Override headless mode from config
        """
        website_config = get_website_config(config)
        browser_config = get_browser_config(config)

        self.base_url = website_config.get("base_url", "https://www.amazon.com")
        self.search_url_template = website_config.get("search_url", "https://www.amazon.com/s?k={query}")
        self.product_url_template = website_config.get("product_url", "https://www.amazon.com/dp/{asin}")
        self.region_probe_url = website_config.get("region_probe_url", "https://www.amazon.com/s?k=NIKE")
        self.search_timeout = int(website_config.get("search_timeout", 60000))
        self.detail_timeout = int(website_config.get("detail_timeout", 60000))
        self.brand_timeout = int(website_config.get("brand_timeout", 30000))
        self.selector_timeout = int(website_config.get("selector_timeout", 15000))
        self.region_timeout = int(website_config.get("region_timeout", 10000))

        self.headless = headless if headless is not None else browser_config.get("headless", True)
        self.locale = browser_config.get("locale", "en-IN,en;q=0.9")
        self.viewport = browser_config.get("viewport", {"width": 1280, "height": 800})
        self.user_agent = browser_config.get("user_agent") or random_user_agent()

        self.selectors = dict(DEFAULT_SELECTORS)
        self.selectors.update(website_config.get("selectors", {}) or {})

        self.page: Optional[Page] = None
        self.playwright = None
        self.browser = None
        self.context = None

        logger.info(f"Session initialized (headless={self.headless})")

    def _new_context(self):
        self.context = self.browser.new_context(
            viewport=self.viewport,
            user_agent=self.user_agent,
            extra_http_headers={"Accept-Language": self.locale},
        )
        self.page = self.context.new_page()

    def start(self):
        """Start the browser and create a new page."""
        logger.info("Starting browser...")
        self.playwright = sync_playwright().start()
        self.browser = self.playwright.chromium.launch(
            headless=self.headless,
            args=["--no-sandbox"],
        )
        self._new_context()
        logger.info("Browser started successfully")

    def stop(self):
        """Stop the browser and cleanup."""
        logger.info("Stopping browser...")
        for resource in (self.context, self.browser):
            if resource is None:
                continue
            try:
                resource.close()
            except PlaywrightError as e:
                logger.debug(f"Ignoring close error: {e}")
        if self.playwright:
            self.playwright.stop()
        self.page = None
        self.context = None
        self.browser = None
        self.playwright = None
        logger.info("Browser stopped")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()

    def configure(
        self,
        locale: Optional[str] = None,
        viewport: Optional[Dict[str, int]] = None,
        user_agent: Optional[str] = None,
    ):
        """Change locale, viewport or user agent; rebuilds the context when running."""
        if locale:
            self.locale = locale
        if viewport:
            self.viewport = viewport
        if user_agent:
            self.user_agent = user_agent

        if self.browser is not None:
            if self.context is not None:
                self.context.close()
            self._new_context()
            logger.info(f"Browser context rebuilt (locale={self.locale}, viewport={self.viewport})")

    def _require_page(self) -> Page:
        if not self.page:
            raise RuntimeError("Browser not started")
        return self.page

    def _goto(self, url: str, timeout: int):
        page = self._require_page()
        try:
            page.goto(url, wait_until="domcontentloaded", timeout=timeout)
        except PlaywrightTimeout as e:
            raise NavigationTimeout(f"Timed out loading {url}") from e
        except PlaywrightError as e:
            raise NavigationTimeout(f"Navigation to {url} failed: {e}") from e

    def set_delivery_region(self, code: str) -> bool:
        """Best-effort change of the delivery ZIP code.

        Returns:
            True when the new region was applied, False on any failure.
        """
        try:
            page = self._require_page()
            self._goto(self.region_probe_url, timeout=self.search_timeout)

            page.wait_for_selector(self.selectors["location_trigger"], timeout=self.region_timeout)
            page.click(self.selectors["location_trigger"])

            page.wait_for_selector(self.selectors["zip_input"], timeout=self.region_timeout)
            page.fill(self.selectors["zip_input"], "")
            page.type(self.selectors["zip_input"], code, delay=100)

            page.wait_for_selector(self.selectors["zip_apply"], timeout=self.region_timeout)
            page.click(self.selectors["zip_apply"])

            try:
                page.wait_for_selector(self.selectors["zip_confirm"], timeout=7000)
                page.click(self.selectors["zip_confirm"])
                logger.info("Confirmed new delivery location.")
            except PlaywrightTimeout:
                logger.info("No confirmation popup appeared.")

            page.wait_for_timeout(3000)
            logger.info(f"Delivery region set to {code}")
            return True
        except (SessionError, PlaywrightError, RuntimeError) as e:
            logger.warning(f"Failed to set delivery region: {e}")
            return False

    def search(self, query: str, require_title: bool = True) -> List[RawCandidate]:
        """Load the search results page for ``query`` and extract product cards.

        Keyword searches pass ``require_title=False``: they only need the ASIN
        and the link of each card.
        """
        url = self.search_url_template.format(query=quote(query))
        self._goto(url, timeout=self.search_timeout)

        try:
            cards = self._require_page().locator(self.selectors["result_item"]).all()
        except PlaywrightError as e:
            raise SessionError(f"Failed to read results for {query}: {e}") from e

        candidates = []
        for card in cards:
            candidate = self._parse_candidate(card, require_title=require_title)
            if candidate:
                candidates.append(candidate)

        logger.debug(f"[{query}] Extracted {len(candidates)} candidate(s) from {len(cards)} card(s)")
        return candidates

    def _parse_candidate(self, card, require_title: bool = True) -> Optional[RawCandidate]:
        """Parse a result card; cards without ASIN or link (or title) are dropped."""

        def _text(selector: str) -> str:
            try:
                locator = card.locator(selector)
                if locator.count() == 0:
                    return ""
                return (locator.first.inner_text() or "").strip()
            except PlaywrightError:
                return ""

        try:
            asin = (card.get_attribute("data-asin") or "").strip()
        except PlaywrightError:
            return None
        title = _text(self.selectors["result_title"])
        brand_text = _text(self.selectors["result_brand"])

        href = ""
        try:
            link_locator = card.locator(self.selectors["result_link"])
            if link_locator.count() > 0:
                href = link_locator.first.get_attribute("href") or ""
        except PlaywrightError:
            href = ""

        if not (asin and href) or (require_title and not title):
            return None

        return RawCandidate(
            asin=asin,
            title=title,
            brand_text=brand_text,
            link=urljoin(self.base_url, href),
        )

    def fetch_detail(self, url: str) -> RawDetail:
        """Extract title, breadcrumbs and byline brand from a product page.

        Raises:
            NavigationTimeout: If the page does not load.
            SelectorNotFound: If the title or the breadcrumb trail is missing.
        """
        self._goto(url, timeout=self.detail_timeout)
        page = self._require_page()

        try:
            page.wait_for_selector(self.selectors["product_title"], timeout=self.selector_timeout)
        except PlaywrightTimeout as e:
            raise SelectorNotFound(f"No product title on {url}") from e

        try:
            breadcrumbs = [
                text.strip()
                for text in page.locator(self.selectors["breadcrumbs"]).all_inner_texts()
                if text and text.strip()
            ]
            if not breadcrumbs:
                raise SelectorNotFound(f"No breadcrumbs on {url}")

            title = (page.locator(self.selectors["product_title"]).first.inner_text() or "").strip()

            brand_info = ""
            byline = page.locator(self.selectors["byline"])
            if byline.count() > 0:
                brand_info = (byline.first.inner_text() or "").replace("Brand: ", "").strip()
        except PlaywrightError as e:
            raise SessionError(f"Failed to read product details on {url}: {e}") from e

        return RawDetail(title=title, breadcrumbs=breadcrumbs, brand_info=brand_info)

    def fetch_brand(self, asin: str) -> str:
        """Read the brand shown on a product page, or "" when none is shown."""
        self._goto(self.product_url_template.format(asin=quote(asin)), timeout=self.brand_timeout)
        page = self._require_page()

        try:
            overview = page.locator(self.selectors["overview_brand"])
            if overview.count() > 0:
                brand = (overview.first.text_content() or "").strip()
                if brand:
                    return brand

            byline = page.locator(self.selectors["byline"])
            if byline.count() > 0:
                return parse_byline_brand(byline.first.text_content() or "")
        except PlaywrightError as e:
            raise SessionError(f"Failed to read brand for {asin}: {e}") from e
        return ""


def parse_byline_brand(byline_text: str) -> str:
    """Extract the brand from a ``Brand: X`` byline."""
    match = BYLINE_BRAND_PATTERN.search(byline_text or "")
    return match.group(1).strip() if match else ""
