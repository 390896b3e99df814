#!/usr/bin/env python3
"""
Shopify Store Recrawler

Fetches a Shopify store's full catalog from /products.json, reconciles it
against the stored catalog and persists INSERT / UPDATE / DELETE / NO_CHANGE
operations batch by batch. A JSON file of raw products can be used instead
of a live store (--input).

Usage:
    python shopify_recrawler.py --store-url https://shop.example.com
    python shopify_recrawler.py --input catalog.json --store-key example --validate
"""

import argparse
import re
import sys
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup

from catalog_config import (
    ALERT_RETENTION_DAYS, BATCH_DELAY, BATCH_SIZE, DATABASE_FILE, HEADERS,
    INITIAL_RETRY_DELAY, MAX_RETRIES, MAX_RETRY_DELAY, REQUEST_DELAY,
)
from catalog_db import (
    CatalogStore, DatabaseConnection, cleanup_old_alerts, get_or_create_store,
    mark_store_scraped, save_alerts, save_recrawl_run,
)
from catalog_identity import to_number
from catalog_models import RawProduct, RawVariant
from catalog_sources import FreshItemSupplier, JsonFileSupplier
from catalog_validator import CatalogValidator
from recrawl_driver import RecrawlDriver
from recrawl_errors import BatchAbortedError, SourceError
from recrawl_stats import StatsTracker


# =============================================================================
# Configuration
# =============================================================================

PAGE_LIMIT = 250  # Shopify maximum for /products.json

NO_COLOR = "NO_COLOR"
ONE_SIZE = "ONE_SIZE"

DEFAULT_TITLE = "Default Title"

SIZE_PATTERN = re.compile(r'^(XXS|XS|S|M|L|XL|XXL|XXXL|\d+W?(\.\d+)?|\d+/\d+)$', re.IGNORECASE)
SIZE_OPTION_PATTERN = re.compile(r'size', re.IGNORECASE)
COLOR_OPTION_PATTERN = re.compile(r'colou?r', re.IGNORECASE)


# =============================================================================
# HTTP
# =============================================================================

def fetch_with_backoff(url: str, session: requests.Session,
                       sleep: Callable[[float], None] = time.sleep) -> Optional[Any]:
    """Fetch JSON with exponential backoff. Returns None once retries run out."""
    for attempt in range(MAX_RETRIES):
        delay = min(INITIAL_RETRY_DELAY * (2 ** attempt), MAX_RETRY_DELAY)
        try:
            response = session.get(url, headers=HEADERS, timeout=30)

            if response.status_code == 429:
                print(f"    Rate limited, backoff {delay}s...", flush=True)
                sleep(delay)
                continue

            response.raise_for_status()
            return response.json()

        except (requests.RequestException, ValueError) as e:
            if attempt == MAX_RETRIES - 1:
                print(f"    ✗ Giving up on {url}: {e}", flush=True)
                return None
            sleep(delay)

    return None


def normalize_store_url(url: str) -> str:
    """'shop.example.com/' -> 'https://shop.example.com'"""
    url = url.strip().rstrip('/')
    if not re.match(r'^https?://', url, re.IGNORECASE):
        url = f"https://{url}"
    return url


def get_domain_name(url: str) -> str:
    host = urlparse(normalize_store_url(url)).netloc.lower()
    return host[4:] if host.startswith('www.') else host


# =============================================================================
# Shopify -> raw product mapping
# =============================================================================

def clean_description(body_html: Optional[str]) -> str:
    """Strip HTML tags and collapse whitespace."""
    if not body_html:
        return ""
    text = BeautifulSoup(body_html, 'html.parser').get_text(' ')
    return re.sub(r'\s+', ' ', text).strip()


def _option_value(variant: Dict, index: int) -> Optional[str]:
    value = variant.get(f'option{index + 1}')
    if value is None:
        return None
    value = str(value).strip()
    if not value or value == DEFAULT_TITLE:
        return None
    return value


def _option_index(options: List[Dict], pattern: re.Pattern) -> Optional[int]:
    for i, option in enumerate(options or []):
        name = option.get('name', '') if isinstance(option, dict) else str(option)
        if pattern.search(name or ''):
            return i
    return None


def extract_size(variant: Dict, options: List[Dict]) -> Optional[str]:
    """Size from the size option, else the first option value that looks like a size."""
    index = _option_index(options, SIZE_OPTION_PATTERN)
    if index is not None:
        return _option_value(variant, index)
    for i in range(3):
        value = _option_value(variant, i)
        if value and SIZE_PATTERN.match(value):
            return value
    return None


def extract_color(variant: Dict, options: List[Dict]) -> Optional[str]:
    index = _option_index(options, COLOR_OPTION_PATTERN)
    if index is None:
        return None
    return _option_value(variant, index)


def extra_option_values(variant: Dict, options: List[Dict]) -> List[str]:
    """Values of options that are neither color nor size (e.g. length, fit)."""
    skip = {_option_index(options, COLOR_OPTION_PATTERN)}
    size_index = _option_index(options, SIZE_OPTION_PATTERN)
    if size_index is not None:
        skip.add(size_index)
    values = []
    for i in range(len(options or [])):
        if i in skip:
            continue
        value = _option_value(variant, i)
        if value and not (size_index is None and SIZE_PATTERN.match(value)):
            values.append(value)
    return values


def calculate_discount(original_price: Optional[float], final_price: Optional[float]) -> float:
    if not original_price or original_price <= 0 or final_price is None:
        return 0
    return round((original_price - final_price) / original_price * 100)


def map_shopify_variant(product: Dict, variant: Dict, product_url: str,
                        currency: str) -> RawVariant:
    """One Shopify variant as a single-size colorway."""
    options = product.get('options') or []
    selling_price = to_number(variant.get('price')) or 0.0
    compare_at = to_number(variant.get('compare_at_price')) or 0.0
    original_price = compare_at if compare_at > 0 else selling_price
    is_on_sale = compare_at > selling_price

    images = [img.get('src') for img in product.get('images') or [] if img.get('src')]
    featured = variant.get('featured_image') or {}
    image_url = featured.get('src') or (images[0] if images else '')
    alternates = [src for src in images[1:] if src != image_url]

    size = extract_size(variant, options) or ONE_SIZE
    extras = extra_option_values(variant, options)
    if extras:
        size = " / ".join([size] + extras)
    color = extract_color(variant, options) or NO_COLOR
    link = f"{product_url}?variant={variant.get('id')}"

    return RawVariant(
        color_name=color,
        sizes=[size],
        original_price=original_price,
        selling_price=selling_price,
        sale_price=selling_price if is_on_sale else None,
        final_price=selling_price,
        discount=calculate_discount(original_price, selling_price),
        is_on_sale=is_on_sale,
        is_in_stock=bool(variant.get('available', False)),
        price_currency=currency,
        image_url=image_url,
        alternate_image_urls=alternates,
        link_url=link,
        deeplink_url=link,
    )


def map_shopify_product(product: Dict, store_url: str, currency: str = "USD",
                        return_policy_link: str = "") -> RawProduct:
    """Map a /products.json entry to a RawProduct."""
    product_url = f"{store_url}/products/{product.get('handle', '')}"
    pid = product.get('id')
    return RawProduct(
        parent_product_id=str(pid) if pid is not None else None,
        name=product.get('title') or '',
        description=clean_description(product.get('body_html')),
        category=product.get('product_type') or '',
        brand=product.get('vendor') or '',
        retailer_domain=get_domain_name(store_url),
        source='shopify',
        return_policy_link=return_policy_link,
        variants=[map_shopify_variant(product, v, product_url, currency)
                  for v in product.get('variants') or []],
    )


class ShopifySupplier(FreshItemSupplier):
    """Fresh items from a Shopify store's public /products.json."""

    def __init__(self, store_url: str, store_key: Optional[str] = None, currency: str = "USD",
                 return_policy_link: str = "", session: Optional[requests.Session] = None,
                 request_delay: float = REQUEST_DELAY, max_pages: Optional[int] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.store_url = normalize_store_url(store_url)
        super().__init__(store_key or get_domain_name(self.store_url))
        self.currency = currency
        self.return_policy_link = return_policy_link
        self.session = session or requests.Session()
        self.request_delay = request_delay
        self.max_pages = max_pages
        self.sleep = sleep

    def fetch_pages(self) -> List[Dict]:
        """Page through /products.json until an empty page."""
        products = []
        page = 1
        while self.max_pages is None or page <= self.max_pages:
            url = f"{self.store_url}/products.json?limit={PAGE_LIMIT}&page={page}"
            timestamp = datetime.now().strftime("%H:%M:%S")
            print(f"  [{timestamp}] Page {page}...", end=" ", flush=True)

            data = fetch_with_backoff(url, self.session, sleep=self.sleep)
            if data is None:
                # A partial catalog must never reach reconciliation
                raise SourceError(f"Could not fetch page {page}: {url}")

            batch = data.get('products') or []
            print(f"{len(batch)} products", flush=True)
            if not batch:
                break
            products.extend(batch)
            page += 1
            self.sleep(self.request_delay)
        return products

    def fetch_products(self) -> List[RawProduct]:
        return [
            map_shopify_product(p, self.store_url, self.currency, self.return_policy_link)
            for p in self.fetch_pages()
        ]

    def describe(self) -> str:
        return f"Shopify store {self.store_url}"


# =============================================================================
# Main
# =============================================================================

def build_supplier(args) -> FreshItemSupplier:
    if args.input:
        return JsonFileSupplier(args.input, store_key=args.store_key)
    return ShopifySupplier(args.store_url, store_key=args.store_key, currency=args.currency)


def prepare_store(conn, store_key: str, name: str = None, domain: str = None,
                  country: str = None, currency: str = None) -> int:
    """Resolve the store and prune old alerts in one committed unit."""
    store_id = get_or_create_store(conn, store_key, name, domain, country, currency)
    cleanup_old_alerts(conn, ALERT_RETENTION_DAYS)
    conn.commit()
    return store_id


def record_run(conn, stats: StatsTracker, mark_scraped: bool) -> int:
    """Save the run and its alerts in one committed unit. Returns run_id."""
    if mark_scraped:
        mark_store_scraped(conn, stats.store_id)
    run_id = save_recrawl_run(conn, stats)
    save_alerts(conn, stats)
    conn.commit()
    return run_id


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the recrawler."""
    parser = argparse.ArgumentParser(description='Recrawl a store and reconcile its stored catalog')
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument('--store-url', help='Shopify store URL')
    source.add_argument('--input', help='JSON file of raw products (offline recrawl)')
    parser.add_argument('--store-key', help='Store identifier (default: domain or file name)')
    parser.add_argument('--store-name', help='Display name for a new store')
    parser.add_argument('--country', default='US', help='Store country (default: US)')
    parser.add_argument('--currency', default='USD', help='Price currency (default: USD)')
    parser.add_argument('--batch-size', type=int, default=BATCH_SIZE,
                        help=f'Products per batch (default: {BATCH_SIZE})')
    parser.add_argument('--batch-delay', type=float, default=BATCH_DELAY,
                        help=f'Seconds between batches (default: {BATCH_DELAY})')
    parser.add_argument('--max-products', type=int, default=None,
                        help='Maximum products to reconcile (for testing; disables deletes)')
    parser.add_argument('--db', default=DATABASE_FILE,
                        help=f'SQLite database path when DATABASE_URL is unset (default: {DATABASE_FILE})')
    parser.add_argument('--validate', action='store_true',
                        help='Run strict catalog validation after reconciliation')
    parser.add_argument('--no-delete', action='store_true',
                        help='Do not delete stored products missing from this crawl')
    args = parser.parse_args(argv)

    supplier = build_supplier(args)

    print("=" * 60)
    print(f"Catalog Recrawler: {supplier.describe()}")
    print("=" * 60)

    print("\nFetching fresh catalog...", flush=True)
    try:
        raw_products = supplier.fetch_products()
    except SourceError as e:
        print(f"✗ {e}")
        return 1

    if args.max_products:
        raw_products = raw_products[:args.max_products]
        print(f"Limited to {len(raw_products)} products (--max-products)")
    if not raw_products:
        print("\nNo products found, nothing to reconcile.")
        return 1
    print(f"✓ {len(raw_products)} products fetched")

    print(f"\nInitializing database: {args.db}")
    db = DatabaseConnection(args.db)
    db.connect()
    store_id = db.execute_with_retry(
        prepare_store, supplier.store_key, args.store_name,
        getattr(supplier, 'store_url', None), args.country, args.currency
    )
    print("✓ Database initialized")

    is_full_crawl = args.max_products is None
    stats = StatsTracker(store_id=store_id, is_full_crawl=is_full_crawl,
                         max_products_limit=args.max_products)
    driver = RecrawlDriver(
        CatalogStore(db, store_id),
        stats=stats,
        store_key=supplier.store_key,
        batch_size=args.batch_size,
        batch_delay=args.batch_delay,
        delete_absent=is_full_crawl and not args.no_delete,
    )

    exit_code = 0
    try:
        report = driver.run(raw_products)
    except BatchAbortedError as e:
        print(f"\n✗ {e}")
        report = e.report
        exit_code = 1

    if args.validate and report is not None:
        print("\nValidating catalog...")
        result = CatalogValidator(stats=stats).validate(report.products)
        print(f"  {len(result.valid_products)} valid, {len(result.invalid_products)} invalid, "
              f"{len(result.warnings)} warnings")
        for message in result.errors[:10]:
            print(f"  ✗ {message}")
        if result.errors:
            exit_code = 1

    stats.completed_at = datetime.now()
    db.execute_with_retry(record_run, stats, report is not None and report.completed)
    db.close()

    stats.print_report()
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
