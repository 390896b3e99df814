"""
Pytest fixtures and test infrastructure for recrawl tests.
"""
import copy
import os
import sqlite3
import sys

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from catalog_db import PersistResult, create_schema  # noqa: E402
from catalog_identity import derive_mpn, derive_variant_key  # noqa: E402
from catalog_models import (  # noqa: E402
    Operation, Product, RawProduct, RawVariant, Variant, STATUS_ACTIVE, STATUS_DELETED,
)


@pytest.fixture
def sqlite_conn():
    """In-memory SQLite database for isolated testing."""
    conn = sqlite3.connect(':memory:')
    conn.row_factory = sqlite3.Row
    create_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def postgres_conn():
    """Test PostgreSQL connection (requires TEST_DATABASE_URL env var)."""
    url = os.environ.get('TEST_DATABASE_URL')
    if not url:
        pytest.skip("TEST_DATABASE_URL not set")
    import psycopg2
    conn = psycopg2.connect(url)
    create_schema(conn, postgres=True)
    yield conn
    conn.rollback()  # Don't persist test data
    conn.close()


@pytest.fixture
def db_wrapper(tmp_path, monkeypatch):
    """DatabaseConnection on a temporary SQLite file."""
    from catalog_db import DatabaseConnection

    monkeypatch.delenv('DATABASE_URL', raising=False)
    db = DatabaseConnection(str(tmp_path / 'catalog.db'))
    db.connect()
    yield db
    db.close()


@pytest.fixture
def memory_sink():
    return MemorySink()


# =============================================================================
# Builders
# =============================================================================

def make_raw_variant(color='Red', sizes=('M',), price=20, **kwargs):
    """Raw colorway with consistent price fields."""
    fields = dict(
        original_price=price,
        selling_price=price,
        sale_price=None,
        final_price=price,
        is_in_stock=True,
        link_url='https://shop.test/p',
        deeplink_url='https://shop.test/p',
        image_url='https://shop.test/img.jpg',
    )
    fields.update(kwargs)
    return RawVariant(color_name=color, sizes=list(sizes), **fields)


def make_raw_product(pid='P1', variants=None, name=None, **kwargs):
    if variants is None:
        variants = [make_raw_variant()]
    return RawProduct(
        parent_product_id=pid,
        name=name or f'Product {pid}',
        description=kwargs.pop('description', 'A lovely test product'),
        variants=variants,
        **kwargs
    )


def make_variant(pid='P1', color='Red', size='M', price=20.0, **kwargs):
    """Stored-style variant with keys derived the same way a crawl derives them."""
    fields = dict(
        original_price=price,
        selling_price=price,
        sale_price=None,
        final_price=price,
        discount=None,
        is_in_stock=True,
        link_url='https://shop.test/p',
        deeplink_url='https://shop.test/p',
        image_url='https://shop.test/img.jpg',
    )
    fields.update(kwargs)
    fields.setdefault('variant_id', derive_variant_key(pid, color, size))
    fields.setdefault('mpn', derive_mpn(pid, color))
    return Variant(color=color, size=size, **fields)


def make_product(pid='P1', variants=None, name=None, **kwargs):
    if variants is None:
        variants = [make_variant(pid)]
    return Product(
        parent_product_id=pid,
        name=name or f'Product {pid}',
        description=kwargs.pop('description', 'A lovely test product'),
        variants=variants,
        **kwargs
    )


def ops(variants):
    """variant_id -> operation for quick assertions."""
    return {v.variant_id: v.operation_type for v in variants}


# =============================================================================
# In-memory sink
# =============================================================================

class MemorySink:
    """
    Stored catalog held in memory, applying operations the way catalog_db does.

    fail_on: parent_product_ids whose persist call raises; fail_times limits
    how many times each of them fails (None = always).
    """

    def __init__(self, products=None, fail_on=None, fail_times=None):
        self.products = {p.parent_product_id: p for p in (products or [])}
        self.fail_on = set(fail_on or [])
        self.fail_times = fail_times
        self.failures = {}
        self.pending = []
        self.commits = 0
        self.rollbacks = 0
        self.persist_calls = []
        self._next_id = 1

    def _new_id(self):
        self._next_id += 1
        return self._next_id

    def load_catalog(self):
        return copy.deepcopy(list(self.products.values()))

    def persist_product(self, product):
        self.persist_calls.append((product.parent_product_id, product.operation_type))
        pid = product.parent_product_id
        if pid in self.fail_on:
            count = self.failures.get(pid, 0)
            if self.fail_times is None or count < self.fail_times:
                self.failures[pid] = count + 1
                raise RuntimeError(f"write failed for {pid}")

        stored = self.products.get(pid)
        storage_id = product.storage_id or (stored.storage_id if stored else None) or self._new_id()
        applied = copy.deepcopy(product)
        applied.storage_id = storage_id
        variant_ids = {}
        for variant in applied.variants:
            if variant.storage_id is None:
                variant.storage_id = self._new_id()
            variant_ids[variant.variant_id] = variant.storage_id
        self.pending.append(applied)
        return PersistResult(storage_id=storage_id, operation=product.operation_type,
                             variant_storage_ids=variant_ids)

    def commit(self):
        for product in self.pending:
            if product.operation_type == Operation.NO_CHANGE:
                continue
            if product.operation_type == Operation.DELETE:
                product.status = STATUS_DELETED
                for variant in product.variants:
                    variant.status = STATUS_DELETED
            else:
                product.status = STATUS_ACTIVE
            self.products[product.parent_product_id] = product
        self.pending = []
        self.commits += 1

    def rollback(self):
        self.pending = []
        self.rollbacks += 1
