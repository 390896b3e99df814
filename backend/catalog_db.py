"""
Catalog storage: PostgreSQL when DATABASE_URL is set, SQLite otherwise.

Provides the stored-catalog supplier (load_catalog), the persistence sink
(persist_product / CatalogStore) and run/alert persistence for recrawls.
Deletes are soft: rows keep status='deleted' and a deleted_at timestamp.
"""

import json
import sqlite3  # Always available for fallback/reconnect
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

try:
    import psycopg2
    import psycopg2.extras
    HAS_POSTGRES = True
except ImportError:
    HAS_POSTGRES = False

from catalog_config import DATABASE_FILE, USE_POSTGRES, get_database_url
from catalog_models import (
    Operation, Product, Variant, STATUS_ACTIVE, STATUS_DELETED,
)
from recrawl_errors import PersistenceError
from recrawl_stats import AlertSeverity, StatsTracker


# =============================================================================
# Schema
# =============================================================================

# {pk} and {ts} are filled per backend
SCHEMA_STATEMENTS = [
    '''
    CREATE TABLE IF NOT EXISTS stores (
        store_id {pk},
        store_key TEXT NOT NULL UNIQUE,
        name TEXT,
        domain TEXT,
        country TEXT,
        currency TEXT,
        is_scraped INTEGER DEFAULT 0,
        last_scraped_at TEXT,
        created_at {ts}
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS products (
        product_id {pk},
        store_id INTEGER NOT NULL REFERENCES stores(store_id),
        parent_product_id TEXT NOT NULL,
        name TEXT,
        description TEXT,
        category TEXT,
        brand TEXT,
        gender TEXT,
        materials TEXT,
        retailer_domain TEXT,
        source TEXT,
        return_policy_link TEXT,
        operation_type TEXT,
        status TEXT DEFAULT 'active',
        deleted_at TEXT,
        updated_at TEXT,
        created_at {ts},
        UNIQUE(store_id, parent_product_id)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS variants (
        variant_row_id {pk},
        product_id INTEGER NOT NULL REFERENCES products(product_id),
        variant_id TEXT NOT NULL,
        color TEXT,
        size TEXT,
        mpn TEXT,
        price_currency TEXT,
        original_price REAL,
        selling_price REAL,
        sale_price REAL,
        final_price REAL,
        discount REAL,
        is_on_sale INTEGER DEFAULT 0,
        is_in_stock INTEGER DEFAULT 0,
        image_url TEXT,
        alternate_image_urls TEXT,
        link_url TEXT,
        deeplink_url TEXT,
        operation_type TEXT,
        status TEXT DEFAULT 'active',
        deleted_at TEXT,
        updated_at TEXT,
        created_at {ts},
        UNIQUE(product_id, variant_id)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS recrawl_runs (
        run_id {pk},
        store_id INTEGER REFERENCES stores(store_id),
        started_at TEXT,
        completed_at TEXT,
        status TEXT,
        products_discovered INTEGER DEFAULT 0,
        products_processed INTEGER DEFAULT 0,
        products_skipped INTEGER DEFAULT 0,
        batches_committed INTEGER DEFAULT 0,
        batches_failed INTEGER DEFAULT 0,
        products_inserted INTEGER DEFAULT 0,
        products_updated INTEGER DEFAULT 0,
        products_deleted INTEGER DEFAULT 0,
        products_unchanged INTEGER DEFAULT 0,
        variants_inserted INTEGER DEFAULT 0,
        variants_updated INTEGER DEFAULT 0,
        variants_deleted INTEGER DEFAULT 0,
        variants_unchanged INTEGER DEFAULT 0,
        errors INTEGER DEFAULT 0,
        warnings INTEGER DEFAULT 0,
        is_full_crawl INTEGER DEFAULT 1,
        max_products_limit INTEGER
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS recrawl_alerts (
        alert_id {pk},
        run_id INTEGER REFERENCES recrawl_runs(run_id),
        alert_type TEXT NOT NULL,
        severity TEXT NOT NULL,
        parent_product_id TEXT,
        variant_id TEXT,
        product_name TEXT,
        old_value TEXT,
        new_value TEXT,
        change_percent REAL,
        message TEXT,
        created_at {ts}
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_products_store ON products(store_id, status)',
    'CREATE INDEX IF NOT EXISTS idx_variants_product ON variants(product_id)',
    'CREATE INDEX IF NOT EXISTS idx_alerts_run ON recrawl_alerts(run_id)',
]


def create_schema(conn, postgres: bool = False):
    """Create all tables on an open connection."""
    pk = 'SERIAL PRIMARY KEY' if postgres else 'INTEGER PRIMARY KEY AUTOINCREMENT'
    ts = 'TIMESTAMP DEFAULT NOW()' if postgres else 'TEXT DEFAULT CURRENT_TIMESTAMP'
    cursor = conn.cursor()
    for statement in SCHEMA_STATEMENTS:
        cursor.execute(statement.format(pk=pk, ts=ts))
    conn.commit()


def init_postgres_database(db_url: str):
    """Initialize PostgreSQL database with schema."""
    conn = psycopg2.connect(db_url)
    create_schema(conn, postgres=True)
    print("  PostgreSQL database initialized")
    return conn


def init_sqlite_database(db_path: str):
    """Initialize SQLite database with schema (fallback)."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    create_schema(conn, postgres=False)
    print(f"  SQLite database initialized: {db_path}")
    return conn


def is_postgres(conn) -> bool:
    """Check if connection is PostgreSQL."""
    return HAS_POSTGRES and hasattr(conn, 'info')


def db_placeholder(conn) -> str:
    """Return the correct placeholder for the database type."""
    return '%s' if is_postgres(conn) else '?'


def _insert_returning_id(conn, sql: str, params: tuple, id_column: str) -> int:
    cursor = conn.cursor()
    if is_postgres(conn):
        cursor.execute(f'{sql} RETURNING {id_column}', params)
        return cursor.fetchone()[0]
    cursor.execute(sql, params)
    return cursor.lastrowid


# =============================================================================
# Database Connection Wrapper with Auto-Reconnect
# =============================================================================

class DatabaseConnection:
    """
    Wrapper for database connection that handles automatic reconnection.
    Detects closed connections and reconnects transparently.
    """

    def __init__(self, db_path: str = None):
        self.db_path = db_path or DATABASE_FILE
        self.postgres_url = None
        self._conn = None
        self._is_postgres = False

    def connect(self):
        """Establish database connection."""
        self.postgres_url = get_database_url()
        if USE_POSTGRES and HAS_POSTGRES and self.postgres_url:
            self._conn = init_postgres_database(self.postgres_url)
            self._is_postgres = True
        else:
            if not HAS_POSTGRES:
                print("  (psycopg2 not installed, using SQLite)")
            elif not self.postgres_url:
                print("  (DATABASE_URL not set, using SQLite)")
            self._conn = init_sqlite_database(self.db_path)
            self._is_postgres = False
        return self._conn

    def reconnect(self):
        """Reconnect to database after connection loss."""
        print("  🔄 Reconnecting to database...", flush=True)
        self._close_quietly()

        if self._is_postgres and self.postgres_url:
            self._conn = psycopg2.connect(self.postgres_url)
            print("  ✓ Database reconnected (PostgreSQL)", flush=True)
        else:
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
            print(f"  ✓ Database reconnected (SQLite: {self.db_path})", flush=True)
        return self._conn

    def is_connection_error(self, error: Exception) -> bool:
        """Check if exception is a connection-related error."""
        error_str = str(error).lower()
        connection_errors = [
            'connection already closed',
            'connection is closed',
            'server closed the connection',
            'could not receive data',
            'ssl syscall error',
            'operation timed out',
            'connection refused',
            'connection reset',
            'broken pipe',
            'network is unreachable',
            'cannot operate on a closed database',
        ]
        return any(err in error_str for err in connection_errors)

    def execute_with_retry(self, func, *args, max_retries: int = 3, **kwargs):
        """
        Execute a database function with automatic reconnection on failure.

        Only for self-contained units of work: a reconnect discards any
        uncommitted writes made earlier on the old connection.

        Args:
            func: Function to execute (should take conn as first argument)
            *args: Additional arguments to pass to func
            max_retries: Maximum number of reconnection attempts
            **kwargs: Keyword arguments to pass to func

        Returns:
            Result of func
        """
        last_error = None
        for attempt in range(max_retries):
            try:
                return func(self._conn, *args, **kwargs)
            except Exception as e:
                last_error = e
                if self.is_connection_error(e) and attempt < max_retries - 1:
                    print(f"  ⚠ Database error: {e}", flush=True)
                    self.reconnect()
                    time.sleep(1)
                else:
                    raise
        raise last_error

    @property
    def conn(self):
        """Get the underlying connection (for direct access when needed)."""
        return self._conn

    def cursor(self):
        return self._conn.cursor()

    def commit(self):
        """
        Commit the current transaction.

        A lost connection takes its uncommitted writes with it, so the error
        is re-raised after reconnecting; callers redo the unit of work.
        """
        try:
            self._conn.commit()
        except Exception as e:
            if self.is_connection_error(e):
                self.reconnect()
            raise

    def rollback(self):
        """Roll back the current transaction; a dead connection is replaced."""
        try:
            self._conn.rollback()
        except Exception as e:
            if not self.is_connection_error(e):
                raise
            self.reconnect()

    def _close_quietly(self):
        if self._conn:
            try:
                self._conn.close()
            except Exception:
                pass

    def close(self):
        """Close the database connection."""
        self._close_quietly()
        self._conn = None


# =============================================================================
# Stores
# =============================================================================

def get_or_create_store(conn, store_key: str, name: str = None, domain: str = None,
                        country: str = None, currency: str = None) -> int:
    """Get existing store_id or create new one."""
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    cursor.execute(f'SELECT store_id FROM stores WHERE store_key = {ph}', (store_key,))
    row = cursor.fetchone()
    if row:
        return row[0]
    return _insert_returning_id(
        conn,
        f'''INSERT INTO stores (store_key, name, domain, country, currency)
           VALUES ({ph}, {ph}, {ph}, {ph}, {ph})''',
        (store_key, name or store_key, domain, country, currency),
        'store_id',
    )


def mark_store_scraped(conn, store_id: int) -> None:
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    cursor.execute(
        f'UPDATE stores SET is_scraped = 1, last_scraped_at = {ph} WHERE store_id = {ph}',
        (datetime.now().isoformat(), store_id)
    )


# =============================================================================
# Stored catalog supplier
# =============================================================================

PRODUCT_COLUMNS = (
    'product_id', 'parent_product_id', 'name', 'description', 'category', 'brand',
    'gender', 'materials', 'retailer_domain', 'source', 'return_policy_link',
    'operation_type', 'status',
)
VARIANT_COLUMNS = (
    'variant_row_id', 'product_id', 'variant_id', 'color', 'size', 'mpn',
    'price_currency', 'original_price', 'selling_price', 'sale_price', 'final_price',
    'discount', 'is_on_sale', 'is_in_stock', 'image_url', 'alternate_image_urls',
    'link_url', 'deeplink_url', 'operation_type', 'status',
)


def _operation_or_none(value: Optional[str]) -> Optional[Operation]:
    return Operation(value) if value else None


def _row_to_variant(row) -> Variant:
    data = dict(zip(VARIANT_COLUMNS, row))
    return Variant(
        variant_id=data['variant_id'],
        color=data['color'] or '',
        size=data['size'] or '',
        mpn=data['mpn'] or '',
        price_currency=data['price_currency'] or 'USD',
        original_price=data['original_price'],
        selling_price=data['selling_price'],
        sale_price=data['sale_price'],
        final_price=data['final_price'],
        discount=data['discount'],
        is_on_sale=bool(data['is_on_sale']),
        is_in_stock=bool(data['is_in_stock']),
        image_url=data['image_url'] or '',
        alternate_image_urls=json.loads(data['alternate_image_urls'] or '[]'),
        link_url=data['link_url'] or '',
        deeplink_url=data['deeplink_url'] or '',
        operation_type=_operation_or_none(data['operation_type']),
        status=data['status'] or STATUS_ACTIVE,
        storage_id=data['variant_row_id'],
    )


def load_catalog(conn, store_id: int) -> List[Product]:
    """Load every stored product (tombstones included) with its variants."""
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    cursor.execute(
        f'''SELECT {", ".join(PRODUCT_COLUMNS)} FROM products
           WHERE store_id = {ph} ORDER BY product_id''',
        (store_id,)
    )
    products: Dict[int, Product] = {}
    for row in cursor.fetchall():
        data = dict(zip(PRODUCT_COLUMNS, row))
        products[data['product_id']] = Product(
            parent_product_id=data['parent_product_id'],
            name=data['name'] or '',
            description=data['description'] or '',
            category=data['category'] or '',
            brand=data['brand'] or '',
            gender=data['gender'] or '',
            materials=data['materials'] or '',
            retailer_domain=data['retailer_domain'] or '',
            source=data['source'] or '',
            return_policy_link=data['return_policy_link'] or '',
            operation_type=_operation_or_none(data['operation_type']),
            status=data['status'] or STATUS_ACTIVE,
            storage_id=data['product_id'],
        )

    variant_columns = ", ".join(f'v.{c}' for c in VARIANT_COLUMNS)
    cursor.execute(
        f'''SELECT {variant_columns} FROM variants v
           JOIN products p ON p.product_id = v.product_id
           WHERE p.store_id = {ph} ORDER BY v.variant_row_id''',
        (store_id,)
    )
    for row in cursor.fetchall():
        variant = _row_to_variant(row)
        product = products.get(row[1])
        if product is not None:
            product.variants.append(variant)

    return list(products.values())


# =============================================================================
# Persistence sink
# =============================================================================

@dataclass
class PersistResult:
    """Storage identity and applied operation for one persisted product."""
    storage_id: Optional[int]
    operation: Operation
    variant_storage_ids: Dict[str, int] = field(default_factory=dict)


def find_product_id(conn, store_id: int, parent_product_id: str) -> Optional[int]:
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    cursor.execute(
        f'SELECT product_id FROM products WHERE store_id = {ph} AND parent_product_id = {ph}',
        (store_id, parent_product_id)
    )
    row = cursor.fetchone()
    return row[0] if row else None


def _upsert_product_row(conn, store_id: int, product: Product) -> int:
    """Create or update the product row on its natural key; clears any tombstone."""
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    now = datetime.now().isoformat()
    values = (
        product.name, product.description, product.category, product.brand,
        product.gender, product.materials, product.retailer_domain, product.source,
        product.return_policy_link, product.operation_type.value,
    )
    product_id = product.storage_id or find_product_id(conn, store_id, product.parent_product_id)

    if product_id:
        cursor.execute(
            f'''UPDATE products SET name = {ph}, description = {ph}, category = {ph},
               brand = {ph}, gender = {ph}, materials = {ph}, retailer_domain = {ph},
               source = {ph}, return_policy_link = {ph}, operation_type = {ph},
               status = 'active', deleted_at = NULL, updated_at = {ph}
               WHERE product_id = {ph}''',
            values + (now, product_id)
        )
        return product_id

    return _insert_returning_id(
        conn,
        f'''INSERT INTO products
           (store_id, parent_product_id, name, description, category, brand, gender,
            materials, retailer_domain, source, return_policy_link, operation_type,
            status, updated_at)
           VALUES ({ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, 'active', {ph})''',
        (store_id, product.parent_product_id) + values + (now,),
        'product_id',
    )


def _upsert_variant_row(conn, product_id: int, variant: Variant) -> int:
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    now = datetime.now().isoformat()
    values = (
        variant.color, variant.size, variant.mpn, variant.price_currency,
        variant.original_price, variant.selling_price, variant.sale_price,
        variant.final_price, variant.discount,
        int(bool(variant.is_on_sale)), int(bool(variant.is_in_stock)),
        variant.image_url, json.dumps(variant.alternate_image_urls or []),
        variant.link_url, variant.deeplink_url, variant.operation_type.value,
    )

    cursor.execute(
        f'SELECT variant_row_id FROM variants WHERE product_id = {ph} AND variant_id = {ph}',
        (product_id, variant.variant_id)
    )
    row = cursor.fetchone()
    if row:
        cursor.execute(
            f'''UPDATE variants SET color = {ph}, size = {ph}, mpn = {ph}, price_currency = {ph},
               original_price = {ph}, selling_price = {ph}, sale_price = {ph},
               final_price = {ph}, discount = {ph}, is_on_sale = {ph}, is_in_stock = {ph},
               image_url = {ph}, alternate_image_urls = {ph}, link_url = {ph},
               deeplink_url = {ph}, operation_type = {ph},
               status = 'active', deleted_at = NULL, updated_at = {ph}
               WHERE variant_row_id = {ph}''',
            values + (now, row[0])
        )
        return row[0]

    return _insert_returning_id(
        conn,
        f'''INSERT INTO variants
           (product_id, variant_id, color, size, mpn, price_currency, original_price,
            selling_price, sale_price, final_price, discount, is_on_sale, is_in_stock,
            image_url, alternate_image_urls, link_url, deeplink_url, operation_type,
            status, updated_at)
           VALUES ({ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph},
                   {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, 'active', {ph})''',
        (product_id, variant.variant_id) + values + (now,),
        'variant_row_id',
    )


def _soft_delete_variant(conn, product_id: int, variant_id: str) -> None:
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    now = datetime.now().isoformat()
    cursor.execute(
        f'''UPDATE variants SET status = 'deleted', operation_type = 'DELETE',
           deleted_at = {ph}, updated_at = {ph}
           WHERE product_id = {ph} AND variant_id = {ph} AND status != 'deleted' ''',
        (now, now, product_id, variant_id)
    )


def _soft_delete_product(conn, product_id: int) -> None:
    """Tombstone a product and every variant still live under it."""
    cursor = conn.cursor()
    ph = db_placeholder(conn)
    now = datetime.now().isoformat()
    cursor.execute(
        f'''UPDATE products SET status = 'deleted', operation_type = 'DELETE',
           deleted_at = {ph}, updated_at = {ph} WHERE product_id = {ph}''',
        (now, now, product_id)
    )
    cursor.execute(
        f'''UPDATE variants SET status = 'deleted', operation_type = 'DELETE',
           deleted_at = {ph}, updated_at = {ph}
           WHERE product_id = {ph} AND status != 'deleted' ''',
        (now, now, product_id)
    )


def persist_product(conn, store_id: int, product: Product) -> PersistResult:
    """
    Apply one reconciled product to the store.

    INSERT/UPDATE upsert the product and its changed variants on their natural
    keys (so a retried batch never duplicates rows), DELETE soft-deletes the
    product and all its variants, NO_CHANGE writes nothing.
    """
    operation = product.operation_type
    if operation is None:
        raise PersistenceError("Product has no operation_type",
                               parent_product_id=product.parent_product_id)

    if operation == Operation.NO_CHANGE:
        storage_id = product.storage_id or find_product_id(conn, store_id, product.parent_product_id)
        return PersistResult(storage_id=storage_id, operation=operation)

    if operation == Operation.DELETE:
        product_id = product.storage_id or find_product_id(conn, store_id, product.parent_product_id)
        if product_id is None:
            raise PersistenceError("Cannot delete a product that was never stored",
                                   parent_product_id=product.parent_product_id,
                                   operation=operation.value)
        _soft_delete_product(conn, product_id)
        return PersistResult(storage_id=product_id, operation=operation)

    product_id = _upsert_product_row(conn, store_id, product)
    result = PersistResult(storage_id=product_id, operation=operation)
    for variant in product.variants:
        if variant.operation_type == Operation.DELETE:
            _soft_delete_variant(conn, product_id, variant.variant_id)
        elif variant.operation_type in (Operation.INSERT, Operation.UPDATE):
            result.variant_storage_ids[variant.variant_id] = _upsert_variant_row(conn, product_id, variant)
        elif variant.storage_id is not None:
            result.variant_storage_ids[variant.variant_id] = variant.storage_id
    return result


class CatalogStore:
    """
    Stored-catalog supplier and persistence sink for one store.

    persist_product() runs on the open transaction without reconnecting, so a
    failure leaves the batch for rollback() rather than half-applied.
    """

    def __init__(self, db: DatabaseConnection, store_id: int):
        self.db = db
        self.store_id = store_id

    def load_catalog(self) -> List[Product]:
        return self.db.execute_with_retry(load_catalog, self.store_id)

    def persist_product(self, product: Product) -> PersistResult:
        try:
            return persist_product(self.db.conn, self.store_id, product)
        except PersistenceError:
            raise
        except Exception as e:
            operation = product.operation_type.value if product.operation_type else None
            raise PersistenceError(
                f"Failed to persist {product.parent_product_id}: {e}",
                parent_product_id=product.parent_product_id,
                operation=operation,
            ) from e

    def commit(self):
        """Commit the batch on the open connection; never retried on a new one."""
        try:
            self.db.conn.commit()
        except Exception as e:
            raise PersistenceError(f"Commit failed: {e}") from e

    def rollback(self):
        """Discard the batch. A dead connection is replaced for the retry."""
        try:
            self.db.rollback()
        except Exception as e:
            raise PersistenceError(f"Rollback failed: {e}") from e


# =============================================================================
# Recrawl Run Persistence
# =============================================================================

def save_recrawl_run(conn, stats: StatsTracker) -> int:
    """Save the run summary to recrawl_runs. Returns run_id."""
    ph = db_placeholder(conn)
    products = stats.counts.products
    variants = stats.counts.variants
    placeholders = ", ".join([ph] * 21)
    run_id = _insert_returning_id(
        conn,
        f'''INSERT INTO recrawl_runs
           (store_id, started_at, completed_at, status,
            products_discovered, products_processed, products_skipped,
            batches_committed, batches_failed,
            products_inserted, products_updated, products_deleted, products_unchanged,
            variants_inserted, variants_updated, variants_deleted, variants_unchanged,
            errors, warnings, is_full_crawl, max_products_limit)
           VALUES ({placeholders})''',
        (stats.store_id, stats.started_at.isoformat(),
         (stats.completed_at or datetime.now()).isoformat(), stats.status,
         stats.products_discovered, stats.products_processed, stats.products_skipped,
         stats.batches_committed, stats.batches_failed,
         products['INSERT'], products['UPDATE'], products['DELETE'], products['NO_CHANGE'],
         variants['INSERT'], variants['UPDATE'], variants['DELETE'], variants['NO_CHANGE'],
         stats.errors, stats.warnings, int(stats.is_full_crawl), stats.max_products_limit),
        'run_id',
    )
    stats.run_id = run_id
    return run_id


def save_alerts(conn, stats: StatsTracker) -> int:
    """Save warning and critical alerts to recrawl_alerts. Returns count saved."""
    if not stats.run_id:
        return 0

    cursor = conn.cursor()
    ph = db_placeholder(conn)
    saved = 0
    for alert in stats.alerts:
        # Only persist warning and critical alerts (not info)
        if alert.severity == AlertSeverity.INFO:
            continue
        cursor.execute(
            f'''INSERT INTO recrawl_alerts
               (run_id, alert_type, severity, parent_product_id, variant_id,
                product_name, old_value, new_value, change_percent, message)
               VALUES ({ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph}, {ph})''',
            (stats.run_id, alert.alert_type.value, alert.severity.value,
             alert.parent_product_id, alert.variant_id, alert.product_name,
             alert.old_value, alert.new_value, alert.change_percent, alert.message)
        )
        saved += 1
    return saved


def cleanup_old_alerts(conn, days: int = 30) -> int:
    """Delete alerts older than specified days. Returns count deleted."""
    cursor = conn.cursor()
    days = int(days)
    if is_postgres(conn):
        cursor.execute(
            f"DELETE FROM recrawl_alerts WHERE created_at < NOW() - INTERVAL '{days} days'"
        )
    else:
        cursor.execute(
            f"DELETE FROM recrawl_alerts WHERE created_at < datetime('now', '-{days} days')"
        )
    deleted = cursor.rowcount
    if deleted > 0:
        print(f"  Cleaned up {deleted} alerts older than {days} days")
    return deleted
