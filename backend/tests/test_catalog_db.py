"""
Tests for catalog storage: loading, persisting operations, soft deletes,
run/alert persistence and the database-backed store used by the driver.
"""
import sqlite3

import pytest

from catalog_models import Operation, STATUS_ACTIVE, STATUS_DELETED
from conftest import make_product, make_raw_product, make_raw_variant, make_variant


def reconciled(stored, fresh):
    from catalog_reconciler import reconcile_product

    return reconcile_product(stored, fresh).product


def count_rows(conn, table, where=''):
    cursor = conn.cursor()
    cursor.execute(f'SELECT COUNT(*) FROM {table} {where}')
    return cursor.fetchone()[0]


class DroppingConnection:
    """SQLite connection whose first commit loses the transaction and the connection."""

    def __init__(self, conn):
        self._conn = conn
        self.commits_dropped = 0

    def commit(self):
        if self.commits_dropped == 0:
            self.commits_dropped += 1
            self._conn.rollback()
            self._conn.close()
            raise sqlite3.OperationalError("server closed the connection unexpectedly")
        self._conn.commit()

    def __getattr__(self, name):
        return getattr(self._conn, name)


class TestStores:

    def test_get_or_create_store(self, sqlite_conn):
        """Same key returns the same store_id."""
        from catalog_db import get_or_create_store

        first = get_or_create_store(sqlite_conn, 'demo', domain='https://demo.test')
        second = get_or_create_store(sqlite_conn, 'demo')
        other = get_or_create_store(sqlite_conn, 'other')

        assert first == second
        assert other != first
        assert count_rows(sqlite_conn, 'stores') == 2

    def test_mark_store_scraped(self, sqlite_conn):
        from catalog_db import get_or_create_store, mark_store_scraped

        store_id = get_or_create_store(sqlite_conn, 'demo')
        mark_store_scraped(sqlite_conn, store_id)

        cursor = sqlite_conn.cursor()
        cursor.execute('SELECT is_scraped, last_scraped_at FROM stores WHERE store_id = ?', (store_id,))
        row = cursor.fetchone()
        assert row[0] == 1
        assert row[1] is not None


class TestPersistProduct:

    @pytest.fixture
    def store_id(self, sqlite_conn):
        from catalog_db import get_or_create_store
        return get_or_create_store(sqlite_conn, 'demo')

    def test_insert_and_load(self, sqlite_conn, store_id):
        """Inserted products load back with their variants and storage ids."""
        from catalog_db import load_catalog, persist_product

        product = reconciled(None, make_product('P1', [
            make_variant('P1', 'Red', 'S', alternate_image_urls=['https://shop.test/2.jpg']),
            make_variant('P1', 'Red', 'M', sale_price=15.0, is_on_sale=True),
        ]))
        result = persist_product(sqlite_conn, store_id, product)

        assert result.operation == Operation.INSERT
        assert len(result.variant_storage_ids) == 2

        loaded = load_catalog(sqlite_conn, store_id)
        assert len(loaded) == 1
        stored = loaded[0]
        assert stored.storage_id == result.storage_id
        assert stored.status == STATUS_ACTIVE
        assert stored.operation_type == Operation.INSERT
        assert [v.size for v in stored.variants] == ['S', 'M']
        assert stored.variants[0].alternate_image_urls == ['https://shop.test/2.jpg']
        assert stored.variants[1].sale_price == 15.0
        assert stored.variants[1].is_on_sale is True

    def test_retried_insert_does_not_duplicate(self, sqlite_conn, store_id):
        """Persisting the same INSERT twice upserts on natural keys."""
        from catalog_db import persist_product

        product = reconciled(None, make_product('P1'))
        first = persist_product(sqlite_conn, store_id, product)
        second = persist_product(sqlite_conn, store_id, product)

        assert first.storage_id == second.storage_id
        assert count_rows(sqlite_conn, 'products') == 1
        assert count_rows(sqlite_conn, 'variants') == 1

    def test_update_writes_changed_variant(self, sqlite_conn, store_id):
        from catalog_db import load_catalog, persist_product

        persist_product(sqlite_conn, store_id, reconciled(None, make_product('P1')))
        stored = load_catalog(sqlite_conn, store_id)[0]

        update = reconciled(stored, make_product('P1', [make_variant('P1', price=12.5)]))
        assert update.operation_type == Operation.UPDATE
        persist_product(sqlite_conn, store_id, update)

        variant = load_catalog(sqlite_conn, store_id)[0].variants[0]
        assert variant.final_price == 12.5
        assert variant.operation_type == Operation.UPDATE

    def test_variant_delete_is_soft(self, sqlite_conn, store_id):
        """A synthesized variant DELETE keeps the row as a tombstone."""
        from catalog_db import load_catalog, persist_product

        persist_product(sqlite_conn, store_id, reconciled(None, make_product('P1', [
            make_variant('P1', 'Red', 'S'), make_variant('P1', 'Red', 'M'),
        ])))
        stored = load_catalog(sqlite_conn, store_id)[0]
        persist_product(sqlite_conn, store_id,
                        reconciled(stored, make_product('P1', [make_variant('P1', 'Red', 'S')])))

        variants = {v.size: v for v in load_catalog(sqlite_conn, store_id)[0].variants}
        assert variants['S'].status == STATUS_ACTIVE
        assert variants['M'].status == STATUS_DELETED
        assert count_rows(sqlite_conn, 'variants', "WHERE deleted_at IS NOT NULL") == 1

    def test_product_delete_tombstones_everything(self, sqlite_conn, store_id):
        from catalog_db import load_catalog, persist_product
        from catalog_reconciler import reconcile_absent_product

        persist_product(sqlite_conn, store_id, reconciled(None, make_product('P1', [
            make_variant('P1', 'Red', 'S'), make_variant('P1', 'Red', 'M'),
        ])))
        stored = load_catalog(sqlite_conn, store_id)[0]
        persist_product(sqlite_conn, store_id, reconcile_absent_product(stored).product)

        product = load_catalog(sqlite_conn, store_id)[0]
        assert product.status == STATUS_DELETED
        assert product.operation_type == Operation.DELETE
        assert all(v.status == STATUS_DELETED for v in product.variants)

    def test_reactivation_clears_tombstone(self, sqlite_conn, store_id):
        from catalog_db import load_catalog, persist_product
        from catalog_reconciler import reconcile_absent_product

        persist_product(sqlite_conn, store_id, reconciled(None, make_product('P1')))
        stored = load_catalog(sqlite_conn, store_id)[0]
        persist_product(sqlite_conn, store_id, reconcile_absent_product(stored).product)

        tombstone = load_catalog(sqlite_conn, store_id)[0]
        persist_product(sqlite_conn, store_id, reconciled(tombstone, make_product('P1')))

        product = load_catalog(sqlite_conn, store_id)[0]
        assert product.status == STATUS_ACTIVE
        assert product.variants[0].status == STATUS_ACTIVE
        assert count_rows(sqlite_conn, 'products', "WHERE deleted_at IS NULL") == 1

    def test_no_change_writes_nothing(self, sqlite_conn, store_id):
        from catalog_db import load_catalog, persist_product

        persist_product(sqlite_conn, store_id, reconciled(None, make_product('P1')))
        stored = load_catalog(sqlite_conn, store_id)[0]
        unchanged = reconciled(stored, make_product('P1'))
        assert unchanged.operation_type == Operation.NO_CHANGE

        result = persist_product(sqlite_conn, store_id, unchanged)

        assert result.storage_id == stored.storage_id
        assert load_catalog(sqlite_conn, store_id)[0].operation_type == Operation.INSERT

    def test_delete_unknown_product_raises(self, sqlite_conn, store_id):
        from catalog_db import persist_product
        from catalog_reconciler import reconcile_absent_product
        from recrawl_errors import PersistenceError

        with pytest.raises(PersistenceError) as exc_info:
            persist_product(sqlite_conn, store_id, reconcile_absent_product(make_product('P9')).product)
        assert exc_info.value.parent_product_id == 'P9'

    def test_untagged_product_raises(self, sqlite_conn, store_id):
        from catalog_db import persist_product
        from recrawl_errors import PersistenceError

        with pytest.raises(PersistenceError):
            persist_product(sqlite_conn, store_id, make_product('P1'))

    def test_stores_are_isolated(self, sqlite_conn, store_id):
        from catalog_db import get_or_create_store, load_catalog, persist_product

        other = get_or_create_store(sqlite_conn, 'other')
        persist_product(sqlite_conn, store_id, reconciled(None, make_product('P1')))
        persist_product(sqlite_conn, other, reconciled(None, make_product('P1')))

        assert len(load_catalog(sqlite_conn, store_id)) == 1
        assert len(load_catalog(sqlite_conn, other)) == 1
        assert count_rows(sqlite_conn, 'products') == 2


class TestCatalogStore:
    """The database-backed sink behind the driver."""

    def crawl(self, *pids):
        return [make_raw_product(pid, [make_raw_variant('Red', ['S', 'M'])]) for pid in pids]

    def run(self, db, store_id, raw_products):
        from catalog_db import CatalogStore
        from recrawl_driver import RecrawlDriver

        driver = RecrawlDriver(CatalogStore(db, store_id), batch_size=2, sleep=lambda s: None)
        return driver.run(raw_products)

    @pytest.fixture
    def store_id(self, db_wrapper):
        from catalog_db import get_or_create_store

        store_id = get_or_create_store(db_wrapper.conn, 'demo')
        db_wrapper.commit()
        return store_id

    def test_full_cycle(self, db_wrapper, store_id):
        """Insert, re-run unchanged, drop a product, bring it back."""
        from catalog_db import load_catalog

        first = self.run(db_wrapper, store_id, self.crawl('P1', 'P2', 'P3'))
        assert first.counts.products['INSERT'] == 3
        assert first.counts.variants['INSERT'] == 6

        second = self.run(db_wrapper, store_id, self.crawl('P1', 'P2', 'P3'))
        assert second.counts.products['NO_CHANGE'] == 3
        assert second.counts.variants['NO_CHANGE'] == 6

        third = self.run(db_wrapper, store_id, self.crawl('P1', 'P3'))
        assert third.counts.products['DELETE'] == 1
        assert third.counts.variants['DELETE'] == 2
        stored = {p.parent_product_id: p for p in load_catalog(db_wrapper.conn, store_id)}
        assert stored['P2'].status == STATUS_DELETED

        fourth = self.run(db_wrapper, store_id, self.crawl('P1', 'P2', 'P3'))
        assert fourth.counts.products['UPDATE'] == 1
        stored = {p.parent_product_id: p for p in load_catalog(db_wrapper.conn, store_id)}
        assert stored['P2'].status == STATUS_ACTIVE

    def test_rollback_discards_batch(self, db_wrapper, store_id):
        from catalog_db import CatalogStore, load_catalog

        store = CatalogStore(db_wrapper, store_id)
        store.persist_product(reconciled(None, make_product('P1')))
        store.rollback()

        assert load_catalog(db_wrapper.conn, store_id) == []

    def test_failure_wrapped_in_persistence_error(self, db_wrapper, store_id):
        from catalog_db import CatalogStore
        from recrawl_errors import PersistenceError

        store = CatalogStore(db_wrapper, store_id)
        product = reconciled(None, make_product('P1'))
        db_wrapper.conn.close()

        with pytest.raises(PersistenceError) as exc_info:
            store.persist_product(product)
        assert exc_info.value.operation == 'INSERT'
        assert exc_info.value.parent_product_id == 'P1'

    def test_commit_on_dropped_connection_redoes_batch(self, db_wrapper, store_id):
        """A commit lost with its connection is retried on a fresh one, not reported as stored."""
        from catalog_db import CatalogStore, load_catalog
        from recrawl_driver import RecrawlDriver

        dropping = DroppingConnection(db_wrapper.conn)
        db_wrapper._conn = dropping
        driver = RecrawlDriver(CatalogStore(db_wrapper, store_id), batch_size=2,
                               batch_retries=1, sleep=lambda s: None)

        report = driver.run(self.crawl('P1', 'P2'))

        assert dropping.commits_dropped == 1
        assert db_wrapper.conn is not dropping
        assert report.completed is True
        assert report.counts.products['INSERT'] == 2
        stored = load_catalog(db_wrapper.conn, store_id)
        assert sorted(p.parent_product_id for p in stored) == ['P1', 'P2']
        assert all(len(p.variants) == 2 for p in stored)

    def test_commit_failure_raises_persistence_error(self, db_wrapper, store_id):
        from catalog_db import CatalogStore
        from recrawl_errors import PersistenceError

        db_wrapper._conn = DroppingConnection(db_wrapper.conn)
        store = CatalogStore(db_wrapper, store_id)
        store.persist_product(reconciled(None, make_product('P1')))

        with pytest.raises(PersistenceError, match="server closed the connection"):
            store.commit()


class TestRunPersistence:

    def test_save_run_and_alerts(self, sqlite_conn):
        """Run counts are stored; only warning/critical alerts are saved."""
        from catalog_db import get_or_create_store, save_alerts, save_recrawl_run
        from recrawl_stats import AlertType, StatsTracker

        store_id = get_or_create_store(sqlite_conn, 'demo')
        stats = StatsTracker(store_id=store_id, is_full_crawl=False, max_products_limit=10)
        stats.counts.products['INSERT'] = 4
        stats.counts.variants['DELETE'] = 2
        stats.record_skipped('P1', 'Shirt', 'new product has no variants')
        stats.record_failure('P2', 'DB', 'disk full')
        stats._alert(AlertType.NEW_PRODUCT, parent_product_id='P3')

        run_id = save_recrawl_run(sqlite_conn, stats)
        saved = save_alerts(sqlite_conn, stats)

        assert stats.run_id == run_id
        assert saved == 2

        cursor = sqlite_conn.cursor()
        cursor.execute('''SELECT products_inserted, variants_deleted, errors, warnings,
                          is_full_crawl, max_products_limit FROM recrawl_runs WHERE run_id = ?''',
                       (run_id,))
        assert tuple(cursor.fetchone()) == (4, 2, 1, 1, 0, 10)

    def test_save_alerts_without_run(self, sqlite_conn):
        from catalog_db import save_alerts
        from recrawl_stats import StatsTracker

        stats = StatsTracker()
        stats.record_failure('P1', 'HTTP', 'timeout')
        assert save_alerts(sqlite_conn, stats) == 0

    def test_cleanup_old_alerts(self, sqlite_conn):
        from catalog_db import cleanup_old_alerts

        cursor = sqlite_conn.cursor()
        cursor.execute('''INSERT INTO recrawl_alerts (run_id, alert_type, severity, created_at)
                          VALUES (1, 'db_error', 'critical', '2000-01-01 00:00:00')''')
        cursor.execute('''INSERT INTO recrawl_alerts (run_id, alert_type, severity)
                          VALUES (1, 'db_error', 'critical')''')

        assert cleanup_old_alerts(sqlite_conn, days=30) == 1
        assert count_rows(sqlite_conn, 'recrawl_alerts') == 1


class TestPostgres:

    def test_schema_and_insert(self, postgres_conn):
        """Schema and upserts work against PostgreSQL."""
        from catalog_db import get_or_create_store, load_catalog, persist_product

        store_id = get_or_create_store(postgres_conn, 'pytest-demo')
        persist_product(postgres_conn, store_id, reconciled(None, make_product('PG1')))

        loaded = {p.parent_product_id: p for p in load_catalog(postgres_conn, store_id)}
        assert loaded['PG1'].variants[0].final_price == 20.0
