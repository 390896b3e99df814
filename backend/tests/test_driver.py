"""
Tests for the batch reconciliation driver: batching, pacing, transactional
batches with retry, and abort reporting.
"""
import pytest

from catalog_models import Operation
from conftest import MemorySink, make_product, make_raw_product, make_raw_variant


def raw_catalog(count):
    return [make_raw_product(f'P{i}') for i in range(1, count + 1)]


def make_driver(sink, **kwargs):
    from recrawl_driver import RecrawlDriver

    sleeps = []
    kwargs.setdefault('sleep', sleeps.append)
    kwargs.setdefault('batch_delay', 0.5)
    driver = RecrawlDriver(sink, **kwargs)
    return driver, sleeps


class TestBatching:

    def test_batches_committed_in_order(self):
        """Five products in batches of two: three commits, crawl order kept."""
        sink = MemorySink()
        driver, _ = make_driver(sink, batch_size=2)
        report = driver.run(raw_catalog(5))

        assert sink.commits == 3
        assert report.batches_committed == 3
        assert [p.parent_product_id for p in report.products] == ['P1', 'P2', 'P3', 'P4', 'P5']
        assert report.completed is True

    def test_pause_between_batches(self):
        """The driver sleeps between batches, not before the first."""
        driver, sleeps = make_driver(MemorySink(), batch_size=2)
        driver.run(raw_catalog(5))

        assert sleeps == [0.5, 0.5]

    def test_absent_batch_runs_first(self):
        """Stored products missing from the crawl are deleted before batch 1."""
        sink = MemorySink([make_product('OLD')])
        driver, sleeps = make_driver(sink, batch_size=10)
        report = driver.run(raw_catalog(2))

        assert sink.persist_calls[0] == ('OLD', Operation.DELETE)
        assert report.products[0].parent_product_id == 'OLD'
        assert report.batches_committed == 2
        assert sleeps == [0.5]

    def test_delete_absent_disabled(self):
        """Partial crawls leave unlisted products alone."""
        sink = MemorySink([make_product('OLD')])
        driver, _ = make_driver(sink, delete_absent=False)
        report = driver.run(raw_catalog(1))

        assert 'OLD' not in [p.parent_product_id for p in report.products]
        assert report.counts.products['DELETE'] == 0

    def test_invalid_batch_size(self):
        from recrawl_driver import RecrawlDriver

        with pytest.raises(ValueError):
            RecrawlDriver(MemorySink(), batch_size=0)

    def test_new_product_without_variants_not_persisted(self):
        """An empty new product is skipped and reported."""
        sink = MemorySink()
        driver, _ = make_driver(sink)
        report = driver.run([make_raw_product('P1'),
                             make_raw_product('P2', [make_raw_variant('Red', [])])])

        assert [pid for pid, _ in sink.persist_calls] == ['P1']
        assert driver.stats.products_skipped == 1
        assert report.skipped == 1


class TestPrepare:

    def test_duplicate_products_keep_first(self):
        from recrawl_driver import RecrawlDriver

        driver = RecrawlDriver(MemorySink())
        prepared = driver.prepare([make_raw_product('P1', name='first'),
                                   make_raw_product('P1', name='second')])

        assert len(prepared) == 1
        assert prepared[0][0].name == 'first'
        assert driver.stats.products_discovered == 1

    def test_product_without_id_dropped(self):
        from recrawl_driver import RecrawlDriver
        from recrawl_stats import AlertType

        driver = RecrawlDriver(MemorySink())
        prepared = driver.prepare([make_raw_product(pid=''), make_raw_product('P2')])

        assert [p.parent_product_id for p, _ in prepared] == ['P2']
        assert driver.stats.products_skipped == 1
        assert len(driver.stats.get_alerts_by_type(AlertType.KEY_DERIVATION)) == 1


class TestTransactions:

    def test_failed_batch_retried(self):
        """A transient failure rolls back and the retried batch commits once."""
        sink = MemorySink(fail_on={'P3'}, fail_times=1)
        driver, _ = make_driver(sink, batch_size=2, batch_retries=1)
        report = driver.run(raw_catalog(4))

        assert sink.rollbacks == 1
        assert report.completed is True
        assert report.counts.products['INSERT'] == 4
        assert sorted(sink.products) == ['P1', 'P2', 'P3', 'P4']

    def test_retried_batch_is_a_warning_not_an_error(self):
        """A batch that commits on retry leaves the run clean."""
        from recrawl_stats import AlertType

        sink = MemorySink(fail_on={'P1'}, fail_times=1)
        driver, _ = make_driver(sink, batch_retries=1)
        report = driver.run(raw_catalog(1))

        assert report.errors == 0
        assert driver.stats.get_alerts_by_type(AlertType.DB_ERROR) == []
        assert len(driver.stats.get_alerts_by_type(AlertType.BATCH_RETRY)) == 1
        assert report.warnings == 1

    def test_abort_keeps_committed_batches(self):
        """A batch that keeps failing aborts the run; earlier batches stay committed."""
        from recrawl_errors import BatchAbortedError

        sink = MemorySink(fail_on={'P3'})
        driver, _ = make_driver(sink, batch_size=2, batch_retries=1)

        with pytest.raises(BatchAbortedError) as exc_info:
            driver.run(raw_catalog(5))

        error = exc_info.value
        assert error.batch_number == 2
        assert error.parent_product_id == 'P3'
        assert sorted(sink.products) == ['P1', 'P2']
        assert 'P5' not in [pid for pid, _ in sink.persist_calls]

        report = error.report
        assert report.aborted_batch == 2
        assert report.completed is False
        assert [p.parent_product_id for p in report.products] == ['P1', 'P2']
        assert report.counts.products['INSERT'] == 2
        assert report.batches_committed == 1

    def test_abort_records_failures(self):
        from recrawl_errors import BatchAbortedError
        from recrawl_stats import AlertType

        sink = MemorySink(fail_on={'P1'})
        driver, _ = make_driver(sink, batch_retries=2)

        with pytest.raises(BatchAbortedError):
            driver.run(raw_catalog(1))

        assert sink.rollbacks == 3
        assert len(driver.stats.get_alerts_by_type(AlertType.BATCH_RETRY)) == 2
        assert len(driver.stats.get_alerts_by_type(AlertType.DB_ERROR)) == 1
        assert driver.stats.batches_failed == 1
        assert driver.stats.status == "aborted"

    def test_absent_batch_failure_is_batch_zero(self):
        from recrawl_errors import BatchAbortedError

        sink = MemorySink([make_product('OLD')], fail_on={'OLD'})
        driver, _ = make_driver(sink, batch_retries=0)

        with pytest.raises(BatchAbortedError) as exc_info:
            driver.run(raw_catalog(1))
        assert exc_info.value.batch_number == 0
        assert exc_info.value.report.products == []

    def test_commit_failure_rolls_back_and_retries(self):
        """A sink error raised at commit goes through the same rollback and retry."""
        sink = LockedSink(locked_commits=1)
        driver, _ = make_driver(sink, batch_size=2, batch_retries=1)
        report = driver.run(raw_catalog(2))

        assert sink.rollbacks == 1
        assert report.completed is True
        assert report.counts.products['INSERT'] == 2
        assert sorted(sink.products) == ['P1', 'P2']

    def test_commit_failure_aborts_with_report(self):
        from recrawl_errors import BatchAbortedError, PersistenceError

        sink = LockedSink(locked_commits=None)
        driver, _ = make_driver(sink, batch_retries=1)

        with pytest.raises(BatchAbortedError) as exc_info:
            driver.run(raw_catalog(1))

        error = exc_info.value
        assert isinstance(error.cause, PersistenceError)
        assert 'database is locked' in str(error)
        assert sink.rollbacks == 2
        assert error.report.products == []
        assert error.report.counts.products['INSERT'] == 0
        assert error.report.errors == 1

    def test_failed_rollback_aborts_without_retry(self):
        from recrawl_errors import BatchAbortedError

        sink = LockedSink(locked_commits=None, rollback_fails=True)
        driver, _ = make_driver(sink, batch_retries=3)

        with pytest.raises(BatchAbortedError) as exc_info:
            driver.run(raw_catalog(1))
        assert exc_info.value.batch_number == 1
        assert len(sink.persist_calls) == 1


class LockedSink(MemorySink):
    """MemorySink whose commits fail; locked_commits=None keeps failing."""

    def __init__(self, locked_commits=None, rollback_fails=False):
        super().__init__()
        self.locked_commits = locked_commits
        self.rollback_fails = rollback_fails
        self.locked = 0

    def commit(self):
        if self.locked_commits is None or self.locked < self.locked_commits:
            self.locked += 1
            raise RuntimeError("database is locked")
        super().commit()

    def rollback(self):
        if self.rollback_fails:
            raise RuntimeError("disk I/O error")
        super().rollback()


class TestDiffReport:

    def test_summary_shape(self):
        driver, _ = make_driver(MemorySink())
        report = driver.run(raw_catalog(2))
        summary = report.summary()

        assert summary['products']['INSERT'] == 2
        assert summary['variants']['INSERT'] == 2
        assert summary['errors'] == 0
        assert summary['aborted_batch'] is None

    def test_to_dict_strips_storage_ids(self):
        driver, _ = make_driver(MemorySink(), store_key='demo')
        data = driver.run(raw_catalog(1)).to_dict()

        assert data['store_key'] == 'demo'
        product = data['products'][0]
        assert product['operation_type'] == 'INSERT'
        assert 'storage_id' not in product
        assert 'storage_id' not in product['variants'][0]
