"""
Batch reconciliation driver.

Reads the stored catalog once, reconciles the fresh crawl against it and
persists the outcome batch by batch. Each batch is one transaction on the
sink: a failure rolls the batch back, retries it, and finally aborts the run
with the report of everything committed so far.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from catalog_config import BATCH_DELAY, BATCH_RETRIES, BATCH_SIZE
from catalog_identity import check_mpn_consistency, expand_raw_product
from catalog_models import Product, RawProduct
from catalog_reconciler import (
    CatalogSnapshot, ProductReconciliation, reconcile_absent_product, reconcile_product,
)
from catalog_sources import dedupe_raw_products
from recrawl_errors import BatchAbortedError, KeyDerivationError, PersistenceError
from recrawl_stats import OperationCounts, ProgressTracker, StatsTracker


@dataclass
class CatalogDiffReport:
    """Reconciled products of one run plus the run-level summary."""
    store_key: Optional[str] = None
    products: List[Product] = field(default_factory=list)
    counts: OperationCounts = field(default_factory=OperationCounts)
    errors: int = 0
    warnings: int = 0
    skipped: int = 0
    batches_committed: int = 0
    aborted_batch: Optional[int] = None

    @property
    def completed(self) -> bool:
        return self.aborted_batch is None

    def summary(self) -> Dict[str, Any]:
        return {
            **self.counts.to_dict(),
            'errors': self.errors,
            'warnings': self.warnings,
            'skipped': self.skipped,
            'batches_committed': self.batches_committed,
            'aborted_batch': self.aborted_batch,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'store_key': self.store_key,
            'summary': self.summary(),
            'products': [p.to_dict() for p in self.products],
        }


class RecrawlDriver:
    """
    Run one recrawl of a store against a sink.

    The sink needs load_catalog(), persist_product(product), commit() and
    rollback(); catalog_db.CatalogStore is the database-backed one.
    """

    def __init__(self, sink, stats: Optional[StatsTracker] = None, store_key: Optional[str] = None,
                 batch_size: int = BATCH_SIZE, batch_delay: float = BATCH_DELAY,
                 batch_retries: int = BATCH_RETRIES, delete_absent: bool = True,
                 sleep: Callable[[float], None] = time.sleep):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.sink = sink
        self.stats = stats or StatsTracker()
        self.store_key = store_key
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.batch_retries = max(0, batch_retries)
        self.delete_absent = delete_absent
        self.sleep = sleep

    # -- preparation --------------------------------------------------------

    def prepare(self, raw_products: Iterable[RawProduct]) -> List[Tuple[Product, List[KeyDerivationError]]]:
        """De-duplicate raw products and derive keys; failures are recorded and dropped."""
        unique = dedupe_raw_products(raw_products)
        self.stats.products_discovered = len(unique)

        prepared = []
        for raw in unique:
            try:
                expansion = expand_raw_product(raw)
            except KeyDerivationError as e:
                self.stats.products_skipped += 1
                self.stats.record_key_derivation(e, raw.name)
                continue
            for error in expansion.errors:
                self.stats.variants_skipped += 1
                self.stats.record_key_derivation(error, raw.name)
            for error in check_mpn_consistency(expansion.product):
                self.stats.record_mpn_inconsistency(error, raw.name)
            prepared.append((expansion.product, expansion.errors))
        return prepared

    def reconcile(self, snapshot: CatalogSnapshot, fresh: Product,
                  key_errors: List[KeyDerivationError]) -> ProductReconciliation:
        stored = snapshot.get(fresh.parent_product_id)
        # An incomplete crawl of a product must not tombstone what it missed
        return reconcile_product(stored, fresh, synthesize_deletes=not key_errors)

    # -- run ----------------------------------------------------------------

    def run(self, raw_products: Iterable[RawProduct]) -> CatalogDiffReport:
        """Reconcile and persist a full crawl. Raises BatchAbortedError on a failed batch."""
        report = CatalogDiffReport(store_key=self.store_key, counts=self.stats.counts)

        print("\n" + "=" * 60)
        print("Loading stored catalog...")
        print("=" * 60, flush=True)
        snapshot = CatalogSnapshot.build(self.sink.load_catalog())
        print(f"  {len(snapshot)} stored products", flush=True)

        prepared = self.prepare(raw_products)
        fresh_ids = [product.parent_product_id for product, _ in prepared]
        print(f"  {len(prepared)} fresh products ({self.stats.products_skipped} skipped)", flush=True)

        absent: List[ProductReconciliation] = []
        if self.delete_absent:
            absent = [reconcile_absent_product(p) for p in snapshot.absent_from(fresh_ids)]

        batches = [prepared[i:i + self.batch_size] for i in range(0, len(prepared), self.batch_size)]
        progress = ProgressTracker(len(batches) + (1 if absent else 0))

        print("\n" + "=" * 60)
        print(f"Reconciling in {len(batches)} batches of up to {self.batch_size}")
        print("=" * 60, flush=True)

        if absent:
            self._persist_batch(0, absent, report, progress)

        for number, batch in enumerate(batches, start=1):
            if number > 1 or absent:
                self.sleep(self.batch_delay)
            results = []
            for fresh, key_errors in batch:
                result = self.reconcile(snapshot, fresh, key_errors)
                if result.skipped:
                    self.stats.record_skipped(fresh.parent_product_id, fresh.name,
                                              "new product has no variants")
                    continue
                results.append(result)
            self._persist_batch(number, results, report, progress)

        self.stats.status = "completed"
        progress.summary()
        return self._finish(report)

    def _persist_batch(self, number: int, results: List[ProductReconciliation],
                       report: CatalogDiffReport, progress: ProgressTracker):
        """Persist one batch as a single transaction, retrying the whole batch."""
        attempts = self.batch_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                persisted = [(result, self._persist_one(result.product)) for result in results]
                self._commit(number)
                break
            except PersistenceError as e:
                ident = e.parent_product_id or f"batch-{number}"
                rolled_back = self._rollback(number)
                if attempt == attempts or not rolled_back:
                    self.stats.record_failure(ident, "DB", str(e))
                    self._abort(number, e, report, progress)
                self.stats.record_batch_retry(ident, str(e))
                print(f"  ⚠ Batch {number} rolled back ({e}), retry {attempt}/{self.batch_retries}",
                      flush=True)

        for result, outcome in persisted:
            product = result.product
            product.storage_id = outcome.storage_id
            for variant in product.variants:
                if variant.variant_id in outcome.variant_storage_ids:
                    variant.storage_id = outcome.variant_storage_ids[variant.variant_id]
            self.stats.record_product(result)
            report.products.append(product)
        self.stats.batches_committed += 1
        progress.update(item_name=f"batch {number} ({len(results)} products)")

    def _commit(self, number: int):
        try:
            self.sink.commit()
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Commit of batch {number} failed: {e}") from e

    def _rollback(self, number: int) -> bool:
        """Roll back the open batch. False when the sink could not roll back."""
        try:
            self.sink.rollback()
        except Exception as e:
            print(f"  ✗ Rollback of batch {number} failed: {e}", flush=True)
            return False
        return True

    def _abort(self, number: int, error: PersistenceError, report: CatalogDiffReport,
               progress: ProgressTracker):
        self.stats.batches_failed += 1
        self.stats.status = "aborted"
        report.aborted_batch = number
        progress.update(success=False, item_name=f"batch {number}", status="ABORTED")
        raise BatchAbortedError(number, error, report=self._finish(report)) from error

    def _persist_one(self, product: Product):
        try:
            return self.sink.persist_product(product)
        except PersistenceError:
            raise
        except Exception as e:
            operation = product.operation_type.value if product.operation_type else None
            raise PersistenceError(str(e), parent_product_id=product.parent_product_id,
                                   operation=operation) from e

    def _finish(self, report: CatalogDiffReport) -> CatalogDiffReport:
        report.counts = self.stats.counts
        report.errors = self.stats.errors
        report.warnings = self.stats.warnings
        report.skipped = self.stats.products_skipped + self.stats.variants_skipped
        report.batches_committed = self.stats.batches_committed
        return report
