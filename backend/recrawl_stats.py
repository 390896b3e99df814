"""
Run statistics, alerts and progress output for catalog recrawls.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional

import pandas as pd

from catalog_config import PRICE_CHANGE_ALERT_PCT
from catalog_models import Operation, Product
from catalog_reconciler import ProductReconciliation


# =============================================================================
# Alert Types
# =============================================================================

class AlertType(Enum):
    """Types of alerts that can be raised during a recrawl."""
    NEW_PRODUCT = "new_product"
    REACTIVATED = "reactivated"
    PRICE_DECREASE_MAJOR = "price_decrease_major"
    PRICE_INCREASE_MAJOR = "price_increase_major"
    STOCK_OUT = "stock_out"
    PRODUCT_DELETED = "product_deleted"
    VARIANT_DELETED = "variant_deleted"
    EMPTY_VARIANT_SET = "empty_variant_set"
    KEY_DERIVATION = "key_derivation"
    MPN_INCONSISTENCY = "mpn_inconsistency"
    VALIDATION_ERROR = "validation_error"
    DB_ERROR = "db_error"
    BATCH_RETRY = "batch_retry"
    HTTP_ERROR = "http_error"


class AlertSeverity(Enum):
    """Severity levels for alerts."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


# Default severity per alert type
ALERT_SEVERITY = {
    AlertType.NEW_PRODUCT: AlertSeverity.INFO,
    AlertType.REACTIVATED: AlertSeverity.INFO,
    AlertType.PRICE_DECREASE_MAJOR: AlertSeverity.CRITICAL,
    AlertType.PRICE_INCREASE_MAJOR: AlertSeverity.WARNING,
    AlertType.STOCK_OUT: AlertSeverity.WARNING,
    AlertType.PRODUCT_DELETED: AlertSeverity.WARNING,
    AlertType.VARIANT_DELETED: AlertSeverity.WARNING,
    AlertType.EMPTY_VARIANT_SET: AlertSeverity.WARNING,
    AlertType.KEY_DERIVATION: AlertSeverity.WARNING,
    AlertType.MPN_INCONSISTENCY: AlertSeverity.WARNING,
    AlertType.VALIDATION_ERROR: AlertSeverity.CRITICAL,
    AlertType.DB_ERROR: AlertSeverity.CRITICAL,
    AlertType.BATCH_RETRY: AlertSeverity.WARNING,
    AlertType.HTTP_ERROR: AlertSeverity.CRITICAL,
}


@dataclass
class Alert:
    """Individual alert record."""
    alert_type: AlertType
    severity: AlertSeverity
    parent_product_id: Optional[str] = None
    variant_id: Optional[str] = None
    product_name: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    change_percent: Optional[float] = None
    message: str = ""


# =============================================================================
# Operation Counts
# =============================================================================

def _empty_counts() -> Dict[str, int]:
    return {op.value: 0 for op in Operation}


@dataclass
class OperationCounts:
    """Per-operation tallies for products and variants."""
    products: Dict[str, int] = field(default_factory=_empty_counts)
    variants: Dict[str, int] = field(default_factory=_empty_counts)

    def add_product(self, product: Product):
        """Count a reconciled product and each of its variants."""
        if product.operation_type is not None:
            self.products[product.operation_type.value] += 1
        for variant in product.variants:
            if variant.operation_type is not None:
                self.variants[variant.operation_type.value] += 1

    def merge(self, other: 'OperationCounts'):
        for key, value in other.products.items():
            self.products[key] += value
        for key, value in other.variants.items():
            self.variants[key] += value

    @classmethod
    def from_products(cls, products: Iterable[Product]) -> 'OperationCounts':
        counts = cls()
        for product in products:
            counts.add_product(product)
        return counts

    def to_dict(self) -> Dict[str, Dict[str, int]]:
        return {'products': dict(self.products), 'variants': dict(self.variants)}


# =============================================================================
# Progress Tracker
# =============================================================================

class ProgressTracker:
    """Track and display progress with ETA."""

    def __init__(self, total: int):
        self.total = total
        self.completed = 0
        self.failed = 0
        self.start_time = time.time()

    def update(self, success: bool = True, item_name: str = "", status: str = None):
        """Update progress and print status."""
        self.completed += 1
        if not success:
            self.failed += 1

        elapsed = time.time() - self.start_time
        rate = self.completed / elapsed if elapsed > 0 else 0
        remaining = self.total - self.completed
        eta_seconds = remaining / rate if rate > 0 else 0
        eta = str(timedelta(seconds=int(eta_seconds)))

        pct = (self.completed / self.total) * 100 if self.total else 100.0
        if status is None:
            status = "OK" if success else "ERROR"
        timestamp = datetime.now().strftime("%H:%M:%S")

        print(f"[{timestamp}] [{self.completed}/{self.total}] ({pct:5.1f}%) "
              f"{item_name[:40]:<40} [{status}] "
              f"| {rate:.1f}/s | ETA: {eta}", flush=True)

    def summary(self):
        """Print final summary."""
        elapsed = time.time() - self.start_time
        elapsed_str = str(timedelta(seconds=int(elapsed)))
        print(f"\n{'='*60}")
        print(f"Batches: {self.completed - self.failed}/{self.total} committed "
              f"({self.failed} aborted) in {elapsed_str}")
        print(f"{'='*60}", flush=True)


# =============================================================================
# Statistics Tracker
# =============================================================================

class StatsTracker:
    """
    Track recrawl statistics and alerts for reporting.
    Collects metrics during the run, then persists to DB and prints report at end.
    Operation counts only include committed batches.
    """

    def __init__(self, store_id: Optional[int] = None, is_full_crawl: bool = True,
                 max_products_limit: Optional[int] = None):
        self.store_id = store_id
        self.is_full_crawl = is_full_crawl
        self.max_products_limit = max_products_limit
        self.started_at = datetime.now()
        self.completed_at: Optional[datetime] = None
        self.status = "running"

        # Counters
        self.products_discovered = 0
        self.products_processed = 0
        self.products_skipped = 0
        self.variants_skipped = 0
        self.batches_committed = 0
        self.batches_failed = 0
        self.counts = OperationCounts()

        self.alerts: List[Alert] = []

        # Run ID (set after persisting to recrawl_runs)
        self.run_id: Optional[int] = None

        # Committed products kept for the report preview
        self._preview_products: List[Product] = []

    def _alert(self, alert_type: AlertType, severity: Optional[AlertSeverity] = None, **kwargs):
        self.alerts.append(Alert(
            alert_type=alert_type,
            severity=severity or ALERT_SEVERITY[alert_type],
            **kwargs
        ))

    # -- reconciliation outcomes --------------------------------------------

    def record_product(self, result: ProductReconciliation):
        """Record a committed product reconciliation: counts plus derived alerts."""
        product = result.product
        self.products_processed += 1
        self.counts.add_product(product)
        if len(self._preview_products) < 20:
            self._preview_products.append(product)

        pid = product.parent_product_id
        name = product.name
        operation = product.operation_type

        if operation == Operation.INSERT:
            self._alert(AlertType.NEW_PRODUCT, parent_product_id=pid, product_name=name,
                        message=f"New product: {name} ({len(product.variants)} variants)")
        elif result.reactivated:
            self._alert(AlertType.REACTIVATED, parent_product_id=pid, product_name=name,
                        message=f"Reactivated: {name}")

        if operation == Operation.DELETE and result.stored is not None and not result.stored.is_deleted:
            if result.forced_delete:
                self._alert(AlertType.EMPTY_VARIANT_SET, parent_product_id=pid, product_name=name,
                            message=f"No live variants left, product deleted: {name}")
            else:
                self._alert(AlertType.PRODUCT_DELETED, parent_product_id=pid, product_name=name,
                            message=f"Product no longer listed: {name}")

        stored_variants = {}
        if result.stored is not None:
            stored_variants = {v.variant_id: v for v in result.stored.variants}

        for variant in product.variants:
            stored = stored_variants.get(variant.variant_id)
            if variant.operation_type == Operation.DELETE:
                if stored is not None and not stored.is_deleted and result.variant_result is not None:
                    self._alert(AlertType.VARIANT_DELETED, parent_product_id=pid,
                                variant_id=variant.variant_id, product_name=name,
                                old_value=f"{variant.color}/{variant.size}",
                                message=f"Variant gone: {name} {variant.color}/{variant.size}")
                continue
            if variant.operation_type != Operation.UPDATE or stored is None or stored.is_deleted:
                continue
            self.record_price_change(pid, variant.variant_id, name,
                                     stored.final_price, variant.final_price)
            self.record_stock_change(pid, variant.variant_id, name,
                                     stored.is_in_stock, variant.is_in_stock)

    def record_price_change(self, parent_product_id: str, variant_id: str, name: str,
                            old_price: Optional[float], new_price: Optional[float]):
        """Record a price change if it exceeds the alert threshold."""
        if not old_price or old_price <= 0 or new_price is None:
            return

        change_pct = ((new_price - old_price) / old_price) * 100

        if change_pct <= -PRICE_CHANGE_ALERT_PCT:
            alert_type = AlertType.PRICE_DECREASE_MAJOR
            verb = "dropped"
        elif change_pct >= PRICE_CHANGE_ALERT_PCT:
            alert_type = AlertType.PRICE_INCREASE_MAJOR
            verb = "increased"
        else:
            return
        self._alert(
            alert_type,
            parent_product_id=parent_product_id,
            variant_id=variant_id,
            product_name=name,
            old_value=f"{old_price:.2f}",
            new_value=f"{new_price:.2f}",
            change_percent=change_pct,
            message=f"Price {verb} {change_pct:.1f}%: {old_price:.2f} → {new_price:.2f}",
        )

    def record_stock_change(self, parent_product_id: str, variant_id: str, name: str,
                            was_in_stock: bool, is_in_stock: bool):
        """Record stock status change (only in_stock → out_of_stock)."""
        if was_in_stock and not is_in_stock:
            self._alert(AlertType.STOCK_OUT, parent_product_id=parent_product_id,
                        variant_id=variant_id, product_name=name,
                        old_value="in_stock", new_value="out_of_stock",
                        message=f"Stock out: {name}")

    def record_skipped(self, parent_product_id: Optional[str], name: Optional[str], reason: str,
                       alert_type: AlertType = AlertType.EMPTY_VARIANT_SET):
        """Record a fresh product that was not reconciled."""
        self.products_skipped += 1
        self._alert(alert_type, parent_product_id=parent_product_id, product_name=name,
                    message=f"Skipped {parent_product_id or 'unknown'}: {reason}")

    def record_key_derivation(self, error, name: Optional[str] = None):
        """Record a variant or product dropped because its key could not be derived."""
        self._alert(AlertType.KEY_DERIVATION, parent_product_id=error.parent_product_id,
                    product_name=name, old_value=error.field, message=str(error))

    def record_mpn_inconsistency(self, error, name: Optional[str] = None,
                                 severity: Optional[AlertSeverity] = None):
        self._alert(AlertType.MPN_INCONSISTENCY, severity=severity,
                    parent_product_id=error.parent_product_id, product_name=name,
                    old_value=error.color, new_value=", ".join(error.mpns),
                    message=str(error))

    def record_validation_error(self, parent_product_id: Optional[str], message: str,
                                name: Optional[str] = None):
        self._alert(AlertType.VALIDATION_ERROR, parent_product_id=parent_product_id,
                    product_name=name, message=message)

    def record_failure(self, ident: str, error_type: str, error_msg: str):
        """Record a collaborator failure (HTTP or DB error)."""
        alert_type = AlertType.HTTP_ERROR if error_type == "HTTP" else AlertType.DB_ERROR
        self._alert(alert_type, parent_product_id=ident,
                    message=f"[{error_type}] {ident}: {error_msg}")

    def record_batch_retry(self, ident: str, error_msg: str):
        """Record a batch rolled back before a retry; only an abort is critical."""
        self._alert(AlertType.BATCH_RETRY, parent_product_id=ident,
                    message=f"[DB] {ident} rolled back, retrying: {error_msg}")

    # -- summaries ----------------------------------------------------------

    @property
    def errors(self) -> int:
        return sum(1 for a in self.alerts if a.severity == AlertSeverity.CRITICAL)

    @property
    def warnings(self) -> int:
        return sum(1 for a in self.alerts if a.severity == AlertSeverity.WARNING)

    def get_alert_counts(self) -> Dict[str, int]:
        """Get counts of each alert type."""
        counts: Dict[str, int] = {}
        for alert in self.alerts:
            key = alert.alert_type.value
            counts[key] = counts.get(key, 0) + 1
        return counts

    def get_alerts_by_type(self, alert_type: AlertType) -> List[Alert]:
        """Get all alerts of a specific type."""
        return [a for a in self.alerts if a.alert_type == alert_type]

    def summary(self) -> Dict:
        """Run-level summary: operation counts plus error/warning totals."""
        return {
            **self.counts.to_dict(),
            'errors': self.errors,
            'warnings': self.warnings,
            'skipped': self.products_skipped + self.variants_skipped,
            'batches_committed': self.batches_committed,
            'batches_failed': self.batches_failed,
        }

    def preview_frame(self) -> pd.DataFrame:
        """Variant-level preview of committed products."""
        rows = []
        for product in self._preview_products:
            for variant in product.variants:
                rows.append({
                    'product': product.name[:30],
                    'color': variant.color,
                    'size': variant.size,
                    'final_price': variant.final_price,
                    'operation': variant.operation_type.value if variant.operation_type else None,
                })
        return pd.DataFrame(rows, columns=['product', 'color', 'size', 'final_price', 'operation'])

    def print_report(self):
        """Print the final recrawl statistics report to console."""
        self.completed_at = datetime.now()
        duration = self.completed_at - self.started_at
        duration_str = str(timedelta(seconds=int(duration.total_seconds())))

        print("\n" + "=" * 70)
        print("RECRAWL STATISTICS REPORT")
        print("=" * 70)
        print(f"\nRun Duration: {duration_str}")
        print(f"Status: {self.status}")
        print(f"Full Crawl: {'Yes' if self.is_full_crawl else 'No'}")
        if self.max_products_limit:
            print(f"Max Products Limit: {self.max_products_limit}")

        print("\n--- PRODUCTS ---")
        print(f"  Discovered:    {self.products_discovered:>6}")
        print(f"  Processed:     {self.products_processed:>6}")
        print(f"  Skipped:       {self.products_skipped:>6}")
        print(f"  Variants skipped: {self.variants_skipped:>3}")
        print(f"  Batches:       {self.batches_committed:>6} committed, {self.batches_failed} aborted")

        print("\n--- OPERATIONS ---")
        print(f"  {'':<12} {'products':>9} {'variants':>9}")
        for op in Operation:
            print(f"  {op.value:<12} {self.counts.products[op.value]:>9} "
                  f"{self.counts.variants[op.value]:>9}")

        print(f"\n  Errors:   {self.errors:>6}")
        print(f"  Warnings: {self.warnings:>6}")

        alert_counts = self.get_alert_counts()
        if alert_counts:
            print("\n--- ALERTS ---")
            for alert_type, count in sorted(alert_counts.items()):
                print(f"  {alert_type:<25} {count:>6}")

        price_decreases = self.get_alerts_by_type(AlertType.PRICE_DECREASE_MAJOR)
        price_increases = self.get_alerts_by_type(AlertType.PRICE_INCREASE_MAJOR)
        if price_decreases or price_increases:
            print(f"\n--- MAJOR PRICE CHANGES (>{PRICE_CHANGE_ALERT_PCT}%) ---")
            for alert in price_decreases[:10]:
                name = (alert.product_name or alert.parent_product_id or "Unknown")[:35]
                print(f"  ▼ {name:<35} {alert.change_percent:>+6.1f}%: {alert.old_value} → {alert.new_value}")
            for alert in price_increases[:10]:
                name = (alert.product_name or alert.parent_product_id or "Unknown")[:35]
                print(f"  ▲ {name:<35} {alert.change_percent:>+6.1f}%: {alert.old_value} → {alert.new_value}")

        deleted = self.get_alerts_by_type(AlertType.PRODUCT_DELETED)
        if deleted:
            print("\n--- DELETED PRODUCTS (Soft-deleted) ---")
            for alert in deleted[:10]:
                pid = alert.parent_product_id or "N/A"
                name = (alert.product_name or "Unknown")[:40]
                print(f"  {pid:<14} {name:<40}")
            if len(deleted) > 10:
                print(f"  ... ({len(deleted)} total)")

        problems = (self.get_alerts_by_type(AlertType.KEY_DERIVATION)
                    + self.get_alerts_by_type(AlertType.MPN_INCONSISTENCY)
                    + self.get_alerts_by_type(AlertType.DB_ERROR)
                    + self.get_alerts_by_type(AlertType.HTTP_ERROR))
        if problems:
            print("\n--- PROBLEMS ---")
            for alert in problems[:10]:
                print(f"  {alert.message}")
            if len(problems) > 10:
                print(f"  ... ({len(problems)} total)")

        preview = self.preview_frame()
        if not preview.empty:
            print("\nData preview:")
            print(preview.head(10).to_string())

        print("\n" + "=" * 70, flush=True)
