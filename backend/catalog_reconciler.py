"""
Recrawl reconciliation: diff a freshly crawled catalog against the stored one.

Pure functions only. The stored catalog is captured once per run in a
CatalogSnapshot and passed explicitly; nothing here touches the database.

Flow per product:
    reconcile_variants()  - index stored variants, classify each fresh one,
                            synthesize DELETE for stored variants left unseen,
                            de-duplicate by variant_id (first occurrence wins)
    reconcile_product()   - roll the variant operations up to one product
                            operation; force DELETE when no live variant survives
    reconcile_absent_product() - stored products missing from the crawl entirely
"""
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from catalog_identity import to_bool, to_number, to_text
from catalog_models import (
    Operation, Product, Variant, STATUS_ACTIVE, STATUS_DELETED,
)


# Fields compared to detect a changed variant / product
VARIANT_COMPARE_FIELDS = (
    'original_price',
    'selling_price',
    'sale_price',
    'final_price',
    'is_on_sale',
    'is_in_stock',
    'image_url',
    'link_url',
    'deeplink_url',
)
PRODUCT_COMPARE_FIELDS = ('name', 'description', 'brand', 'category')

NUMERIC_FIELDS = {'original_price', 'selling_price', 'sale_price', 'final_price'}
BOOLEAN_FIELDS = {'is_on_sale', 'is_in_stock'}


# =============================================================================
# Change Classifier
# =============================================================================

def normalise_field(field_name: str, value: Any) -> Any:
    """Bring a compared field to a canonical type ("10" and 10.0 compare equal)."""
    if field_name in NUMERIC_FIELDS:
        return to_number(value)
    if field_name in BOOLEAN_FIELDS:
        return to_bool(value)
    return to_text(value)


def changed_fields(stored: Any, fresh: Any, fields: Iterable[str]) -> Dict[str, Tuple[Any, Any]]:
    """Return field -> (old, new) for every compared field that differs."""
    changes = {}
    for name in fields:
        old = normalise_field(name, getattr(stored, name, None))
        new = normalise_field(name, getattr(fresh, name, None))
        if old != new:
            changes[name] = (old, new)
    return changes


def classify_variant(stored: Optional[Variant], fresh: Variant) -> Operation:
    """INSERT, UPDATE or NO_CHANGE for one fresh variant. Never DELETE."""
    if stored is None:
        return Operation.INSERT
    if stored.is_deleted:
        # Tombstoned variant is back on the site
        return Operation.UPDATE
    if changed_fields(stored, fresh, VARIANT_COMPARE_FIELDS):
        return Operation.UPDATE
    return Operation.NO_CHANGE


def classify_product(stored: Optional[Product], fresh: Product) -> Operation:
    """INSERT, UPDATE or NO_CHANGE on the product's descriptive fields."""
    if stored is None:
        return Operation.INSERT
    if stored.is_deleted:
        return Operation.UPDATE
    if changed_fields(stored, fresh, PRODUCT_COMPARE_FIELDS):
        return Operation.UPDATE
    return Operation.NO_CHANGE


# =============================================================================
# Variant Reconciler
# =============================================================================

@dataclass
class VariantReconciliation:
    """Reconciled variants of one product, each tagged with its operation."""
    variants: List[Variant] = field(default_factory=list)
    matched_ids: List[str] = field(default_factory=list)
    deleted_ids: List[str] = field(default_factory=list)
    duplicates_dropped: int = 0

    @property
    def operations(self) -> List[Operation]:
        return [v.operation_type for v in self.variants]


def dedupe_by_variant_id(variants: Iterable[Variant]) -> Tuple[List[Variant], int]:
    """Keep the first occurrence of each variant_id (crawl order wins)."""
    seen = set()
    unique = []
    dropped = 0
    for variant in variants:
        if variant.variant_id in seen:
            dropped += 1
            continue
        seen.add(variant.variant_id)
        unique.append(variant)
    return unique, dropped


def reconcile_variants(stored_variants: Iterable[Variant], fresh_variants: Iterable[Variant],
                       synthesize_deletes: bool = True) -> VariantReconciliation:
    """
    Reconcile the fresh variants of one product against its stored variants.

    Two passes: every fresh variant is matched before any stored variant is
    considered for DELETE. With synthesize_deletes=False (the crawl of this
    product was incomplete) unseen stored variants are carried unchanged.
    """
    stored_list = list(stored_variants)
    stored_index: Dict[str, Variant] = {}
    for variant in stored_list:
        stored_index.setdefault(variant.variant_id, variant)

    emitted: List[Variant] = []
    seen = set()
    result = VariantReconciliation()

    for fresh in fresh_variants:
        stored = stored_index.get(fresh.variant_id)
        operation = classify_variant(stored, fresh)
        tagged = fresh.with_operation(operation)
        tagged.status = STATUS_ACTIVE
        if stored is not None:
            tagged.storage_id = stored.storage_id
            if fresh.variant_id not in seen:
                result.matched_ids.append(fresh.variant_id)
        emitted.append(tagged)
        seen.add(fresh.variant_id)

    for stored in stored_list:
        if stored.variant_id in seen:
            continue
        seen.add(stored.variant_id)
        if stored.is_deleted or not synthesize_deletes:
            emitted.append(stored.with_operation(Operation.NO_CHANGE))
        else:
            emitted.append(stored.with_operation(Operation.DELETE))
            result.deleted_ids.append(stored.variant_id)

    result.variants, result.duplicates_dropped = dedupe_by_variant_id(emitted)
    return result


# =============================================================================
# Product Reconciler
# =============================================================================

def rollup_product_operation(stored: Optional[Product], variant_operations: Iterable[Operation],
                             product_changed: bool = False) -> Operation:
    """
    Product operation from its variant operations.

    No stored product -> INSERT; any variant INSERT/UPDATE/DELETE (or a change
    to the product's own compared fields) -> UPDATE; otherwise NO_CHANGE.
    """
    if stored is None:
        return Operation.INSERT
    changing = {Operation.INSERT, Operation.UPDATE, Operation.DELETE}
    if product_changed or any(op in changing for op in variant_operations):
        return Operation.UPDATE
    return Operation.NO_CHANGE


@dataclass
class ProductReconciliation:
    """Outcome of reconciling one product."""
    product: Product
    stored: Optional[Product] = None
    variant_result: Optional[VariantReconciliation] = None
    product_changes: Dict[str, Tuple[Any, Any]] = field(default_factory=dict)
    reactivated: bool = False
    forced_delete: bool = False  # No live variant survived
    skipped: bool = False  # New product with nothing to insert

    @property
    def operation(self) -> Operation:
        return self.product.operation_type


def reconcile_product(stored: Optional[Product], fresh: Product,
                      synthesize_deletes: bool = True) -> ProductReconciliation:
    """Reconcile a fresh product (and its variants) against its stored counterpart."""
    variant_result = reconcile_variants(
        stored.variants if stored else [], fresh.variants, synthesize_deletes
    )
    product_changes: Dict[str, Tuple[Any, Any]] = {}
    if stored is not None:
        product_changes = changed_fields(stored, fresh, PRODUCT_COMPARE_FIELDS)

    reconciled = replace(
        fresh,
        variants=variant_result.variants,
        status=STATUS_ACTIVE,
        storage_id=stored.storage_id if stored else None,
    )
    result = ProductReconciliation(
        product=reconciled,
        stored=stored,
        variant_result=variant_result,
        product_changes=product_changes,
    )

    if not reconciled.live_variants():
        if stored is None:
            reconciled.operation_type = Operation.INSERT
            result.skipped = True
        elif stored.is_deleted:
            reconciled.operation_type = Operation.NO_CHANGE
            reconciled.status = STATUS_DELETED
        else:
            reconciled.operation_type = Operation.DELETE
            reconciled.status = STATUS_DELETED
            result.forced_delete = True
        return result

    result.reactivated = stored is not None and stored.is_deleted
    reconciled.operation_type = rollup_product_operation(
        stored,
        variant_result.operations,
        product_changed=bool(product_changes) or result.reactivated,
    )
    return result


def reconcile_absent_product(stored: Product) -> ProductReconciliation:
    """
    Stored product whose id is missing from the crawl: DELETE it and every
    variant. A product already tombstoned stays as it is (NO_CHANGE).
    """
    if stored.is_deleted:
        variants = [
            v.with_operation(Operation.NO_CHANGE if v.is_deleted else Operation.DELETE)
            for v in stored.variants
        ]
        any_deleted = any(v.operation_type == Operation.DELETE for v in variants)
        operation = Operation.DELETE if any_deleted else Operation.NO_CHANGE
    else:
        variants = [v.with_operation(Operation.DELETE) for v in stored.variants]
        operation = Operation.DELETE
    product = replace(stored, variants=variants, operation_type=operation,
                      status=STATUS_DELETED)
    return ProductReconciliation(product=product, stored=stored)


# =============================================================================
# Stored catalog snapshot
# =============================================================================

@dataclass(frozen=True)
class CatalogSnapshot:
    """Read-only view of the stored catalog, built once per run."""
    products: Mapping[str, Product]

    @classmethod
    def build(cls, stored_products: Iterable[Product]) -> 'CatalogSnapshot':
        index: Dict[str, Product] = {}
        for product in stored_products:
            if product and product.parent_product_id:
                index.setdefault(str(product.parent_product_id), product)
        return cls(products=MappingProxyType(index))

    def get(self, parent_product_id: str) -> Optional[Product]:
        return self.products.get(str(parent_product_id))

    @property
    def product_ids(self) -> FrozenSet[str]:
        return frozenset(self.products.keys())

    def absent_from(self, fresh_ids: Iterable[str]) -> List[Product]:
        """Stored products whose id does not appear in `fresh_ids`, in stored order."""
        fresh = {str(pid) for pid in fresh_ids}
        return [p for pid, p in self.products.items() if pid not in fresh]

    def __len__(self) -> int:
        return len(self.products)
