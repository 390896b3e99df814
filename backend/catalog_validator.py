"""
Strict catalog validation, run before a reconciled catalog is exported.

Unlike reconciliation, which only warns, this pass rejects products with an
MPN mismatch inside a color, a duplicate variant_id, missing mandatory
fields, or no valid variant left.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from catalog_identity import check_mpn_consistency, to_number
from catalog_models import Product, Variant
from recrawl_errors import CatalogValidationError, MPNInconsistencyError
from recrawl_stats import AlertSeverity, StatsTracker


PRODUCT_MANDATORY_FIELDS = ('parent_product_id', 'name')
VARIANT_MANDATORY_FIELDS = ('variant_id', 'color', 'size', 'link_url', 'deeplink_url', 'mpn')


@dataclass
class ValidationResult:
    valid_products: List[Product] = field(default_factory=list)
    invalid_products: List[Product] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    mpn_errors: List[MPNInconsistencyError] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def raise_for_errors(self):
        if self.errors:
            raise CatalogValidationError(self.errors)


class CatalogValidator:
    """Validate reconciled products; tombstoned products pass through untouched."""

    def __init__(self, require_description: bool = False, stats: Optional[StatsTracker] = None):
        self.require_description = require_description
        self.stats = stats

    def validate(self, products: Iterable[Product]) -> ValidationResult:
        result = ValidationResult()
        seen_variant_ids: Dict[str, str] = {}
        counts = {'products': 0, 'variants': 0, 'tombstones': 0}

        for product in products:
            counts['products'] += 1
            counts['variants'] += len(product.variants)
            if product.is_deleted:
                counts['tombstones'] += 1
                result.valid_products.append(product)
                continue

            problems = self._product_problems(product)
            valid_variants = 0
            for variant in product.variants:
                variant_problems = self._variant_problems(variant)
                owner = seen_variant_ids.get(variant.variant_id)
                if owner is not None:
                    variant_problems.append(
                        f"duplicate variant_id {variant.variant_id} (also in product {owner})"
                    )
                elif variant.variant_id:
                    seen_variant_ids[variant.variant_id] = product.parent_product_id
                if variant_problems:
                    problems.extend(f"variant {variant.variant_id or '?'}: {p}" for p in variant_problems)
                elif not variant.is_deleted:
                    valid_variants += 1

            if valid_variants == 0:
                problems.append("no valid variants")

            for error in check_mpn_consistency(product):
                result.mpn_errors.append(error)
                problems.append(str(error))
                if self.stats is not None:
                    self.stats.record_mpn_inconsistency(error, product.name,
                                                        severity=AlertSeverity.CRITICAL)

            if problems:
                result.invalid_products.append(product)
                for problem in problems:
                    message = f"Product {product.parent_product_id}: {problem}"
                    result.errors.append(message)
                    if self.stats is not None and 'MPN mismatch' not in problem:
                        self.stats.record_validation_error(product.parent_product_id, message,
                                                           product.name)
            else:
                result.valid_products.append(product)

            if not self.require_description and len(product.description.split()) <= 1:
                result.warnings.append(
                    f"Product {product.parent_product_id}: description has at most one word"
                )

        counts['valid'] = len(result.valid_products)
        counts['invalid'] = len(result.invalid_products)
        result.stats = counts
        return result

    def _product_problems(self, product: Product) -> List[str]:
        problems = []
        missing = [f for f in PRODUCT_MANDATORY_FIELDS if not str(getattr(product, f) or '').strip()]
        if missing:
            problems.append(f"missing mandatory fields: {', '.join(missing)}")
        if self.require_description and len(product.description.split()) <= 1:
            problems.append(f"description must contain more than 1 word, got {product.description!r}")
        return problems

    def _variant_problems(self, variant: Variant) -> List[str]:
        problems = []
        missing = [f for f in VARIANT_MANDATORY_FIELDS if not str(getattr(variant, f) or '').strip()]
        if missing:
            problems.append(f"missing mandatory fields: {', '.join(missing)}")
        if not variant.is_deleted:
            price = to_number(variant.original_price)
            if price is None or price <= 0:
                problems.append(f"original_price must be a positive number, got {variant.original_price!r}")
        return problems
