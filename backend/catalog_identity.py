"""
Identity and key derivation for catalog products and variants.

Variant keys and MPNs are UUIDv5 values over a length-prefixed encoding of
their components, so they are stable across runs and processes and never
depend on database-assigned ids.
"""
import math
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from catalog_config import MPN_NAMESPACE
from catalog_models import Product, RawProduct, RawVariant, Variant
from recrawl_errors import KeyDerivationError, MPNInconsistencyError


# =============================================================================
# Normalisation
# =============================================================================

def to_number(value: Any) -> Optional[float]:
    """Normalise a price-like value to float (4dp), None when blank or not finite."""
    if value is None or isinstance(value, bool):
        return None if value is None else float(value)
    if isinstance(value, str):
        value = value.strip().replace(',', '').lstrip('$')
        if value == '':
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return round(number, 4)


def to_bool(value: Any) -> bool:
    """Normalise truthy flags from JSON/CSV/DB sources."""
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'y', 't')
    return bool(value)


def to_text(value: Any) -> str:
    return '' if value is None else str(value)


def _component(value: Any, field_name: str, parent_product_id: Any = None) -> str:
    """Return a trimmed identity component or raise KeyDerivationError."""
    if value is None:
        raise KeyDerivationError(field_name, _pid_or_none(parent_product_id))
    text = str(value).strip()
    if not text:
        raise KeyDerivationError(field_name, _pid_or_none(parent_product_id))
    return text


def _pid_or_none(parent_product_id: Any) -> Optional[str]:
    if parent_product_id is None:
        return None
    return str(parent_product_id).strip() or None


def _encode(*parts: str) -> str:
    # Length prefixes keep ("a-b", "c") and ("a", "b-c") apart
    return '|'.join(f'{len(p)}:{p}' for p in parts)


# =============================================================================
# Keys
# =============================================================================

def derive_variant_key(parent_product_id: Any, color: Any, size: Any) -> str:
    """Deterministic variant_id for (parent_product_id, color code or name, size)."""
    pid = _component(parent_product_id, 'parent_product_id', parent_product_id)
    color_part = _component(color, 'color', pid)
    size_part = _component(size, 'size', pid)
    return str(uuid.uuid5(MPN_NAMESPACE, 'variant|' + _encode(pid, color_part, size_part)))


def derive_mpn(parent_product_id: Any, color_name: Any) -> str:
    """Deterministic MPN for (parent_product_id, color name); identical for every size."""
    pid = _component(parent_product_id, 'parent_product_id', parent_product_id)
    color_part = _component(color_name, 'color_name', pid)
    return str(uuid.uuid5(MPN_NAMESPACE, 'mpn|' + _encode(pid, color_part)))


# =============================================================================
# Raw -> entity expansion
# =============================================================================

@dataclass
class ExpansionResult:
    """A fresh product built from a raw item, plus the variants it had to drop."""
    product: Product
    errors: List[KeyDerivationError] = field(default_factory=list)


def expand_variant(parent_product_id: str, raw: RawVariant, size: Any) -> Variant:
    """Build one Variant for a colorway/size pair."""
    color_name = to_text(raw.color_name).strip()
    color_key = raw.color_code if to_text(raw.color_code).strip() else color_name
    size_label = _component(size, 'size', parent_product_id)
    return Variant(
        variant_id=derive_variant_key(parent_product_id, color_key, size_label),
        color=color_name,
        size=size_label,
        mpn=derive_mpn(parent_product_id, color_name),
        price_currency=raw.price_currency or 'USD',
        original_price=to_number(raw.original_price),
        selling_price=to_number(raw.selling_price),
        sale_price=to_number(raw.sale_price),
        final_price=to_number(raw.final_price),
        discount=to_number(raw.discount),
        is_on_sale=to_bool(raw.is_on_sale),
        is_in_stock=to_bool(raw.is_in_stock),
        image_url=to_text(raw.image_url),
        alternate_image_urls=list(raw.alternate_image_urls or []),
        link_url=to_text(raw.link_url),
        deeplink_url=to_text(raw.deeplink_url),
    )


def expand_raw_product(raw: RawProduct) -> ExpansionResult:
    """
    Derive keys for a raw product and expand its colorways into variants.

    Raises KeyDerivationError when the product id itself is missing. Variants
    with a missing color or size are dropped and reported in `errors`. A
    colorway with an empty size list yields no variants.
    """
    pid = _component(raw.parent_product_id, 'parent_product_id')
    product = Product(
        parent_product_id=pid,
        name=to_text(raw.name),
        description=to_text(raw.description),
        category=to_text(raw.category),
        brand=to_text(raw.brand),
        gender=to_text(raw.gender),
        materials=to_text(raw.materials),
        retailer_domain=to_text(raw.retailer_domain),
        source=to_text(raw.source),
        return_policy_link=to_text(raw.return_policy_link),
    )
    errors: List[KeyDerivationError] = []
    for raw_variant in raw.variants:
        for size in raw_variant.sizes or []:
            try:
                product.variants.append(expand_variant(pid, raw_variant, size))
            except KeyDerivationError as e:
                errors.append(e)
    return ExpansionResult(product=product, errors=errors)


# =============================================================================
# MPN consistency
# =============================================================================

def check_mpn_consistency(product: Product) -> List[MPNInconsistencyError]:
    """Return one error per color whose variants disagree on MPN."""
    mpns_by_color: Dict[str, Set[str]] = {}
    for variant in product.variants:
        mpns_by_color.setdefault(variant.color, set()).add(variant.mpn)
    return [
        MPNInconsistencyError(product.parent_product_id, color, list(mpns))
        for color, mpns in mpns_by_color.items()
        if len(mpns) > 1
    ]
