"""
Data model for reconciled catalogs.

Product and Variant are the stored/reconciled entities. RawProduct and
RawVariant are what a fresh item supplier hands over before key derivation:
one RawVariant per colorway, carrying the list of sizes it is sold in.
"""
from dataclasses import dataclass, field, asdict, replace
from enum import Enum
from typing import Any, Dict, List, Optional


class Operation(Enum):
    """Reconciliation outcome for a product or variant."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    NO_CHANGE = "NO_CHANGE"


STATUS_ACTIVE = "active"
STATUS_DELETED = "deleted"


@dataclass
class Variant:
    """One sellable color/size combination of a product."""
    variant_id: str
    color: str
    size: str
    mpn: str
    price_currency: str = "USD"
    original_price: Optional[float] = 0.0
    selling_price: Optional[float] = 0.0
    sale_price: Optional[float] = 0.0
    final_price: Optional[float] = 0.0
    discount: Optional[float] = 0.0
    is_on_sale: bool = False
    is_in_stock: bool = False
    image_url: str = ""
    alternate_image_urls: List[str] = field(default_factory=list)
    link_url: str = ""
    deeplink_url: str = ""
    operation_type: Optional[Operation] = None
    status: str = STATUS_ACTIVE
    storage_id: Optional[int] = None  # Assigned by the store

    @property
    def is_deleted(self) -> bool:
        return self.status == STATUS_DELETED

    def with_operation(self, operation: Operation) -> 'Variant':
        """Copy tagged with an operation; DELETE also flips status to deleted."""
        status = STATUS_DELETED if operation == Operation.DELETE else self.status
        return replace(self, operation_type=operation, status=status,
                       alternate_image_urls=list(self.alternate_image_urls))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['operation_type'] = self.operation_type.value if self.operation_type else None
        data.pop('storage_id')
        return data


@dataclass
class Product:
    """A retailer's top-level merchandise entry and its variants."""
    parent_product_id: str
    name: str
    description: str = ""
    category: str = ""
    brand: str = ""
    gender: str = ""
    materials: str = ""
    retailer_domain: str = ""
    source: str = ""
    return_policy_link: str = ""
    variants: List[Variant] = field(default_factory=list)
    operation_type: Optional[Operation] = None
    status: str = STATUS_ACTIVE
    storage_id: Optional[int] = None  # Assigned by the store on first INSERT

    @property
    def is_deleted(self) -> bool:
        return self.status == STATUS_DELETED

    def live_variants(self) -> List[Variant]:
        """Variants not tombstoned."""
        return [v for v in self.variants if not v.is_deleted]

    def to_dict(self) -> Dict[str, Any]:
        """Export shape: storage identity removed, operations as strings."""
        data = {
            'parent_product_id': self.parent_product_id,
            'name': self.name,
            'description': self.description,
            'category': self.category,
            'brand': self.brand,
            'gender': self.gender,
            'materials': self.materials,
            'retailer_domain': self.retailer_domain,
            'source': self.source,
            'return_policy_link': self.return_policy_link,
            'operation_type': self.operation_type.value if self.operation_type else None,
            'status': self.status,
            'variants': [v.to_dict() for v in self.variants],
        }
        return data


# =============================================================================
# Raw shapes from fresh item suppliers
# =============================================================================

@dataclass
class RawVariant:
    """One colorway as observed on the retailer, sold in `sizes`."""
    color_name: str
    sizes: List[str]
    color_code: Optional[str] = None  # Falls back to color_name for keys
    original_price: Any = 0
    selling_price: Any = 0
    sale_price: Any = 0
    final_price: Any = 0
    discount: Any = 0
    is_on_sale: Any = False
    is_in_stock: Any = False
    price_currency: str = "USD"
    image_url: str = ""
    alternate_image_urls: List[str] = field(default_factory=list)
    link_url: str = ""
    deeplink_url: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RawVariant':
        sizes = data.get('sizes')
        if sizes is None:
            sizes = [data['size']] if data.get('size') not in (None, '') else []
        return cls(
            color_name=data.get('color_name', data.get('color', '')),
            color_code=data.get('color_code'),
            sizes=list(sizes),
            original_price=data.get('original_price', 0),
            selling_price=data.get('selling_price', 0),
            sale_price=data.get('sale_price', 0),
            final_price=data.get('final_price', 0),
            discount=data.get('discount', 0),
            is_on_sale=data.get('is_on_sale', False),
            is_in_stock=data.get('is_in_stock', False),
            price_currency=data.get('price_currency', 'USD'),
            image_url=data.get('image_url', '') or '',
            alternate_image_urls=list(data.get('alternate_image_urls') or []),
            link_url=data.get('link_url', '') or '',
            deeplink_url=data.get('deeplink_url', '') or data.get('link_url', '') or '',
        )


@dataclass
class RawProduct:
    """A product as observed in one crawl, before key derivation."""
    parent_product_id: Any
    name: str
    variants: List[RawVariant] = field(default_factory=list)
    description: str = ""
    category: str = ""
    brand: str = ""
    gender: str = ""
    materials: str = ""
    retailer_domain: str = ""
    source: str = ""
    return_policy_link: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RawProduct':
        return cls(
            parent_product_id=data.get('parent_product_id'),
            name=data.get('name', '') or '',
            variants=[RawVariant.from_dict(v) for v in data.get('variants', [])],
            description=data.get('description', '') or '',
            category=data.get('category', '') or '',
            brand=data.get('brand', '') or '',
            gender=data.get('gender', '') or '',
            materials=data.get('materials', '') or '',
            retailer_domain=data.get('retailer_domain', '') or '',
            source=data.get('source', '') or '',
            return_policy_link=data.get('return_policy_link', '') or '',
        )
