"""
Store catalog routes.

Endpoints for browsing stored catalogs, including tombstoned records and the
operation each record received on its last reconciliation.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from ..services.database import db_pool


router = APIRouter(prefix="/api/stores", tags=["stores"])


class StoreSummary(BaseModel):
    """Store with product counts by status."""
    store_id: int
    store_key: str
    name: Optional[str] = None
    domain: Optional[str] = None
    country: Optional[str] = None
    currency: Optional[str] = None
    is_scraped: bool = False
    last_scraped_at: Optional[str] = None
    active_products: int = 0
    deleted_products: int = 0


class StoreListResponse(BaseModel):
    stores: List[StoreSummary]
    total: int


class VariantRecord(BaseModel):
    variant_id: str
    color: Optional[str] = None
    size: Optional[str] = None
    mpn: Optional[str] = None
    price_currency: Optional[str] = None
    original_price: Optional[float] = None
    selling_price: Optional[float] = None
    sale_price: Optional[float] = None
    final_price: Optional[float] = None
    discount: Optional[float] = None
    is_on_sale: bool = False
    is_in_stock: bool = False
    image_url: Optional[str] = None
    alternate_image_urls: List[str] = []
    link_url: Optional[str] = None
    deeplink_url: Optional[str] = None
    operation_type: Optional[str] = None
    status: Optional[str] = None
    deleted_at: Optional[str] = None


class ProductRecord(BaseModel):
    """Stored product summary."""
    product_id: int
    parent_product_id: str
    name: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    operation_type: Optional[str] = None
    status: Optional[str] = None
    deleted_at: Optional[str] = None
    updated_at: Optional[str] = None
    variant_count: int = 0


class ProductDetail(ProductRecord):
    description: Optional[str] = None
    gender: Optional[str] = None
    materials: Optional[str] = None
    retailer_domain: Optional[str] = None
    source: Optional[str] = None
    return_policy_link: Optional[str] = None
    created_at: Optional[datetime] = None
    variants: List[VariantRecord] = []


class ProductListResponse(BaseModel):
    products: List[ProductRecord]
    total: int
    limit: int
    offset: int


def row_to_dict(row: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a database row to a dictionary."""
    return dict(row)


def get_store_id(cursor, store_key: str) -> int:
    """Resolve a store key or raise 404."""
    ph = db_pool.placeholder
    cursor.execute(f"SELECT store_id FROM stores WHERE store_key = {ph}", (store_key,))
    row = cursor.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail=f"Store {store_key} not found")
    return row["store_id"]


@router.get("/", response_model=StoreListResponse)
def list_stores():
    """List stores with active and deleted product counts."""
    with db_pool.get_cursor() as cursor:
        cursor.execute("""
            SELECT
                s.store_id, s.store_key, s.name, s.domain, s.country, s.currency,
                s.is_scraped, s.last_scraped_at,
                COALESCE(SUM(CASE WHEN p.status = 'active' THEN 1 ELSE 0 END), 0) as active_products,
                COALESCE(SUM(CASE WHEN p.status = 'deleted' THEN 1 ELSE 0 END), 0) as deleted_products
            FROM stores s
            LEFT JOIN products p ON p.store_id = s.store_id
            GROUP BY s.store_id, s.store_key, s.name, s.domain, s.country, s.currency,
                     s.is_scraped, s.last_scraped_at
            ORDER BY s.store_key
        """)
        stores = []
        for row in cursor.fetchall():
            data = row_to_dict(row)
            data["is_scraped"] = bool(data.get("is_scraped"))
            stores.append(StoreSummary(**data))

    return StoreListResponse(stores=stores, total=len(stores))


@router.get("/{store_key}/products", response_model=ProductListResponse)
def list_products(
    store_key: str,
    operation: Optional[str] = Query(None, description="Filter by last operation (INSERT, UPDATE, DELETE, NO_CHANGE)"),
    status: Optional[str] = Query(None, description="Filter by status (active, deleted)"),
    limit: int = Query(50, ge=1, le=500, description="Number of results to return"),
    offset: int = Query(0, ge=0, description="Number of results to skip"),
):
    """
    List a store's products.

    Returns:
        Products with variant counts and pagination info
    """
    ph = db_pool.placeholder
    with db_pool.get_cursor() as cursor:
        store_id = get_store_id(cursor, store_key)

        conditions = [f"p.store_id = {ph}"]
        params: List[Any] = [store_id]
        if operation:
            conditions.append(f"p.operation_type = {ph}")
            params.append(operation.upper())
        if status:
            conditions.append(f"p.status = {ph}")
            params.append(status.lower())
        where_clause = "WHERE " + " AND ".join(conditions)

        cursor.execute(f"SELECT COUNT(*) as total FROM products p {where_clause}", params)
        total = cursor.fetchone()["total"]

        cursor.execute(f"""
            SELECT
                p.product_id, p.parent_product_id, p.name, p.brand, p.category,
                p.operation_type, p.status, p.deleted_at, p.updated_at,
                (SELECT COUNT(*) FROM variants v WHERE v.product_id = p.product_id) as variant_count
            FROM products p
            {where_clause}
            ORDER BY p.product_id
            LIMIT {ph} OFFSET {ph}
        """, params + [limit, offset])
        products = [ProductRecord(**row_to_dict(row)) for row in cursor.fetchall()]

    return ProductListResponse(products=products, total=total, limit=limit, offset=offset)


@router.get("/{store_key}/products/{parent_product_id}", response_model=ProductDetail)
def get_product(store_key: str, parent_product_id: str):
    """
    Get one product with all of its variants (tombstones included).

    Raises:
        HTTPException: 404 if store or product not found
    """
    ph = db_pool.placeholder
    with db_pool.get_cursor() as cursor:
        store_id = get_store_id(cursor, store_key)
        cursor.execute(f"""
            SELECT * FROM products
            WHERE store_id = {ph} AND parent_product_id = {ph}
        """, (store_id, parent_product_id))
        row = cursor.fetchone()
        if not row:
            raise HTTPException(
                status_code=404,
                detail=f"Product {parent_product_id} not found in store {store_key}"
            )
        product = row_to_dict(row)

        cursor.execute(f"""
            SELECT * FROM variants WHERE product_id = {ph} ORDER BY variant_row_id
        """, (product["product_id"],))
        variants = []
        for variant_row in cursor.fetchall():
            data = row_to_dict(variant_row)
            data["is_on_sale"] = bool(data.get("is_on_sale"))
            data["is_in_stock"] = bool(data.get("is_in_stock"))
            data["alternate_image_urls"] = json.loads(data.get("alternate_image_urls") or "[]")
            variants.append(VariantRecord(**data))

    product.pop("store_id", None)
    product["variant_count"] = len(variants)
    return ProductDetail(**product, variants=variants)
