"""
Recrawl run history routes.

Endpoints for viewing run history, details, and per-run alerts.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from ..services.database import db_pool


router = APIRouter(prefix="/api/runs", tags=["runs"])


class RecrawlRun(BaseModel):
    """Recrawl run summary."""
    run_id: int
    store_id: Optional[int] = None
    store_key: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    status: Optional[str] = None
    products_discovered: Optional[int] = None
    products_processed: Optional[int] = None
    products_skipped: Optional[int] = None
    batches_committed: Optional[int] = None
    batches_failed: Optional[int] = None
    products_inserted: Optional[int] = None
    products_updated: Optional[int] = None
    products_deleted: Optional[int] = None
    products_unchanged: Optional[int] = None
    variants_inserted: Optional[int] = None
    variants_updated: Optional[int] = None
    variants_deleted: Optional[int] = None
    variants_unchanged: Optional[int] = None
    errors: Optional[int] = None
    warnings: Optional[int] = None
    is_full_crawl: Optional[bool] = None
    max_products_limit: Optional[int] = None


class RecrawlRunListResponse(BaseModel):
    """Response for list of recrawl runs."""
    runs: List[RecrawlRun]
    total: int
    limit: int
    offset: int


class RunAlert(BaseModel):
    """Alert associated with a recrawl run."""
    alert_id: int
    run_id: int
    alert_type: str
    severity: str
    parent_product_id: Optional[str] = None
    variant_id: Optional[str] = None
    product_name: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    change_percent: Optional[float] = None
    message: Optional[str] = None
    created_at: Optional[datetime] = None


class RunAlertsResponse(BaseModel):
    """Response for alerts of a specific run."""
    alerts: List[RunAlert]
    total: int


RUN_COLUMNS = """
    r.run_id, r.store_id, s.store_key, r.started_at, r.completed_at, r.status,
    r.products_discovered, r.products_processed, r.products_skipped,
    r.batches_committed, r.batches_failed,
    r.products_inserted, r.products_updated, r.products_deleted, r.products_unchanged,
    r.variants_inserted, r.variants_updated, r.variants_deleted, r.variants_unchanged,
    r.errors, r.warnings, r.is_full_crawl, r.max_products_limit
"""


def row_to_run(row: Dict[str, Any]) -> RecrawlRun:
    data = dict(row)
    if data.get("is_full_crawl") is not None:
        data["is_full_crawl"] = bool(data["is_full_crawl"])
    return RecrawlRun(**data)


@router.get("/", response_model=RecrawlRunListResponse)
def list_runs(
    store_key: Optional[str] = Query(None, description="Filter by store key"),
    limit: int = Query(20, ge=1, le=100, description="Number of results to return"),
    offset: int = Query(0, ge=0, description="Number of results to skip"),
):
    """
    List recrawl runs, newest first, with optional store filter.

    Returns:
        List of runs with pagination info
    """
    ph = db_pool.placeholder
    with db_pool.get_cursor() as cursor:
        where_clause = ""
        params: List[Any] = []

        if store_key is not None:
            where_clause = f"WHERE s.store_key = {ph}"
            params.append(store_key)

        cursor.execute(f"""
            SELECT COUNT(*) as total
            FROM recrawl_runs r
            LEFT JOIN stores s ON s.store_id = r.store_id
            {where_clause}
        """, params)
        total = cursor.fetchone()["total"]

        cursor.execute(f"""
            SELECT {RUN_COLUMNS}
            FROM recrawl_runs r
            LEFT JOIN stores s ON s.store_id = r.store_id
            {where_clause}
            ORDER BY r.run_id DESC
            LIMIT {ph} OFFSET {ph}
        """, params + [limit, offset])
        runs = [row_to_run(row) for row in cursor.fetchall()]

    return RecrawlRunListResponse(runs=runs, total=total, limit=limit, offset=offset)


@router.get("/{run_id}", response_model=RecrawlRun)
def get_run(run_id: int):
    """
    Get details for a specific run.

    Raises:
        HTTPException: 404 if run not found
    """
    ph = db_pool.placeholder
    with db_pool.get_cursor() as cursor:
        cursor.execute(f"""
            SELECT {RUN_COLUMNS}
            FROM recrawl_runs r
            LEFT JOIN stores s ON s.store_id = r.store_id
            WHERE r.run_id = {ph}
        """, (run_id,))
        row = cursor.fetchone()

    if not row:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    return row_to_run(row)


@router.get("/{run_id}/alerts", response_model=RunAlertsResponse)
def get_run_alerts(run_id: int):
    """
    Get all persisted alerts for a run, most severe first.

    Raises:
        HTTPException: 404 if run not found
    """
    ph = db_pool.placeholder
    with db_pool.get_cursor() as cursor:
        cursor.execute(f"SELECT run_id FROM recrawl_runs WHERE run_id = {ph}", (run_id,))
        if not cursor.fetchone():
            raise HTTPException(status_code=404, detail=f"Run {run_id} not found")

        cursor.execute(f"""
            SELECT
                alert_id, run_id, alert_type, severity, parent_product_id, variant_id,
                product_name, old_value, new_value, change_percent, message, created_at
            FROM recrawl_alerts
            WHERE run_id = {ph}
            ORDER BY
                CASE severity WHEN 'critical' THEN 0 WHEN 'warning' THEN 1 ELSE 2 END,
                alert_id
        """, (run_id,))
        alerts = [RunAlert(**dict(row)) for row in cursor.fetchall()]

    return RunAlertsResponse(alerts=alerts, total=len(alerts))
