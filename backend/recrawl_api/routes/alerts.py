"""
Alert routes.

Endpoints for viewing and filtering alerts across all recrawl runs.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel

from ..services.database import db_pool


router = APIRouter(prefix="/api/alerts", tags=["alerts"])


class Alert(BaseModel):
    """Alert with its run and store."""
    alert_id: int
    run_id: int
    store_id: Optional[int] = None
    store_key: Optional[str] = None
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


class AlertListResponse(BaseModel):
    alerts: List[Alert]
    total: int
    limit: int
    offset: int


class AlertTypeSummary(BaseModel):
    alert_type: str
    count: int


class StoreAlertSummary(BaseModel):
    store_id: int
    store_key: str
    total_alerts: int
    by_type: List[AlertTypeSummary]
    by_severity: Dict[str, int]


class AlertSummaryResponse(BaseModel):
    period_days: int
    total_alerts: int
    by_store: List[StoreAlertSummary]
    by_type: List[AlertTypeSummary]
    by_severity: Dict[str, int]


def cutoff_param(days: int) -> Any:
    """Lower bound on created_at, in the form the active backend compares against."""
    cutoff = datetime.utcnow() - timedelta(days=days)
    if db_pool.is_postgres:
        return cutoff
    # SQLite CURRENT_TIMESTAMP format
    return cutoff.strftime("%Y-%m-%d %H:%M:%S")


@router.get("/", response_model=AlertListResponse)
def list_alerts(
    store_key: Optional[str] = Query(None, description="Filter by store key"),
    alert_types: Optional[List[str]] = Query(
        None,
        description="Filter by alert types (e.g., product_deleted, mpn_inconsistency)"
    ),
    severity: Optional[str] = Query(None, description="Filter by severity (warning, critical)"),
    limit: int = Query(50, ge=1, le=200, description="Number of results to return"),
    offset: int = Query(0, ge=0, description="Number of results to skip"),
):
    """
    List alerts with optional filters, most severe first.
    """
    ph = db_pool.placeholder
    with db_pool.get_cursor() as cursor:
        conditions = []
        params: List[Any] = []

        if store_key is not None:
            conditions.append(f"s.store_key = {ph}")
            params.append(store_key)

        if alert_types:
            placeholders = ", ".join([ph] * len(alert_types))
            conditions.append(f"a.alert_type IN ({placeholders})")
            params.extend(alert_types)

        if severity:
            conditions.append(f"a.severity = {ph}")
            params.append(severity.lower())

        where_clause = ""
        if conditions:
            where_clause = "WHERE " + " AND ".join(conditions)

        from_clause = """
            FROM recrawl_alerts a
            JOIN recrawl_runs r ON a.run_id = r.run_id
            LEFT JOIN stores s ON r.store_id = s.store_id
        """
        cursor.execute(f"SELECT COUNT(*) as total {from_clause} {where_clause}", params)
        total = cursor.fetchone()["total"]

        cursor.execute(f"""
            SELECT
                a.alert_id, a.run_id, r.store_id, s.store_key,
                a.alert_type, a.severity, a.parent_product_id, a.variant_id,
                a.product_name, a.old_value, a.new_value, a.change_percent,
                a.message, a.created_at
            {from_clause}
            {where_clause}
            ORDER BY
                CASE a.severity
                    WHEN 'critical' THEN 1
                    WHEN 'warning' THEN 2
                    WHEN 'info' THEN 3
                    ELSE 4
                END,
                a.alert_id DESC
            LIMIT {ph} OFFSET {ph}
        """, params + [limit, offset])
        alerts = [Alert(**dict(row)) for row in cursor.fetchall()]

    return AlertListResponse(alerts=alerts, total=total, limit=limit, offset=offset)


@router.get("/summary", response_model=AlertSummaryResponse)
def get_alert_summary(
    days: int = Query(7, ge=1, le=30, description="Number of days to look back"),
):
    """
    Alert counts for the period, grouped by store, type and severity.
    """
    ph = db_pool.placeholder
    cutoff = cutoff_param(days)
    with db_pool.get_cursor() as cursor:
        cursor.execute(f"""
            SELECT
                r.store_id, s.store_key, a.alert_type, a.severity, COUNT(*) as count
            FROM recrawl_alerts a
            JOIN recrawl_runs r ON a.run_id = r.run_id
            LEFT JOIN stores s ON r.store_id = s.store_id
            WHERE a.created_at >= {ph}
            GROUP BY r.store_id, s.store_key, a.alert_type, a.severity
        """, (cutoff,))
        rows = cursor.fetchall()

    total_alerts = 0
    by_type: Dict[str, int] = {}
    by_severity: Dict[str, int] = {}
    store_data: Dict[int, Dict[str, Any]] = {}

    for row in rows:
        count = row["count"]
        total_alerts += count
        by_type[row["alert_type"]] = by_type.get(row["alert_type"], 0) + count
        by_severity[row["severity"]] = by_severity.get(row["severity"], 0) + count

        sid = row["store_id"]
        if sid not in store_data:
            store_data[sid] = {
                "store_id": sid,
                "store_key": row["store_key"] or f"store-{sid}",
                "total_alerts": 0,
                "by_type": {},
                "by_severity": {},
            }
        data = store_data[sid]
        data["total_alerts"] += count
        data["by_type"][row["alert_type"]] = data["by_type"].get(row["alert_type"], 0) + count
        data["by_severity"][row["severity"]] = data["by_severity"].get(row["severity"], 0) + count

    by_store = [
        StoreAlertSummary(
            store_id=data["store_id"],
            store_key=data["store_key"],
            total_alerts=data["total_alerts"],
            by_type=[AlertTypeSummary(alert_type=t, count=c) for t, c in data["by_type"].items()],
            by_severity=data["by_severity"],
        )
        for data in sorted(store_data.values(), key=lambda x: x["total_alerts"], reverse=True)
    ]

    return AlertSummaryResponse(
        period_days=days,
        total_alerts=total_alerts,
        by_store=by_store,
        by_type=sorted(
            (AlertTypeSummary(alert_type=t, count=c) for t, c in by_type.items()),
            key=lambda s: s.count,
            reverse=True,
        ),
        by_severity=by_severity,
    )
