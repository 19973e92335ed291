# -*- coding: utf-8 -*-
"""
Per-account spending statistics. Paid feature: trial, active or canceling
subscriptions only.
"""
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import extract, func
from sqlalchemy.orm import Session

from db import get_db, User, Expense
from categories import category_by_id
from entitlements import require_entitlement

router = APIRouter(prefix="/api", tags=["statistics"])


def _parse_bound(value: Optional[str], name: str) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail={"error": "Validation failed", "fields": [{"field": name, "message": "Date must be YYYY-MM-DD"}]},
        )


@router.get("/statistics")
def statistics(
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_entitlement),
) -> Dict[str, Any]:
    start_d = _parse_bound(start, "start")
    end_d = _parse_bound(end, "end")

    filters = [Expense.user_email == current_user.email]
    if start_d:
        filters.append(Expense.date >= start_d)
    if end_d:
        filters.append(Expense.date <= end_d)

    total, count = db.query(func.coalesce(func.sum(Expense.amount), 0), func.count(Expense.id)).filter(*filters).one()
    total = int(total or 0)

    by_cat_rows = (
        db.query(Expense.category_id.label("category_id"), func.sum(Expense.amount).label("total"))
        .filter(*filters)
        .group_by(Expense.category_id)
        .all()
    )
    by_category = []
    for r in by_cat_rows:
        cat_total = int(r.total or 0)
        if cat_total <= 0:
            continue
        cat = category_by_id(r.category_id) or {"id": r.category_id, "name": r.category_id}
        by_category.append({
            "id": cat["id"],
            "name": cat["name"],
            "total": cat_total,
            "percentage": round(cat_total * 100.0 / total, 2) if total else 0.0,
        })
    by_category.sort(key=lambda c: c["total"], reverse=True)

    year = extract("year", Expense.date)
    month = extract("month", Expense.date)
    month_rows = (
        db.query(year.label("year"), month.label("month"), func.sum(Expense.amount).label("total"))
        .filter(*filters)
        .group_by(year, month)
        .order_by(year, month)
        .all()
    )
    by_month = [
        {"month": f"{int(r.year):04d}-{int(r.month):02d}", "total": int(r.total or 0)}
        for r in month_rows
    ]

    return {
        "success": True,
        "total": total,
        "count": int(count or 0),
        "by_category": by_category,  # [{id, name, total, percentage}]
        "by_month": by_month,        # [{month: "YYYY-MM", total}]
    }
