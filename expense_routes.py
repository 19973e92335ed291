# expense_routes.py
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.orm import Session

from db import get_db, User, Expense
from auth import get_api_key_user
from categories import CATEGORIES, is_valid_category

log = logging.getLogger("expenses")
router = APIRouter(prefix="/api/expenses", tags=["expenses"])
categories_router = APIRouter(prefix="/api", tags=["expenses"])

MAX_TITLE_LEN = 255

# ------------------------- Validation ---------------------------------------

def _parse_date(value: Any) -> Optional[date]:
    if not isinstance(value, str) or not value.strip():
        return None
    s = value.strip()
    try:
        return date.fromisoformat(s)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        return None

def validate_expense(data: Dict[str, Any], partial: bool = False) -> Tuple[Dict[str, Any], List[Dict[str, str]]]:
    """
    Returns (clean values, field errors). With partial=True only the keys
    present in data are checked, for updates.
    """
    clean: Dict[str, Any] = {}
    errors: List[Dict[str, str]] = []

    if not partial or "title" in data:
        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            errors.append({"field": "title", "message": "Title is required"})
        elif len(title.strip()) > MAX_TITLE_LEN:
            errors.append({"field": "title", "message": f"Title must be at most {MAX_TITLE_LEN} characters"})
        else:
            clean["title"] = title.strip()

    if not partial or "amount" in data:
        amount = data.get("amount")
        # amounts are integer cents; bool is an int subclass
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            errors.append({"field": "amount", "message": "Amount must be a positive integer (cents)"})
        else:
            clean["amount"] = amount

    if not partial or "date" in data:
        parsed = _parse_date(data.get("date"))
        if parsed is None:
            errors.append({"field": "date", "message": "Date must be a valid date (YYYY-MM-DD)"})
        else:
            clean["date"] = parsed

    if not partial or "category_id" in data:
        category_id = data.get("category_id")
        if not isinstance(category_id, str) or not is_valid_category(category_id):
            errors.append({"field": "category_id", "message": "Category is not valid"})
        else:
            clean["category_id"] = category_id.strip()

    return clean, errors

def _raise_validation(errors: List[Dict[str, str]]) -> None:
    raise HTTPException(status_code=400, detail={"error": "Validation failed", "fields": errors})

def _owned_expense(db: Session, expense_id: str, user: User, action: str) -> Expense:
    expense = db.query(Expense).filter(Expense.id == expense_id).first()
    if not expense:
        raise HTTPException(status_code=404, detail="Expense not found")
    if expense.user_email != user.email:
        raise HTTPException(status_code=403, detail=f"Unauthorized to {action} this expense")
    return expense

def _list_for(db: Session, user: User, category_id: Optional[str] = None) -> Dict[str, Any]:
    q = db.query(Expense).filter(Expense.user_email == user.email)
    if category_id:
        q = q.filter(Expense.category_id == category_id)
    rows = q.order_by(Expense.date.desc(), Expense.created_at.desc()).all()
    return {"success": True, "expenses": [e.to_dict() for e in rows], "total": len(rows)}

# ------------------------- Routes -------------------------------------------

@router.post("", status_code=201)
def create_expense(payload: Dict[str, Any] = Body(...), current: User = Depends(get_api_key_user), db: Session = Depends(get_db)):
    clean, errors = validate_expense(payload)
    if errors:
        _raise_validation(errors)

    expense = Expense(user_email=current.email, created_at=datetime.utcnow(), **clean)
    db.add(expense)
    db.commit()
    db.refresh(expense)
    log.info("Expense %s created for %s", expense.id, current.email)
    return {"success": True, "message": "Expense created successfully", "expense": expense.to_dict()}

@router.get("")
def list_expenses(current: User = Depends(get_api_key_user), db: Session = Depends(get_db)):
    return _list_for(db, current)

@router.get("/category/{category}")
def list_expenses_by_category(category: str, current: User = Depends(get_api_key_user), db: Session = Depends(get_db)):
    if not is_valid_category(category):
        _raise_validation([{"field": "category", "message": "Category is not valid"}])
    return _list_for(db, current, category.strip())

@router.get("/{expense_id}")
def get_expense(expense_id: str, current: User = Depends(get_api_key_user), db: Session = Depends(get_db)):
    expense = _owned_expense(db, expense_id, current, "view")
    return {"success": True, "expense": expense.to_dict()}

@router.put("/{expense_id}")
def update_expense(
    expense_id: str,
    payload: Dict[str, Any] = Body(...),
    current: User = Depends(get_api_key_user),
    db: Session = Depends(get_db),
):
    expense = _owned_expense(db, expense_id, current, "update")

    clean, errors = validate_expense(payload, partial=True)
    if errors:
        _raise_validation(errors)
    if not clean:
        raise HTTPException(status_code=400, detail="No fields to update")

    for field, value in clean.items():
        setattr(expense, field, value)
    expense.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(expense)
    return {"success": True, "message": "Expense updated successfully", "expense": expense.to_dict()}

@router.delete("/{expense_id}")
def delete_expense(expense_id: str, current: User = Depends(get_api_key_user), db: Session = Depends(get_db)):
    expense = _owned_expense(db, expense_id, current, "delete")
    db.delete(expense)
    db.commit()
    log.info("Expense %s deleted by %s", expense_id, current.email)
    return {"success": True, "message": "Expense deleted successfully"}

@categories_router.get("/categories")
def list_categories():
    return {"success": True, "categories": CATEGORIES}
