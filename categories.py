# categories.py
# Fixed expense category catalog. Expenses reference these ids; there is no
# categories table, membership is checked on input.
from typing import Dict, List, Optional

CATEGORIES: List[Dict[str, str]] = [
    {"id": "food",              "name": "Food",              "icon": "Utensils",     "color": "#ef4444"},
    {"id": "subscriptions",     "name": "Subscriptions",     "icon": "CreditCard",   "color": "#3b82f6"},
    {"id": "physical_shopping", "name": "Physical Shopping", "icon": "ShoppingBag",  "color": "#22c55e"},
    {"id": "digital_shopping",  "name": "Digital Shopping",  "icon": "Briefcase",    "color": "#a855f7"},
    {"id": "entertainment",     "name": "Entertainment",     "icon": "Tv",           "color": "#eab308"},
    {"id": "education",         "name": "Education",         "icon": "BookOpen",     "color": "#6366f1"},
    {"id": "transport",         "name": "Transport",         "icon": "Car",          "color": "#f97316"},
    {"id": "supermarket",       "name": "Supermarket",       "icon": "ShoppingCart", "color": "#14b8a6"},
    {"id": "services",          "name": "Services",          "icon": "Scissors",     "color": "#ec4899"},
    {"id": "gifts",             "name": "Gifts",             "icon": "Gift",         "color": "#f59e0b"},
    {"id": "health",            "name": "Health",            "icon": "Heart",        "color": "#f43f5f"},
]

CATEGORY_IDS = {c["id"] for c in CATEGORIES}


def is_valid_category(category_id: Optional[str]) -> bool:
    return bool(category_id) and category_id.strip() in CATEGORY_IDS


def category_by_id(category_id: str) -> Optional[Dict[str, str]]:
    return next((c for c in CATEGORIES if c["id"] == category_id), None)
