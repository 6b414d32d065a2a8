"""
Bulk collection fee
"""
from typing import Any, Dict, Optional

BULK_BASE_FEE = 50.0
BULK_RATE_PER_KG = {
    "general": 0.5,
    "recyclable": 0.3,
    "organic": 0.4,
    "hazardous": 2.0,
}


def category_weight(composition: Optional[Dict[str, Any]], category: str) -> float:
    if not composition:
        return 0.0
    entry = composition.get(category) or {}
    return float(entry.get("weight") or 0)


def bulk_fee(composition: Optional[Dict[str, Any]]) -> float:
    """Base fee plus a per-kg rate for each waste category, rounded to cents"""
    fee = BULK_BASE_FEE
    for category, rate in BULK_RATE_PER_KG.items():
        fee += category_weight(composition, category) * rate
    return round(fee, 2)
