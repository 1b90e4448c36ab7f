import math
from typing import Any, Mapping, Optional

from pydantic import BaseModel


def _lenient_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _lenient_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class LandingParams(BaseModel):
    """Landing page URL query. Never persisted."""

    sku: Optional[str] = None
    amount: Optional[float] = None
    merchant: Optional[str] = None
    partner: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    weight: Optional[float] = None
    multiplier: Optional[float] = None

    @classmethod
    def from_query(cls, query: Mapping[str, Any]) -> "LandingParams":
        """Build params from raw query values; unparsable numbers become None."""
        return cls(
            sku=_lenient_str(query.get("sku")),
            amount=_lenient_float(query.get("amount")),
            merchant=_lenient_str(query.get("merchant")),
            partner=_lenient_str(query.get("partner")),
            name=_lenient_str(query.get("name")),
            email=_lenient_str(query.get("email")),
            weight=_lenient_float(query.get("weight")),
            multiplier=_lenient_float(query.get("multiplier")),
        )


class ImpactCalculation(BaseModel):
    amount: float
    impact_kg: float
    impact_grams: float
    display_value: str
    below_threshold: bool
    threshold_progress: float


class WeightImpact(BaseModel):
    impact_kg: float
    impact_grams: float
    display_value: str
    merchant_cost: float


class LandingMessage(BaseModel):
    title: str
    message: str
