"""
Landing page case routing and impact calculation.

Impact (kg) = amount (EUR) / price per kg. Weight-based products bill the
merchant weight (kg) x price per kg x multiplier. Everything here is pure:
callers resolve the SKU and settings and pass them in.
"""

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from models.enums import FormType, LandingCase, PaymentMode
from models.landing import ImpactCalculation, LandingMessage, LandingParams, WeightImpact

DEFAULT_PRICE_PER_KG = 0.11
DEFAULT_CERTIFICATION_THRESHOLD = 10.0
ADMIN_SKU_PREFIX = "ADMIN-"
GRAMS_PER_KG = 1000


def _positive_or(value: Optional[float], default: float) -> float:
    if value is None or value <= 0:
        return default
    return value


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _plain_number(value: float) -> str:
    # 10.0 -> "10", 12.5 -> "12.5"
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def format_impact(impact_kg: float) -> str:
    """Grams below 1000 g, kilograms with two decimals from 1000 g up. Ties round up."""
    impact_grams = impact_kg * GRAMS_PER_KG
    if impact_grams < GRAMS_PER_KG:
        return f"{_round_half_up(impact_grams)}g"
    kilograms = Decimal(impact_kg).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"{kilograms} kg"


def _sku_mode(sku: Any) -> Optional[str]:
    mode = getattr(sku, "payment_mode", None)
    if isinstance(mode, PaymentMode):
        return mode.value
    return mode


def calculate_impact(
    amount: float,
    price_per_kg: Optional[float] = DEFAULT_PRICE_PER_KG,
    threshold: Optional[float] = DEFAULT_CERTIFICATION_THRESHOLD,
) -> ImpactCalculation:
    price_per_kg = _positive_or(price_per_kg, DEFAULT_PRICE_PER_KG)
    threshold = _positive_or(threshold, DEFAULT_CERTIFICATION_THRESHOLD)

    impact_kg = amount / price_per_kg
    impact_grams = impact_kg * GRAMS_PER_KG

    return ImpactCalculation(
        amount=amount,
        impact_kg=impact_kg,
        impact_grams=impact_grams,
        display_value=format_impact(impact_kg),
        below_threshold=amount < threshold,
        threshold_progress=min(amount / threshold * 100, 100),
    )


def calculate_weight_based_impact(
    weight_grams: float,
    multiplier: Optional[float] = 1,
    price_per_kg: Optional[float] = DEFAULT_PRICE_PER_KG,
) -> WeightImpact:
    price_per_kg = _positive_or(price_per_kg, DEFAULT_PRICE_PER_KG)
    multiplier = 1 if multiplier is None else multiplier

    weight_kg = weight_grams / GRAMS_PER_KG
    impact_kg = weight_kg * multiplier
    impact_grams = impact_kg * GRAMS_PER_KG

    return WeightImpact(
        impact_kg=impact_kg,
        impact_grams=impact_grams,
        display_value=format_impact(impact_kg),
        merchant_cost=weight_kg * price_per_kg * multiplier,
    )


def impact_for_weight(
    weight_grams: float,
    multiplier: Optional[float] = 1,
    price_per_kg: Optional[float] = DEFAULT_PRICE_PER_KG,
    threshold: Optional[float] = DEFAULT_CERTIFICATION_THRESHOLD,
) -> ImpactCalculation:
    """Weight-based impact as a full calculation; the amount is the merchant cost."""
    threshold = _positive_or(threshold, DEFAULT_CERTIFICATION_THRESHOLD)
    weight = calculate_weight_based_impact(weight_grams, multiplier, price_per_kg)
    amount = weight.merchant_cost
    return ImpactCalculation(
        amount=amount,
        impact_kg=weight.impact_kg,
        impact_grams=weight.impact_grams,
        display_value=weight.display_value,
        below_threshold=amount < threshold,
        threshold_progress=min(amount / threshold * 100, 100),
    )


def determine_landing_case(sku: Any, params: LandingParams) -> LandingCase:
    """
    Map SKU configuration and URL params to a landing case.

    Rules are a precedence table; the first matching rule wins.
    """
    # The admin SKU usually has no row in the database, so check the raw code first.
    requested_code = params.sku or getattr(sku, "code", None) or ""
    if requested_code.upper().startswith(ADMIN_SKU_PREFIX):
        return LandingCase.ADMIN

    if sku is None:
        return LandingCase.F

    mode = _sku_mode(sku)

    if mode == PaymentMode.ALLOCATION.value or params.partner:
        return LandingCase.E

    if mode == PaymentMode.GIFT_CARD.value or getattr(sku, "validation_required", False):
        return LandingCase.D

    if mode == PaymentMode.PAY.value or getattr(sku, "payment_required", False):
        return LandingCase.C

    if mode == PaymentMode.CLAIM.value:
        weight_grams = getattr(sku, "weight_grams", None)
        if weight_grams and weight_grams > 0:
            return LandingCase.A
        if params.amount and params.amount > 0:
            return LandingCase.B
        return LandingCase.A

    return LandingCase.F


def determine_form_type(
    landing_case: LandingCase,
    amount: float,
    threshold: Optional[float] = DEFAULT_CERTIFICATION_THRESHOLD,
) -> FormType:
    """
    minimal: email only (claims below threshold)
    standard: name, email, terms
    full: complete profile (gift cards, or any amount at/above threshold)
    """
    threshold = _positive_or(threshold, DEFAULT_CERTIFICATION_THRESHOLD)
    landing_case = LandingCase(landing_case)

    if amount >= threshold:
        return FormType.FULL

    if landing_case == LandingCase.D:
        return FormType.FULL

    if landing_case in (LandingCase.A, LandingCase.B):
        return FormType.MINIMAL

    return FormType.STANDARD


def get_landing_message(
    landing_case: LandingCase,
    amount: float,
    display_impact: str,
    threshold: Optional[float] = DEFAULT_CERTIFICATION_THRESHOLD,
) -> LandingMessage:
    threshold = _positive_or(threshold, DEFAULT_CERTIFICATION_THRESHOLD)
    landing_case = LandingCase(landing_case)
    below_threshold = amount < threshold
    threshold_text = _plain_number(threshold)

    if landing_case == LandingCase.A:
        return LandingMessage(
            title="Plastic Certification Path",
            message=(
                "This product line follows a plastic certification path. The Merchant has already "
                "activated verified waste removal. Want to do your part? Start your personal journey too."
            ),
        )

    if landing_case == LandingCase.B:
        if below_threshold:
            return LandingMessage(
                title="Environmental Accumulation",
                message=(
                    f"The Merchant has funded your accrual for the removal of {display_impact} of plastic. "
                    f"Upon reaching €{threshold_text}, your credits will become a certified asset in your name."
                ),
            )
        return LandingMessage(
            title="Certified Environmental Asset",
            message=(
                f"The Merchant has purchased real assets for the removal of {display_impact} of plastic "
                "for you. You now have a certified and auditable title."
            ),
        )

    if landing_case in (LandingCase.C, LandingCase.F):
        if below_threshold:
            return LandingMessage(
                title="Start Your Environmental Journey",
                message=(
                    f"Great choice. With your contribution of €{amount:.2f}, you have started your accrual "
                    f"path for the removal of {display_impact} of plastic. Upon reaching the "
                    f"€{threshold_text} threshold, you will redeem your first certified environmental assets."
                ),
            )
        return LandingMessage(
            title="Certified Environmental Asset",
            message=(
                f"Great choice. With your contribution of €{amount:.2f}, you have purchased real "
                f"environmental assets for the removal of {display_impact} of plastic. Your title is now "
                "auditable and guaranteed by the CPRS protocol."
            ),
        )

    if landing_case == LandingCase.D:
        return LandingMessage(
            title="Gift Card Redemption",
            message=(
                f"Code Validated. You have redeemed an industrial value of {display_impact} of plastic "
                "removed. Your credits are now in the maturation system to become a final asset."
            ),
        )

    if landing_case == LandingCase.E:
        return LandingMessage(
            title="Thank You!",
            message=f"With this purchase, you just removed {display_impact} of plastic from the ocean.",
        )

    return LandingMessage(
        title="Environmental Impact",
        message=f"Your contribution helps remove {display_impact} of plastic.",
    )


def calculate_amount(
    sku: Any,
    params: LandingParams,
    price_per_kg: Optional[float] = DEFAULT_PRICE_PER_KG,
) -> float:
    """EUR amount for the landing page; 0 means the customer picks one."""
    price_per_kg = _positive_or(price_per_kg, DEFAULT_PRICE_PER_KG)

    if params.amount and params.amount > 0:
        return params.amount

    sku_price = getattr(sku, "price", None)
    if sku_price and sku_price > 0:
        return float(sku_price)

    sku_multiplier = getattr(sku, "multiplier", None)

    if params.weight and params.weight > 0:
        multiplier = params.multiplier or sku_multiplier or 1
        return params.weight / GRAMS_PER_KG * price_per_kg * multiplier

    sku_weight = getattr(sku, "weight_grams", None)
    if sku_weight and sku_weight > 0:
        multiplier = sku_multiplier or 1
        return sku_weight / GRAMS_PER_KG * price_per_kg * multiplier

    return 0.0


def resolve_landing(
    sku: Any,
    params: LandingParams,
    price_per_kg: Optional[float] = DEFAULT_PRICE_PER_KG,
    threshold: Optional[float] = DEFAULT_CERTIFICATION_THRESHOLD,
) -> dict:
    """Everything the landing page needs to render one flow."""
    landing_case = determine_landing_case(sku, params)
    amount = calculate_amount(sku, params, price_per_kg)
    impact = calculate_impact(amount, price_per_kg, threshold)
    form_type = determine_form_type(landing_case, amount, threshold)
    message = get_landing_message(landing_case, amount, impact.display_value, threshold)
    return {
        "case": landing_case.value,
        "form_type": form_type.value,
        "amount": amount,
        "impact": impact.model_dump(),
        "message": message.model_dump(),
    }
