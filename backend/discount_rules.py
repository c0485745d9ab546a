# backend/discount_rules.py: Discount approval tier tables + validation
#
# Approval levels:
#   1 = Branch Manager only
#   2 = Branch Manager, then General Manager
# Brand overrides are layered over the default table. New brands and new
# thresholds are data (tables below, or Brand.discount_rules), not code.

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class DiscountRule:
    max_amount: Optional[Decimal]  # None = unbounded
    required_level: int


@dataclass
class DiscountValidation:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# CONSTANTS & DEFAULTS
# ---------------------------------------------------------------------------
DEFAULT_DISCOUNT_RULES: List[DiscountRule] = [
    DiscountRule(Decimal("5000"), 1),
    DiscountRule(Decimal("15000"), 2),
    DiscountRule(None, 2),
]

# Luxury brands are stricter, volume brands looser
BRAND_DISCOUNT_RULES: Dict[str, List[DiscountRule]] = {
    "BMW": [
        DiscountRule(Decimal("3000"), 1),
        DiscountRule(Decimal("10000"), 2),
        DiscountRule(None, 2),
    ],
    "MERCEDES": [
        DiscountRule(Decimal("3000"), 1),
        DiscountRule(Decimal("10000"), 2),
        DiscountRule(None, 2),
    ],
    "TOYOTA": [
        DiscountRule(Decimal("7500"), 1),
        DiscountRule(Decimal("20000"), 2),
        DiscountRule(None, 2),
    ],
    "NISSAN": [
        DiscountRule(Decimal("7500"), 1),
        DiscountRule(Decimal("20000"), 2),
        DiscountRule(None, 2),
    ],
}

# Used when no rule in a table matches the amount
FALLBACK_APPROVAL_LEVEL = 2

MAX_DISCOUNT_PERCENT = Decimal("25")
REVIEW_WARNING_PERCENT = Decimal("15")
# Above this percentage the request is flagged for GM attention (warning only)
HIGH_DISCOUNT_WARNING_PERCENT = Decimal("20")

# Money is stored as Numeric(12, 2)
MONEY_PLACES = Decimal("0.01")
MAX_MONEY_AMOUNT = Decimal("9999999999.99")

APPROVAL_LEVEL_NAMES = {
    1: "Branch Manager",
    2: "Branch Manager + General Manager",
}


def as_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def as_money(value: Any) -> Decimal:
    """Round to cents, the precision every money column is stored at."""
    return as_decimal(value).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def is_storable_money(value: Decimal) -> bool:
    return value.is_finite() and abs(value) <= MAX_MONEY_AMOUNT


# ---------------------------------------------------------------------------
# 1) TIER LOOKUP
# ---------------------------------------------------------------------------
def parse_discount_rules(raw: Any) -> List[DiscountRule]:
    """
    Turn persisted JSON ([{max_amount, required_level}, ...]) into rules.
    Anything malformed falls back to the default table.
    """
    if not raw or not isinstance(raw, list):
        return DEFAULT_DISCOUNT_RULES

    rules = []
    for entry in raw:
        if not isinstance(entry, dict):
            return DEFAULT_DISCOUNT_RULES
        max_amount = entry.get("max_amount")
        level = entry.get("required_level")
        if level not in (1, 2):
            return DEFAULT_DISCOUNT_RULES
        if max_amount is None:
            rules.append(DiscountRule(None, level))
            continue
        try:
            rules.append(DiscountRule(as_decimal(max_amount), level))
        except (ArithmeticError, ValueError, TypeError):
            return DEFAULT_DISCOUNT_RULES

    # Unbounded rules go last so bounded ones are checked first
    return sorted(rules, key=lambda r: (r.max_amount is None, r.max_amount or 0))


def rules_to_json(rules: List[DiscountRule]) -> List[Dict[str, Any]]:
    return [
        {
            "max_amount": float(r.max_amount) if r.max_amount is not None else None,
            "required_level": r.required_level,
        }
        for r in rules
    ]


def resolve_rules(
    brand_code: Optional[str] = None,
    brand_rules: Any = None,
) -> List[DiscountRule]:
    """Persisted brand rules > built-in brand table > default table."""
    if brand_rules:
        return parse_discount_rules(brand_rules)
    if brand_code and brand_code.upper() in BRAND_DISCOUNT_RULES:
        return BRAND_DISCOUNT_RULES[brand_code.upper()]
    return DEFAULT_DISCOUNT_RULES


def get_required_approval_level(
    discount_amount: Any,
    brand_code: Optional[str] = None,
    brand_rules: Any = None,
) -> int:
    amount = as_decimal(discount_amount)
    for rule in resolve_rules(brand_code, brand_rules):
        if rule.max_amount is None or amount <= rule.max_amount:
            return rule.required_level
    return FALLBACK_APPROVAL_LEVEL


# ---------------------------------------------------------------------------
# 2) VALIDATION
# ---------------------------------------------------------------------------
def calculate_discount_percentage(original_price: Any, discount_amount: Any) -> Decimal:
    original = as_decimal(original_price)
    if original <= 0:
        return Decimal("0")
    pct = as_decimal(discount_amount) / original * 100
    return pct.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def validate_discount_request(
    discount_amount: Any,
    original_price: Any,
    max_discount_percent: Any = MAX_DISCOUNT_PERCENT,
    campaign_discount: Any = 0,
) -> DiscountValidation:
    """
    Hard ceilings become errors (all of them, not just the first).
    Policy heuristics become warnings and never block submission.
    Amounts are checked at cent precision, the way they will be stored.
    """
    amounts = {
        "Original price": as_decimal(original_price),
        "Discount amount": as_decimal(discount_amount),
        "Campaign discount": as_decimal(campaign_discount),
    }
    out_of_range = [label for label, value in amounts.items() if not is_storable_money(value)]
    if out_of_range:
        return DiscountValidation(
            valid=False,
            errors=[f"{label} must be a finite amount up to {MAX_MONEY_AMOUNT}" for label in out_of_range],
        )

    original = as_money(amounts["Original price"])
    discount = as_money(amounts["Discount amount"])
    campaign = as_money(amounts["Campaign discount"])
    max_pct = as_decimal(max_discount_percent)
    errors: List[str] = []
    warnings: List[str] = []

    if original <= 0:
        errors.append("Original price must be greater than 0")
    if discount <= 0:
        errors.append("Discount amount must be greater than 0")
    if campaign < 0:
        errors.append("Campaign discount cannot be negative")

    if original > 0:
        if discount >= original:
            errors.append("Discount cannot be greater than or equal to the original price")
        elif original - campaign - discount < 0:
            errors.append("Campaign and requested discounts together exceed the original price")

        pct = calculate_discount_percentage(original, discount)
        if pct > max_pct:
            errors.append(f"Discount exceeds maximum allowed ({max_pct.normalize():f}%)")
        if pct > REVIEW_WARNING_PERCENT:
            warnings.append("Discount is above 15%, additional justification may be required")
        if pct > HIGH_DISCOUNT_WARNING_PERCENT:
            warnings.append("High discount detected, GM review is recommended")

    return DiscountValidation(valid=not errors, errors=errors, warnings=warnings)


# ---------------------------------------------------------------------------
# 3) DISPLAY HELPERS
# ---------------------------------------------------------------------------
def approval_level_name(level: int) -> str:
    return APPROVAL_LEVEL_NAMES.get(level, "Unknown")


def next_approver_role(current_level: int, required_level: int) -> Optional[str]:
    if current_level >= required_level:
        return None
    if current_level == 0:
        return "BRANCH_MANAGER"
    if current_level == 1:
        return "GENERAL_MANAGER"
    return None
