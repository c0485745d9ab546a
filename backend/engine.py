# backend/engine.py: The Stock Intelligence Brain
# All math: aging risk, closeability, priority ranking, urgency buckets,
# stock health, aging forecast, color demand/supply mismatch, order SLA.
# Pure functions over snapshots; nothing here touches the database.

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Dict, Any, Iterable, Union


# ---------------------------------------------------------------------------
# CONSTANTS & DEFAULTS
# ---------------------------------------------------------------------------
# Aging thresholds in days
AGING_THRESHOLDS = {
    "FRESH": 30,      # 0-30 days
    "AGING": 60,      # 31-60 days
    "STALE": 90,      # 61-90 days
    "CRITICAL": 120,  # past this the aging multiplier is at its maximum
}

AGING_MAX_POINTS = 40        # max base points from aging
AGING_POINTS_PER_DAY = 0.5   # per day past FRESH
STALE_MULTIPLIER = 1.2
CRITICAL_MULTIPLIER = 1.5

# Score floors that escalate the risk level beyond its day band
RISK_SCORE_FLOORS = [(50, "CRITICAL"), (35, "HIGH"), (20, "MEDIUM")]
RISK_ORDER = ["LOW", "MEDIUM", "HIGH", "CRITICAL"]

CLOSEABILITY_BASE = 50
FRESHNESS_BONUS = 10
STALE_PENALTY = -15
INQUIRY_WEIGHT = 5
INQUIRY_CAP = 15
TEST_DRIVE_WEIGHT = 10
TEST_DRIVE_CAP = 20
POPULAR_COLOR_BONUS = 10
UNPOPULAR_COLOR_PENALTY = -10
CAMPAIGN_BONUS = 5
SEASONAL_BONUS = 10

PRIORITY_AGING_WEIGHT = 0.6
PRIORITY_CLOSEABILITY_WEIGHT = 0.4

URGENCY_NOW = 70
URGENCY_THIS_WEEK = 40

# Items at or above this priority count towards "value at risk"
AT_RISK_PRIORITY = 60

# Value loss estimate: 0.1% of price per day past FRESH
VALUE_LOSS_RATE_PER_DAY = 0.001

# Color popularity from demand score; no analysis row -> DEFAULT_COLOR_POPULARITY
POPULAR_DEMAND_SCORE = 70
UNPOPULAR_DEMAND_SCORE = 40
DEFAULT_COLOR_POPULARITY = "MEDIUM"

# Demand/supply
MISMATCH_DEAD_BAND = 20
DEFAULT_DEMAND_SCORE = 50.0
DEFAULT_SUPPLY_SCORE = 50.0

# Order SLA windows in hours, per order status
SLA_LIMIT_HOURS = {
    "BOOKING_DONE": 48,          # document review
    "FINANCING_PENDING": 72,     # financing
    "FINANCING_APPROVED": 48,    # vehicle allocation
    "READY_FOR_DELIVERY": 24,    # delivery
}
# Any order status missing from SLA_LIMIT_HOURS gets this window
DEFAULT_SLA_LIMIT_HOURS = 72
SLA_AT_RISK_FRACTION = 0.7

SLA_STAGE_NAMES = {
    "BOOKING_DONE": "Document Review",
    "FINANCING_PENDING": "Financing",
    "FINANCING_APPROVED": "Vehicle Allocation",
    "READY_FOR_DELIVERY": "Ready for Delivery",
}


# ---------------------------------------------------------------------------
# HELPERS
# ---------------------------------------------------------------------------
def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _as_datetime(value: Union[date, datetime]) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day)


def days_between(start: Union[date, datetime], now: Union[date, datetime]) -> int:
    """Whole days from start to now, floored, never negative."""
    delta = _as_datetime(now) - _as_datetime(start)
    return max(0, math.floor(delta.total_seconds() / 86400))


@dataclass
class ScoreFactor:
    factor: str
    impact: int
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {"factor": self.factor, "impact": self.impact, "description": self.description}


@dataclass
class AgingScore:
    days_in_stock: int
    score: int
    risk_level: str
    factors: List[ScoreFactor] = field(default_factory=list)


@dataclass
class CloseabilityScore:
    score: int
    factors: List[ScoreFactor] = field(default_factory=list)
    recommendation: str = ""


# ---------------------------------------------------------------------------
# 1) AGING SCORE
# ---------------------------------------------------------------------------
def _risk_band(days: int) -> str:
    if days <= AGING_THRESHOLDS["FRESH"]:
        return "LOW"
    if days <= AGING_THRESHOLDS["AGING"]:
        return "MEDIUM"
    if days <= AGING_THRESHOLDS["STALE"]:
        return "HIGH"
    return "CRITICAL"


def calculate_aging_score(
    stock_date: Union[date, datetime],
    now: Optional[Union[date, datetime]] = None,
) -> AgingScore:
    """
    Aging risk for one unit. Score and risk level never go down as the
    unit sits longer; factors list every threshold the unit has crossed.
    """
    days = days_between(stock_date, now or datetime.utcnow())
    factors: List[ScoreFactor] = []
    score = 0.0

    if days > AGING_THRESHOLDS["FRESH"]:
        points = min(AGING_MAX_POINTS, (days - AGING_THRESHOLDS["FRESH"]) * AGING_POINTS_PER_DAY)
        score = points
        factors.append(ScoreFactor(
            "aging", round_half_up(points),
            f"Vehicle in stock for {days} days, past the {AGING_THRESHOLDS['FRESH']}-day fresh window",
        ))

        if days > AGING_THRESHOLDS["AGING"]:
            factors.append(ScoreFactor(
                "aging_threshold", 0,
                f"Crossed the {AGING_THRESHOLDS['AGING']}-day aging threshold",
            ))

        if days > AGING_THRESHOLDS["CRITICAL"]:
            score = points * CRITICAL_MULTIPLIER
            factors.append(ScoreFactor(
                "stale_age", round_half_up(points * (STALE_MULTIPLIER - 1)),
                f"Stale: over {AGING_THRESHOLDS['STALE']} days in stock",
            ))
            factors.append(ScoreFactor(
                "critical_age", round_half_up(points * (CRITICAL_MULTIPLIER - STALE_MULTIPLIER)),
                f"Critical: over {AGING_THRESHOLDS['CRITICAL']} days in stock",
            ))
        elif days > AGING_THRESHOLDS["STALE"]:
            score = points * STALE_MULTIPLIER
            factors.append(ScoreFactor(
                "stale_age", round_half_up(points * (STALE_MULTIPLIER - 1)),
                f"Stale: over {AGING_THRESHOLDS['STALE']} days in stock",
            ))

    final_score = min(100, round_half_up(score))

    risk = _risk_band(days)
    for floor, level in RISK_SCORE_FLOORS:
        if final_score >= floor and RISK_ORDER.index(level) > RISK_ORDER.index(risk):
            risk = level
            break

    return AgingScore(days_in_stock=days, score=final_score, risk_level=risk, factors=factors)


# ---------------------------------------------------------------------------
# 2) CLOSEABILITY SCORE
# ---------------------------------------------------------------------------
def calculate_closeability_score(
    days_in_stock: int,
    recent_inquiries: int = 0,
    recent_test_drives: int = 0,
    color_popularity: str = DEFAULT_COLOR_POPULARITY,
    has_active_campaign: bool = False,
    is_seasonal_favorite: bool = False,
) -> CloseabilityScore:
    """
    How easy this unit should be to sell right now (0-100, higher = easier).
    Every signal is additive and documented as a factor.
    """
    score = CLOSEABILITY_BASE
    factors: List[ScoreFactor] = []

    if days_in_stock < AGING_THRESHOLDS["FRESH"]:
        score += FRESHNESS_BONUS
        factors.append(ScoreFactor(
            "freshness", FRESHNESS_BONUS, f"Fresh stock (under {AGING_THRESHOLDS['FRESH']} days)",
        ))
    elif days_in_stock > AGING_THRESHOLDS["STALE"]:
        score += STALE_PENALTY
        factors.append(ScoreFactor(
            "aging", STALE_PENALTY, f"Aging stock (over {AGING_THRESHOLDS['STALE']} days)",
        ))

    if recent_inquiries > 0:
        bonus = min(INQUIRY_CAP, recent_inquiries * INQUIRY_WEIGHT)
        score += bonus
        factors.append(ScoreFactor("inquiries", bonus, f"{recent_inquiries} recent inquiries"))

    if recent_test_drives > 0:
        bonus = min(TEST_DRIVE_CAP, recent_test_drives * TEST_DRIVE_WEIGHT)
        score += bonus
        factors.append(ScoreFactor("test_drives", bonus, f"{recent_test_drives} recent test drives"))

    popularity = (color_popularity or DEFAULT_COLOR_POPULARITY).upper()
    if popularity == "HIGH":
        score += POPULAR_COLOR_BONUS
        factors.append(ScoreFactor("color", POPULAR_COLOR_BONUS, "Popular color choice"))
    elif popularity == "LOW":
        score += UNPOPULAR_COLOR_PENALTY
        factors.append(ScoreFactor("color", UNPOPULAR_COLOR_PENALTY, "Less popular color"))

    if has_active_campaign:
        score += CAMPAIGN_BONUS
        factors.append(ScoreFactor("campaign", CAMPAIGN_BONUS, "Active campaign available"))

    if is_seasonal_favorite:
        score += SEASONAL_BONUS
        factors.append(ScoreFactor("seasonal", SEASONAL_BONUS, "In-season vehicle type"))

    return CloseabilityScore(
        score=int(clamp(score, 0, 100)),
        factors=factors,
        recommendation=closeability_recommendation(score, factors),
    )


def closeability_recommendation(score: float, factors: List[ScoreFactor]) -> str:
    if score >= 80:
        return "High demand vehicle - prioritize for customers seeking quick delivery"
    if score >= 60:
        return "Good prospects - include in recommendations for matching customer profiles"
    if score >= 40:
        if any(f.factor == "aging" for f in factors):
            return "Consider offering additional incentives to move this unit"
        return "Standard priority - market as part of regular inventory"
    if score >= 20:
        return "Low demand - bundle with campaign offers or accessories"
    return "At risk - recommend aggressive pricing or dealer transfer"


# ---------------------------------------------------------------------------
# 3) PRIORITY, URGENCY, ACTION
# ---------------------------------------------------------------------------
def calculate_priority_score(aging_score: float, closeability_score: float) -> int:
    """High aging and low closeability both mean: push this unit first."""
    inverted_closeability = 100 - closeability_score
    return round_half_up(
        aging_score * PRIORITY_AGING_WEIGHT + inverted_closeability * PRIORITY_CLOSEABILITY_WEIGHT
    )


def get_urgency_level(priority_score: float) -> str:
    if priority_score >= URGENCY_NOW:
        return "NOW"
    if priority_score >= URGENCY_THIS_WEEK:
        return "THIS_WEEK"
    return "THIS_MONTH"


# (code, message) decision table, first match wins
RECOMMENDED_ACTIONS = {
    "DISCOUNT_OR_SWAP": "Immediate: Apply maximum discount or consider dealer swap",
    "PROACTIVE_OFFER": "Urgent: Proactively offer to customers with matching preferences",
    "HIGHLIGHT": "Highlight: Feature in showroom and marketing materials",
    "CREATE_CAMPAIGN": "Action: Create campaign bundle or accessory package",
    "MONITOR": "Monitor: Include in weekly follow-up list",
    "STANDARD": "Standard: Maintain regular inventory visibility",
}


def get_recommended_action(
    aging_score: float,
    closeability_score: float,
    has_active_campaign: bool,
) -> Dict[str, str]:
    if aging_score >= 60 and closeability_score < 40:
        code = "DISCOUNT_OR_SWAP"
    elif aging_score >= 60:
        code = "PROACTIVE_OFFER"
    elif closeability_score >= 70:
        code = "HIGHLIGHT"
    elif closeability_score < 30 and not has_active_campaign:
        code = "CREATE_CAMPAIGN"
    elif aging_score >= 40:
        code = "MONITOR"
    else:
        code = "STANDARD"
    return {"code": code, "message": RECOMMENDED_ACTIONS[code]}


# ---------------------------------------------------------------------------
# 4) PRIORITY PUSH LIST: per-item scoring, ranking, summary
# ---------------------------------------------------------------------------
def score_inventory_item(item: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    item: {id, vin, stock_date, price, recent_inquiries, recent_test_drives,
           color_popularity, has_active_campaign, is_seasonal_favorite, ...}
    Returns a copy annotated with scores, urgency and recommended action.
    Scored independently: nothing here looks at other items.
    """
    aging = calculate_aging_score(item["stock_date"], now)
    has_campaign = bool(item.get("has_active_campaign"))
    closeability = calculate_closeability_score(
        days_in_stock=aging.days_in_stock,
        recent_inquiries=item.get("recent_inquiries") or 0,
        recent_test_drives=item.get("recent_test_drives") or 0,
        color_popularity=item.get("color_popularity") or DEFAULT_COLOR_POPULARITY,
        has_active_campaign=has_campaign,
        is_seasonal_favorite=bool(item.get("is_seasonal_favorite")),
    )
    priority = calculate_priority_score(aging.score, closeability.score)

    return {
        **item,
        "days_in_stock": aging.days_in_stock,
        "scores": {
            "aging": aging.score,
            "aging_risk": aging.risk_level,
            "closeability": closeability.score,
            "priority": priority,
        },
        "urgency": get_urgency_level(priority),
        "recommended_action": get_recommended_action(aging.score, closeability.score, has_campaign),
        "closeability_recommendation": closeability.recommendation,
        "factors": {
            "aging": [f.to_dict() for f in aging.factors],
            "closeability": [f.to_dict() for f in closeability.factors],
        },
    }


def rank_priority_items(items: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Priority desc, then older stock first, then id for a total order."""
    return sorted(
        items,
        key=lambda i: (-i["scores"]["priority"], -i["days_in_stock"], str(i.get("id", ""))),
    )


def summarize_priority(items: List[Dict[str, Any]]) -> Dict[str, Any]:
    by_urgency = {"NOW": 0, "THIS_WEEK": 0, "THIS_MONTH": 0}
    by_risk = {level: 0 for level in RISK_ORDER}
    at_risk_value = Decimal("0")
    at_risk_count = 0

    for i in items:
        by_urgency[i["urgency"]] += 1
        by_risk[i["scores"]["aging_risk"]] += 1
        if i["scores"]["priority"] >= AT_RISK_PRIORITY:
            at_risk_count += 1
            at_risk_value += Decimal(str(i.get("price") or 0))

    return {
        "total": len(items),
        "now": by_urgency["NOW"],
        "this_week": by_urgency["THIS_WEEK"],
        "this_month": by_urgency["THIS_MONTH"],
        "by_risk_level": by_risk,
        "at_risk_count": at_risk_count,
        "at_risk_value": at_risk_value,
    }


def build_priority_list(
    items: List[Dict[str, Any]],
    now: Optional[datetime] = None,
    urgency: Optional[str] = None,
    limit: Optional[int] = None,
) -> Dict[str, Any]:
    """Score every item, rank, summarize the full set, then filter + limit."""
    scored = [score_inventory_item(i, now) for i in items]
    ranked = rank_priority_items(scored)
    summary = summarize_priority(ranked)

    if urgency:
        ranked = [i for i in ranked if i["urgency"] == urgency.upper()]
    if limit is not None:
        ranked = ranked[:limit]

    return {"items": ranked, "summary": summary}


# ---------------------------------------------------------------------------
# 5) STOCK HEALTH + AGING FORECAST
# ---------------------------------------------------------------------------
def aging_bucket(days: int) -> str:
    if days <= AGING_THRESHOLDS["FRESH"]:
        return "fresh"
    if days <= AGING_THRESHOLDS["AGING"]:
        return "aging"
    if days <= AGING_THRESHOLDS["STALE"]:
        return "stale"
    return "critical"


def calculate_stock_health(days_in_stock: List[int]) -> Dict[str, Any]:
    if not days_in_stock:
        return {
            "health_score": 100,
            "fresh_percentage": 100,
            "aging_percentage": 0,
            "critical_percentage": 0,
            "avg_days_in_stock": 0,
            "turnover_risk": "LOW",
        }

    total = len(days_in_stock)
    fresh = len([d for d in days_in_stock if d <= AGING_THRESHOLDS["FRESH"]])
    aging = len([d for d in days_in_stock if d > AGING_THRESHOLDS["STALE"]])
    critical = len([d for d in days_in_stock if d > AGING_THRESHOLDS["CRITICAL"]])

    fresh_pct = round_half_up(fresh / total * 100)
    aging_pct = round_half_up(aging / total * 100)
    critical_pct = round_half_up(critical / total * 100)
    avg_days = round_half_up(sum(days_in_stock) / total)

    health = max(0, round_half_up(fresh_pct - aging_pct * 0.5 - critical_pct * 1.5))

    if critical_pct > 20 or avg_days > 60:
        turnover = "HIGH"
    elif aging_pct > 30 or avg_days > 45:
        turnover = "MEDIUM"
    else:
        turnover = "LOW"

    return {
        "health_score": health,
        "fresh_percentage": fresh_pct,
        "aging_percentage": aging_pct,
        "critical_percentage": critical_pct,
        "avg_days_in_stock": avg_days,
        "turnover_risk": turnover,
    }


def estimate_value_loss(price: float, days_in_stock: int) -> int:
    if days_in_stock <= AGING_THRESHOLDS["FRESH"]:
        return 0
    return round_half_up(price * (days_in_stock - AGING_THRESHOLDS["FRESH"]) * VALUE_LOSS_RATE_PER_DAY)


def aging_forecast(days_in_stock: List[int]) -> Dict[str, Dict[str, int]]:
    """How many units cross AGING / STALE within the next 7 and 30 days."""
    def reaching(threshold: int, horizon: int) -> int:
        return len([d for d in days_in_stock if 0 < threshold - d <= horizon])

    return {
        f"next_{horizon}_days": {
            "will_reach_aging": reaching(AGING_THRESHOLDS["AGING"], horizon),
            "will_reach_critical": reaching(AGING_THRESHOLDS["STALE"], horizon),
        }
        for horizon in (7, 30)
    }


# ---------------------------------------------------------------------------
# 6) COLOR DEMAND / SUPPLY MISMATCH
# ---------------------------------------------------------------------------
def color_popularity(demand_score: Optional[float]) -> str:
    if demand_score is None:
        return DEFAULT_COLOR_POPULARITY
    if demand_score >= POPULAR_DEMAND_SCORE:
        return "HIGH"
    if demand_score < UNPOPULAR_DEMAND_SCORE:
        return "LOW"
    return "MEDIUM"


MISMATCH_RECOMMENDATIONS = {
    "BALANCED": "Supply matches demand - maintain current levels",
    "UNDERSUPPLIED": "Consider ordering more units in this color",
    "OVERSUPPLIED": "Consider promotional offers or reallocating stock",
}


def calculate_demand_supply_mismatch(
    demand_score: float,
    supply_score: float,
    dead_band: float = MISMATCH_DEAD_BAND,
) -> Dict[str, Any]:
    """Signed gap against a symmetric dead-band; the score is the gap's size."""
    gap = demand_score - supply_score
    mismatch = abs(gap)

    if mismatch < dead_band:
        status = "BALANCED"
    elif gap > 0:
        status = "UNDERSUPPLIED"
    else:
        status = "OVERSUPPLIED"

    return {
        "status": status,
        "mismatch_score": mismatch,
        "recommendation": MISMATCH_RECOMMENDATIONS[status],
    }


def build_demand_supply_matrix(
    combinations: List[Dict[str, Any]],
    dead_band: float = MISMATCH_DEAD_BAND,
) -> Dict[str, Any]:
    """
    combinations: [{variant_id, color_id, vehicle, color, stock_count,
                    demand_score|None, supply_score|None}]
    """
    matrix = []
    for c in combinations:
        demand = c.get("demand_score")
        supply = c.get("supply_score")
        demand = DEFAULT_DEMAND_SCORE if demand is None else demand
        supply = DEFAULT_SUPPLY_SCORE if supply is None else supply
        matrix.append({
            **c,
            "demand_score": demand,
            "supply_score": supply,
            "mismatch": calculate_demand_supply_mismatch(demand, supply, dead_band),
        })

    matrix.sort(key=lambda m: (-m["mismatch"]["mismatch_score"], m["vehicle"], m["color"]))

    under = [m for m in matrix if m["mismatch"]["status"] == "UNDERSUPPLIED"]
    over = [m for m in matrix if m["mismatch"]["status"] == "OVERSUPPLIED"]
    balanced = [m for m in matrix if m["mismatch"]["status"] == "BALANCED"]

    summary = {
        "total_combinations": len(matrix),
        "undersupplied": {
            "count": len(under),
            "items": [
                {"vehicle": m["vehicle"], "color": m["color"], "gap": m["demand_score"] - m["supply_score"]}
                for m in under[:5]
            ],
        },
        "oversupplied": {
            "count": len(over),
            "items": [
                {"vehicle": m["vehicle"], "color": m["color"], "excess": m["supply_score"] - m["demand_score"]}
                for m in over[:5]
            ],
        },
        "balanced": {"count": len(balanced)},
    }

    recommendations = []
    if under:
        recommendations.append({
            "type": "UNDERSUPPLY",
            "priority": "HIGH",
            "message": f"{len(under)} vehicle-color combinations are undersupplied",
            "action": "Consider ordering more units or expediting in-transit deliveries",
            "items": [f"{m['vehicle']} - {m['color']}" for m in under[:3]],
        })
    if over:
        recommendations.append({
            "type": "OVERSUPPLY",
            "priority": "HIGH" if len(over) > 5 else "MEDIUM",
            "message": f"{len(over)} vehicle-color combinations are oversupplied",
            "action": "Consider promotional offers or reallocating to other branches",
            "items": [f"{m['vehicle']} - {m['color']}" for m in over[:3]],
        })

    return {"matrix": matrix, "summary": summary, "recommendations": recommendations}


# ---------------------------------------------------------------------------
# 7) ORDER SLA
# ---------------------------------------------------------------------------
def sla_limit_hours(order_status: str) -> int:
    return SLA_LIMIT_HOURS.get(order_status, DEFAULT_SLA_LIMIT_HOURS)


def calculate_sla_status(
    order_status: str,
    updated_at: datetime,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    limit = sla_limit_hours(order_status)
    elapsed = ((now or datetime.utcnow()) - updated_at).total_seconds() / 3600
    remaining = limit - elapsed

    if remaining < 0:
        over = abs(remaining)
        label = f"{math.floor(over / 24)}d over" if over >= 24 else f"{math.floor(over)}h over"
        status = "overdue"
    elif elapsed / limit > SLA_AT_RISK_FRACTION:
        label = f"{math.floor(remaining * 60)}m left" if remaining < 1 else f"{math.floor(remaining)}h left"
        status = "at-risk"
    else:
        label = f"{math.floor(remaining / 24)}d left" if remaining >= 24 else f"{math.floor(remaining)}h left"
        status = "on-track"

    return {"status": status, "time": label, "limit_hours": limit}


def sla_stage_name(order_status: str) -> str:
    return SLA_STAGE_NAMES.get(order_status, order_status.replace("_", " ").title())


def sla_compliance(statuses: List[Dict[str, Any]]) -> int:
    """Percentage of SLA-tracked orders that are not overdue."""
    if not statuses:
        return 100
    overdue = len([s for s in statuses if s["status"] == "overdue"])
    return round_half_up((len(statuses) - overdue) / len(statuses) * 100)
