# backend/main.py: FastAPI App + All Routes

import logging
import math
import re
from collections import Counter
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

import httpx
from fastapi import FastAPI, Depends, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from models import (
    init_db, get_db, ALLOWED_ORIGINS, NHTSA_API_URL, LOG_LEVEL, CURRENCY, SessionLocal,
    Brand, VehicleVariant, VehicleInventory, InventorySignals, ColorDemandAnalysis,
    Order, DiscountRequest, Notification,
    DiscountStatus, InventoryStatus, OrderStatus, SCORABLE_INVENTORY_STATUSES,
)
from schemas import (
    OrderCreate, OrderOut,
    DiscountSubmit, DiscountApprove, DiscountReject, DiscountOut, DiscountResult,
    PendingDiscountOut, PendingDiscountsOut, PendingDiscountStats, Pagination,
    DiscountRulesUpdate, DiscountRulesOut,
    InventoryIntake, InventoryOut, SignalsUpdate, SignalsOut,
    PriorityPushOut, AgingForecastOut, StockOverviewOut, DemandSupplyOut,
    BackofficeWorkflowOut, NotificationOut,
    ApproverRoleEnum, DiscountStatusEnum, UrgencyEnum, RiskLevelEnum,
)
from discount_rules import (
    BRAND_DISCOUNT_RULES, DEFAULT_DISCOUNT_RULES, approval_level_name,
    calculate_discount_percentage, next_approver_role, parse_discount_rules, rules_to_json,
)
from errors import DomainError, NotFoundError, ValidationError
from store import SqlDiscountStore, SqlNotifier
from workflow import DiscountApprovalWorkflow
import engine

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

VIN_RE = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$", re.IGNORECASE)

# ---------------------------------------------------------------------------
# APP INIT
# ---------------------------------------------------------------------------
app = FastAPI(title="Dealership Sales Ops: Discounts & Stock Intelligence", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup():
    init_db()
    # Seed the built-in brand discount tables for dev convenience
    db = SessionLocal()
    try:
        if not db.query(Brand).first():
            for code, rules in BRAND_DISCOUNT_RULES.items():
                db.add(Brand(code=code, name=code.title(), discount_rules=rules_to_json(rules)))
            db.commit()
    finally:
        db.close()


# ---------------------------------------------------------------------------
# ERROR HANDLERS: {"error": {code, message, details}}
# ---------------------------------------------------------------------------
@app.exception_handler(DomainError)
def domain_error_handler(request: Request, exc: DomainError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        f"{'.'.join(str(p) for p in e['loc'] if p != 'body')}: {e['msg']}"
        for e in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": {
            "code": "BAD_REQUEST",
            "message": "Invalid request",
            "details": {"errors": errors},
        }},
    )


@app.exception_handler(Exception)
def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "INTERNAL_ERROR", "message": "Internal server error"}},
    )


# ---------------------------------------------------------------------------
# DEPENDENCIES + HELPERS
# ---------------------------------------------------------------------------
def get_workflow(db: Session = Depends(get_db)) -> DiscountApprovalWorkflow:
    return DiscountApprovalWorkflow(SqlDiscountStore(db), SqlNotifier(db))


def _get_order_or_404(order_id: str, db: Session) -> Order:
    o = db.query(Order).filter(Order.id == order_id).first()
    if not o:
        raise NotFoundError("Order not found")
    return o


def _get_inventory_or_404(inventory_id: str, db: Session) -> VehicleInventory:
    inv = db.query(VehicleInventory).filter(VehicleInventory.id == inventory_id).first()
    if not inv:
        raise NotFoundError("Inventory item not found")
    return inv


def _discount_out(d: DiscountRequest) -> DiscountOut:
    out = DiscountOut.model_validate(d)
    return out.model_copy(update={
        "discount_percentage": calculate_discount_percentage(d.original_price, d.requested_discount),
        "required_approval": approval_level_name(d.required_level),
        "next_approver_role": (
            None if d.is_terminal else next_approver_role(d.current_level, d.required_level)
        ),
    })


def _paginate(total: int, page: int, page_size: int) -> Pagination:
    return Pagination(
        page=page,
        page_size=page_size,
        total=total,
        total_pages=math.ceil(total / page_size) if total else 0,
    )


# ---------------------------------------------------------------------------
# HEALTH
# ---------------------------------------------------------------------------
@app.get("/api/health")
def health():
    return {"status": "ok", "app": "dealership-sales-ops", "version": "1.0.0"}


# ---------------------------------------------------------------------------
# ORDER ROUTES
# ---------------------------------------------------------------------------
@app.post("/api/orders", response_model=OrderOut, status_code=201)
def create_order(payload: OrderCreate, db: Session = Depends(get_db)):
    if payload.variant_id and not db.query(VehicleVariant).filter(VehicleVariant.id == payload.variant_id).first():
        raise NotFoundError("Vehicle variant not found")
    data = payload.model_dump()
    data["status"] = OrderStatus(payload.status.value)
    o = Order(**data)
    db.add(o)
    db.commit()
    db.refresh(o)
    return o


@app.get("/api/orders/{order_id}", response_model=OrderOut)
def get_order(order_id: str, db: Session = Depends(get_db)):
    return _get_order_or_404(order_id, db)


# ---------------------------------------------------------------------------
# DISCOUNT ROUTES
# ---------------------------------------------------------------------------
@app.get("/api/orders/{order_id}/discounts", response_model=List[DiscountOut])
def list_order_discounts(order_id: str, db: Session = Depends(get_db)):
    _get_order_or_404(order_id, db)
    discounts = db.query(DiscountRequest).filter(
        DiscountRequest.order_id == order_id,
    ).order_by(DiscountRequest.requested_at.desc()).all()
    return [_discount_out(d) for d in discounts]


@app.post("/api/orders/{order_id}/discounts", response_model=DiscountResult, status_code=201)
def submit_discount(
    order_id: str,
    payload: DiscountSubmit,
    workflow: DiscountApprovalWorkflow = Depends(get_workflow),
):
    result = workflow.submit(
        order_id=order_id,
        original_price=payload.original_price,
        campaign_discount=payload.campaign_discount,
        requested_discount=payload.requested_discount,
        justification=payload.justification,
        requested_by=payload.requested_by,
        brand_code=payload.brand_code,
    )
    return DiscountResult(discount=_discount_out(result.request), warnings=result.warnings)


@app.put("/api/discounts/{discount_id}/approve", response_model=DiscountResult)
def approve_discount(
    discount_id: str,
    payload: DiscountApprove,
    workflow: DiscountApprovalWorkflow = Depends(get_workflow),
):
    result = workflow.approve(
        discount_id, payload.approved_by, payload.approver_role.value, payload.comment,
    )
    return DiscountResult(discount=_discount_out(result.request), warnings=result.warnings)


@app.put("/api/discounts/{discount_id}/reject", response_model=DiscountResult)
def reject_discount(
    discount_id: str,
    payload: DiscountReject,
    workflow: DiscountApprovalWorkflow = Depends(get_workflow),
):
    result = workflow.reject(discount_id, payload.rejected_by, payload.reason)
    return DiscountResult(discount=_discount_out(result.request), warnings=result.warnings)


@app.get("/api/discounts/pending", response_model=PendingDiscountsOut)
def list_pending_discounts(
    status: Optional[DiscountStatusEnum] = Query(None),
    approver_role: Optional[ApproverRoleEnum] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """Oldest first. approver_role narrows to the queue that role acts on."""
    q = db.query(DiscountRequest)
    if approver_role == ApproverRoleEnum.BRANCH_MANAGER:
        q = q.filter(DiscountRequest.status == DiscountStatus.PENDING_BM)
    elif approver_role == ApproverRoleEnum.GENERAL_MANAGER:
        q = q.filter(DiscountRequest.status == DiscountStatus.PENDING_GM)
    elif status:
        q = q.filter(DiscountRequest.status == DiscountStatus(status.value))
    else:
        q = q.filter(DiscountRequest.status.in_([DiscountStatus.PENDING_BM, DiscountStatus.PENDING_GM]))

    total = q.count()
    discounts = q.options(joinedload(DiscountRequest.order)).order_by(
        DiscountRequest.requested_at.asc(),
    ).offset((page - 1) * page_size).limit(page_size).all()

    now = datetime.utcnow()
    items = []
    for d in discounts:
        base = _discount_out(d)
        items.append(PendingDiscountOut(
            **base.model_dump(),
            waiting_days=max(0, (now - d.requested_at).days),
            order=OrderOut.model_validate(d.order),
        ))

    stats = PendingDiscountStats(
        pending_bm=db.query(DiscountRequest).filter(DiscountRequest.status == DiscountStatus.PENDING_BM).count(),
        pending_gm=db.query(DiscountRequest).filter(DiscountRequest.status == DiscountStatus.PENDING_GM).count(),
        total_pending_value=Decimal(str(
            db.query(func.coalesce(func.sum(DiscountRequest.requested_discount), 0)).filter(
                DiscountRequest.status.in_([DiscountStatus.PENDING_BM, DiscountStatus.PENDING_GM]),
            ).scalar()
        )),
    )
    return PendingDiscountsOut(discounts=items, stats=stats, meta=_paginate(total, page, page_size))


@app.get("/api/discounts/{discount_id}", response_model=DiscountOut)
def get_discount(discount_id: str, db: Session = Depends(get_db)):
    d = db.query(DiscountRequest).filter(DiscountRequest.id == discount_id).first()
    if not d:
        raise NotFoundError("Discount request not found")
    return _discount_out(d)


# ---------------------------------------------------------------------------
# BRAND DISCOUNT RULES
# ---------------------------------------------------------------------------
@app.get("/api/brands/{brand_code}/discount-rules", response_model=DiscountRulesOut)
def get_brand_discount_rules(brand_code: str, db: Session = Depends(get_db)):
    code = brand_code.upper()
    brand = db.query(Brand).filter(Brand.code == code).first()
    if brand and brand.discount_rules:
        return DiscountRulesOut(
            brand_code=code, source="brand",
            rules=rules_to_json(parse_discount_rules(brand.discount_rules)),
        )
    if code in BRAND_DISCOUNT_RULES:
        return DiscountRulesOut(brand_code=code, source="builtin", rules=rules_to_json(BRAND_DISCOUNT_RULES[code]))
    return DiscountRulesOut(brand_code=code, source="default", rules=rules_to_json(DEFAULT_DISCOUNT_RULES))


@app.put("/api/brands/{brand_code}/discount-rules", response_model=DiscountRulesOut)
def update_brand_discount_rules(
    brand_code: str,
    payload: DiscountRulesUpdate,
    db: Session = Depends(get_db),
):
    code = brand_code.upper()
    if not any(r.max_amount is None for r in payload.rules):
        raise ValidationError(["Rules must end with an unbounded tier (max_amount null)"])

    raw = [
        {"max_amount": float(r.max_amount) if r.max_amount is not None else None,
         "required_level": r.required_level}
        for r in payload.rules
    ]
    brand = db.query(Brand).filter(Brand.code == code).first()
    if not brand:
        brand = Brand(code=code, name=payload.name or code.title())
        db.add(brand)
    elif payload.name:
        brand.name = payload.name
    brand.discount_rules = raw
    db.commit()

    logger.info("Discount rules for brand %s updated (%d tiers)", code, len(raw))
    return DiscountRulesOut(brand_code=code, source="brand", rules=rules_to_json(parse_discount_rules(raw)))


# ---------------------------------------------------------------------------
# VIN DECODE HELPER
# ---------------------------------------------------------------------------
async def decode_vin(vin: str) -> dict:
    """Call NHTSA vPIC API to decode VIN."""
    url = f"{NHTSA_API_URL}/DecodeVinValues/{vin}?format=json"
    try:
        async with httpx.AsyncClient(timeout=10) as client:
            resp = await client.get(url)
            resp.raise_for_status()
            data = resp.json()
            results = data.get("Results", [{}])[0]
            return {
                "make": results.get("Make") or None,
                "model_year": int(results.get("ModelYear") or 0) or None,
            }
    except (httpx.HTTPError, ValueError, KeyError, IndexError) as exc:
        logger.warning("VIN decode failed for %s: %s", vin, exc)
        return {}


# ---------------------------------------------------------------------------
# INVENTORY ROUTES
# ---------------------------------------------------------------------------
@app.post("/api/inventory", response_model=InventoryOut, status_code=201)
async def intake_inventory(payload: InventoryIntake, db: Session = Depends(get_db)):
    vin = payload.vin.upper()
    if not VIN_RE.match(vin):
        raise ValidationError([f"Invalid VIN: {payload.vin}"])
    if db.query(VehicleInventory).filter(VehicleInventory.vin == vin).first():
        raise ValidationError([f"Inventory with VIN {vin} already exists"])
    if not db.query(VehicleVariant).filter(VehicleVariant.id == payload.variant_id).first():
        raise NotFoundError("Vehicle variant not found")

    decoded = await decode_vin(vin)

    inv = VehicleInventory(
        vin=vin,
        variant_id=payload.variant_id,
        exterior_color_id=payload.exterior_color_id,
        status=InventoryStatus(payload.status.value),
        stock_date=payload.stock_date or datetime.utcnow(),
        decoded_make=decoded.get("make"),
        model_year=decoded.get("model_year"),
    )
    db.add(inv)
    try:
        db.flush()
        db.add(InventorySignals(inventory_id=inv.id))
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError([f"Inventory with VIN {vin} already exists"])
    db.refresh(inv)
    return inv


@app.put("/api/inventory/{inventory_id}/signals", response_model=SignalsOut)
def update_signals(inventory_id: str, payload: SignalsUpdate, db: Session = Depends(get_db)):
    _get_inventory_or_404(inventory_id, db)

    sig = db.query(InventorySignals).filter(InventorySignals.inventory_id == inventory_id).first()
    if not sig:
        sig = InventorySignals(inventory_id=inventory_id)
        db.add(sig)

    for key, val in payload.model_dump(exclude_unset=True).items():
        setattr(sig, key, val)

    sig.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(sig)
    return sig


@app.get("/api/inventory/{inventory_id}/signals", response_model=SignalsOut)
def get_signals(inventory_id: str, db: Session = Depends(get_db)):
    sig = db.query(InventorySignals).filter(InventorySignals.inventory_id == inventory_id).first()
    if not sig:
        raise NotFoundError("No signals found.")
    return sig


# ---------------------------------------------------------------------------
# STOCK INTELLIGENCE: snapshot loading
# ---------------------------------------------------------------------------
def _scorable_inventory(db: Session, brand_id: Optional[str] = None, variant_id: Optional[str] = None):
    q = db.query(VehicleInventory).options(
        joinedload(VehicleInventory.variant).joinedload(VehicleVariant.brand),
        joinedload(VehicleInventory.variant).joinedload(VehicleVariant.campaigns),
        joinedload(VehicleInventory.exterior_color),
        joinedload(VehicleInventory.signals),
    ).filter(VehicleInventory.status.in_(SCORABLE_INVENTORY_STATUSES))
    if variant_id:
        q = q.filter(VehicleInventory.variant_id == variant_id)
    if brand_id:
        q = q.join(VehicleVariant, VehicleInventory.variant_id == VehicleVariant.id).filter(
            VehicleVariant.brand_id == brand_id,
        )
    return q.all()


def _latest_demand(db: Session) -> dict:
    """(variant_id, color_id) -> most recent ColorDemandAnalysis row."""
    latest = {}
    for row in db.query(ColorDemandAnalysis).order_by(ColorDemandAnalysis.month.desc()).all():
        latest.setdefault((row.variant_id, row.exterior_color_id), row)
    return latest


def _inventory_snapshot(item: VehicleInventory, now: datetime, demand: dict) -> dict:
    variant = item.variant
    active = [c for c in (variant.campaigns if variant else []) if c.is_active(now)]
    analysis = demand.get((item.variant_id, item.exterior_color_id))
    signals = item.signals
    return {
        "id": item.id,
        "vin": item.vin,
        "vehicle": variant.display_name if variant else "Unknown",
        "brand": variant.brand.name if variant and variant.brand else "Unknown",
        "color": item.exterior_color.name if item.exterior_color else "Unknown",
        "status": item.status.value,
        "stock_date": item.stock_date,
        "price": variant.current_price if variant and variant.current_price is not None else Decimal("0"),
        "recent_inquiries": signals.recent_inquiries if signals else 0,
        "recent_test_drives": signals.recent_test_drives if signals else 0,
        "color_popularity": engine.color_popularity(analysis.demand_score if analysis else None),
        "has_active_campaign": bool(active),
        "campaign": {"name": active[0].name, "discount_value": active[0].discount_value} if active else None,
        "is_seasonal_favorite": bool(variant.is_seasonal_favorite) if variant else False,
    }


# ---------------------------------------------------------------------------
# STOCK INTELLIGENCE ROUTES
# ---------------------------------------------------------------------------
@app.get("/api/stock/intelligence/priority-push", response_model=PriorityPushOut)
def priority_push(
    limit: int = Query(20, ge=1, le=50),
    urgency: Optional[UrgencyEnum] = Query(None),
    db: Session = Depends(get_db),
):
    now = datetime.utcnow()
    demand = _latest_demand(db)
    snapshots = [_inventory_snapshot(i, now, demand) for i in _scorable_inventory(db)]
    result = engine.build_priority_list(
        snapshots, now=now, urgency=urgency.value if urgency else None, limit=limit,
    )
    return PriorityPushOut(
        items=result["items"],
        summary={**result["summary"], "currency": CURRENCY},
        filters={"urgency": urgency.value if urgency else None, "limit": limit},
    )


@app.get("/api/stock/intelligence/aging-forecast", response_model=AgingForecastOut)
def aging_forecast(
    brand_id: Optional[str] = Query(None),
    risk_level: Optional[RiskLevelEnum] = Query(None),
    db: Session = Depends(get_db),
):
    now = datetime.utcnow()
    scored = []
    for item in _scorable_inventory(db, brand_id=brand_id):
        snap = _inventory_snapshot(item, now, {})
        aging = engine.calculate_aging_score(item.stock_date, now)
        scored.append({
            **snap,
            "days_in_stock": aging.days_in_stock,
            "aging_score": aging.score,
            "risk_level": aging.risk_level,
            "risk_factors": [f.to_dict() for f in aging.factors],
            "estimated_value_loss": engine.estimate_value_loss(float(snap["price"]), aging.days_in_stock),
        })

    days = [s["days_in_stock"] for s in scored]
    distribution = Counter(s["risk_level"] for s in scored)

    filtered = scored
    if risk_level:
        filtered = [s for s in scored if s["risk_level"] == risk_level.value]
    filtered.sort(key=lambda s: (-s["aging_score"], -s["days_in_stock"], s["id"]))

    t = engine.AGING_THRESHOLDS
    return AgingForecastOut(
        inventory=filtered,
        forecast=engine.aging_forecast(days),
        risk_distribution={level.lower(): distribution.get(level, 0) for level in engine.RISK_ORDER},
        thresholds={
            "fresh": f"0-{t['FRESH']} days",
            "aging": f"{t['FRESH'] + 1}-{t['AGING']} days",
            "stale": f"{t['AGING'] + 1}-{t['STALE']} days",
            "critical": f"{t['STALE'] + 1}+ days",
        },
        total=len(filtered),
    )


@app.get("/api/stock/intelligence/overview", response_model=StockOverviewOut)
def stock_overview(db: Session = Depends(get_db)):
    now = datetime.utcnow()
    inventory = _scorable_inventory(db)
    snapshots = [_inventory_snapshot(i, now, {}) for i in inventory]
    days = [engine.days_between(i.stock_date, now) for i in inventory]

    total_value = sum((s["price"] for s in snapshots), Decimal("0"))
    at_risk_value = sum(
        (s["price"] for s, d in zip(snapshots, days) if d > engine.AGING_THRESHOLDS["AGING"]),
        Decimal("0"),
    )
    buckets = Counter(engine.aging_bucket(d) for d in days)
    brands = Counter(s["brand"] for s in snapshots)

    status_counts = dict(
        db.query(VehicleInventory.status, func.count(VehicleInventory.id)).group_by(VehicleInventory.status).all()
    )

    return StockOverviewOut(
        health=engine.calculate_stock_health(days),
        counts={
            "total": len(inventory),
            "in_transit": status_counts.get(InventoryStatus.IN_TRANSIT, 0),
            "in_yard": status_counts.get(InventoryStatus.IN_YARD, 0),
            "reserved": status_counts.get(InventoryStatus.RESERVED, 0),
            "sold": status_counts.get(InventoryStatus.SOLD, 0),
        },
        value={
            "total": total_value,
            "at_risk": at_risk_value,
            "at_risk_percentage": round(float(at_risk_value / total_value * 100)) if total_value > 0 else 0,
            "currency": CURRENCY,
        },
        aging={b: buckets.get(b, 0) for b in ("fresh", "aging", "stale", "critical")},
        top_brands=[{"name": n, "count": c} for n, c in brands.most_common(5)],
        last_updated=now,
    )


@app.get("/api/stock/intelligence/demand-supply", response_model=DemandSupplyOut)
def demand_supply(
    variant_id: Optional[str] = Query(None),
    brand_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    now = datetime.utcnow()
    demand = _latest_demand(db)

    combos = {}
    for item in _scorable_inventory(db, brand_id=brand_id, variant_id=variant_id):
        key = (item.variant_id, item.exterior_color_id)
        if key not in combos:
            snap = _inventory_snapshot(item, now, demand)
            analysis = demand.get(key)
            combos[key] = {
                "variant_id": item.variant_id,
                "color_id": item.exterior_color_id,
                "vehicle": snap["vehicle"],
                "color": snap["color"],
                "stock_count": 0,
                "demand_score": analysis.demand_score if analysis else None,
                "supply_score": analysis.supply_score if analysis else None,
            }
        combos[key]["stock_count"] += 1

    result = engine.build_demand_supply_matrix(list(combos.values()))
    return DemandSupplyOut(**result, filters={"variant_id": variant_id, "brand_id": brand_id})


# ---------------------------------------------------------------------------
# BACKOFFICE: order SLA board
# ---------------------------------------------------------------------------
SLA_STAGE_STATUSES = {
    "documents": [OrderStatus.BOOKING_DONE],
    "financing": [OrderStatus.FINANCING_PENDING],
    "allocation": [OrderStatus.FINANCING_APPROVED],
    "delivery": [OrderStatus.READY_FOR_DELIVERY],
}
SLA_TRACKED_STATUSES = [s for statuses in SLA_STAGE_STATUSES.values() for s in statuses]


@app.get("/api/backoffice/workflow", response_model=BackofficeWorkflowOut)
def backoffice_workflow(
    stage: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    if stage and stage not in SLA_STAGE_STATUSES:
        raise ValidationError([f"Unknown stage: {stage}"])

    now = datetime.utcnow()
    tracked = db.query(Order).filter(Order.status.in_(SLA_TRACKED_STATUSES)).order_by(Order.updated_at.asc()).all()
    compliance = engine.sla_compliance(
        [engine.calculate_sla_status(o.status.value, o.updated_at, now) for o in tracked]
    )

    statuses = SLA_STAGE_STATUSES[stage] if stage else SLA_TRACKED_STATUSES
    orders = [o for o in tracked if o.status in statuses]
    page_orders = orders[(page - 1) * page_size: page * page_size]

    items = []
    for o in page_orders:
        sla = engine.calculate_sla_status(o.status.value, o.updated_at, now)
        items.append({
            "id": o.id,
            "customer_name": o.customer_name,
            "status": o.status.value,
            "stage": engine.sla_stage_name(o.status.value),
            "sla_status": sla["status"],
            "sla_time": sla["time"],
            "sla_limit_hours": sla["limit_hours"],
            "updated_at": o.updated_at,
        })

    return BackofficeWorkflowOut(
        items=items, sla_compliance=compliance, meta=_paginate(len(orders), page, page_size),
    )


# ---------------------------------------------------------------------------
# NOTIFICATIONS
# ---------------------------------------------------------------------------
@app.get("/api/notifications", response_model=List[NotificationOut])
def list_notifications(
    recipient: str = Query(...),
    unread_only: bool = Query(False),
    db: Session = Depends(get_db),
):
    q = db.query(Notification).filter(Notification.recipient == recipient)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    return q.order_by(Notification.created_at.desc()).all()
