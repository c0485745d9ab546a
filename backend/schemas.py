# backend/schemas.py: All Pydantic Schemas

from pydantic import BaseModel, Field
from typing import Optional, List, Any, Dict
from datetime import datetime
from decimal import Decimal
from enum import Enum


# ---------------------------------------------------------------------------
# ENUMS (mirror SQLAlchemy enums for Pydantic)
# ---------------------------------------------------------------------------
class DiscountStatusEnum(str, Enum):
    DRAFT = "DRAFT"
    PENDING_BM = "PENDING_BM"
    PENDING_GM = "PENDING_GM"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ApproverRoleEnum(str, Enum):
    BRANCH_MANAGER = "BRANCH_MANAGER"
    GENERAL_MANAGER = "GENERAL_MANAGER"


class OrderStatusEnum(str, Enum):
    NEW = "NEW"
    CONTACTED = "CONTACTED"
    TEST_DRIVE_SCHEDULED = "TEST_DRIVE_SCHEDULED"
    TEST_DRIVE_DONE = "TEST_DRIVE_DONE"
    NEGOTIATION = "NEGOTIATION"
    BOOKING_DONE = "BOOKING_DONE"
    FINANCING_PENDING = "FINANCING_PENDING"
    FINANCING_APPROVED = "FINANCING_APPROVED"
    READY_FOR_DELIVERY = "READY_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class InventoryStatusEnum(str, Enum):
    IN_TRANSIT = "IN_TRANSIT"
    IN_YARD = "IN_YARD"
    RESERVED = "RESERVED"
    SOLD = "SOLD"


class UrgencyEnum(str, Enum):
    NOW = "NOW"
    THIS_WEEK = "THIS_WEEK"
    THIS_MONTH = "THIS_MONTH"


class RiskLevelEnum(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class StrictInput(BaseModel):
    """Request bodies reject unknown fields instead of ignoring them."""

    class Config:
        extra = "forbid"


# ---------------------------------------------------------------------------
# ORDERS
# ---------------------------------------------------------------------------
class OrderCreate(StrictInput):
    customer_name: str = Field(min_length=1)
    salesperson_id: str = Field(min_length=1)
    variant_id: Optional[str] = None
    total_amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    status: OrderStatusEnum = OrderStatusEnum.NEW


class OrderOut(BaseModel):
    id: str
    customer_name: str
    salesperson_id: str
    variant_id: Optional[str] = None
    status: OrderStatusEnum
    total_amount: Decimal
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# DISCOUNTS
# ---------------------------------------------------------------------------
class DiscountSubmit(StrictInput):
    original_price: Decimal = Field(max_digits=12, decimal_places=2)
    campaign_discount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    requested_discount: Decimal = Field(max_digits=12, decimal_places=2)
    justification: str
    requested_by: str
    brand_code: Optional[str] = None


class DiscountApprove(StrictInput):
    approved_by: str
    approver_role: ApproverRoleEnum
    comment: Optional[str] = None


class DiscountReject(StrictInput):
    rejected_by: str
    reason: str


class DiscountOut(BaseModel):
    id: str
    order_id: str
    status: DiscountStatusEnum
    original_price: Decimal
    campaign_discount: Decimal
    requested_discount: Decimal
    final_price: Decimal
    justification: str
    current_level: int
    required_level: int
    requested_by: str
    requested_at: datetime
    bm_approved_by: Optional[str] = None
    bm_approved_at: Optional[datetime] = None
    bm_comment: Optional[str] = None
    gm_approved_by: Optional[str] = None
    gm_approved_at: Optional[datetime] = None
    gm_comment: Optional[str] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None

    # Derived for display
    discount_percentage: Optional[Decimal] = None
    required_approval: Optional[str] = None
    next_approver_role: Optional[str] = None

    class Config:
        from_attributes = True


class DiscountResult(BaseModel):
    discount: DiscountOut
    warnings: List[str] = []


class PendingDiscountOut(DiscountOut):
    waiting_days: int = 0
    order: Optional[OrderOut] = None


class PendingDiscountStats(BaseModel):
    pending_bm: int
    pending_gm: int
    total_pending_value: Decimal


class Pagination(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int


class PendingDiscountsOut(BaseModel):
    discounts: List[PendingDiscountOut]
    stats: PendingDiscountStats
    meta: Pagination


# ---------------------------------------------------------------------------
# BRAND DISCOUNT RULES
# ---------------------------------------------------------------------------
class DiscountRuleIn(StrictInput):
    max_amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    required_level: int = Field(ge=1, le=2)


class DiscountRulesUpdate(StrictInput):
    name: Optional[str] = None
    rules: List[DiscountRuleIn] = Field(min_length=1)


class DiscountRulesOut(BaseModel):
    brand_code: str
    source: str  # brand, builtin, default
    rules: List[Dict[str, Any]]


# ---------------------------------------------------------------------------
# INVENTORY
# ---------------------------------------------------------------------------
class InventoryIntake(StrictInput):
    vin: str = Field(min_length=17, max_length=17)
    variant_id: str
    exterior_color_id: str
    status: InventoryStatusEnum = InventoryStatusEnum.IN_TRANSIT
    stock_date: Optional[datetime] = None


class InventoryOut(BaseModel):
    id: str
    vin: str
    variant_id: str
    exterior_color_id: str
    status: InventoryStatusEnum
    stock_date: datetime
    decoded_make: Optional[str] = None
    model_year: Optional[int] = None

    class Config:
        from_attributes = True


class SignalsUpdate(StrictInput):
    recent_inquiries: Optional[int] = Field(default=None, ge=0)
    recent_test_drives: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None


class SignalsOut(BaseModel):
    inventory_id: str
    recent_inquiries: int
    recent_test_drives: int
    notes: Optional[str] = None
    updated_at: datetime

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# STOCK INTELLIGENCE
# ---------------------------------------------------------------------------
class Factor(BaseModel):
    factor: str
    impact: int
    description: str


class PriorityScores(BaseModel):
    aging: int
    aging_risk: RiskLevelEnum
    closeability: int
    priority: int


class RecommendedAction(BaseModel):
    code: str
    message: str


class CampaignBrief(BaseModel):
    name: str
    discount_value: Decimal


class PriorityItemOut(BaseModel):
    id: str
    vin: str
    vehicle: str
    color: str
    status: InventoryStatusEnum
    stock_date: datetime
    days_in_stock: int
    price: Decimal
    scores: PriorityScores
    urgency: UrgencyEnum
    recommended_action: RecommendedAction
    closeability_recommendation: str
    has_active_campaign: bool
    campaign: Optional[CampaignBrief] = None
    factors: Dict[str, List[Factor]]


class PrioritySummary(BaseModel):
    total: int
    now: int
    this_week: int
    this_month: int
    by_risk_level: Dict[str, int]
    at_risk_count: int
    at_risk_value: Decimal
    currency: str


class PriorityPushOut(BaseModel):
    items: List[PriorityItemOut]
    summary: PrioritySummary
    filters: Dict[str, Any]


class AgingItemOut(BaseModel):
    id: str
    vin: str
    vehicle: str
    color: str
    status: InventoryStatusEnum
    stock_date: datetime
    days_in_stock: int
    aging_score: int
    risk_level: RiskLevelEnum
    risk_factors: List[Factor]
    estimated_value_loss: int
    price: Decimal


class AgingForecastOut(BaseModel):
    inventory: List[AgingItemOut]
    forecast: Dict[str, Dict[str, int]]
    risk_distribution: Dict[str, int]
    thresholds: Dict[str, str]
    total: int


class StockOverviewOut(BaseModel):
    health: Dict[str, Any]
    counts: Dict[str, int]
    value: Dict[str, Any]
    aging: Dict[str, int]
    top_brands: List[Dict[str, Any]]
    last_updated: datetime


class MismatchOut(BaseModel):
    status: str
    mismatch_score: float
    recommendation: str


class DemandSupplyRow(BaseModel):
    variant_id: str
    color_id: str
    vehicle: str
    color: str
    stock_count: int
    demand_score: float
    supply_score: float
    mismatch: MismatchOut


class DemandSupplyOut(BaseModel):
    matrix: List[DemandSupplyRow]
    summary: Dict[str, Any]
    recommendations: List[Dict[str, Any]]
    filters: Dict[str, Any]


# ---------------------------------------------------------------------------
# BACKOFFICE + NOTIFICATIONS
# ---------------------------------------------------------------------------
class WorkflowItemOut(BaseModel):
    id: str
    customer_name: str
    status: OrderStatusEnum
    stage: str
    sla_status: str
    sla_time: str
    sla_limit_hours: int
    updated_at: datetime


class BackofficeWorkflowOut(BaseModel):
    items: List[WorkflowItemOut]
    sla_compliance: int
    meta: Pagination


class NotificationOut(BaseModel):
    id: str
    recipient: str
    title: str
    message: str
    reference_id: Optional[str] = None
    reference_type: Optional[str] = None
    link: Optional[str] = None
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True
