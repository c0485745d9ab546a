# backend/models.py: Config + Database + All Models

import os
import uuid
from datetime import datetime
from sqlalchemy import (
    create_engine, Column, Integer, String, Float, Text, Boolean,
    DateTime, ForeignKey, JSON, Numeric, Index, Enum as SAEnum, text,
)
from sqlalchemy.orm import declarative_base, sessionmaker, relationship
import enum

# ---------------------------------------------------------------------------
# CONFIG
# ---------------------------------------------------------------------------
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./dev.db")

# Render Postgres URLs start with postgres:// but SQLAlchemy needs postgresql://
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

NHTSA_API_URL = os.getenv("NHTSA_API_URL", "https://vpic.nhtsa.dot.gov/api/vehicles")
ALLOWED_ORIGINS = [
    o.strip()
    for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    if o.strip()
]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CURRENCY = os.getenv("CURRENCY", "AED")

# ---------------------------------------------------------------------------
# DATABASE ENGINE + SESSION
# ---------------------------------------------------------------------------
connect_args = {}
if "sqlite" in DATABASE_URL:
    connect_args = {"check_same_thread": False}

engine = create_engine(DATABASE_URL, connect_args=connect_args, echo=False)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """FastAPI dependency, yields a DB session."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def new_id() -> str:
    return uuid.uuid4().hex


Money = Numeric(12, 2)

# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------
class DiscountStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PENDING_BM = "PENDING_BM"
    PENDING_GM = "PENDING_GM"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


OPEN_DISCOUNT_STATUSES = (
    DiscountStatus.DRAFT,
    DiscountStatus.PENDING_BM,
    DiscountStatus.PENDING_GM,
)
TERMINAL_DISCOUNT_STATUSES = (DiscountStatus.APPROVED, DiscountStatus.REJECTED)


class ApproverRole(str, enum.Enum):
    BRANCH_MANAGER = "BRANCH_MANAGER"
    GENERAL_MANAGER = "GENERAL_MANAGER"


class OrderStatus(str, enum.Enum):
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


class InventoryStatus(str, enum.Enum):
    IN_TRANSIT = "IN_TRANSIT"
    IN_YARD = "IN_YARD"
    RESERVED = "RESERVED"
    SOLD = "SOLD"


# Only these are scored for aging / priority
SCORABLE_INVENTORY_STATUSES = (InventoryStatus.IN_TRANSIT, InventoryStatus.IN_YARD)


class CampaignStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    ENDED = "ENDED"


# ---------------------------------------------------------------------------
# MODELS
# ---------------------------------------------------------------------------

class Brand(Base):
    __tablename__ = "brands"

    id = Column(String(32), primary_key=True, default=new_id)
    code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    # [{"max_amount": 5000, "required_level": 1}, ...]; null max_amount = unbounded
    discount_rules = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    variants = relationship("VehicleVariant", back_populates="brand")


class VehicleVariant(Base):
    __tablename__ = "vehicle_variants"

    id = Column(String(32), primary_key=True, default=new_id)
    brand_id = Column(String(32), ForeignKey("brands.id"), nullable=False)
    model_name = Column(String(100), nullable=False)
    name = Column(String(100), nullable=False)
    year = Column(Integer)
    current_price = Column(Money, default=0)
    is_seasonal_favorite = Column(Boolean, default=False)

    brand = relationship("Brand", back_populates="variants")
    campaigns = relationship("Campaign", back_populates="variant")

    @property
    def display_name(self):
        brand = self.brand.name if self.brand else "Unknown"
        return f"{brand} {self.model_name} {self.name} {self.year or ''}".strip()


class ExteriorColor(Base):
    __tablename__ = "exterior_colors"

    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False)
    hex_code = Column(String(7))


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(String(32), primary_key=True, default=new_id)
    variant_id = Column(String(32), ForeignKey("vehicle_variants.id"), nullable=False)
    name = Column(String(255), nullable=False)
    discount_value = Column(Money, default=0)
    status = Column(SAEnum(CampaignStatus), default=CampaignStatus.DRAFT)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)

    variant = relationship("VehicleVariant", back_populates="campaigns")

    def is_active(self, now: datetime) -> bool:
        return (
            self.status == CampaignStatus.ACTIVE
            and self.start_date <= now <= self.end_date
        )


class VehicleInventory(Base):
    __tablename__ = "vehicle_inventory"

    id = Column(String(32), primary_key=True, default=new_id)
    vin = Column(String(17), unique=True, nullable=False, index=True)
    variant_id = Column(String(32), ForeignKey("vehicle_variants.id"), nullable=False)
    exterior_color_id = Column(String(32), ForeignKey("exterior_colors.id"), nullable=False)
    status = Column(SAEnum(InventoryStatus), default=InventoryStatus.IN_TRANSIT, index=True)
    stock_date = Column(DateTime, nullable=False, default=datetime.utcnow)

    # VIN-decoded identity, captured at intake
    decoded_make = Column(String(100))
    model_year = Column(Integer)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    variant = relationship("VehicleVariant")
    exterior_color = relationship("ExteriorColor")
    signals = relationship("InventorySignals", back_populates="inventory", uselist=False)


class InventorySignals(Base):
    __tablename__ = "inventory_signals"

    id = Column(Integer, primary_key=True, index=True)
    inventory_id = Column(String(32), ForeignKey("vehicle_inventory.id"), nullable=False, unique=True)

    recent_inquiries = Column(Integer, default=0)
    recent_test_drives = Column(Integer, default=0)
    notes = Column(Text, default="")

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    inventory = relationship("VehicleInventory", back_populates="signals")


class ColorDemandAnalysis(Base):
    __tablename__ = "color_demand_analysis"

    id = Column(Integer, primary_key=True, index=True)
    variant_id = Column(String(32), ForeignKey("vehicle_variants.id"), nullable=False)
    exterior_color_id = Column(String(32), ForeignKey("exterior_colors.id"), nullable=False)
    month = Column(String(7), nullable=False)  # YYYY-MM

    inquiry_count = Column(Integer, default=0)
    test_drive_count = Column(Integer, default=0)
    order_count = Column(Integer, default=0)
    delivery_count = Column(Integer, default=0)
    avg_stock_level = Column(Float, default=0)
    stockouts = Column(Integer, default=0)
    demand_score = Column(Float, default=0)  # 0-100
    supply_score = Column(Float, default=0)  # 0-100


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(32), primary_key=True, default=new_id)
    customer_name = Column(String(255), nullable=False)
    salesperson_id = Column(String(64), nullable=False)
    variant_id = Column(String(32), ForeignKey("vehicle_variants.id"), nullable=True)
    status = Column(SAEnum(OrderStatus), default=OrderStatus.NEW, index=True)
    total_amount = Column(Money, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    variant = relationship("VehicleVariant")
    discount_requests = relationship("DiscountRequest", back_populates="order")
    activities = relationship("OrderActivity", back_populates="order")


class DiscountRequest(Base):
    __tablename__ = "discount_requests"

    id = Column(String(32), primary_key=True, default=new_id)
    order_id = Column(String(32), ForeignKey("orders.id"), nullable=False, index=True)
    status = Column(SAEnum(DiscountStatus), default=DiscountStatus.PENDING_BM, nullable=False)

    original_price = Column(Money, nullable=False)
    campaign_discount = Column(Money, nullable=False, default=0)
    requested_discount = Column(Money, nullable=False)
    final_price = Column(Money, nullable=False)
    justification = Column(Text, nullable=False)

    current_level = Column(Integer, nullable=False, default=0)  # 0 none, 1 BM, 2 GM
    required_level = Column(Integer, nullable=False)  # 1 BM only, 2 BM + GM

    requested_by = Column(String(64), nullable=False)
    requested_at = Column(DateTime, default=datetime.utcnow)

    bm_approved_by = Column(String(64))
    bm_approved_at = Column(DateTime)
    bm_comment = Column(Text)

    gm_approved_by = Column(String(64))
    gm_approved_at = Column(DateTime)
    gm_comment = Column(Text)

    rejected_by = Column(String(64))
    rejected_at = Column(DateTime)
    rejection_reason = Column(Text)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    order = relationship("Order", back_populates="discount_requests")

    __table_args__ = (
        # One open request per order, enforced by the store itself
        Index(
            "uq_discount_requests_open_per_order",
            "order_id",
            unique=True,
            sqlite_where=text("status IN ('DRAFT', 'PENDING_BM', 'PENDING_GM')"),
            postgresql_where=text("status IN ('DRAFT', 'PENDING_BM', 'PENDING_GM')"),
        ),
    )

    @property
    def is_terminal(self):
        return self.status in TERMINAL_DISCOUNT_STATUSES


class OrderActivity(Base):
    __tablename__ = "order_activities"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(32), ForeignKey("orders.id"), nullable=False, index=True)
    summary = Column(Text, nullable=False)
    performed_by = Column(String(64))
    performed_at = Column(DateTime, default=datetime.utcnow)

    order = relationship("Order", back_populates="activities")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(32), primary_key=True, default=new_id)
    recipient = Column(String(64), nullable=False, index=True)  # role placeholder or user id
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    reference_id = Column(String(32))
    reference_type = Column(String(50))
    link = Column(String(255))
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)


# ---------------------------------------------------------------------------
# CREATE ALL TABLES
# ---------------------------------------------------------------------------
def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)
