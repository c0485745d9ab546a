# backend/store.py: Persistence port + notification sink for the discount workflow
#
# The workflow only talks to these protocols. SqlDiscountStore / SqlNotifier
# are the SQLAlchemy implementations used by the API.

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import (
    Brand, DiscountRequest, DiscountStatus, Notification, Order, OrderActivity,
    OPEN_DISCOUNT_STATUSES,
)


class DuplicateOpenRequest(Exception):
    """The store refused a second open discount request for the same order."""


@runtime_checkable
class DiscountStore(Protocol):
    def get_request(self, request_id: str, for_update: bool = False) -> Optional[DiscountRequest]: ...

    def get_order(self, order_id: str) -> Optional[Order]: ...

    def get_brand_rules(self, brand_code: str) -> Optional[List[Dict[str, Any]]]: ...

    def has_open_request(self, order_id: str) -> bool: ...

    def add_request(self, request: DiscountRequest) -> DiscountRequest: ...

    def transition(
        self,
        request_id: str,
        expected_status: DiscountStatus,
        expected_level: int,
        values: Dict[str, Any],
    ) -> bool: ...

    def set_order_total(self, order_id: str, amount: Decimal) -> None: ...

    def log_activity(self, order_id: str, summary: str, performed_by: str) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


@runtime_checkable
class Notifier(Protocol):
    def notify(
        self,
        recipient: str,
        title: str,
        message: str,
        reference_id: str,
        reference_type: str = "discount",
        link: Optional[str] = None,
    ) -> None: ...


# ---------------------------------------------------------------------------
# SQLALCHEMY IMPLEMENTATIONS
# ---------------------------------------------------------------------------
class SqlDiscountStore:
    def __init__(self, db: Session):
        self.db = db

    def get_request(self, request_id: str, for_update: bool = False) -> Optional[DiscountRequest]:
        q = self.db.query(DiscountRequest).filter(DiscountRequest.id == request_id)
        if for_update:
            # Row lock where the dialect supports it (no-op on SQLite)
            q = q.with_for_update()
        return q.first()

    def get_order(self, order_id: str) -> Optional[Order]:
        return self.db.query(Order).filter(Order.id == order_id).first()

    def get_brand_rules(self, brand_code: str) -> Optional[List[Dict[str, Any]]]:
        brand = self.db.query(Brand).filter(Brand.code == brand_code.upper()).first()
        return brand.discount_rules if brand else None

    def has_open_request(self, order_id: str) -> bool:
        return self.db.query(DiscountRequest.id).filter(
            DiscountRequest.order_id == order_id,
            DiscountRequest.status.in_(OPEN_DISCOUNT_STATUSES),
        ).first() is not None

    def add_request(self, request: DiscountRequest) -> DiscountRequest:
        self.db.add(request)
        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicateOpenRequest(request.order_id) from exc
        return request

    def transition(
        self,
        request_id: str,
        expected_status: DiscountStatus,
        expected_level: int,
        values: Dict[str, Any],
    ) -> bool:
        """Compare-and-set: only applies if nobody moved the request meanwhile."""
        values = dict(values, updated_at=datetime.utcnow())
        updated = self.db.query(DiscountRequest).filter(
            DiscountRequest.id == request_id,
            DiscountRequest.status == expected_status,
            DiscountRequest.current_level == expected_level,
        ).update(values, synchronize_session="fetch")
        return updated == 1

    def set_order_total(self, order_id: str, amount: Decimal) -> None:
        self.db.query(Order).filter(Order.id == order_id).update(
            {"total_amount": amount, "updated_at": datetime.utcnow()},
            synchronize_session="fetch",
        )

    def log_activity(self, order_id: str, summary: str, performed_by: str) -> None:
        self.db.add(OrderActivity(order_id=order_id, summary=summary, performed_by=performed_by))

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()


class SqlNotifier:
    """Writes notification rows in their own commit, after the state change."""

    def __init__(self, db: Session):
        self.db = db

    def notify(
        self,
        recipient: str,
        title: str,
        message: str,
        reference_id: str,
        reference_type: str = "discount",
        link: Optional[str] = None,
    ) -> None:
        try:
            self.db.add(Notification(
                recipient=recipient,
                title=title,
                message=message,
                reference_id=reference_id,
                reference_type=reference_type,
                link=link,
            ))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
