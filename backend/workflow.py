# backend/workflow.py: Discount approval state machine
#
#   PENDING_BM --BM--> APPROVED                  (required_level == 1)
#   PENDING_BM --BM--> PENDING_GM --GM--> APPROVED (required_level == 2)
#   any open state --reject--> REJECTED
#
# APPROVED and REJECTED are terminal. Every transition is a compare-and-set
# on (status, current_level), so a lost race never double-counts a level.

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional

from discount_rules import (
    as_money, calculate_discount_percentage, get_required_approval_level,
    validate_discount_request,
)
from errors import NotFoundError, SequenceError, StateError, ValidationError
from models import ApproverRole, CURRENCY, DiscountRequest, DiscountStatus
from store import DiscountStore, DuplicateOpenRequest, Notifier

logger = logging.getLogger(__name__)

MIN_TEXT_LENGTH = 10

BRANCH_MANAGER_RECIPIENT = "branch-manager"
GENERAL_MANAGER_RECIPIENT = "general-manager"


@dataclass
class WorkflowResult:
    request: DiscountRequest
    warnings: List[str] = field(default_factory=list)


class DiscountApprovalWorkflow:
    def __init__(
        self,
        store: DiscountStore,
        notifier: Notifier,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.notifier = notifier
        self.clock = clock

    # -----------------------------------------------------------------------
    # SUBMIT
    # -----------------------------------------------------------------------
    def submit(
        self,
        order_id: str,
        original_price: Any,
        requested_discount: Any,
        justification: str,
        requested_by: str,
        campaign_discount: Any = 0,
        brand_code: Optional[str] = None,
    ) -> WorkflowResult:
        validation = validate_discount_request(
            requested_discount, original_price, campaign_discount=campaign_discount,
        )
        errors = list(validation.errors)
        if not justification or len(justification.strip()) < MIN_TEXT_LENGTH:
            errors.append(f"Justification must be at least {MIN_TEXT_LENGTH} characters")
        if not requested_by:
            errors.append("Requester ID is required")
        if errors:
            logger.info("Discount request for order %s refused: %s", order_id, errors)
            raise ValidationError(errors, validation.warnings)

        order = self.store.get_order(order_id)
        if not order:
            raise NotFoundError("Order not found")
        if self.store.has_open_request(order_id):
            raise ValidationError(["There is already a pending discount request for this order"])

        # Same cent rounding as the columns, so final_price matches the stored parts
        original = as_money(original_price)
        campaign = as_money(campaign_discount)
        requested = as_money(requested_discount)
        brand_rules = self.store.get_brand_rules(brand_code) if brand_code else None

        request = DiscountRequest(
            order_id=order_id,
            status=DiscountStatus.PENDING_BM,
            original_price=original,
            campaign_discount=campaign,
            requested_discount=requested,
            final_price=original - campaign - requested,
            justification=justification.strip(),
            current_level=0,
            required_level=get_required_approval_level(requested, brand_code, brand_rules),
            requested_by=requested_by,
            requested_at=self.clock(),
        )

        try:
            self.store.add_request(request)
        except DuplicateOpenRequest:
            raise ValidationError(["There is already a pending discount request for this order"])

        pct = calculate_discount_percentage(original, requested)
        try:
            self.store.log_activity(
                order_id,
                f"Discount request submitted: {CURRENCY} {requested} ({pct}% off)",
                requested_by,
            )
            self.store.commit()
        except Exception:
            self.store.rollback()
            raise

        logger.info(
            "Discount request %s submitted for order %s (level %d required)",
            request.id, order_id, request.required_level,
        )

        warnings = list(validation.warnings)
        self._notify(
            warnings,
            BRANCH_MANAGER_RECIPIENT,
            "Discount Approval Required",
            f"A discount request of {CURRENCY} {requested} requires your approval",
            request.id,
            link=f"/approvals/discounts?id={request.id}",
        )
        return WorkflowResult(request=request, warnings=warnings)

    # -----------------------------------------------------------------------
    # APPROVE
    # -----------------------------------------------------------------------
    def approve(
        self,
        request_id: str,
        approver_id: str,
        approver_role: Any,
        comment: Optional[str] = None,
    ) -> WorkflowResult:
        try:
            role = ApproverRole(approver_role)
        except ValueError:
            raise ValidationError(["Valid approver role is required (BRANCH_MANAGER or GENERAL_MANAGER)"])
        if not approver_id:
            raise ValidationError(["Approver ID is required"])

        request = self._get_open_request(request_id)
        expected_status = request.status
        expected_level = request.current_level

        if role == ApproverRole.BRANCH_MANAGER and expected_level >= 1:
            logger.info("Repeat BM approval refused for discount request %s", request_id)
            raise SequenceError("BM has already approved this discount")
        if role == ApproverRole.GENERAL_MANAGER and expected_level < 1:
            logger.info("GM approval before BM refused for discount request %s", request_id)
            raise SequenceError("BM approval is required before GM approval")

        now = self.clock()
        if role == ApproverRole.BRANCH_MANAGER:
            new_status = (
                DiscountStatus.APPROVED if request.required_level == 1
                else DiscountStatus.PENDING_GM
            )
            values = {
                "status": new_status,
                "current_level": 1,
                "bm_approved_by": approver_id,
                "bm_approved_at": now,
                "bm_comment": comment or None,
            }
            label = "Branch Manager"
        else:
            new_status = DiscountStatus.APPROVED
            values = {
                "status": new_status,
                "current_level": 2,
                "gm_approved_by": approver_id,
                "gm_approved_at": now,
                "gm_comment": comment or None,
            }
            label = "General Manager"

        order_id = request.order_id
        requested_by = request.requested_by
        requested = request.requested_discount
        final_price = request.final_price

        try:
            applied = self.store.transition(request_id, expected_status, expected_level, values)
            if applied:
                if new_status == DiscountStatus.APPROVED:
                    self.store.set_order_total(order_id, final_price)
                    summary = f"Discount approved by {label}: {CURRENCY} {requested}"
                else:
                    summary = f"Discount approved by {label}, pending GM approval"
                self.store.log_activity(order_id, summary, approver_id)
                self.store.commit()
            else:
                self.store.rollback()
        except Exception:
            self.store.rollback()
            raise

        if not applied:
            logger.info("Discount request %s changed underneath %s approval", request_id, label)
            raise SequenceError("Discount request was modified by another approver; reload and retry")

        logger.info("Discount request %s approved by %s -> %s", request_id, label, new_status.value)

        warnings: List[str] = []
        if new_status == DiscountStatus.PENDING_GM:
            self._notify(
                warnings,
                GENERAL_MANAGER_RECIPIENT,
                "Discount Approval Required",
                f"A discount of {CURRENCY} {requested} has been approved by BM and requires GM approval",
                request_id,
                link=f"/approvals/discounts?id={request_id}",
            )
        else:
            self._notify(
                warnings,
                requested_by,
                "Discount Approved",
                f"Your discount request of {CURRENCY} {requested} has been approved",
                order_id,
                reference_type="order",
                link=f"/orders/{order_id}",
            )
        return WorkflowResult(request=self.store.get_request(request_id), warnings=warnings)

    # -----------------------------------------------------------------------
    # REJECT
    # -----------------------------------------------------------------------
    def reject(self, request_id: str, rejector_id: str, reason: str) -> WorkflowResult:
        errors = []
        if not rejector_id:
            errors.append("Rejector ID is required")
        if not reason or len(reason.strip()) < MIN_TEXT_LENGTH:
            errors.append(f"Rejection reason must be at least {MIN_TEXT_LENGTH} characters")
        if errors:
            raise ValidationError(errors)

        request = self._get_open_request(request_id)
        reason = reason.strip()
        order_id = request.order_id
        requested_by = request.requested_by
        requested = request.requested_discount

        values = {
            "status": DiscountStatus.REJECTED,
            "rejected_by": rejector_id,
            "rejected_at": self.clock(),
            "rejection_reason": reason,
        }
        try:
            applied = self.store.transition(request_id, request.status, request.current_level, values)
            if applied:
                self.store.log_activity(order_id, f"Discount rejected: {reason[:50]}", rejector_id)
                self.store.commit()
            else:
                self.store.rollback()
        except Exception:
            self.store.rollback()
            raise

        if not applied:
            raise SequenceError("Discount request was modified by another approver; reload and retry")

        logger.info("Discount request %s rejected by %s", request_id, rejector_id)

        warnings: List[str] = []
        self._notify(
            warnings,
            requested_by,
            "Discount Rejected",
            f"Your discount request of {CURRENCY} {requested} has been rejected: {reason[:100]}",
            order_id,
            reference_type="order",
            link=f"/orders/{order_id}",
        )
        return WorkflowResult(request=self.store.get_request(request_id), warnings=warnings)

    # -----------------------------------------------------------------------
    # HELPERS
    # -----------------------------------------------------------------------
    def _get_open_request(self, request_id: str) -> DiscountRequest:
        request = self.store.get_request(request_id, for_update=True)
        if not request:
            raise NotFoundError("Discount request not found")
        if request.status == DiscountStatus.APPROVED:
            raise StateError("Discount is already approved")
        if request.status == DiscountStatus.REJECTED:
            raise StateError("Discount has already been rejected")
        return request

    def _notify(
        self,
        warnings: List[str],
        recipient: str,
        title: str,
        message: str,
        reference_id: str,
        reference_type: str = "discount",
        link: Optional[str] = None,
    ) -> None:
        # State is already committed; a failed notification is reported, not rolled back
        try:
            self.notifier.notify(recipient, title, message, reference_id, reference_type, link)
        except Exception:
            logger.exception("Notification to %s for %s failed", recipient, reference_id)
            warnings.append(f"Saved, but the notification to {recipient} could not be delivered")
