"""
The platform's review workflows.

Each definition is a step sequence against the engine: initialize the
submission, tell reviewers, wait for a decision, then publish or reject
and notify the submitter. Verification first waits for payment.
"""

import logging
from abc import abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from review_workflows.domain import Event, WorkflowType
from review_workflows.persistence import SubmissionRepository
from review_workflows.worker.queue import QueueClient
from .catalog import WorkflowCatalog, WorkflowDefinition

logger = logging.getLogger(__name__)

APPROVAL_EVENT = "approval-decision"
PAYMENT_EVENT = "payment-completed"

EXPIRED_REASON = "Review window expired without a decision"

# Ubuntu points per contribution type
UBUNTU_POINTS = {
    "content_published": 100,
    "listing_approved": 50,
    "listing_verified": 75,
    "expert_approved": 100,
}


def _now() -> str:
    return datetime.utcnow().isoformat()


@dataclass
class Decision:
    """A reviewer's decision, or the automatic rejection when the wait expired."""
    approved: bool
    reason: Optional[str] = None
    reviewer_id: Optional[str] = None
    expired: bool = False

    @classmethod
    def from_event(cls, event: Event) -> "Decision":
        if event.timed_out:
            return cls(approved=False, reason=EXPIRED_REASON, expired=True)
        payload = event.payload
        return cls(
            approved=payload.get("approved") is True,
            reason=payload.get("reason") or payload.get("feedback"),
            reviewer_id=payload.get("reviewerId"),
        )


class ReviewWorkflow(WorkflowDefinition):
    """
    Shared shape of the review workflows.

    Subclasses name their table and messages and implement the
    submission-specific initialize/approve/reject writes.
    """

    table: str = ""
    submission_type: str = ""
    contribution_type: str = ""
    # Notification message types
    submitted_message: str = ""
    approved_message: str = ""
    rejected_message: str = ""
    # Step names for the decision branches
    approve_step: str = "approve"
    approved_status: str = "approved"
    # Key under which the rejection reason appears in the output
    reason_key: str = "reason"

    def __init__(self, submissions: SubmissionRepository, queue: QueueClient):
        self.submissions = submissions
        self.queue = queue

    def run(self, ctx, payload: Dict[str, Any]) -> Dict[str, Any]:
        ctx.step("initialize", lambda: self.initialize(payload))
        ctx.step("notify-reviewers", lambda: self.notify_reviewers(ctx, payload))
        return self.review(ctx, payload)

    def review(self, ctx, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Wait for the decision and run the matching branch."""
        event = ctx.wait_for_event(APPROVAL_EVENT, self.decision_timeout)
        decision = Decision.from_event(event)

        if decision.approved:
            ctx.step(self.approve_step, lambda: self.approve(payload, decision))
            ctx.step("award-points", lambda: self.award_points(ctx, payload))
            ctx.step("notify-approval", lambda: self.email_user(
                ctx, "notify-approval", payload, self.approved_message, self.approval_data(payload)
            ))
            return self.output(payload, self.approved_status)

        ctx.step("reject", lambda: self.reject(payload, decision))
        ctx.step("notify-rejection", lambda: self.email_user(
            ctx, "notify-rejection", payload, self.rejected_message,
            self.rejection_data(payload, decision),
        ))
        output = self.output(payload, "rejected")
        output[self.reason_key] = decision.reason
        if decision.expired:
            output["expired"] = True
        return output

    # Submission-specific writes

    @abstractmethod
    def initialize(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    def approve(self, payload: Dict[str, Any], decision: Decision) -> Dict[str, Any]:
        pass

    def reject(self, payload: Dict[str, Any], decision: Decision) -> Dict[str, Any]:
        submission_id = self.submission_id(payload)
        now = _now()
        self.submissions.update_submission(self.table, submission_id, {
            "status": "rejected",
            "reviewer_notes": decision.reason,
            "reviewed_by": decision.reviewer_id,
            "reviewed_at": now,
            "updated_at": now,
        })
        self.submissions.update_unified(submission_id, self.submission_type, {
            "status": "rejected",
            "reviewer_notes": decision.reason,
            "reviewed_at": now,
            "updated_at": now,
        })
        return {"status": "rejected", "expired": decision.expired}

    def notification_data(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return {self.submission_key: self.submission_id(payload), "userId": payload.get("userId")}

    def approval_data(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return {self.submission_key: self.submission_id(payload)}

    def rejection_data(self, payload: Dict[str, Any], decision: Decision) -> Dict[str, Any]:
        return {self.reason_key: decision.reason}

    def points_details(self, payload: Dict[str, Any]) -> str:
        return f"{self.submission_type} {self.submission_id(payload)} approved"

    def output(self, payload: Dict[str, Any], status: str) -> Dict[str, Any]:
        return {"status": status, self.submission_key: self.submission_id(payload)}

    # Side-effect helpers

    def notify_reviewers(self, ctx, payload: Dict[str, Any]) -> Dict[str, Any]:
        message = self.queue.enqueue_notification(
            self.submitted_message,
            self.notification_data(payload),
            idempotency_key=ctx.idempotency_key("notify-reviewers"),
        )
        return {"queued": message is not None}

    def award_points(self, ctx, payload: Dict[str, Any]) -> Dict[str, Any]:
        points = UBUNTU_POINTS[self.contribution_type]
        message = self.queue.queue_points_award(
            payload.get("userId"),
            self.contribution_type,
            points,
            details=self.points_details(payload),
            metadata={self.submission_key: self.submission_id(payload)},
            idempotency_key=ctx.idempotency_key("award-points"),
        )
        return {"points": points, "queued": message is not None}

    def email_user(
        self,
        ctx,
        step_name: str,
        payload: Dict[str, Any],
        message_type: str,
        data: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Email the submitter, skipping the send when the profile has no email."""
        user_id = payload.get("userId")
        profile = self.submissions.get_profile(user_id) if user_id else None
        email = (profile or {}).get("email")
        if not email:
            logger.info(f"No email on file for user {user_id}; skipping {message_type}")
            return {"sent": False}

        message = self.queue.queue_email_notification(
            email, message_type, data, idempotency_key=ctx.idempotency_key(step_name)
        )
        return {"sent": True, "queued": message is not None}


class ContentReviewWorkflow(ReviewWorkflow):
    aliases = ("content-review",)
    submission_key = "contentId"
    decision_timeout = timedelta(days=14)

    table = "content_submissions"
    submission_type = "content"
    contribution_type = "content_published"
    submitted_message = "content-submitted"
    approved_message = "content-approved"
    rejected_message = "content-rejected"
    approve_step = "publish"
    approved_status = "published"
    reason_key = "feedback"

    @property
    def workflow_type(self) -> WorkflowType:
        return WorkflowType.CONTENT_REVIEW

    def initialize(self, payload):
        content_id = self.submission_id(payload)
        now = _now()
        self.submissions.update_submission(self.table, content_id, {
            "status": "submitted",
            "updated_at": now,
        })
        self.submissions.upsert_unified(content_id, self.submission_type, {
            "user_id": payload.get("userId"),
            "title": payload.get("title"),
            "status": "submitted",
            "metadata": {"contentType": payload.get("contentType")},
            "updated_at": now,
        })
        return {"status": "submitted"}

    def approve(self, payload, decision):
        content_id = self.submission_id(payload)
        now = _now()
        self.submissions.update_submission(self.table, content_id, {
            "status": "published",
            "published_at": now,
            "reviewed_by": decision.reviewer_id,
            "updated_at": now,
        })
        self.submissions.update_unified(content_id, self.submission_type, {
            "status": "published",
            "published_at": now,
            "reviewed_at": now,
            "updated_at": now,
        })
        return {"status": "published", "published_at": now}

    def notification_data(self, payload):
        return {
            "contentId": self.submission_id(payload),
            "title": payload.get("title"),
            "contentType": payload.get("contentType"),
            "userId": payload.get("userId"),
        }

    def approval_data(self, payload):
        return {"title": payload.get("title"), "contentId": self.submission_id(payload)}

    def rejection_data(self, payload, decision):
        return {"title": payload.get("title"), "feedback": decision.reason}

    def points_details(self, payload):
        return f'Content "{payload.get("title")}" published'


class ListingReviewWorkflow(ReviewWorkflow):
    aliases = ("listing-review",)
    submission_key = "listingId"
    decision_timeout = timedelta(days=7)

    table = "directory_listings"
    submission_type = "directory_listing"
    contribution_type = "listing_approved"
    submitted_message = "listing-submitted"
    approved_message = "listing-approved"
    rejected_message = "listing-rejected"
    approve_step = "publish"
    approved_status = "published"

    @property
    def workflow_type(self) -> WorkflowType:
        return WorkflowType.LISTING_REVIEW

    def initialize(self, payload):
        listing_id = self.submission_id(payload)
        now = _now()
        self.submissions.update_submission(self.table, listing_id, {
            "status": "pending",
            "updated_at": now,
        })
        self.submissions.upsert_unified(listing_id, self.submission_type, {
            "user_id": payload.get("userId"),
            "title": payload.get("businessName"),
            "status": "submitted",
            "metadata": {"category": payload.get("category")},
            "updated_at": now,
        })
        return {"status": "pending"}

    def approve(self, payload, decision):
        listing_id = self.submission_id(payload)
        now = _now()
        self.submissions.update_submission(self.table, listing_id, {
            "status": "published",
            "reviewed_by": decision.reviewer_id,
            "updated_at": now,
        })
        self.submissions.update_unified(listing_id, self.submission_type, {
            "status": "published",
            "published_at": now,
            "reviewed_at": now,
            "updated_at": now,
        })
        return {"status": "published"}

    def notification_data(self, payload):
        return {
            "listingId": self.submission_id(payload),
            "businessName": payload.get("businessName"),
            "category": payload.get("category"),
            "userId": payload.get("userId"),
        }

    def approval_data(self, payload):
        return {"businessName": payload.get("businessName"), "listingId": self.submission_id(payload)}

    def rejection_data(self, payload, decision):
        return {"businessName": payload.get("businessName"), "reason": decision.reason}

    def points_details(self, payload):
        return f'Listing "{payload.get("businessName")}" approved'


class VerificationWorkflow(ReviewWorkflow):
    """
    Paid business verification.

    The request only reaches reviewers once payment arrives; if it does not
    arrive within the payment window the workflow ends as ``payment_timeout``.
    """

    aliases = ("business-verification",)
    submission_key = "verificationId"
    decision_timeout = timedelta(days=14)
    payment_timeout = timedelta(hours=24)

    table = "verification_requests"
    submission_type = "verification"
    contribution_type = "listing_verified"
    submitted_message = "verification-payment-received"
    approved_message = "verification-approved"
    rejected_message = "verification-rejected"

    @property
    def workflow_type(self) -> WorkflowType:
        return WorkflowType.VERIFICATION

    def run(self, ctx, payload):
        ctx.step("initialize", lambda: self.initialize(payload))
        ctx.step("notify-payment-pending", lambda: self.notify_payment_pending(ctx, payload))

        payment = ctx.wait_for_event(PAYMENT_EVENT, self.payment_timeout)
        if payment.timed_out:
            ctx.step("mark-payment-timeout", lambda: self.mark_payment_timeout(payload))
            ctx.step("notify-payment-timeout", lambda: self.email_user(
                ctx, "notify-payment-timeout", payload, "verification-payment-timeout",
                {"businessName": payload.get("businessName"), "verificationId": self.submission_id(payload)},
            ))
            return self.output(payload, "payment_timeout")

        ctx.step("mark-payment-received", lambda: self.mark_payment_received(payload, payment.payload))
        ctx.step("queue-for-review", lambda: self.queue_for_review(payload))
        ctx.step("notify-reviewers", lambda: self.notify_reviewers(ctx, payload))
        return self.review(ctx, payload)

    def initialize(self, payload):
        self.submissions.update_submission(self.table, self.submission_id(payload), {
            "status": "payment_pending",
            "updated_at": _now(),
        })
        return {"status": "payment_pending"}

    def notify_payment_pending(self, ctx, payload):
        message = self.queue.enqueue_notification(
            "verification-started",
            self.notification_data(payload),
            idempotency_key=ctx.idempotency_key("notify-payment-pending"),
        )
        return {"queued": message is not None}

    def mark_payment_timeout(self, payload):
        self.submissions.update_submission(self.table, self.submission_id(payload), {
            "status": "payment_timeout",
            "updated_at": _now(),
        })
        return {"status": "payment_timeout"}

    def mark_payment_received(self, payload, payment: Dict[str, Any]):
        self.submissions.update_submission(self.table, self.submission_id(payload), {
            "status": "payment_completed",
            "payment_intent_id": payment.get("paymentIntentId"),
            "amount": payment.get("amount"),
            "currency": payment.get("currency"),
            "updated_at": _now(),
        })
        return {
            "status": "payment_completed",
            "paymentIntentId": payment.get("paymentIntentId"),
        }

    def queue_for_review(self, payload):
        verification_id = self.submission_id(payload)
        now = _now()
        self.submissions.update_submission(self.table, verification_id, {
            "status": "in_review",
            "updated_at": now,
        })
        self.submissions.upsert_unified(verification_id, self.submission_type, {
            "user_id": payload.get("userId"),
            "title": f"Verification: {payload.get('businessName')}",
            "status": "in_review",
            "metadata": {"listingId": payload.get("listingId")},
            "updated_at": now,
        })
        return {"status": "in_review"}

    def approve(self, payload, decision):
        verification_id = self.submission_id(payload)
        now = _now()
        self.submissions.update_submission(self.table, verification_id, {
            "status": "approved",
            "reviewed_by": decision.reviewer_id,
            "reviewed_at": now,
            "updated_at": now,
        })
        listing_id = payload.get("listingId")
        if listing_id:
            self.submissions.update_submission("directory_listings", listing_id, {
                "is_verified": True,
                "verified_at": now,
                "updated_at": now,
            })
        self.submissions.update_unified(verification_id, self.submission_type, {
            "status": "approved",
            "reviewed_at": now,
            "updated_at": now,
        })
        return {"status": "approved", "listingVerified": bool(listing_id)}

    def notification_data(self, payload):
        return {
            "verificationId": self.submission_id(payload),
            "businessName": payload.get("businessName"),
            "userId": payload.get("userId"),
        }

    def approval_data(self, payload):
        return {"businessName": payload.get("businessName"), "listingId": payload.get("listingId")}

    def rejection_data(self, payload, decision):
        return {"businessName": payload.get("businessName"), "reason": decision.reason}

    def points_details(self, payload):
        return f'Business "{payload.get("businessName")}" verified'

    def output(self, payload, status):
        return {
            "status": status,
            "verificationId": self.submission_id(payload),
            "listingId": payload.get("listingId"),
        }


class ExpertApplicationWorkflow(ReviewWorkflow):
    aliases = ("expert-application",)
    submission_key = "applicationId"
    decision_timeout = timedelta(days=14)

    table = "experts"
    submission_type = "expert_application"
    contribution_type = "expert_approved"
    submitted_message = "expert-application-submitted"
    approved_message = "expert-approved"
    rejected_message = "expert-rejected"
    reason_key = "feedback"

    @property
    def workflow_type(self) -> WorkflowType:
        return WorkflowType.EXPERT_APPLICATION

    def initialize(self, payload):
        application_id = self.submission_id(payload)
        now = _now()
        self.submissions.update_submission(self.table, application_id, {
            "status": "pending",
            "updated_at": now,
        })
        self.submissions.upsert_unified(application_id, self.submission_type, {
            "user_id": payload.get("userId"),
            "title": f"Expert application: {payload.get('fullName')}",
            "status": "submitted",
            "metadata": {"expertiseArea": payload.get("expertiseArea")},
            "updated_at": now,
        })
        return {"status": "pending"}

    def approve(self, payload, decision):
        application_id = self.submission_id(payload)
        user_id = payload.get("userId")
        now = _now()
        self.submissions.update_submission(self.table, application_id, {
            "status": "approved",
            "reviewed_by": decision.reviewer_id,
            "updated_at": now,
        })

        granted = False
        profile = self.submissions.get_profile(user_id) if user_id else None
        if profile is not None:
            capabilities = list(profile.get("capabilities") or [])
            if "expert" not in capabilities:
                self.submissions.update_profile(user_id, {
                    "capabilities": capabilities + ["expert"],
                    "updated_at": now,
                })
                granted = True

        self.submissions.update_unified(application_id, self.submission_type, {
            "status": "approved",
            "reviewed_at": now,
            "updated_at": now,
        })
        return {"status": "approved", "capabilityGranted": granted}

    def notification_data(self, payload):
        return {
            "applicationId": self.submission_id(payload),
            "fullName": payload.get("fullName"),
            "expertiseArea": payload.get("expertiseArea"),
            "userId": payload.get("userId"),
        }

    def approval_data(self, payload):
        return {"fullName": payload.get("fullName"), "expertiseArea": payload.get("expertiseArea")}

    def rejection_data(self, payload, decision):
        return {"fullName": payload.get("fullName"), "feedback": decision.reason}

    def points_details(self, payload):
        return f'Expert application for {payload.get("expertiseArea")} approved'


def create_default_catalog(submissions: SubmissionRepository, queue: QueueClient) -> WorkflowCatalog:
    """Build a catalog holding the four review workflows."""
    catalog = WorkflowCatalog()
    for definition_cls in (
        ContentReviewWorkflow,
        ListingReviewWorkflow,
        VerificationWorkflow,
        ExpertApplicationWorkflow,
    ):
        catalog.register(definition_cls(submissions, queue))
    return catalog
