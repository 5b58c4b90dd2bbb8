"""
Unit tests for the workflow catalog.
"""

import pytest
from datetime import timedelta

from review_workflows.domain import WorkflowType
from review_workflows.services.workflows import ReviewWorkflow
from review_workflows.services import (
    ContentReviewWorkflow,
    UnknownWorkflowTypeError,
    WorkflowCatalog,
)


class TestWorkflowCatalog:

    def test_default_catalog_registers_four_types(self, catalog):
        assert set(catalog.list_types()) == set(WorkflowType)

    @pytest.mark.parametrize("name,expected", [
        ("content-review", WorkflowType.CONTENT_REVIEW),
        ("listing-review", WorkflowType.LISTING_REVIEW),
        ("business-verification", WorkflowType.VERIFICATION),
        ("expert-application", WorkflowType.EXPERT_APPLICATION),
        ("content_review", WorkflowType.CONTENT_REVIEW),
        (WorkflowType.VERIFICATION, WorkflowType.VERIFICATION),
    ])
    def test_resolve(self, catalog, name, expected):
        assert catalog.resolve(name).workflow_type == expected

    def test_resolve_unknown(self, catalog):
        with pytest.raises(UnknownWorkflowTypeError, match="onboarding"):
            catalog.resolve("onboarding")

    def test_get_unregistered(self):
        with pytest.raises(UnknownWorkflowTypeError):
            WorkflowCatalog().get(WorkflowType.CONTENT_REVIEW)

    def test_list_names_includes_aliases(self, catalog):
        names = catalog.list_names()
        assert "content-review" in names
        assert "content_review" in names

    def test_decision_timeouts(self, catalog):
        assert catalog.get(WorkflowType.CONTENT_REVIEW).decision_timeout == timedelta(days=14)
        assert catalog.get(WorkflowType.LISTING_REVIEW).decision_timeout == timedelta(days=7)
        verification = catalog.get(WorkflowType.VERIFICATION)
        assert verification.payment_timeout == timedelta(hours=24)
        assert verification.decision_timeout == timedelta(days=14)

    def test_submission_id_required(self, submissions, queue):
        definition = ContentReviewWorkflow(submissions, queue)

        assert definition.submission_id({"contentId": 42}) == "42"
        with pytest.raises(ValueError, match="contentId is required"):
            definition.submission_id({"listingId": "x"})

    def test_review_workflow_requires_submission_writes(self, submissions, queue):
        class HalfBuiltReview(ReviewWorkflow):
            @property
            def workflow_type(self) -> WorkflowType:
                return WorkflowType.CONTENT_REVIEW

            def initialize(self, payload):
                return {}

        with pytest.raises(TypeError, match="approve"):
            HalfBuiltReview(submissions, queue)
