"""Tests for neurogen.assembly.approval — the shipped approval policies."""

from __future__ import annotations

import asyncio

import pytest

from neurogen.assembly.approval import ThresholdApprovalPolicy, deny_all, hold_for_review
from neurogen.blueprint import Proposal, ValidationResult


def _proposal(
    make_blueprint, score: float = 1.0, violations: tuple[str, ...] = (), confidence: float = 0.8
) -> Proposal:
    return Proposal(
        blueprint=make_blueprint(confidence_score=confidence),
        validation=ValidationResult(safety_score=score, violations=violations),
    )


class TestThresholdPolicy:
    @pytest.mark.parametrize(
        "score, violations, confidence, expected",
        [
            (1.0, (), 0.8, True),
            (0.9, (), 0.7, True),
            (0.85, (), 0.8, False),
            (1.0, ("missing-rationale",), 0.8, False),
            (1.0, (), 0.6, False),
        ],
    )
    def test_decision(self, make_blueprint, score, violations, confidence, expected) -> None:
        policy = ThresholdApprovalPolicy(0.9, min_confidence=0.7)
        assert policy(_proposal(make_blueprint, score, violations, confidence)) is expected

    def test_threshold_clamped(self) -> None:
        policy = ThresholdApprovalPolicy(7, min_confidence=-1)
        assert policy.threshold == 1.0
        assert policy.min_confidence == 0.0
        assert "threshold=1.0" in repr(policy)


class TestOtherPolicies:
    def test_deny_all(self, make_blueprint) -> None:
        assert deny_all(_proposal(make_blueprint)) is False

    @pytest.mark.asyncio
    async def test_hold_for_review_never_decides(self, make_blueprint) -> None:
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(hold_for_review(_proposal(make_blueprint)), timeout=0.05)
