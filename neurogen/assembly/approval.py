"""
Approval policies.

An approval callback receives a Proposal and returns (or resolves to) a
bool. Interactive review and automated policies share that one contract, so
the engine never knows which it is talking to.
"""

from __future__ import annotations

import asyncio

import structlog

from neurogen.blueprint import Proposal

logger = structlog.get_logger(__name__)


class ThresholdApprovalPolicy:
    """Auto-approve iff there are no violations, the score clears the threshold
    and the blueprint's author was at least ``min_confidence`` sure of it.
    """

    def __init__(self, threshold: float = 0.9, min_confidence: float = 0.7) -> None:
        self.threshold = max(0.0, min(1.0, float(threshold)))
        self.min_confidence = max(0.0, min(1.0, float(min_confidence)))

    def __call__(self, proposal: Proposal) -> bool:
        validation = proposal.validation
        confidence = proposal.blueprint.confidence_score
        approved = (
            not validation.violations
            and validation.safety_score >= self.threshold
            and confidence >= self.min_confidence
        )
        logger.info(
            "approval.threshold_decision",
            proposal_id=proposal.proposal_id,
            name=proposal.blueprint.name,
            score=validation.safety_score,
            threshold=self.threshold,
            confidence=confidence,
            approved=approved,
        )
        return approved

    def __repr__(self) -> str:
        return f"ThresholdApprovalPolicy(threshold={self.threshold}, min_confidence={self.min_confidence})"


async def hold_for_review(proposal: Proposal) -> bool:
    """Park the proposal until a reviewer calls approve_proposal()/reject_proposal().

    Never decides on its own; the engine's approval timeout still applies.
    """
    logger.info(
        "approval.awaiting_review",
        proposal_id=proposal.proposal_id,
        name=proposal.blueprint.name,
        score=proposal.validation.safety_score,
        warnings=list(proposal.validation.warnings),
    )
    await asyncio.Event().wait()
    return False


def deny_all(proposal: Proposal) -> bool:
    logger.info("approval.denied_by_policy", proposal_id=proposal.proposal_id, name=proposal.blueprint.name)
    return False
