"""Unit tests for consensus scoring and the multi-reviewer runner."""

from __future__ import annotations

import threading

import pytest

from phasegate.config import ReviewerProviderConfig
from phasegate.core.cancellation import CancellationToken, PipelineCancelled
from phasegate.core.consensus import (
    ConsensusRunner,
    ProviderRegistry,
    ProviderReview,
    build_consensus_packet,
    build_review_prompt,
    compute_consensus_score,
)
from phasegate.core.hasher import sha256_text
from phasegate.core.packet_builders import build_plan_packet
from phasegate.models.artifacts import ArtifactType
from phasegate.models.packets import (
    ArbitratorResult,
    ConsensusRules,
    ConsensusStatus,
    Constraint,
    ConstraintType,
    VoteDecision,
)
from phasegate.models.phases import PipelinePhase, PipelineRole

V = VoteDecision
PROVIDERS = [
    ReviewerProviderConfig(provider="openai", model="gpt-4o"),
    ReviewerProviderConfig(provider="gemini", model="gemini-2.0-flash"),
]


@pytest.fixture
def plan(store):
    """A stored master plan plus the packet proposing it."""
    entry = store.store(ArtifactType.MASTER_PLAN, "# Plan", PipelinePhase.INTAKE)
    packet = build_plan_packet(
        PipelinePhase.CONSENSUS_MASTER_PLAN,
        PipelineRole.DISPATCHER,
        proposed_artifacts=[entry.to_ref()],
        acceptance_criteria=["Every milestone names an owner"],
        constraints=[Constraint(type=ConstraintType.SECURITY, description="No plaintext secrets")],
    )
    return packet, entry.to_ref()


class FlakyReviewer:
    """Rejects until it has seen ``approve_after`` prompts."""

    def __init__(self, name: str, approve_after: int) -> None:
        self.name = name
        self.approve_after = approve_after
        self.prompts: list[str] = []

    async def review(self, prompt: str, *, model: str, temperature: float) -> ProviderReview:
        self.prompts.append(prompt)
        if len(self.prompts) >= self.approve_after:
            return ProviderReview(decision=V.APPROVE, confidence=0.9)
        return ProviderReview(decision=V.REJECT, confidence=0.8, blocking_issues=["too vague"])


class AppendingReviser:
    def __init__(self) -> None:
        self.concerns: list[list[str]] = []

    async def revise(self, prompt: str, concerns: list[str]) -> str:
        self.concerns.append(concerns)
        return prompt + "\n\nRevised: " + "; ".join(concerns)


# ---------------------------------------------------------------------------
# Test: Scoring
# ---------------------------------------------------------------------------


class TestComputeConsensusScore:
    def test_unanimous_approval(self, make_vote):
        votes = [make_vote(), make_vote(reviewer_id="r2")]
        score = compute_consensus_score(votes, ConsensusRules())
        assert score.approved
        assert score.score == 1.0
        assert score.weighted_score == 1.0
        assert score.reasons == []

    def test_no_votes(self):
        score = compute_consensus_score([], ConsensusRules())
        assert not score.approved
        assert score.reasons == ["No reviewer votes"]

    def test_weighted_by_confidence(self, make_vote):
        votes = [make_vote(V.APPROVE, 0.9), make_vote(V.CONDITIONAL, 0.6)]
        score = compute_consensus_score(votes, ConsensusRules(threshold=0.7))
        assert score.score == 0.5
        assert score.weighted_score == pytest.approx((0.9 + 0.3) / 1.5)
        assert score.approved

    def test_blocking_issue_vetoes(self, make_vote):
        votes = [
            make_vote(V.APPROVE, 1.0),
            make_vote(V.APPROVE, 1.0),
            make_vote(V.APPROVE, 0.9, blocking_issues=["no rollback"]),
        ]
        score = compute_consensus_score(votes, ConsensusRules(threshold=0.1))
        assert not score.approved
        assert score.weighted_score == 0.0
        assert score.blocking_issues == ["no rollback"]

    def test_quorum_and_minimum(self, make_vote):
        score = compute_consensus_score([make_vote()], ConsensusRules(quorum=2, min_reviewers=3))
        assert not score.approved
        assert "1 vote(s) below quorum of 2" in score.reasons
        assert "1 reviewer(s) below minimum of 3" in score.reasons

    def test_zero_confidence_is_zero_weight(self, make_vote):
        score = compute_consensus_score([make_vote(V.REJECT, 0.0)] * 2, ConsensusRules())
        assert score.weighted_score == 0.0


class TestConsensusPacket:
    def test_status(self, plan, make_vote):
        _, ref = plan
        approved = build_consensus_packet(ref, [make_vote(), make_vote()], ConsensusRules())
        rejected = build_consensus_packet(ref, [make_vote(V.REJECT)], ConsensusRules())
        assert approved.final_status == ConsensusStatus.APPROVED
        assert approved.plan_packet_reference == ref
        assert approved.metadata.plan_packet_id == ref.artifact_id
        assert rejected.final_status == ConsensusStatus.REJECTED

    def test_arbitrated(self, plan, make_vote):
        _, ref = plan
        packet = build_consensus_packet(
            ref, [make_vote(V.REJECT)], ConsensusRules(), ArbitratorResult(decision="merge")
        )
        assert packet.final_status == ConsensusStatus.ARBITRATED


class TestReviewPrompt:
    def test_contains_criteria_constraints_and_artifact(self, plan):
        packet, _ = plan
        prompt = build_review_prompt(packet, "## Goals\nShip it\n")
        assert "## Phase: consensus_master_plan" in prompt
        assert "- Every milestone names an owner" in prompt
        assert "- [security] No plaintext secrets" in prompt
        assert "## Artifact Under Review" in prompt
        assert "Ship it" in prompt
        assert prompt.rstrip().endswith("Suggestions for improvement")

    def test_is_deterministic(self, plan):
        packet, _ = plan
        assert build_review_prompt(packet, "x") == build_review_prompt(packet, "x")


class TestProviderReview:
    def test_from_score_approved_demotes_concerns(self):
        review = ProviderReview.from_score(True, 87, concerns=["naming"], recommendations=["docs"])
        assert review.decision == V.APPROVE
        assert review.confidence == 0.87
        assert review.blocking_issues == []
        assert review.suggestions == ["docs", "naming"]

    def test_from_score_rejected(self):
        review = ProviderReview.from_score(False, 140, concerns=["no tests"])
        assert review.decision == V.REJECT
        assert review.confidence == 1.0
        assert review.blocking_issues == ["no tests"]


class TestProviderRegistry:
    def test_unknown_provider(self, make_reviewer):
        registry = ProviderRegistry([make_reviewer("openai")])
        assert "openai" in registry
        assert len(registry) == 1
        with pytest.raises(KeyError, match="Unknown provider: claude"):
            registry.get("claude")


# ---------------------------------------------------------------------------
# Test: Runner
# ---------------------------------------------------------------------------


class TestIndependentRunner:
    def test_all_reviewers_get_identical_prompt(self, plan, make_reviewer):
        packet, ref = plan
        a, b = make_reviewer("openai"), make_reviewer("gemini")
        runner = ConsensusRunner(ProviderRegistry([a, b]), PROVIDERS)
        result = runner.run(packet, ref, ConsensusRules(), "artifact body")

        assert result.final_status == ConsensusStatus.APPROVED
        assert a.prompts == b.prompts
        hashes = {v.prompt_hash for v in result.reviewer_votes}
        assert hashes == {sha256_text(a.prompts[0])}
        assert [v.reviewer_id for v in result.reviewer_votes] == [
            "reviewer-openai-0",
            "reviewer-gemini-1",
        ]

    def test_rotation_fills_min_reviewers(self, plan, make_reviewer):
        packet, ref = plan
        only = make_reviewer("openai")
        runner = ConsensusRunner(ProviderRegistry([only]), PROVIDERS[:1])
        result = runner.run(packet, ref, ConsensusRules(min_reviewers=3))
        assert len(result.reviewer_votes) == 3
        assert len(only.prompts) == 3

    def test_split_vote_with_blocking_issue(self, plan, make_reviewer):
        """0.95 APPROVE plus 0.4 REJECT with a blocker fails at 0.9 / quorum 2."""
        packet, ref = plan
        registry = ProviderRegistry(
            [
                make_reviewer("openai", result=ProviderReview(decision=V.APPROVE, confidence=0.95)),
                make_reviewer(
                    "gemini",
                    result=ProviderReview(
                        decision=V.REJECT,
                        confidence=0.4,
                        blocking_issues=["missing rollback plan"],
                    ),
                ),
            ]
        )
        result = ConsensusRunner(registry, PROVIDERS).run(
            packet, ref, ConsensusRules(threshold=0.9, quorum=2)
        )
        assert result.consensus_result.approved is False
        assert result.consensus_result.blocking_issues == ["missing rollback plan"]
        assert result.final_status == ConsensusStatus.REJECTED

    def test_provider_error_becomes_reject(self, plan, make_reviewer):
        packet, ref = plan
        registry = ProviderRegistry(
            [make_reviewer("openai"), make_reviewer("gemini", error=RuntimeError("rate limited"))]
        )
        result = ConsensusRunner(registry, PROVIDERS).run(packet, ref, ConsensusRules())
        failed = result.reviewer_votes[1]
        assert failed.vote == V.REJECT
        assert failed.confidence == 0.0
        assert failed.blocking_issues == ["Review failed for gemini: rate limited"]
        assert not result.consensus_result.approved

    def test_unknown_provider_becomes_reject(self, plan, make_reviewer):
        packet, ref = plan
        runner = ConsensusRunner(ProviderRegistry([make_reviewer("openai")]), PROVIDERS)
        result = runner.run(packet, ref, ConsensusRules())
        assert result.reviewer_votes[1].blocking_issues == [
            "Review failed for gemini: unknown provider"
        ]

    def test_timeout_becomes_reject(self, plan, make_reviewer):
        packet, ref = plan
        registry = ProviderRegistry([make_reviewer("openai"), make_reviewer("gemini", delay=5)])
        runner = ConsensusRunner(registry, PROVIDERS, timeout_seconds=0.2)
        result = runner.run(packet, ref, ConsensusRules())
        assert "timed out" in result.reviewer_votes[1].blocking_issues[0]

    def test_cancelled_before_start(self, plan, reviewers):
        packet, ref = plan
        token = CancellationToken()
        token.cancel("user abort")
        runner = ConsensusRunner(reviewers, PROVIDERS, cancel_token=token)
        with pytest.raises(PipelineCancelled, match="user abort"):
            runner.run(packet, ref, ConsensusRules())

    def test_cancelled_while_reviewing(self, plan, make_reviewer):
        packet, ref = plan
        token = CancellationToken()
        registry = ProviderRegistry(
            [make_reviewer("openai", delay=10), make_reviewer("gemini", delay=10)]
        )
        runner = ConsensusRunner(registry, PROVIDERS, timeout_seconds=None, cancel_token=token)
        timer = threading.Timer(0.2, token.cancel, args=("stop",))
        timer.start()
        try:
            with pytest.raises(PipelineCancelled):
                runner.run(packet, ref, ConsensusRules())
        finally:
            timer.cancel()

    def test_unknown_mode_rejected(self, reviewers):
        with pytest.raises(ValueError):
            ConsensusRunner(reviewers, PROVIDERS, mode="majority")


class TestIterativeRunner:
    def test_revises_until_approved(self, plan):
        packet, ref = plan
        reviewer = FlakyReviewer("openai", approve_after=2)
        reviser = AppendingReviser()
        runner = ConsensusRunner(
            ProviderRegistry([reviewer]), PROVIDERS, mode="iterative", reviser=reviser
        )
        result = runner.run(packet, ref, ConsensusRules(quorum=1, min_reviewers=1, threshold=0.9))

        assert result.final_status == ConsensusStatus.APPROVED
        assert reviser.concerns == [["too vague"]]
        assert "Revised: too vague" in reviewer.prompts[1]
        assert result.reviewer_votes[0].prompt_hash == sha256_text(reviewer.prompts[1])

    def test_stops_after_max_iterations(self, plan):
        packet, ref = plan
        reviewer = FlakyReviewer("openai", approve_after=99)
        runner = ConsensusRunner(
            ProviderRegistry([reviewer]),
            PROVIDERS,
            mode="iterative",
            max_iterations=3,
            reviser=AppendingReviser(),
        )
        result = runner.run(packet, ref, ConsensusRules(quorum=1, min_reviewers=1))
        assert len(reviewer.prompts) == 3
        assert result.final_status == ConsensusStatus.REJECTED

    def test_missing_provider_fails_closed(self, plan):
        packet, ref = plan
        runner = ConsensusRunner(ProviderRegistry(), PROVIDERS, mode="iterative")
        result = runner.run(packet, ref, ConsensusRules(quorum=1, min_reviewers=1))
        assert result.reviewer_votes[0].blocking_issues == ["Iterative consensus failed"]
