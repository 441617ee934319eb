"""Consensus runner: independent multi-reviewer votes on a plan packet.

Reviewers are resolved by name from a :class:`ProviderRegistry` and called
concurrently with the identical prompt. Each returns a structured
:class:`ProviderReview`; failures of any kind become REJECT votes so that
a broken provider can never approve anything.

Scoring
-------
- simple score: approvals / votes
- weighted score: sum(weight * confidence) / sum(confidence), with
  APPROVE=1.0, CONDITIONAL=0.5, REJECT=0.0; forced to 0 when any vote
  carries a blocking issue
- approved iff weighted >= threshold, votes >= quorum, votes >= min_reviewers
  and no vote carries a blocking issue
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Iterable, NamedTuple, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from phasegate.config import DEFAULT_REVIEWER_PROVIDERS, ReviewerProviderConfig
from phasegate.core.cancellation import CancellationToken, PipelineCancelled
from phasegate.core.hasher import sha256_text
from phasegate.models.artifacts import ArtifactRef
from phasegate.models.packets import (
    ArbitratorResult,
    ConsensusPacket,
    ConsensusPacketMetadata,
    ConsensusResult,
    ConsensusRules,
    ConsensusStatus,
    PlanPacket,
    ReviewerVote,
    VoteDecision,
)

logger = logging.getLogger(__name__)

VOTE_WEIGHTS: dict[VoteDecision, float] = {
    VoteDecision.APPROVE: 1.0,
    VoteDecision.CONDITIONAL: 0.5,
    VoteDecision.REJECT: 0.0,
}

CANCEL_POLL_INTERVAL = 0.1


# ---------------------------------------------------------------------------
# Provider contract
# ---------------------------------------------------------------------------

class ProviderReview(BaseModel):
    """What a reviewer provider returns for one prompt."""

    model_config = ConfigDict(frozen=True)

    decision: VoteDecision
    confidence: float = Field(ge=0.0, le=1.0)
    blocking_issues: list[str] = []
    suggestions: list[str] = []

    @classmethod
    def from_score(
        cls,
        approved: bool,
        score: float,
        concerns: Iterable[str] = (),
        recommendations: Iterable[str] = (),
    ) -> ProviderReview:
        """Adapt a 0-100 score style response.

        Concerns on an approving response are demoted to suggestions so
        that they do not act as a veto.
        """
        confidence = min(1.0, max(0.0, score / 100.0))
        concerns = list(concerns)
        suggestions = list(recommendations)
        if approved:
            return cls(
                decision=VoteDecision.APPROVE,
                confidence=confidence,
                suggestions=suggestions + concerns,
            )
        return cls(
            decision=VoteDecision.REJECT,
            confidence=confidence,
            blocking_issues=concerns,
            suggestions=suggestions,
        )


@runtime_checkable
class ReviewerProvider(Protocol):
    """An LLM (or anything else) able to review a prompt."""

    name: str

    async def review(self, prompt: str, *, model: str, temperature: float) -> ProviderReview: ...


@runtime_checkable
class Reviser(Protocol):
    """Rewrites a rejected proposal given the reviewer's concerns."""

    async def revise(self, prompt: str, concerns: list[str]) -> str: ...


class ProviderRegistry:
    """Named reviewer providers."""

    def __init__(self, providers: Iterable[ReviewerProvider] = ()) -> None:
        self._providers: dict[str, ReviewerProvider] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: ReviewerProvider, name: str | None = None) -> None:
        key = name or provider.name
        if key in self._providers:
            logger.warning("Replacing reviewer provider %r", key)
        self._providers[key] = provider

    def get(self, name: str) -> ReviewerProvider:
        if name not in self._providers:
            registered = ", ".join(sorted(self._providers)) or "none"
            raise KeyError(f"Unknown provider: {name} (registered: {registered})")
        return self._providers[name]

    def names(self) -> list[str]:
        return sorted(self._providers)

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def __len__(self) -> int:
        return len(self._providers)


# ---------------------------------------------------------------------------
# Prompt and scoring
# ---------------------------------------------------------------------------

_REVIEW_INSTRUCTIONS = """\
## Review Instructions

You are an independent reviewer. Evaluate this plan for:
1. Completeness: are all required artifacts defined?
2. Consistency: do the acceptance criteria match the constraints?
3. Feasibility: can this be implemented as described?
4. Constitution compliance: does it follow the governance rules?

Respond with:
- APPROVE, REJECT, or CONDITIONAL
- Confidence score (0-1)
- Blocking issues (if any)
- Suggestions for improvement"""


def build_review_prompt(packet: PlanPacket, artifact_text: str | None = None) -> str:
    """Identical prompt for every reviewer; *artifact_text* is appended verbatim."""
    meta = packet.metadata
    lines = [
        "# Independent Plan Review",
        "",
        f"## Phase: {meta.phase.value}",
        f"## Submitted by: {meta.submitted_by.value}",
        f"## Version: {meta.version}",
        "",
        "## Acceptance Criteria",
        *(f"- {c}" for c in packet.acceptance_criteria),
        "",
        "## Constraints",
        *(f"- [{c.type.value}] {c.description}" for c in packet.constraints),
        "",
    ]
    if packet.open_questions:
        lines.append("## Open Questions")
        lines.extend(f"- {q}" for q in packet.open_questions)
        lines.append("")
    if artifact_text:
        lines += ["## Artifact Under Review", "", artifact_text.strip(), ""]
    lines.append(_REVIEW_INSTRUCTIONS)
    return "\n".join(lines)


class ConsensusScore(NamedTuple):
    score: float
    weighted_score: float
    approved: bool
    blocking_issues: list[str]
    reasons: list[str]


def compute_consensus_score(votes: list[ReviewerVote], rules: ConsensusRules) -> ConsensusScore:
    if not votes:
        return ConsensusScore(0.0, 0.0, False, [], ["No reviewer votes"])

    approvals = sum(1 for v in votes if v.vote == VoteDecision.APPROVE)
    score = approvals / len(votes)

    total_confidence = sum(v.confidence for v in votes)
    weighted_sum = sum(VOTE_WEIGHTS[v.vote] * v.confidence for v in votes)
    weighted = weighted_sum / total_confidence if total_confidence > 0 else 0.0

    blocking = [issue for v in votes for issue in v.blocking_issues]
    if blocking:
        weighted = 0.0

    reasons: list[str] = []
    if blocking:
        reasons.append(f"{len(blocking)} blocking issue(s) raised")
    if weighted < rules.threshold:
        reasons.append(f"Weighted score {weighted:.2f} below threshold {rules.threshold:.2f}")
    if len(votes) < rules.quorum:
        reasons.append(f"{len(votes)} vote(s) below quorum of {rules.quorum}")
    if len(votes) < rules.min_reviewers:
        reasons.append(f"{len(votes)} reviewer(s) below minimum of {rules.min_reviewers}")

    return ConsensusScore(
        score=score,
        weighted_score=weighted,
        approved=not reasons,
        blocking_issues=blocking,
        reasons=reasons,
    )


def build_consensus_packet(
    plan_ref: ArtifactRef,
    votes: list[ReviewerVote],
    rules: ConsensusRules,
    arbitrator_result: ArbitratorResult | None = None,
) -> ConsensusPacket:
    """Aggregate *votes* into an immutable consensus packet."""
    computed = compute_consensus_score(votes, rules)
    if arbitrator_result is not None:
        status = ConsensusStatus.ARBITRATED
    elif computed.approved:
        status = ConsensusStatus.APPROVED
    else:
        status = ConsensusStatus.REJECTED

    return ConsensusPacket(
        metadata=ConsensusPacketMetadata(
            packet_id=str(uuid.uuid4()), plan_packet_id=plan_ref.artifact_id
        ),
        plan_packet_reference=plan_ref,
        reviewer_votes=list(votes),
        consensus_rules=rules,
        consensus_result=ConsensusResult(
            approved=computed.approved,
            score=computed.score,
            weighted_score=computed.weighted_score,
            participating_reviewers=len(votes),
            blocking_issues=computed.blocking_issues,
            reasons=computed.reasons,
        ),
        arbitrator_result=arbitrator_result,
        final_status=status,
    )


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

def _failed_vote(
    reviewer_id: str, provider: ReviewerProviderConfig, prompt_hash: str, reason: str
) -> ReviewerVote:
    return ReviewerVote(
        reviewer_id=reviewer_id,
        provider=provider.provider,
        model=provider.model,
        temperature=provider.temperature,
        prompt_hash=prompt_hash,
        vote=VoteDecision.REJECT,
        confidence=0.0,
        blocking_issues=[f"Review failed for {provider.provider}: {reason}"],
    )


class ConsensusRunner:
    """Collect reviewer votes for plan packets.

    Parameters
    ----------
    registry:
        Providers available by name.
    providers:
        Rotation of provider configs; reviewer ``i`` uses entry
        ``i % len(providers)``.
    mode:
        ``"independent"`` (default) or ``"iterative"``.
    timeout_seconds:
        Per-reviewer deadline; None disables it.
    cancel_token:
        Run-level token; cancellation aborts in-flight reviewers.
    reviser:
        Used by iterative mode to rework a rejected prompt.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        providers: list[ReviewerProviderConfig] | None = None,
        *,
        mode: str = "independent",
        timeout_seconds: float | None = 120.0,
        max_iterations: int = 3,
        cancel_token: CancellationToken | None = None,
        reviser: Reviser | None = None,
    ) -> None:
        if mode not in ("independent", "iterative"):
            raise ValueError(f"Unknown consensus mode: {mode!r}")
        self.registry = registry
        self.providers = list(providers or DEFAULT_REVIEWER_PROVIDERS)
        if not self.providers:
            raise ValueError("At least one reviewer provider config is required")
        self.mode = mode
        self.timeout_seconds = timeout_seconds
        self.max_iterations = max_iterations
        self.cancel_token = cancel_token or CancellationToken()
        self.reviser = reviser

    # -- public entry points --------------------------------------------------

    def run(
        self,
        packet: PlanPacket,
        plan_ref: ArtifactRef,
        rules: ConsensusRules,
        artifact_text: str | None = None,
    ) -> ConsensusPacket:
        """Synchronous wrapper around :meth:`run_structured_consensus`."""
        return asyncio.run(
            self.run_structured_consensus(packet, plan_ref, rules, artifact_text)
        )

    async def run_structured_consensus(
        self,
        packet: PlanPacket,
        plan_ref: ArtifactRef,
        rules: ConsensusRules,
        artifact_text: str | None = None,
    ) -> ConsensusPacket:
        self.cancel_token.raise_if_cancelled()
        prompt = build_review_prompt(packet, artifact_text)
        if self.mode == "independent":
            votes = await self.run_independent_review(prompt, rules.min_reviewers)
        else:
            votes = await self.run_iterative_review(prompt)
        result = build_consensus_packet(plan_ref, votes, rules)
        logger.info(
            "Consensus on %s: %s (weighted %.2f, %d votes)",
            packet.metadata.phase.value,
            result.final_status.value,
            result.consensus_result.weighted_score,
            len(votes),
        )
        return result

    async def run_independent_review(self, prompt: str, min_reviewers: int = 2) -> list[ReviewerVote]:
        prompt_hash = sha256_text(prompt)
        count = max(min_reviewers, len(self.providers))

        coros = []
        for i in range(count):
            provider = self.providers[i % len(self.providers)]
            reviewer_id = f"reviewer-{provider.provider}-{i}"
            coros.append(self._review_once(prompt, prompt_hash, provider, reviewer_id))
        return await self._gather_cancellable(coros)

    async def run_iterative_review(self, prompt: str) -> list[ReviewerVote]:
        provider_cfg = self.providers[0]
        try:
            provider = self.registry.get(provider_cfg.provider)
            review: ProviderReview | None = None
            for iteration in range(1, self.max_iterations + 1):
                self.cancel_token.raise_if_cancelled()
                review = await self._call(provider, prompt, provider_cfg)
                if review.decision != VoteDecision.REJECT or self.reviser is None:
                    break
                if iteration < self.max_iterations:
                    logger.info("Iterative review rejected (round %d); revising", iteration)
                    prompt = await self.reviser.revise(prompt, list(review.blocking_issues))
        except PipelineCancelled:
            raise
        except Exception as exc:
            logger.warning("Iterative consensus failed: %s", exc)
            return [
                ReviewerVote(
                    reviewer_id="iterative-reviewer-error",
                    provider=provider_cfg.provider,
                    model="unknown",
                    temperature=0.0,
                    prompt_hash="",
                    vote=VoteDecision.REJECT,
                    confidence=0.0,
                    blocking_issues=["Iterative consensus failed"],
                )
            ]

        assert review is not None
        return [
            ReviewerVote(
                reviewer_id="iterative-reviewer",
                provider=provider_cfg.provider,
                model=provider_cfg.model,
                temperature=provider_cfg.temperature,
                prompt_hash=sha256_text(prompt),
                vote=review.decision,
                confidence=review.confidence,
                blocking_issues=review.blocking_issues,
                suggestions=review.suggestions,
            )
        ]

    # -- internals ------------------------------------------------------------

    async def _call(
        self, provider: ReviewerProvider, prompt: str, cfg: ReviewerProviderConfig
    ) -> ProviderReview:
        call = provider.review(prompt, model=cfg.model, temperature=cfg.temperature)
        if self.timeout_seconds is None:
            return await call
        return await asyncio.wait_for(call, timeout=self.timeout_seconds)

    async def _review_once(
        self,
        prompt: str,
        prompt_hash: str,
        cfg: ReviewerProviderConfig,
        reviewer_id: str,
    ) -> ReviewerVote:
        try:
            provider = self.registry.get(cfg.provider)
        except KeyError:
            logger.warning("%s: provider %r is not registered", reviewer_id, cfg.provider)
            return _failed_vote(reviewer_id, cfg, prompt_hash, "unknown provider")

        try:
            review = await self._call(provider, prompt, cfg)
        except asyncio.TimeoutError:
            logger.warning("%s timed out after %ss", reviewer_id, self.timeout_seconds)
            return _failed_vote(
                reviewer_id, cfg, prompt_hash, f"timed out after {self.timeout_seconds}s"
            )
        except Exception as exc:
            logger.warning("%s failed: %s", reviewer_id, exc)
            return _failed_vote(reviewer_id, cfg, prompt_hash, str(exc) or type(exc).__name__)

        return ReviewerVote(
            reviewer_id=reviewer_id,
            provider=cfg.provider,
            model=cfg.model,
            temperature=cfg.temperature,
            prompt_hash=prompt_hash,
            vote=review.decision,
            confidence=review.confidence,
            blocking_issues=review.blocking_issues,
            suggestions=review.suggestions,
        )

    async def _gather_cancellable(self, coros: list) -> list[ReviewerVote]:
        """Run reviewers concurrently; abort them all if the run is cancelled."""
        tasks = [asyncio.ensure_future(c) for c in coros]
        try:
            while True:
                _, pending = await asyncio.wait(tasks, timeout=CANCEL_POLL_INTERVAL)
                if not pending:
                    break
                if self.cancel_token.cancelled:
                    for task in pending:
                        task.cancel()
                    await asyncio.gather(*pending, return_exceptions=True)
                    raise PipelineCancelled(self.cancel_token.reason or "cancelled")
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
        return [task.result() for task in tasks]
