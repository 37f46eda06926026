"""
Decision Policy

Turns a normalized overall score into a moderation decision. A policy is an
ordered set of (score, decision) thresholds evaluated from the most severe
decision to the least severe; the first threshold the score meets or exceeds
wins, otherwise the content is allowed.

The default policy has a single "flag" threshold taken from the model
configuration. Deployments may add a "block" tier through the
BLOCK_THRESHOLD setting without touching any provider code.
"""

from dataclasses import dataclass
from enum import Enum


class Decision(str, Enum):
    """
    Final moderation decision.

    ALLOW: Content passes
    FLAG: Content crosses the flag threshold and should be reviewed
    BLOCK: Content crosses the stricter block threshold
    """

    ALLOW = "allow"
    FLAG = "flag"
    BLOCK = "block"


# Higher rank is more severe.
SEVERITY: dict[Decision, int] = {
    Decision.ALLOW: 0,
    Decision.FLAG: 1,
    Decision.BLOCK: 2,
}


@dataclass(frozen=True)
class Threshold:
    """A score at or above which `decision` applies."""

    score: float
    decision: Decision

    def __post_init__(self):
        if not 0.0 <= self.score <= 1.0:
            raise ValueError(f"Threshold score must be within 0.0-1.0, got {self.score}")
        if self.decision is Decision.ALLOW:
            raise ValueError("ALLOW is the default outcome and cannot be a threshold")


def decide(overall_score: float, thresholds: list[Threshold]) -> Decision:
    """
    Evaluate thresholds from most to least severe.

    Args:
        overall_score: Normalized score (0.0-1.0)
        thresholds: Thresholds in any order

    Returns:
        The decision of the first threshold met, or ALLOW
    """
    ordered = sorted(
        thresholds, key=lambda t: (SEVERITY[t.decision], t.score), reverse=True
    )
    for threshold in ordered:
        if overall_score >= threshold.score:
            return threshold.decision
    return Decision.ALLOW


class DecisionPolicy:
    """
    A reusable set of thresholds.

    Usage:
        policy = DecisionPolicy.single(0.8)
        policy.decide(0.91)  # Decision.FLAG

        tiered = DecisionPolicy.tiered(flag_at=0.6, block_at=0.95)
        tiered.decide(0.97)  # Decision.BLOCK
    """

    def __init__(self, thresholds: list[Threshold]):
        if not thresholds:
            raise ValueError("A decision policy needs at least one threshold")
        self._thresholds = sorted(
            thresholds, key=lambda t: (SEVERITY[t.decision], t.score), reverse=True
        )

    @classmethod
    def single(cls, flag_at: float) -> "DecisionPolicy":
        return cls([Threshold(flag_at, Decision.FLAG)])

    @classmethod
    def tiered(cls, flag_at: float, block_at: float | None = None) -> "DecisionPolicy":
        """
        Build a flag policy with an optional block tier.

        A block tier at or below the flag threshold would make "flag"
        unreachable, so it is ignored in that case.
        """
        thresholds = [Threshold(flag_at, Decision.FLAG)]
        if block_at is not None and block_at > flag_at:
            thresholds.append(Threshold(block_at, Decision.BLOCK))
        return cls(thresholds)

    @property
    def thresholds(self) -> list[Threshold]:
        return list(self._thresholds)

    @property
    def flag_threshold(self) -> float:
        """The lowest score that yields a non-allow decision."""
        return min(t.score for t in self._thresholds)

    def decide(self, overall_score: float) -> Decision:
        return decide(overall_score, self._thresholds)
