"""
Policy module: threshold-based moderation decisions.

Public API:
- Decision: allow / flag / block
- Threshold: a (score, decision) pair
- DecisionPolicy: ordered thresholds with decide()
- decide(): stateless threshold evaluation
"""

from app.policy.decision import Decision, DecisionPolicy, Threshold, decide

__all__ = [
    "Decision",
    "DecisionPolicy",
    "Threshold",
    "decide",
]
