"""
CleanMod: Multi-tenant Text Moderation API

Authenticates callers by API key, enforces a monthly per-tenant quota,
scores text with an external toxicity classifier, turns the normalized
score into an allow/flag/block decision, and records every decision in an
immutable audit log.
"""

__version__ = "0.1.0"
