"""
Store module: durable records behind the moderation pipeline.

This module contains:
- models.py: SQLAlchemy ORM tables
- database.py: Async engine, sessions and the atomic usage upsert
- audit.py: Immutable moderation log writer
- admin.py: Plan seeding and organization creation for operators
"""

from app.store.admin import DEFAULT_PLANS, PlanSpec, create_organization, seed_plans
from app.store.audit import AuditLogWriter, LogRecord, build_input_preview, sha256_hex
from app.store.database import Database, UsageWriteUncertain
from app.store.models import (
    ApiKey,
    Base,
    ModerationLog,
    Organization,
    Plan,
    Subscription,
    UsageCounter,
)

__all__ = [
    "DEFAULT_PLANS",
    "PlanSpec",
    "create_organization",
    "seed_plans",
    "AuditLogWriter",
    "LogRecord",
    "build_input_preview",
    "sha256_hex",
    "Database",
    "UsageWriteUncertain",
    "ApiKey",
    "Base",
    "ModerationLog",
    "Organization",
    "Plan",
    "Subscription",
    "UsageCounter",
]
