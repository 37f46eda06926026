"""
Operator helpers for tenants and plans.

Used by scripts/manage.py and by tests to create the records the moderation
pipeline reads. Organizations and subscriptions are normally created by the
account and billing systems.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select

from app.store.database import Database
from app.store.models import Organization, Plan, Subscription

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanSpec:
    name: str
    monthly_quota: int
    models_allowed: tuple[str, ...]


DEFAULT_PLANS: tuple[PlanSpec, ...] = (
    PlanSpec(name="free", monthly_quota=5_000, models_allowed=("english-basic",)),
    PlanSpec(name="starter", monthly_quota=50_000, models_allowed=("english-basic",)),
    PlanSpec(name="pro", monthly_quota=250_000, models_allowed=("english-basic",)),
)


async def seed_plans(database: Database, plans: tuple[PlanSpec, ...] = DEFAULT_PLANS) -> list[Plan]:
    """
    Create any missing plans. Existing plans are left unchanged.

    Returns:
        The plans, in the order given
    """
    seeded: list[Plan] = []
    async with database.session() as session:
        for spec in plans:
            plan = (
                await session.execute(select(Plan).where(Plan.name == spec.name))
            ).scalar_one_or_none()
            if plan is None:
                plan = Plan(
                    name=spec.name,
                    monthly_quota=spec.monthly_quota,
                    models_allowed=list(spec.models_allowed),
                )
                session.add(plan)
                logger.info(f"Created plan {spec.name} ({spec.monthly_quota}/month)")
            seeded.append(plan)
        await session.commit()
    return seeded


async def create_organization(
    database: Database,
    name: str,
    *,
    plan_name: str | None = None,
    owner_id: str | None = None,
    store_input_preview: bool = False,
    timezone: str | None = None,
) -> Organization:
    """
    Create an organization, optionally with an active subscription.

    Raises:
        ValueError: If `plan_name` does not exist.
    """
    async with database.session() as session:
        org = Organization(
            name=name,
            owner_id=owner_id,
            store_input_preview=store_input_preview,
            timezone=timezone,
        )
        session.add(org)

        if plan_name is not None:
            plan = (
                await session.execute(select(Plan).where(Plan.name == plan_name))
            ).scalar_one_or_none()
            if plan is None:
                raise ValueError(f"Unknown plan: {plan_name}")
            await session.flush()
            session.add(Subscription(org_id=org.id, plan_id=plan.id, status="active"))

        await session.commit()

    logger.info(f"Created organization {org.id} ({name}), plan={plan_name or 'none'}")
    return org
