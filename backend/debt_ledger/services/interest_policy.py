from __future__ import annotations

import logging

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from debt_ledger.core.errors import InvalidPolicyConfiguration, PolicyInUse, PolicyNotFound
from debt_ledger.db.transaction import atomic
from debt_ledger.models.interest_policy import DAILY, MONTHLY, InterestPolicy
from debt_ledger.models.loan import Loan
from debt_ledger.services.accrual import to_dec
from debt_ledger.services.audit import log_event

logger = logging.getLogger(__name__)

_POLICY_FIELDS = ("name", "mode", "monthly_rate", "daily_rate", "anchor_day", "grace_days")


def validate_policy_fields(
    mode: str,
    monthly_rate=None,
    daily_rate=None,
    anchor_day: int | None = 1,
    grace_days: int | None = 0,
) -> dict:
    """Check that mode and rates agree and return the normalized column values."""
    if mode not in (MONTHLY, DAILY):
        raise InvalidPolicyConfiguration(f"unknown interest mode {mode!r}")

    if mode == MONTHLY:
        if monthly_rate is None:
            raise InvalidPolicyConfiguration("MONTHLY policy requires monthly_rate")
        if daily_rate is not None:
            raise InvalidPolicyConfiguration("MONTHLY policy must not set daily_rate")
        rate = to_dec(monthly_rate)
    else:
        if daily_rate is None:
            raise InvalidPolicyConfiguration("DAILY policy requires daily_rate")
        if monthly_rate is not None:
            raise InvalidPolicyConfiguration("DAILY policy must not set monthly_rate")
        rate = to_dec(daily_rate)

    if rate < 0:
        raise InvalidPolicyConfiguration("rate must not be negative")

    anchor = 1 if anchor_day is None else int(anchor_day)
    if not 1 <= anchor <= 31:
        raise InvalidPolicyConfiguration("anchor_day must be between 1 and 31")

    grace = 0 if grace_days is None else int(grace_days)
    if grace < 0:
        raise InvalidPolicyConfiguration("grace_days must not be negative")

    return {
        "mode": mode,
        "monthly_rate": rate if mode == MONTHLY else None,
        "daily_rate": rate if mode == DAILY else None,
        "anchor_day": anchor,
        "grace_days": grace,
    }


def _policy_details(p: InterestPolicy) -> dict:
    return {
        "name": p.name,
        "mode": p.mode,
        "monthly_rate": str(p.monthly_rate) if p.monthly_rate is not None else None,
        "daily_rate": str(p.daily_rate) if p.daily_rate is not None else None,
        "anchor_day": p.anchor_day,
        "grace_days": p.grace_days,
        "version": p.version,
    }


def lineage_of(p: InterestPolicy) -> int:
    return p.lineage_id if p.lineage_id is not None else p.id


def get_policy(s: Session, workspace_id: int, policy_id: int) -> InterestPolicy:
    p = s.execute(
        select(InterestPolicy).where(InterestPolicy.id == policy_id, InterestPolicy.workspace_id == workspace_id)
    ).scalar_one_or_none()
    if p is None:
        raise PolicyNotFound(f"interest policy {policy_id} not found")
    return p


def list_policies(s: Session, workspace_id: int, include_history: bool = False) -> list[InterestPolicy]:
    q = select(InterestPolicy).where(InterestPolicy.workspace_id == workspace_id)
    if not include_history:
        q = q.where(InterestPolicy.is_current.is_(True))
    q = q.order_by(InterestPolicy.name.asc(), InterestPolicy.version.desc())
    return list(s.execute(q).scalars().all())


def current_version(s: Session, policy: InterestPolicy) -> InterestPolicy:
    if policy.is_current:
        return policy
    return s.execute(
        select(InterestPolicy).where(
            InterestPolicy.lineage_id == lineage_of(policy),
            InterestPolicy.is_current.is_(True),
        )
    ).scalar_one()


def count_loans(s: Session, policy: InterestPolicy) -> int:
    lineage = lineage_of(policy)
    version_ids = select(InterestPolicy.id).where(
        (InterestPolicy.id == lineage) | (InterestPolicy.lineage_id == lineage)
    )
    return s.execute(
        select(func.count(Loan.id)).where(Loan.interest_policy_id.in_(version_ids))
    ).scalar_one()


def create_policy(
    s: Session,
    workspace_id: int,
    name: str,
    mode: str,
    monthly_rate=None,
    daily_rate=None,
    anchor_day: int | None = 1,
    grace_days: int | None = 0,
    actor: str = "system",
) -> InterestPolicy:
    nm = (name or "").strip()
    if not nm:
        raise InvalidPolicyConfiguration("policy name is required")
    fields = validate_policy_fields(mode, monthly_rate, daily_rate, anchor_day, grace_days)

    with atomic(s):
        p = InterestPolicy(workspace_id=workspace_id, name=nm, version=1, is_current=True, **fields)
        s.add(p)
        s.flush()
        p.lineage_id = p.id
        log_event(
            s,
            username=actor,
            action="policy.create",
            entity_type="interest_policy",
            entity_id=p.id,
            workspace_id=workspace_id,
            details=_policy_details(p),
        )

    logger.info("interest policy %s created in workspace %s", p.id, workspace_id)
    return p


def revise_policy(s: Session, workspace_id: int, policy_id: int, actor: str = "system", **changes) -> InterestPolicy:
    """Publish a new version of a policy.

    The old row is kept untouched so loans still pointing at it keep pricing
    their past periods with the terms that applied then.
    """
    unknown = set(changes) - set(_POLICY_FIELDS)
    if unknown:
        raise InvalidPolicyConfiguration(f"unknown policy fields: {', '.join(sorted(unknown))}")

    with atomic(s):
        old = current_version(s, get_policy(s, workspace_id, policy_id))

        merged = {f: getattr(old, f) for f in _POLICY_FIELDS}
        merged.update({k: v for k, v in changes.items() if v is not None})
        if "mode" in changes and changes["mode"] != old.mode:
            # Switching mode drops the rate of the old mode unless it was resent.
            if changes["mode"] == MONTHLY:
                merged["daily_rate"] = None
            else:
                merged["monthly_rate"] = None

        nm = (merged.pop("name") or "").strip()
        if not nm:
            raise InvalidPolicyConfiguration("policy name is required")
        fields = validate_policy_fields(**merged)

        old.is_current = False
        new = InterestPolicy(
            workspace_id=workspace_id,
            lineage_id=lineage_of(old),
            version=old.version + 1,
            is_current=True,
            name=nm,
            **fields,
        )
        s.add(new)
        s.flush()
        log_event(
            s,
            username=actor,
            action="policy.revise",
            entity_type="interest_policy",
            entity_id=new.id,
            workspace_id=workspace_id,
            details={"previous_id": old.id, **_policy_details(new)},
        )

    logger.info("interest policy %s revised to version %s (id %s)", lineage_of(new), new.version, new.id)
    return new


def delete_policy(s: Session, workspace_id: int, policy_id: int, actor: str = "system") -> None:
    with atomic(s):
        p = get_policy(s, workspace_id, policy_id)
        if count_loans(s, p) > 0:
            raise PolicyInUse("policy is referenced by at least one loan")

        lineage = lineage_of(p)
        versions = s.execute(
            select(InterestPolicy).where(
                (InterestPolicy.id == lineage) | (InterestPolicy.lineage_id == lineage)
            )
        ).scalars().all()
        for v in versions:
            s.delete(v)
        log_event(
            s,
            username=actor,
            action="policy.delete",
            entity_type="interest_policy",
            entity_id=policy_id,
            workspace_id=workspace_id,
            details={"name": p.name, "versions": len(versions)},
        )
