# Overview: Read-only resolution of tenant tax rates and loyalty configuration.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func

from ..models import Tax, Tenant
from .errors import NotFoundError


@dataclass(frozen=True)
class LoyaltyConfig:
    earn_rate: Decimal    # points per currency unit
    redeem_rate: Decimal  # currency per point


def get_total_tax_rate_bps(session, tenant_id: int) -> int:
    """
    Sum of all active tax rates for a tenant, in basis points.

    Rates are added flat, never compounded.
    """
    total = session.query(
        func.coalesce(func.sum(Tax.rate_bps), 0)
    ).filter(
        Tax.tenant_id == tenant_id,
        Tax.is_active.is_(True),
    ).scalar()
    return int(total or 0)


def get_loyalty_config(session, tenant_id: int) -> LoyaltyConfig:
    tenant = session.query(Tenant).filter_by(id=tenant_id).first()
    if not tenant:
        raise NotFoundError(f"Tenant {tenant_id} not found")
    return LoyaltyConfig(
        earn_rate=Decimal(tenant.loyalty_earn_rate or 0),
        redeem_rate=Decimal(tenant.loyalty_redeem_rate or 0),
    )
