"""Plan catalog table. Seeded out of band; read-only for the billing core."""

import sqlalchemy as sa

from sqlalchemy.orm import Mapped, mapped_column

from menubill.common.model import Base


class PlanRecord(Base):
    """Purchasable plan"""

    __tablename__ = 'plans'

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True, comment='Plan id')
    name: Mapped[str] = mapped_column(sa.String(128), comment='Display name')
    tier: Mapped[str] = mapped_column(sa.String(16), index=True, comment='basic / plus / premium')
    price: Mapped[int] = mapped_column(sa.Integer, index=True, comment='Price in cents')
    provider_price_id: Mapped[str] = mapped_column(sa.String(128), comment='Stripe price id')
    currency: Mapped[str] = mapped_column(sa.String(8), default='usd')
    trial_days: Mapped[int] = mapped_column(sa.Integer, default=7, comment='Default trial length')
    is_active: Mapped[bool] = mapped_column(default=True, index=True)

    __table_args__ = ({'comment': 'Plan catalog'},)
