"""Profile and restaurant tables.

Only the columns checkout issuance and the CRM bridge need live here.
"""

import sqlalchemy as sa

from sqlalchemy.orm import Mapped, mapped_column

from menubill.common.model import Base, id_key


class ProfileRecord(Base):
    """Restaurant owner profile"""

    __tablename__ = 'profiles'

    id: Mapped[id_key] = mapped_column(init=False)
    email: Mapped[str] = mapped_column(sa.String(255), unique=True, index=True)
    name: Mapped[str | None] = mapped_column(sa.String(255), default=None)
    phone: Mapped[str | None] = mapped_column(sa.String(32), default=None, comment='E.164')
    # Cached Stripe customer; re-validated before each checkout
    provider_customer_id: Mapped[str | None] = mapped_column(sa.String(64), default=None)
    sales_rep_email: Mapped[str | None] = mapped_column(sa.String(255), default=None)


class RestaurantRecord(Base):
    """Restaurant being subscribed"""

    __tablename__ = 'restaurants'

    id: Mapped[id_key] = mapped_column(init=False)
    name: Mapped[str] = mapped_column(sa.String(255))
    owner_id: Mapped[str] = mapped_column(
        sa.String(64),
        sa.ForeignKey('profiles.id', ondelete='CASCADE'),
        index=True,
    )
    crm_deal_id: Mapped[str | None] = mapped_column(sa.String(64), default=None, unique=True, index=True)
