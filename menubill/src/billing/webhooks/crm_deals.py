"""
CRM Deal Handler

Turns Pipedrive deal events into checkout links and writes the link back
to the deal's "Payment Link" field.

Flow for one deal:
0. Stamp stage and status on the restaurant's subscriptions, if it is known
1. Gather customer data from the deal, its organization, person and owner
2. Fingerprint the fields that shape the link; stop if the deal already
   carries a link generated from the same data
3. Validate required fields / price, writing an error message to the deal
   field instead of a link when they fail
4. Upsert profile and restaurant, stamping metadata for new restaurants
5. Issue (or reuse) the checkout link and write URL + fingerprint back

Our own field writes come back as ``change_source == "api"`` events and
are dropped by the reconciler before they reach this handler.
"""

import asyncio
import hashlib
import json
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Awaitable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from menubill.src.billing.checkout_links.service import CheckoutLinkService
from menubill.src.billing.crud.crud_profile import CRUDProfile, CRUDRestaurant, profile_dao, restaurant_dao
from menubill.src.billing.domain.webhook_event import InboundEvent
from menubill.src.billing.external.pipedrive.client import PipedriveClient
from menubill.src.billing.plans.catalog import PlanCatalog
from menubill.src.billing.shared.config import (
    CRM_INVALID_PRICE_MESSAGE,
    CRM_MISSING_ATTRIBUTES_PREFIX,
    CRM_PAYMENT_LINK_FIELD,
    CRM_PAYMENT_LINK_HASH_FIELD,
    CRM_RELEVANT_EVENTS,
    CRM_SALES_REP_SLACK_ID_FIELD,
)
from menubill.src.billing.subscriptions.lifecycle import SubscriptionLifecycleService

logger = logging.getLogger(__name__)

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")
SLACK_ID_PATTERN = re.compile(r"^U[A-Z0-9]{8,11}$", re.IGNORECASE)
PAYMENT_URL_MARKERS = ("/billing/", "checkout", "stripe.com", "subscription")


# =============================================================================
# Field helpers
# =============================================================================

def custom_field_value(field: Any) -> Optional[str]:
    """Pipedrive returns custom fields either as plain values or as ``{"value": ...}``."""
    if isinstance(field, dict):
        field = field.get("value")
    if field is None or field == "":
        return None
    return str(field)


def ref_id(value: Any) -> Optional[Any]:
    """v1 payloads embed related entities as objects, v2 as bare ids."""
    if isinstance(value, dict):
        return value.get("value") or value.get("id")
    return value or None


def normalize_e164(phone: Optional[str]) -> Optional[str]:
    """
    Best-effort E.164 conversion with US defaults.

    >>> normalize_e164("(415) 555-0100")
    '+14155550100'
    """
    if not phone:
        return None
    cleaned = re.sub(r"[^\d+]", "", phone)
    if E164_PATTERN.match(cleaned):
        return cleaned
    if len(cleaned) == 11 and cleaned.startswith("1"):
        return f"+{cleaned}"
    if len(cleaned) == 10 and cleaned.isdigit():
        return f"+1{cleaned}"
    return None


def is_payment_url(value: Optional[str]) -> bool:
    if not value or not value.startswith(("http://", "https://")):
        return False
    lowered = value.lower()
    return any(marker in lowered for marker in PAYMENT_URL_MARKERS)


def is_bridge_error(value: Optional[str]) -> bool:
    return bool(value) and (value.startswith(CRM_MISSING_ATTRIBUTES_PREFIX) or value == CRM_INVALID_PRICE_MESSAGE)


def format_missing_attributes(missing: List[str]) -> str:
    lines = "\n".join(f"{index}. {reason}" for index, reason in enumerate(missing, start=1))
    return f"{CRM_MISSING_ATTRIBUTES_PREFIX}\n{lines}"


def dollars_to_cents(value: Any) -> Optional[int]:
    """Deal values are in dollars; plans are priced in cents. Returns None for unusable values."""
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    if not amount.is_finite() or amount <= 0:
        return None
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def extract_slack_id(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    cleaned = value[1:] if value.startswith("@") else value
    return cleaned if SLACK_ID_PATTERN.match(cleaned) else None


@dataclass
class DealCustomer:
    """Customer data gathered for one deal."""
    deal_id: str
    price: Any = None
    restaurant_name: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    sales_rep_email: Optional[str] = None
    sales_rep_slack_id: Optional[str] = None

    def missing_attributes(self) -> List[str]:
        missing = []
        if not self.restaurant_name:
            missing.append("Restaurant name is required")
        if not self.name:
            missing.append("Name is required")
        if not self.email:
            missing.append("Email is required")
        return missing

    def fingerprint(self) -> str:
        """SHA-256 over the fields that shape the checkout link."""
        data = {
            "price": self.price or None,
            "restaurantName": self.restaurant_name or None,
            "email": self.email or None,
            "name": self.name or None,
            "phoneNumber": self.phone or None,
            "salesRepSlackId": self.sales_rep_slack_id or None,
        }
        return hashlib.sha256(json.dumps(data, separators=(",", ":")).encode()).hexdigest()


async def _optional(call: Optional[Awaitable[Optional[Dict[str, Any]]]]) -> Optional[Dict[str, Any]]:
    if call is None:
        return None
    return await call


# =============================================================================
# Handler
# =============================================================================

class CrmDealHandler:
    """
    Applies CRM deal events.

    Args:
        session_factory: Async session factory for the billing database
        crm: Pipedrive client
        catalog: Plan lookups by price
        links: Checkout link issuance
        lifecycle: Subscription metadata updates
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        crm: PipedriveClient,
        catalog: PlanCatalog,
        links: CheckoutLinkService,
        lifecycle: SubscriptionLifecycleService,
        profiles: CRUDProfile = profile_dao,
        restaurants: CRUDRestaurant = restaurant_dao,
    ):
        self._sessions = session_factory
        self._crm = crm
        self._catalog = catalog
        self._links = links
        self._lifecycle = lifecycle
        self._profiles = profiles
        self._restaurants = restaurants

    def handles(self, event_type: str) -> bool:
        return event_type in CRM_RELEVANT_EVENTS

    async def handle(self, event: InboundEvent) -> str:
        deal = event.payload.get("data") or event.payload.get("current") or {}
        if not deal.get("id"):
            logger.warning(f"[CRM] Event {event.event_id} has no deal data")
            return "No deal data in payload"
        deal_id = str(deal["id"])

        status = deal.get("status")
        attached = await self._attach_metadata(deal_id, deal)
        if status and status != "open":
            logger.info(f"[CRM] Deal {deal_id} is {status}, no checkout link needed")
            return f"Deal is {status}"

        link_key = await self._crm.get_deal_field_key(CRM_PAYMENT_LINK_FIELD)
        if not link_key:
            logger.error(f"[CRM] Deal field '{CRM_PAYMENT_LINK_FIELD}' not found, cannot write link for deal {deal_id}")
            return "Payment link field not configured"
        hash_key = await self._crm.get_deal_field_key(CRM_PAYMENT_LINK_HASH_FIELD)

        custom_fields = deal.get("custom_fields")
        if custom_fields is None:
            # v1 deals carry custom fields as top-level hash keys
            custom_fields = deal
        customer = await self._build_customer(deal_id, deal, custom_fields)
        fingerprint = customer.fingerprint()

        current_value = custom_field_value(custom_fields.get(link_key))
        stored_fingerprint = custom_field_value(custom_fields.get(hash_key)) if hash_key else None
        if is_payment_url(current_value) and stored_fingerprint == fingerprint:
            logger.info(f"[CRM] Deal {deal_id} unchanged since its link was generated")
            return "Deal unchanged"

        missing = customer.missing_attributes()
        if missing:
            await self._write_error(deal_id, link_key, current_value, format_missing_attributes(missing))
            return "Missing attributes"

        price_cents = dollars_to_cents(customer.price)
        plan = await self._catalog.by_price(price_cents) if price_cents else None
        if plan is None:
            await self._write_error(deal_id, link_key, current_value, CRM_INVALID_PRICE_MESSAGE)
            return "Invalid price"

        async with self._sessions() as db:
            profile = await self._profiles.upsert_by_email(
                db,
                email=customer.email,
                name=customer.name,
                phone=customer.phone,
                sales_rep_email=customer.sales_rep_email,
            )
            restaurant = await self._restaurants.upsert_for_deal(db, deal_id, customer.restaurant_name, profile.id)

        if not attached:
            await self._lifecycle.attach_crm_deal(
                restaurant.id,
                deal_id,
                stage_id=str(deal["stage_id"]) if deal.get("stage_id") is not None else None,
                deal_status=status,
            )

        link = await self._links.issue(profile.id, restaurant.id, plan.id)
        url = self._links.public_url(link)

        fields = {link_key: url}
        if hash_key:
            fields[hash_key] = fingerprint
        if current_value == url and (not hash_key or stored_fingerprint == fingerprint):
            return f"Deal already carries link {link.id}"

        await self._crm.update_deal_custom_fields(deal_id, fields)
        logger.info(f"[CRM] Deal {deal_id} linked to checkout link {link.id} (plan {plan.id})")
        return f"Checkout link {link.id} written to deal {deal_id}"

    async def _build_customer(self, deal_id: str, deal: Dict[str, Any], custom_fields: Dict[str, Any]) -> DealCustomer:
        customer = DealCustomer(deal_id=deal_id, price=deal.get("value"))

        org_id = ref_id(deal.get("org_id"))
        person_id = ref_id(deal.get("person_id"))
        owner_id = ref_id(deal.get("owner_id") or deal.get("user_id"))

        organization, person, owner = await asyncio.gather(
            _optional(self._crm.get_organization(org_id) if org_id else None),
            _optional(self._crm.get_person(person_id) if person_id else None),
            _optional(self._crm.get_user(owner_id) if owner_id else None),
        )

        if organization:
            customer.restaurant_name = organization.get("name")
        if person:
            customer.name = person.get("name")
            emails = person.get("emails") or []
            phones = person.get("phones") or []
            customer.email = emails[0].get("value") if emails else None
            raw_phone = phones[0].get("value") if phones else None
            customer.phone = normalize_e164(raw_phone)
            if raw_phone and not customer.phone:
                logger.info(f"[CRM] Deal {deal_id}: phone number is not convertible to E.164, dropping it")
        if owner:
            customer.sales_rep_email = owner.get("email")

        slack_key = await self._crm.get_deal_field_key(CRM_SALES_REP_SLACK_ID_FIELD)
        if slack_key:
            customer.sales_rep_slack_id = extract_slack_id(custom_field_value(custom_fields.get(slack_key)))

        return customer

    async def _write_error(self, deal_id: str, link_key: str, current_value: Optional[str], message: str) -> None:
        """Surface a validation problem on the deal without clobbering a working link for missing data."""
        if current_value == message:
            return
        if message.startswith(CRM_MISSING_ATTRIBUTES_PREFIX) and is_payment_url(current_value):
            logger.info(f"[CRM] Deal {deal_id} lost required data but keeps its existing link")
            return
        logger.info(f"[CRM] Deal {deal_id}: {message.splitlines()[0]}")
        await self._crm.update_deal_custom_fields(deal_id, {link_key: message})

    async def _attach_metadata(self, deal_id: str, deal: Dict[str, Any]) -> bool:
        """Stamp stage and status on the subscriptions of a known restaurant. Returns False for unknown deals."""
        async with self._sessions() as db:
            restaurant = await self._restaurants.get_by_deal(db, deal_id)
        if restaurant is None:
            return False
        await self._lifecycle.attach_crm_deal(
            restaurant.id,
            deal_id,
            stage_id=str(deal["stage_id"]) if deal.get("stage_id") is not None else None,
            deal_status=deal.get("status"),
        )
        return True
