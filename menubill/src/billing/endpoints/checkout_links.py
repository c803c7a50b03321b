"""
Checkout Link Endpoints

Issue, look up and visit checkout links.
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, Field

from menubill.src.billing.checkout_links.service import CheckoutLinkService
from menubill.src.billing.domain.checkout_link import CheckoutLink
from .dependencies import get_checkout_links

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing-checkout-links"])


# ============================================================================
# Request Models
# ============================================================================

class IssueCheckoutLinkRequest(BaseModel):
    """Request for checkout link issuance."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias='userId', min_length=1)
    restaurant_id: str = Field(alias='restaurantId', min_length=1)
    plan_id: str = Field(alias='planId', min_length=1)
    trial_days: Optional[int] = Field(None, alias='trialDays')
    coupon_code: Optional[str] = Field(None, alias='couponCode')


def _link_payload(links: CheckoutLinkService, link: CheckoutLink) -> Dict:
    return {**link.to_dict(), 'url': links.public_url(link), 'reused': link.reused}


# ============================================================================
# Endpoints
# ============================================================================

@router.post("/checkout-links", status_code=201)
async def issue_checkout_link(
    request: IssueCheckoutLinkRequest,
    response: Response,
    links: CheckoutLinkService = Depends(get_checkout_links),
) -> Dict:
    """
    Issue a checkout link for (user, plan).

    Returns 201 for a new link and 200 when the pair already had an active one.
    """
    link = await links.issue(
        request.user_id,
        request.restaurant_id,
        request.plan_id,
        trial_override_days=request.trial_days,
        coupon_code=request.coupon_code,
    )
    if link.reused:
        response.status_code = 200
    return _link_payload(links, link)


@router.get("/checkout-links")
async def list_checkout_links(
    restaurant_id: str = Query(..., alias='restaurantId', min_length=1),
    links: CheckoutLinkService = Depends(get_checkout_links),
) -> List[Dict]:
    """Links issued for a restaurant, newest first."""
    return [_link_payload(links, link) for link in await links.by_restaurant(restaurant_id)]


@router.get("/checkout-links/{link_id}")
async def get_checkout_link(
    link_id: str,
    links: CheckoutLinkService = Depends(get_checkout_links),
) -> Dict:
    return _link_payload(links, await links.resolve(link_id))


@router.get("/checkout-links/{link_id}/visit")
async def visit_checkout_link(
    link_id: str,
    links: CheckoutLinkService = Depends(get_checkout_links),
) -> RedirectResponse:
    """
    Redirect a customer to the provider checkout page.

    An expired link is replaced by a freshly issued one; a used link answers 410.
    """
    link = await links.visit(link_id)
    if link.id != link_id:
        logger.info(f"[CHECKOUT] Visit of {link_id} redirected to replacement link {link.id}")
    return RedirectResponse(url=link.original_checkout_url, status_code=307)
