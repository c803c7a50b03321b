"""
Billing service wiring.

Builds the gateway, CRM client, notification sinks and services once per
application and hands them out through ``app.state.billing``.
"""

import logging
from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from menubill.core.conf import Settings
from menubill.src.billing.checkout_links.service import CheckoutLinkService
from menubill.src.billing.domain.webhook_event import WebhookSource
from menubill.src.billing.external.pipedrive.client import PipedriveClient
from menubill.src.billing.external.stripe.client import DisabledGateway, StripeGateway
from menubill.src.billing.external.stripe.interfaces import PaymentProviderGateway
from menubill.src.billing.notifications.fanout import NotificationFanout
from menubill.src.billing.notifications.sinks import LogSink, SlackSink
from menubill.src.billing.plans.catalog import PlanCatalog
from menubill.src.billing.shared.config import BillingPolicy
from menubill.src.billing.subscriptions.lifecycle import SubscriptionLifecycleService
from menubill.src.billing.webhooks.crm_deals import CrmDealHandler
from menubill.src.billing.webhooks.provider_events import ProviderEventHandler
from menubill.src.billing.webhooks.reconciler import WebhookReconciler

logger = logging.getLogger(__name__)


@dataclass
class BillingContainer:
    settings: Settings
    gateway: PaymentProviderGateway
    crm: PipedriveClient
    notifier: NotificationFanout
    catalog: PlanCatalog
    links: CheckoutLinkService
    lifecycle: SubscriptionLifecycleService
    reconciler: WebhookReconciler


def build_gateway(settings: Settings) -> PaymentProviderGateway:
    if not settings.STRIPE_ENABLED:
        logger.warning("[BILLING] STRIPE_SECRET_KEY not set, payment provider disabled")
        return DisabledGateway()
    return StripeGateway(
        api_key=settings.STRIPE_SECRET_KEY,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        timeout=settings.PAYMENT_PROVIDER_TIMEOUT_SECONDS,
        poll_attempts=settings.CARD_VALIDATION_POLL_ATTEMPTS,
        poll_delay=settings.CARD_VALIDATION_POLL_DELAY_SECONDS,
        webhook_tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
    )


def build_notifier(settings: Settings, http: httpx.AsyncClient) -> NotificationFanout:
    notifier = NotificationFanout([LogSink()])
    if settings.SLACK_BOT_TOKEN and settings.SLACK_NOTIFICATION_CHANNEL_ID:
        notifier.add_sink(
            SlackSink(
                http,
                bot_token=settings.SLACK_BOT_TOKEN,
                channel_id=settings.SLACK_NOTIFICATION_CHANNEL_ID,
                api_url=settings.SLACK_API_URL,
            )
        )
    return notifier


def build_container(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    http: httpx.AsyncClient,
    gateway: PaymentProviderGateway | None = None,
    crm: PipedriveClient | None = None,
    notifier: NotificationFanout | None = None,
) -> BillingContainer:
    """
    Wire all billing services.

    ``gateway``, ``crm`` and ``notifier`` override the settings-driven
    defaults, which is how tests swap in fakes.
    """
    policy = BillingPolicy.from_settings(settings)
    gateway = gateway or build_gateway(settings)
    crm = crm or PipedriveClient(
        http,
        api_token=settings.PIPEDRIVE_API_TOKEN,
        base_url=settings.PIPEDRIVE_BASE_URL,
        field_cache_seconds=settings.PIPEDRIVE_FIELD_CACHE_SECONDS,
    )
    notifier = notifier or build_notifier(settings, http)

    catalog = PlanCatalog(session_factory)
    links = CheckoutLinkService(
        session_factory,
        catalog,
        gateway,
        notifier,
        policy,
        public_base_url=settings.PUBLIC_BASE_URL,
        link_base_url=f"{settings.PUBLIC_BASE_URL.rstrip('/')}{settings.FASTAPI_API_V1_PATH}/checkout-links",
        sweep_batch_size=settings.CHECKOUT_LINK_SWEEP_BATCH_SIZE,
    )
    lifecycle = SubscriptionLifecycleService(session_factory, gateway, notifier, policy)
    reconciler = WebhookReconciler(
        session_factory,
        handlers={
            WebhookSource.CRM: CrmDealHandler(session_factory, crm, catalog, links, lifecycle),
            WebhookSource.STRIPE: ProviderEventHandler(links, lifecycle, gateway),
        },
        notifier=notifier,
        policy=policy,
    )

    logger.info(
        f"[BILLING] Services ready (stripe={'on' if settings.STRIPE_ENABLED else 'off'}, "
        f"crm={'on' if crm.configured else 'off'}, sinks={[s.name for s in notifier.sinks]})"
    )
    return BillingContainer(
        settings=settings,
        gateway=gateway,
        crm=crm,
        notifier=notifier,
        catalog=catalog,
        links=links,
        lifecycle=lifecycle,
        reconciler=reconciler,
    )
