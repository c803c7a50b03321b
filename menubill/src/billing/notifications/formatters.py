"""
Notification Formatters

Build ``Notification`` payloads for billing lifecycle events.
"""

from typing import Optional

from menubill.src.billing.domain.checkout_link import CheckoutLink
from menubill.src.billing.domain.plan import Plan
from menubill.src.billing.domain.subscription import Subscription
from menubill.src.billing.domain.webhook_event import InboundEvent
from menubill.utils.timezone import timezone

from .types import Notification, NotificationField, NotificationSeverity, NotificationType


def _money(cents: int, currency: str) -> str:
    return f"{cents / 100:,.2f} {currency.upper()}"


def checkout_link_issued(link: CheckoutLink, plan: Plan, public_url: Optional[str] = None) -> Notification:
    fields = [
        NotificationField("Plan", f"{plan.name} ({plan.tier.value})"),
        NotificationField("Price", _money(plan.price, plan.currency)),
        NotificationField("Trial", f"{link.trial_days} days" if link.trial_enabled else "None"),
        NotificationField("Restaurant", link.restaurant_id),
        NotificationField("Expires", timezone.to_str(link.expires_at)),
    ]
    if public_url:
        fields.append(NotificationField("Link", public_url))
    return Notification(
        title="Checkout link issued",
        message=f"A new checkout link was issued for user {link.user_id}.",
        severity=NotificationSeverity.INFO,
        type=NotificationType.PAYMENT,
        fields=fields,
    )


def checkout_links_expired(count: int) -> Notification:
    return Notification(
        title="Checkout links expired",
        message=f"{count} checkout link(s) passed their expiry and were closed.",
        severity=NotificationSeverity.INFO,
        type=NotificationType.PAYMENT,
    )


def subscription_canceled(subscription: Subscription, at_period_end: bool, reason: Optional[str] = None) -> Notification:
    when = (
        f"at {timezone.to_str(subscription.cancel_at)}" if at_period_end and subscription.cancel_at
        else "immediately"
    )
    fields = [
        NotificationField("Subscription", subscription.id),
        NotificationField("Plan", subscription.plan_id),
        NotificationField("Status", subscription.status.value),
    ]
    if reason:
        fields.append(NotificationField("Reason", reason))
    return Notification(
        title="Subscription canceled",
        message=f"Subscription {subscription.provider_subscription_id} will end {when}.",
        severity=NotificationSeverity.WARNING,
        type=NotificationType.SUBSCRIPTION,
        fields=fields,
    )


def subscription_reactivated(subscription: Subscription) -> Notification:
    return Notification(
        title="Cancellation undone",
        message=f"Subscription {subscription.provider_subscription_id} is active again.",
        severity=NotificationSeverity.SUCCESS,
        type=NotificationType.SUBSCRIPTION,
        fields=[
            NotificationField("Subscription", subscription.id),
            NotificationField("Plan", subscription.plan_id),
        ],
    )


def trial_extended(subscription: Subscription, days: int) -> Notification:
    return Notification(
        title="Trial extended",
        message=f"Trial for subscription {subscription.provider_subscription_id} extended by {days} day(s).",
        severity=NotificationSeverity.INFO,
        type=NotificationType.SUBSCRIPTION,
        fields=[
            NotificationField("New trial end", timezone.to_str(subscription.trial_end) if subscription.trial_end else "-"),
            NotificationField("Total extension", f"{subscription.trial_extended_days} days"),
            NotificationField("Extensions", str(subscription.trial_extended_count)),
        ],
    )


def webhook_failed(event: InboundEvent, error: str) -> Notification:
    return Notification(
        title="Webhook processing failed",
        message=f"{event.source.value} event {event.event_type} could not be applied and will be retried on redelivery.",
        severity=NotificationSeverity.ERROR,
        type=NotificationType.GENERAL,
        fields=[
            NotificationField("Event", event.event_id),
            NotificationField("Subject", event.subject_id or "-"),
        ],
        context=error[:500],
    )
