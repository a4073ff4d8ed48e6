"""Stripe Checkout and webhooks for subscription tiers.

Stripe is called over its form-encoded REST API with httpx, one attempt per
call. Amounts are sent in the currency's minor unit. Webhook signatures are
checked with the stripe library before any event is applied.
"""

from __future__ import annotations

import calendar
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

import httpx
import stripe

logger = logging.getLogger(__name__)

QUARTERLY_DISCOUNT = 0.9
# Months of access bought by one checkout, keyed by the billing cycle sent in its metadata.
SUBSCRIPTION_TERM_MONTHS = {"monthly": 1, "quarterly": 3, "annually": 12, "yearly": 12}
RENEWAL_MONTHS = 1
TIER_LIMIT_COLUMNS = ("max_jobs", "max_candidates", "max_users")
SUPPORTED_CURRENCIES = frozenset(
    {"sar", "usd", "aed", "eur", "gbp", "egp", "kwd", "qar", "bhd", "omr", "jod", "inr", "pkr"}
)


class BillingError(Exception):
    """Raised when the payment provider rejects or fails a request."""


class BillingNotConfiguredError(BillingError):
    """Raised when no Stripe secret key is available."""


class WebhookSignatureError(BillingError):
    """Raised when a webhook body is not a validly signed Stripe event."""


@dataclass(frozen=True, slots=True)
class CyclePrice:
    amount: int
    interval: str
    interval_count: int
    label: str


def price_for_cycle(tier: dict[str, Any], billing_cycle: str) -> CyclePrice:
    monthly = float(tier.get("price_monthly") or 0)
    if billing_cycle == "annually":
        yearly = tier.get("price_yearly")
        total = float(yearly) if yearly else monthly * 12
        return CyclePrice(round(total * 100), "year", 1, "Annual")
    if billing_cycle == "quarterly":
        return CyclePrice(round(monthly * 3 * QUARTERLY_DISCOUNT * 100), "month", 3, "Quarterly")
    return CyclePrice(round(monthly * 100), "month", 1, "Monthly")


def stripe_currency(currency: str | None) -> str:
    code = (currency or "").lower()
    return code if code in SUPPORTED_CURRENCIES else "usd"


class StripeClient:
    def __init__(self, secret_key: str | None, api_base: str, timeout_seconds: float = 15.0) -> None:
        self.secret_key = secret_key
        self.api_base = api_base.rstrip("/")
        self.timeout_seconds = timeout_seconds

    async def create_customer(self, *, name: str, org_id: str, org_slug: str | None) -> str:
        data = {"name": name, "metadata[org_id]": org_id}
        if org_slug:
            data["metadata[org_slug]"] = org_slug
        customer = await self._post("/v1/customers", data)
        return customer["id"]

    async def create_checkout_session(
        self,
        *,
        customer_id: str,
        org_id: str,
        tier: dict[str, Any],
        billing_cycle: str,
        return_base_url: str,
    ) -> dict[str, Any]:
        price = price_for_cycle(tier, billing_cycle)
        name = tier.get("name") or "Subscription"
        data = {
            "customer": customer_id,
            "mode": "subscription",
            "payment_method_types[0]": "card",
            "line_items[0][quantity]": "1",
            "line_items[0][price_data][currency]": stripe_currency(tier.get("currency")),
            "line_items[0][price_data][unit_amount]": str(price.amount),
            "line_items[0][price_data][recurring][interval]": price.interval,
            "line_items[0][price_data][recurring][interval_count]": str(price.interval_count),
            "line_items[0][price_data][product_data][name]": f"{name} Plan ({price.label})",
            "line_items[0][price_data][product_data][description]": tier.get("description")
            or f"{name} subscription plan",
            "metadata[org_id]": org_id,
            "metadata[tier_id]": str(tier.get("id")),
            "metadata[billing_cycle]": billing_cycle,
            "success_url": f"{return_base_url}/org/billing?status=success&session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{return_base_url}/org/billing?status=cancelled",
        }
        return await self._post("/v1/checkout/sessions", data)

    async def _post(self, path: str, data: dict[str, str]) -> dict[str, Any]:
        if not self.secret_key:
            raise BillingNotConfiguredError("Stripe is not configured. Contact your administrator.")
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(f"{self.api_base}{path}", data=data, auth=(self.secret_key, ""))
        except httpx.HTTPError as exc:  # pragma: no cover - network dependent
            raise BillingError("payment provider unavailable") from exc

        body = response.json() if response.content else {}
        if response.status_code >= 400:
            message = (body.get("error") or {}).get("message") if isinstance(body, dict) else None
            logger.error("stripe request failed path=%s status=%s", path, response.status_code)
            raise BillingError(message or f"payment provider returned {response.status_code}")
        return body


def add_months(value: date, months: int) -> date:
    """Calendar month arithmetic; the day is clamped to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(value.day, calendar.monthrange(year, month)[1]))


def verify_webhook_event(payload: bytes, signature: str | None, secret: str) -> dict[str, Any]:
    if not signature:
        raise WebhookSignatureError("missing Stripe-Signature header")
    try:
        text = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(text, signature, secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE)
        event = json.loads(text)
    except (stripe.SignatureVerificationError, ValueError) as exc:
        raise WebhookSignatureError(str(exc)) from exc
    if not isinstance(event, dict) or not isinstance(event.get("type"), str):
        raise WebhookSignatureError("payload is not a Stripe event")
    return event


async def apply_stripe_event(repository: Any, event: dict[str, Any], *, today: date | None = None) -> str | None:
    """Apply one verified event to the organization it concerns.

    Returns the organization id that was updated, or None when the event is
    not one we act on or names no known organization.
    """
    today = today or datetime.now(timezone.utc).date()
    event_type = event.get("type")
    payload = (event.get("data") or {}).get("object") or {}
    if event_type == "checkout.session.completed":
        return await _activate_from_checkout(repository, payload, today)
    if event_type == "invoice.paid":
        return await _renew_from_invoice(repository, payload, today)
    if event_type == "customer.subscription.deleted":
        return await _cancel_from_subscription(repository, payload)
    logger.info("unhandled stripe webhook event type=%s id=%s", event_type, event.get("id"))
    return None


async def _activate_from_checkout(repository: Any, session: dict[str, Any], today: date) -> str | None:
    metadata = session.get("metadata") or {}
    org_id = metadata.get("org_id")
    if not org_id:
        logger.warning("checkout session without org_id metadata session_id=%s", session.get("id"))
        return None

    tier_id = metadata.get("tier_id") or None
    billing_cycle = metadata.get("billing_cycle") or "monthly"
    tier = await repository.get_subscription_tier(tier_id) if tier_id else None
    limits = {column: tier.get(column) for column in TIER_LIMIT_COLUMNS} if tier else {}

    end_date = add_months(today, SUBSCRIPTION_TERM_MONTHS.get(billing_cycle, 1))
    await repository.activate_subscription(
        org_id=org_id,
        tier_id=tier_id,
        stripe_subscription_id=_stripe_id(session.get("subscription")),
        start_date=today,
        end_date=end_date,
        limits=limits,
    )
    logger.info("subscription activated org_id=%s tier_id=%s ends=%s", org_id, tier_id, end_date.isoformat())
    return org_id


async def _renew_from_invoice(repository: Any, invoice: dict[str, Any], today: date) -> str | None:
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    subscription_id = _stripe_id(details.get("subscription")) or _stripe_id(invoice.get("subscription"))
    if not subscription_id:
        return None
    org = await repository.get_organization_by_stripe_subscription(subscription_id)
    if not org:
        logger.warning("invoice paid for unknown subscription subscription_id=%s", subscription_id)
        return None

    current_end = _as_date(org.get("subscription_end_date"))
    # A renewal after the term already lapsed counts from today.
    base = max(current_end, today) if current_end else today
    end_date = add_months(base, RENEWAL_MONTHS)
    await repository.extend_subscription(org_id=org["id"], end_date=end_date)
    logger.info("subscription renewed org_id=%s ends=%s", org["id"], end_date.isoformat())
    return org["id"]


async def _cancel_from_subscription(repository: Any, subscription: dict[str, Any]) -> str | None:
    subscription_id = _stripe_id(subscription.get("id"))
    if not subscription_id:
        return None
    org = await repository.get_organization_by_stripe_subscription(subscription_id)
    if not org:
        logger.warning("cancellation for unknown subscription subscription_id=%s", subscription_id)
        return None
    await repository.cancel_subscription(org_id=org["id"])
    logger.info("subscription cancelled org_id=%s", org["id"])
    return org["id"]


def _stripe_id(value: Any) -> str | None:
    # Stripe sends either a bare id or the expanded object.
    if isinstance(value, dict):
        value = value.get("id")
    return value if isinstance(value, str) and value else None


def _as_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None
