"""PayPal Orders v2 client for token purchases (httpx)."""
import logging

import httpx

from chillconnect.config import get_settings

logger = logging.getLogger(__name__)

PAYPAL_SANDBOX_BASE = "https://api-m.sandbox.paypal.com"
PAYPAL_LIVE_BASE = "https://api-m.paypal.com"
CURRENCY = "INR"

_PACKAGES = (
    (10, False, "Starter package"),
    (25, False, "Basic package"),
    (50, True, "Most popular"),
    (100, False, "Value package"),
    (250, False, "Premium package"),
    (500, False, "Ultimate package"),
)


class PayPalError(Exception):
    pass


def paypal_configured() -> bool:
    s = get_settings()
    return bool(s.paypal_client_id and s.paypal_client_secret)


def _base_url() -> str:
    return PAYPAL_LIVE_BASE if get_settings().paypal_mode == "live" else PAYPAL_SANDBOX_BASE


def token_packages() -> list[dict]:
    value = get_settings().token_value_inr
    return [
        {"tokens": tokens, "price_inr": tokens * value, "popular": popular, "description": description}
        for tokens, popular, description in _PACKAGES
    ]


def _access_token(client: httpx.Client) -> str:
    s = get_settings()
    r = client.post(
        f"{_base_url()}/v1/oauth2/token",
        auth=(s.paypal_client_id, s.paypal_client_secret),
        data={"grant_type": "client_credentials"},
    )
    if r.status_code != 200:
        logger.error("PayPal auth failed: status=%s body=%s", r.status_code, r.text[:300])
        raise PayPalError("PayPal authentication failed")
    return r.json()["access_token"]


def _request(method: str, path: str, json: dict | None = None) -> dict:
    if not paypal_configured():
        raise PayPalError("PayPal is not configured")
    try:
        with httpx.Client(timeout=15.0) as client:
            token = _access_token(client)
            r = client.request(
                method,
                f"{_base_url()}{path}",
                json=json,
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            )
    except httpx.HTTPError as e:
        logger.error("PayPal request failed: %s %s error=%s", method, path, e)
        raise PayPalError("PayPal is unreachable") from e
    if r.status_code >= 300:
        logger.error("PayPal API failed: %s %s status=%s body=%s", method, path, r.status_code, r.text[:500])
        raise PayPalError(f"PayPal request failed ({r.status_code})")
    return r.json() if r.content else {}


def create_order(token_amount: int, user_id: int) -> dict:
    """Create a CAPTURE order. Returns {"order_id", "approval_url", "amount_inr"}."""
    s = get_settings()
    amount_inr = token_amount * s.token_value_inr
    body = {
        "intent": "CAPTURE",
        "purchase_units": [
            {
                "custom_id": f"{user_id}:{token_amount}",
                "description": f"Purchase of {token_amount} tokens for ChillConnect",
                "amount": {"currency_code": CURRENCY, "value": f"{amount_inr:.2f}"},
            }
        ],
        "application_context": {
            "brand_name": s.app_name,
            "return_url": f"{s.frontend_url}/payment/success",
            "cancel_url": f"{s.frontend_url}/payment/cancel",
            "user_action": "PAY_NOW",
        },
    }
    order = _request("POST", "/v2/checkout/orders", json=body)
    approval = next((link["href"] for link in order.get("links", []) if link.get("rel") in ("approve", "payer-action")), None)
    if not approval:
        raise PayPalError("PayPal did not return an approval link")
    logger.info("PayPal order created: %s for user %s", order.get("id"), user_id)
    return {"order_id": order["id"], "approval_url": approval, "amount_inr": amount_inr}


def capture_order(order_id: str) -> dict:
    """Capture an approved order. Returns {"status", "capture_id"}."""
    result = _request("POST", f"/v2/checkout/orders/{order_id}/capture", json={})
    capture_id = None
    try:
        capture_id = result["purchase_units"][0]["payments"]["captures"][0]["id"]
    except (KeyError, IndexError, TypeError):
        pass
    logger.info("PayPal order captured: %s status=%s", order_id, result.get("status"))
    return {"status": result.get("status"), "capture_id": capture_id}


def verify_webhook(headers: dict, event: dict) -> bool:
    """Ask PayPal to verify a webhook delivery's signature."""
    webhook_id = get_settings().paypal_webhook_id
    if not webhook_id:
        logger.warning("PAYPAL_WEBHOOK_ID not set; rejecting webhook")
        return False
    h = {k.lower(): v for k, v in headers.items()}
    body = {
        "auth_algo": h.get("paypal-auth-algo"),
        "cert_url": h.get("paypal-cert-url"),
        "transmission_id": h.get("paypal-transmission-id"),
        "transmission_sig": h.get("paypal-transmission-sig"),
        "transmission_time": h.get("paypal-transmission-time"),
        "webhook_id": webhook_id,
        "webhook_event": event,
    }
    if not all(body.values()):
        return False
    try:
        result = _request("POST", "/v1/notifications/verify-webhook-signature", json=body)
    except PayPalError:
        return False
    return result.get("verification_status") == "SUCCESS"


def order_id_from_capture_event(resource: dict) -> str | None:
    return ((resource.get("supplementary_data") or {}).get("related_ids") or {}).get("order_id")
