import stripe

from marketplace import config
from marketplace.errors import SignatureInvalid

stripe.api_key = config.STRIPE_SECRET_KEY
stripe.max_network_retries = config.STRIPE_MAX_NETWORK_RETRIES
stripe.default_http_client = stripe.RequestsClient(timeout=config.STRIPE_TIMEOUT_SECONDS)


def create_checkout_session(line_items: list, metadata: dict, idempotency_key: str,
                            success_url: str = None, cancel_url: str = None):
    return stripe.checkout.Session.create(
        mode="payment",
        payment_method_types=["card"],
        line_items=line_items,
        success_url=success_url or config.CHECKOUT_SUCCESS_URL,
        cancel_url=cancel_url or config.CHECKOUT_CANCEL_URL,
        metadata=metadata,
        idempotency_key=idempotency_key,
    )


def retrieve_latest_charge(payment_intent_id: str):
    intent = stripe.PaymentIntent.retrieve(payment_intent_id)
    charge = getattr(intent, "latest_charge", None)
    if charge is None or isinstance(charge, str):
        return charge
    return charge.id


def verify_event(payload: bytes, signature: str, secret: str):
    """Check the Stripe-Signature header and return the decoded event.

    Raises ``SignatureInvalid`` when the signature or the payload is rejected.
    """
    try:
        return stripe.Webhook.construct_event(
            payload, signature, secret, tolerance=config.WEBHOOK_TOLERANCE_SECONDS
        )
    except ValueError:
        raise SignatureInvalid("Invalid payload")
    except stripe.SignatureVerificationError:
        raise SignatureInvalid("Invalid signature")
