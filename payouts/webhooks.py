"""
Webhook signature verification.

The verifier is chosen once per configuration: a signing secret selects
``SignatureVerifier``, no secret selects ``PermissiveVerifier`` which
accepts unsigned events and says so in the log.
"""
import json
import logging
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Optional

import stripe
from pydantic import ValidationError

from common.errors import InvalidInputError, WebhookSignatureError

from .models import ProcessorEvent

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 300


def _decode(payload: bytes) -> str:
    try:
        return payload.decode("utf-8")
    except UnicodeDecodeError:
        raise InvalidInputError("Invalid webhook payload")


# parsed with json rather than stripe.Webhook.construct_event so both verifiers share one path
def parse_event(payload: str) -> ProcessorEvent:
    try:
        return ProcessorEvent(**json.loads(payload))
    except (ValueError, TypeError, ValidationError):
        raise InvalidInputError("Invalid webhook payload")


class WebhookVerifier(ABC):
    mode: str = "abstract"

    @abstractmethod
    def verify(self, payload: bytes, signature: Optional[str]) -> ProcessorEvent:
        """Return the parsed event or raise ``WebhookSignatureError``."""


class SignatureVerifier(WebhookVerifier):
    mode = "verifying"

    def __init__(self, secret: str, tolerance: int = DEFAULT_TOLERANCE):
        self.secret = secret
        self.tolerance = tolerance

    def verify(self, payload: bytes, signature: Optional[str]) -> ProcessorEvent:
        if not signature:
            raise WebhookSignatureError("Missing stripe-signature header")

        text = _decode(payload)
        try:
            stripe.WebhookSignature.verify_header(text, signature, self.secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            logger.warning("Webhook signature verification failed: %s", e)
            raise WebhookSignatureError("Invalid signature")
        return parse_event(text)


class PermissiveVerifier(WebhookVerifier):
    mode = "permissive"

    def __init__(self):
        logger.warning("STRIPE_WEBHOOK_SECRET not configured - webhook signatures will not be verified")

    def verify(self, payload: bytes, signature: Optional[str]) -> ProcessorEvent:
        event = parse_event(_decode(payload))
        logger.warning("Accepted unverified webhook event %s (%s)", event.id, event.type)
        return event


@lru_cache
def build_verifier(secret: Optional[str], tolerance: int = DEFAULT_TOLERANCE) -> WebhookVerifier:
    if secret:
        return SignatureVerifier(secret, tolerance)
    return PermissiveVerifier()
