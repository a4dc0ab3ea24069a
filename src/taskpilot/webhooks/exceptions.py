"""Custom exceptions for webhook handling."""


class WebhookError(Exception):
    """Base exception for webhook errors."""


class WebhookSecretMissingError(WebhookError):
    """Signature validation is required but no secret is configured."""


class InvalidSignatureError(WebhookError):
    """The delivery's HMAC signature does not match its body."""


class InvalidPayloadError(WebhookError):
    """The delivery is missing required fields."""
