"""Webhook ingestion error taxonomy.

Each exception maps to one HTTP outcome for the provider:

- SignatureInvalid                   -> 401, nothing persisted
- MalformedPayload                   -> 400, nothing persisted
- StorageError                       -> 5xx, provider redelivers
- MaterializationInvariantViolation  -> 5xx, event marked failed, needs an operator

Duplicates and unhandled event types are normal outcomes, not exceptions.
"""


class WebhookError(Exception):
    """Base class for webhook ingestion failures."""

    status_code = 500


class SignatureInvalid(WebhookError):
    status_code = 401


class MalformedPayload(WebhookError):
    status_code = 400


class StorageError(WebhookError):
    status_code = 500


class MaterializationInvariantViolation(WebhookError):
    """Event data that can't become a valid order (e.g. negative amount)."""

    status_code = 500


class InvalidTransition(WebhookError):
    """Order status change not allowed by the transition table."""

    def __init__(self, current, target):
        super().__init__(f"Cannot move order from {current} to {target}")
        self.current = current
        self.target = target
