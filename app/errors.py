from typing import Optional


class WabotError(Exception):
    """Base class for bot pipeline errors."""


class StoreError(WabotError):
    """Persistence layer failure (connectivity or an unexpected constraint violation)."""

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} failed: {detail}")


class DeliveryError(WabotError):
    """Outbound send to WhatsApp failed."""

    def __init__(self, detail: str, status_code: Optional[int] = None, response_body: Optional[str] = None):
        self.detail = detail
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(detail if status_code is None else f"{detail} (status={status_code})")


class GenerationError(WabotError):
    """Generation service call failed. Never leaves GenerationService."""

    def __init__(self, kind: str, detail: str):
        self.kind = kind
        self.detail = detail
        super().__init__(f"{kind} generation failed: {detail}")


class VerificationError(WabotError):
    """Webhook subscription handshake did not match the configured verify token."""
