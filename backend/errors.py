# Version History
# v1.0 - Error types raised by the VAPID signer and the push dispatcher.

from __future__ import annotations


class PushError(Exception):
    """Base class for everything the send-push flow raises on purpose."""


class InvalidInputError(PushError):
    pass


class ConfigurationError(PushError):
    pass


class VapidNotConfiguredError(ConfigurationError):
    def __init__(self) -> None:
        super().__init__("VAPID keys not configured on server.")


class SignatureFormatError(PushError):
    pass


class PushDeliveryError(PushError):
    """The push service did not accept the message.

    ``status`` is the provider's HTTP status, or ``None`` when the request never
    got a response (timeout, DNS, connection reset).
    """

    def __init__(self, message: str, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class InvalidSubscriptionError(PushDeliveryError):
    pass


class TransientDeliveryError(PushDeliveryError):
    pass
