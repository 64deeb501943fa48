"""Remote platform integrations (Shopify, WhatsApp)."""


class IntegrationError(Exception):
    """Base error for remote platform calls."""


class CommerceClientError(IntegrationError):
    """Raised when a Shopify call fails or reports errors."""


class MessagingClientError(IntegrationError):
    """Raised when the messaging API rejects or fails a send."""
