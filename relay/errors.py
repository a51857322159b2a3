class RelayError(Exception):
    """Base exception for the payment relay."""


class ValidationError(RelayError):
    """Bad checkout input (empty cart, bad price, unsupported currency...)."""


class ProviderError(RelayError):
    """A payment provider call or notification could not be handled."""


class SignatureError(ProviderError):
    """Inbound notification failed authenticity verification."""


class NotificationParseError(ProviderError):
    """Inbound notification body could not be parsed."""


class UnknownProviderError(ProviderError):
    """No adapter is registered under the requested provider name."""


class CorrelationError(RelayError):
    """Notification does not reference a known payment."""


class StorageError(RelayError):
    """The ledger could not be read or written."""


class OrphanedTransactionError(StorageError):
    """Provider transaction was opened but the ledger write failed."""

    def __init__(self, message: str, provider: str, provider_reference: str):
        super().__init__(message)
        self.provider = provider
        self.provider_reference = provider_reference
