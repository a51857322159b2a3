"""
Provider adapter contract.

Adapters translate between a provider's wire format and the relay's
canonical fields. They never read or write the ledger.
"""
import abc
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


class ProviderStatus(str, enum.Enum):
    PAID = "paid"
    FAILED = "failed"
    PENDING = "pending"
    OTHER = "other"


@dataclass
class CustomerInfo:
    name: str = ""
    phone: str = ""
    email: str = ""
    address: str = ""


@dataclass
class ProviderHandle:
    provider_reference: str
    client_token: str


@dataclass
class Notification:
    external_reference: Optional[str]
    provider_status: ProviderStatus
    status_token: str
    provider_reference: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup that works on plain dicts too."""
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, val in headers.items():
        if key.lower() == lowered:
            return val
    return None


class ProviderAdapter(abc.ABC):
    name: str = ""
    requires_phone: bool = False

    @abc.abstractmethod
    def open_transaction(
        self,
        amount: int,
        currency: str,
        customer: CustomerInfo,
        external_reference: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> ProviderHandle:
        """Open a provider-side transaction; raises ProviderError."""

    @abc.abstractmethod
    def verify_signature(self, payload: bytes, headers: Mapping[str, str]) -> Any:
        """Authenticate an inbound notification; raises SignatureError."""

    @abc.abstractmethod
    def parse_notification(self, payload: bytes, headers: Mapping[str, str]) -> Optional[Notification]:
        """Verify then normalize a notification.

        Returns None for authentic events this adapter does not reconcile.
        """

    def fetch_status(self, provider_reference: str) -> Optional[Notification]:
        """Ask the provider for the current status. None when unsupported."""
        return None
