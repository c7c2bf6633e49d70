"""Exception types raised inside ``contractorbook``.

The sync core converts these into booleans, ``None`` results, or sync outcomes
at its public boundary; they only escape from the receipt extraction call and
from explicit configuration helpers.
"""

from __future__ import annotations


class ContractorBookError(Exception):
    """Base class for package errors."""


class EndpointConfigError(ContractorBookError):
    """The configured webhook URL is missing or not an executable endpoint."""


class RemoteResponseError(ContractorBookError):
    """The remote store answered with an error or an unreadable body."""


class ReceiptExtractionError(ContractorBookError):
    """The AI vision call failed or returned data that does not validate."""


__all__ = [
    "ContractorBookError",
    "EndpointConfigError",
    "RemoteResponseError",
    "ReceiptExtractionError",
]
