# exceptions.py
"""Error types raised by the Stackmate chain-API core."""

from typing import Optional


class StackmateError(Exception):
    """Base exception for every failure surfaced by this package."""

    def __init__(self, message: str = "Stackmate operation failed") -> None:
        self.message: str = message
        super().__init__(self.message)


class ApiClientError(StackmateError):
    """The indexer could not be reached, or answered with a non-OK status."""

    def __init__(
        self,
        message: str,
        url: str = "",
        status: Optional[int] = None,
    ) -> None:
        self.url = url
        self.status = status
        super().__init__(message)


class ConfigurationError(StackmateError):
    """Missing contract identity, sender address or another precondition."""


class WalletError(StackmateError):
    """The wallet provider is absent or rejected the contract call."""


class UserCancelledError(WalletError):
    """The user dismissed the wallet prompt."""

    def __init__(self, message: str = "User canceled") -> None:
        super().__init__(message)


class ContractReadError(StackmateError):
    """A read-only contract function answered, but not with the expected ``(ok …)`` value."""
