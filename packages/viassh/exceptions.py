"""Custom exceptions for viassh."""

from typing import Optional


class ViaSSHError(Exception):
    """Base exception for viassh."""
    pass


class ConfigurationError(ViaSSHError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, missing_key: str = ""):
        super().__init__(message)
        self.missing_key = missing_key


class NoHostsError(ConfigurationError):
    """Raised when no via hosts were specified."""

    def __init__(self, message: str = "no via entries specified"):
        super().__init__(message, missing_key="hosts")


class HostParseError(ViaSSHError):
    """Raised when a via entry is not on the form user@host:port."""

    def __init__(self, message: str, host: str = "", index: int = -1):
        super().__init__(f"error parsing host entry {host!r} ({index}): {message}")
        self.host = host
        self.index = index


class CredentialSourceError(ViaSSHError):
    """Raised when the credential source (ssh-agent, key files) cannot be used."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class HostKeyError(ViaSSHError):
    """Raised when a hop presents a host key the trust policy rejects."""

    def __init__(self, message: str, hop: str = "", fingerprint: str = ""):
        super().__init__(message)
        self.hop = hop
        self.fingerprint = fingerprint


class AuthenticationError(ViaSSHError):
    """Raised when none of the available signers were accepted by a hop."""

    def __init__(self, message: str, username: str = ""):
        super().__init__(message)
        self.username = username


class HopDialError(ViaSSHError):
    """Raised when connecting or authenticating to a hop fails.

    Building the chain stops at the first failing hop; ``index`` tells which.
    """

    def __init__(self, hop: str, index: int, cause: BaseException):
        super().__init__(f"error dialing host {hop} ({index}): {cause}")
        self.hop = hop
        self.index = index
        self.cause = cause


class RemoteDialError(ViaSSHError):
    """Raised when the last hop cannot open a connection to the requested address."""

    def __init__(self, network: str, address: str, cause: object):
        super().__init__(f"remote dial {network} {address} failed: {cause}")
        self.network = network
        self.address = address
        self.cause = cause


class DialerClosedError(ViaSSHError):
    """Raised when a closed Dialer is used or closed again."""

    def __init__(self, message: str = "dialer is closed"):
        super().__init__(message)


class HopCloseError(ViaSSHError):
    """A single hop failed to close cleanly."""

    def __init__(self, hop: str, index: int, cause: BaseException):
        super().__init__(f"error closing ssh connection to {hop} ({index}): {cause}")
        self.hop = hop
        self.index = index
        self.cause = cause


class CloseError(ViaSSHError):
    """Raised when one or more hops failed to close; holds every failure."""

    def __init__(self, errors: list[HopCloseError]):
        super().__init__("; ".join(str(e) for e in errors))
        self.errors = list(errors)
