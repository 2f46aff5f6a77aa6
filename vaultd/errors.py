"""
Error taxonomy for vaultd.

Library code raises these; the MCP and CLI boundaries catch them and turn
them into human-readable messages.
"""


class VaultdError(Exception):
    """Base class for all vaultd errors."""


class ProviderError(VaultdError):
    """
    The embedding provider call failed.

    Raised on network, authentication and rate-limit failures as well as
    responses whose shape does not match the request. Retryable by the
    caller; the adapter itself never retries.
    """


class CorruptStoreError(VaultdError):
    """A persisted store could not be deserialized."""


class DimensionMismatchError(VaultdError):
    """A vector does not match the dimension the store was created with."""


class AlreadyRunningError(VaultdError):
    """A reindex was requested while another one is running."""

    def __init__(self, message: str = "already indexing"):
        super().__init__(message)


class NotReadyError(VaultdError):
    """No store is currently active."""

    def __init__(self, message: str = "Vector store is not loaded. Try reloading or re-indexing."):
        super().__init__(message)


class PathTraversalError(VaultdError, ValueError):
    """A vault-relative path resolves outside the vault root."""

    def __init__(self, path: str):
        super().__init__(f"Invalid path: {path}. Path traversal is not allowed.")
        self.path = path
