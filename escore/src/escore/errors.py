"""
Error taxonomy for Esplora synchronization.

Transient network failures are retried by the fetch pipeline; every other
error is fatal for the request that raised it and propagates to the caller.
A resource the service does not know about is never an error: backends
return None or an empty list instead.
"""

from __future__ import annotations


class EsploraError(Exception):
    """Base class for all errors raised by escore and eswallet."""


class NetworkTransientError(EsploraError):
    """Timeout, connection failure, 5xx or 429 response. Safe to retry."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class HttpStatusError(EsploraError):
    """Non-transient HTTP error (4xx other than 404)."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(EsploraError):
    """Response could not be decoded into the expected schema."""


class MalformedWitnessHexError(MalformedResponseError):
    """A witness stack element is not valid hex."""

    def __init__(self, element: str, input_index: int | None = None):
        where = f" in input {input_index}" if input_index is not None else ""
        super().__init__(f"Invalid witness hex{where}: {element!r}")
        self.element = element
        self.input_index = input_index


class ProofMismatchError(EsploraError):
    """Merkle proof does not lead to the claimed block's merkle root.

    Signals a trust violation: the transaction must not be marked confirmed.
    """

    def __init__(self, txid: str, computed_root: str, expected_root: str):
        super().__init__(
            f"Merkle proof for {txid} computes root {computed_root}, "
            f"block claims {expected_root}"
        )
        self.txid = txid
        self.computed_root = computed_root
        self.expected_root = expected_root


class InvalidConfigurationError(EsploraError):
    """Configuration rejected before any network activity."""


class NoFeeEstimateAvailableError(EsploraError):
    """Requested confirmation target is above every known fee bucket."""

    def __init__(self, target: int, max_target: int | None = None):
        if max_target is None:
            message = f"No fee estimates available (requested target {target})"
        else:
            message = f"No fee estimate for target {target}: highest known target is {max_target}"
        super().__init__(message)
        self.target = target
        self.max_target = max_target


class SyncCancelledError(EsploraError):
    """A sync pass was cancelled between batches."""
