"""
Esplora protocol and synchronization constants.
"""

from __future__ import annotations

# Number of parallel requests sent to the esplora service
DEFAULT_CONCURRENCY = 4

# Attempts per request (first try included) before a transient error escapes
DEFAULT_MAX_ATTEMPTS = 3

# Base delay in seconds for exponential backoff between attempts
DEFAULT_RETRY_BACKOFF = 0.5
MAX_RETRY_BACKOFF = 10.0

# Socket timeout used when the configuration does not set one (seconds)
DEFAULT_TIMEOUT = 30.0

# Upper bound for the derived scan batch size when none is configured
MAX_BATCH_SIZE = 100

# Esplora returns up to 25 confirmed transactions per history page
# (/scripthash/:hash/txs and /scripthash/:hash/txs/chain/:last_seen_txid)
CONFIRMED_TXS_PER_PAGE = 25

# Status codes treated as transient. 429 is rate limiting by public instances.
TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})

SATS_PER_BTC = 100_000_000

U32_MAX = 0xFFFFFFFF
U64_MAX = 0xFFFFFFFFFFFFFFFF
I32_MIN = -(2**31)
I32_MAX = 2**31 - 1
