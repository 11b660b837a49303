"""
Manuscript Ledger - Document registry with capability-based access control.

Schema Version: manuscript-ledger/v1
"""

__version__ = "0.1.0"
__schema__ = "manuscript-ledger/v1"

# Supported schema versions (for backward compatibility)
SUPPORTED_SCHEMAS = [
    "manuscript-ledger/v1",
]

# Minimum required schema for new entries
MIN_SCHEMA_VERSION = "manuscript-ledger/v1"

# Field bounds enforced by the registration path
MAX_TITLE_LENGTH = 64
MAX_SYNOPSIS_LENGTH = 128
MAX_TAG_LENGTH = 32
MAX_TAGS = 10

# Default ceiling used for storage ratios (bytes)
DEFAULT_STORAGE_CAPACITY = 1_000_000_000

RESTRICTION_TAG = "ADMIN-RESTRICTED"
ARCHIVAL_TAG = "ARCHIVED-STATUS"
