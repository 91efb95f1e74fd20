from enum import Enum


class ValuationSource(str, Enum):
    """Provenance of the USD amount attached to a transfer."""

    STABLE_ASSET_LOG = "stable-asset-log"
    NATIVE_DIRECT = "native-direct"
    WRAPPED_NATIVE_LOG = "wrapped-native-log"
    INTERNAL_NATIVE_TRANSFER = "internal-native-transfer"
    UNRESOLVED = "unresolved"
