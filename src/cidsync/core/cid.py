"""
CID helpers: version detection and hash verification.
"""

from enum import Enum

# Base58btc alphabet used by CIDv0 multihashes
BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"

CIDV0_LENGTH = 46
CIDV0_PREFIX = "Qm"


class CIDVersion(Enum):
    """CID versions, valued as the add API expects them"""

    V0 = "0"
    V1 = "1"


class InvalidCIDError(ValueError):
    """Raised when a string cannot be used as a CID"""

    pass


class HashMismatchError(Exception):
    """Raised when the destination hash differs from the source CID"""

    def __init__(self, cid: str, result_hash: str):
        self.cid = cid
        self.result_hash = result_hash
        super().__init__(
            f"Hash mismatch: expected {cid}, got {result_hash or '<empty>'}"
        )


def cid_version(cid: str) -> CIDVersion:
    """
    Get the version of a CID from its string form

    Args:
        cid: CID string

    Returns:
        CIDVersion.V0 for base58 "Qm..." multihashes, CIDVersion.V1 otherwise
    """
    if cid is None or not cid.strip():
        raise InvalidCIDError("CID is empty")

    cid = cid.strip()
    if (
        len(cid) == CIDV0_LENGTH
        and cid.startswith(CIDV0_PREFIX)
        and all(c in BASE58_ALPHABET for c in cid)
    ):
        return CIDVersion.V0
    return CIDVersion.V1


def matches(cid: str, result_hash: str) -> bool:
    """Check whether the hash returned by the destination is the source CID"""
    return bool(result_hash) and cid == result_hash


def verify_hash(cid: str, result_hash: str) -> str:
    """
    Verify a synced object

    Returns:
        str: Success message

    Raises:
        HashMismatchError: If the hashes differ
    """
    if not matches(cid, result_hash):
        raise HashMismatchError(cid, result_hash)
    return f"Synced CID: {cid}"
