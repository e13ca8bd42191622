"""
Privacy-preserving commitments binding an external identity to a platform.

The value is SHA256("{platform}:{external_id}:{salt}") reduced into the
ledger's scalar field and written with the ``field`` suffix the ledger
expects, so the same identity always yields the same commitment.
"""
import hashlib

FIELD_MODULUS = 8444461749428370424248824938781546531375899335154063827935233455917409239041
FIELD_SUFFIX = "field"

PLATFORM_IDS = {
    "discord": 1,
    "twitter": 2,
    "github": 3,
    "telegram": 4,
    "tiktok": 5,
    "evm": 6,
    "solana": 7,
    "google": 8,
    "steam": 9,
}


def derive(platform_id: int, external_id: str, salt: str) -> str:
    message = f"{platform_id}:{external_id}:{salt}".encode("utf-8")
    digest = hashlib.sha256(message).digest()
    value = int.from_bytes(digest, "big") % FIELD_MODULUS
    return f"{value}{FIELD_SUFFIX}"


def hex_to_field(hex_digest: str) -> str:
    """Reduce an already computed hex digest into the field."""
    if hex_digest.startswith(("0x", "0X")):
        hex_digest = hex_digest[2:]
    value = int(hex_digest, 16) % FIELD_MODULUS
    return f"{value}{FIELD_SUFFIX}"


def is_valid(commitment) -> bool:
    if not isinstance(commitment, str) or not commitment.endswith(FIELD_SUFFIX):
        return False
    digits = commitment[: -len(FIELD_SUFFIX)]
    if not (digits.isascii() and digits.isdigit()):
        return False
    return 0 <= int(digits) < FIELD_MODULUS


def for_provider(provider: str, external_id, salt: str) -> str:
    return derive(PLATFORM_IDS[provider], str(external_id), salt)
