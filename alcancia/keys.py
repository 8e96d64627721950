"""Private key material for invisible accounts.

Keys are scalars on the Stark curve. With a shared secret configured they are
derived from the user identifier so the same user maps to the same key after a
restart; without one they are drawn at random and live only as long as the
process does.
"""

import hashlib
import hmac
import secrets
from typing import Optional, Union

from starknet_py.constants import EC_ORDER
from starknet_py.net.signer.stark_curve_signer import KeyPair

DERIVATION_CONTEXT = "starknet-invisible"


def derivation_message(entity_id: str, variant: str) -> bytes:
    return f"{entity_id}:{DERIVATION_CONTEXT}:{variant}".encode("utf-8")


def derive_deterministic_key(secret: str, entity_id: str, variant: str) -> int:
    digest = hmac.new(
        secret.encode("utf-8"),
        derivation_message(entity_id, variant),
        hashlib.sha256,
    ).digest()
    scalar = int.from_bytes(digest, "big") % (EC_ORDER - 1)
    if scalar == 0:
        scalar = 1
    return scalar


def generate_random_key() -> int:
    return secrets.randbelow(EC_ORDER - 1) + 1


def derive_private_key(entity_id: str, secret: Optional[str], variant: str) -> int:
    """Return a nonzero scalar below the curve order for ``entity_id``.

    A blank or missing secret is not an error: it selects random generation.
    """

    if secret:
        return derive_deterministic_key(secret, entity_id, variant)
    return generate_random_key()


def private_key_to_hex(private_key: int) -> str:
    return f"0x{private_key:064x}"


def parse_private_key(value: Union[int, str]) -> int:
    if isinstance(value, int):
        scalar = value
    else:
        text = value.strip().lower()
        if not text.startswith("0x"):
            text = f"0x{text}"
        scalar = int(text, 16)
    if not 0 < scalar < EC_ORDER:
        raise ValueError("private key outside the Stark curve order")
    return scalar


def public_key_for(private_key: Union[int, str]) -> int:
    return KeyPair.from_private_key(parse_private_key(private_key)).public_key


def felt_to_hex(value: int) -> str:
    return f"0x{value:064x}"
