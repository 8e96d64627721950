from __future__ import annotations

import hashlib
import hmac

import pytest
from starknet_py.constants import EC_ORDER

from alcancia import keys
from alcancia.keys import (
    derive_private_key,
    parse_private_key,
    private_key_to_hex,
    public_key_for,
)


def test_deterministic_key_matches_keyed_hash_formula():
    digest = hmac.new(b"s3cret", b"u1:starknet-invisible:oz", hashlib.sha256).digest()
    expected = int.from_bytes(digest, "big") % (EC_ORDER - 1)

    assert derive_private_key("u1", "s3cret", "oz") == expected


def test_deterministic_key_is_stable_across_calls():
    first = derive_private_key("telegram-42", "s3cret", "oz")
    assert all(derive_private_key("telegram-42", "s3cret", "oz") == first for _ in range(5))


def test_distinct_entities_get_distinct_keys():
    corpus = [f"user-{index}" for index in range(200)]
    derived = {derive_private_key(entity, "s3cret", "oz") for entity in corpus}
    assert len(derived) == len(corpus)


def test_variant_is_part_of_the_derivation():
    assert derive_private_key("u1", "s3cret", "oz") != derive_private_key("u1", "s3cret", "argent")


def test_zero_digest_is_replaced_by_one(monkeypatch: pytest.MonkeyPatch):
    class _Digest:
        def digest(self) -> bytes:
            return (EC_ORDER - 1).to_bytes(32, "big")

    monkeypatch.setattr(keys.hmac, "new", lambda *_args, **_kwargs: _Digest())
    assert derive_private_key("u1", "s3cret", "oz") == 1


@pytest.mark.parametrize("secret", [None, ""])
def test_missing_secret_falls_back_to_random_scalar(secret):
    first = derive_private_key("u1", secret, "oz")
    second = derive_private_key("u1", secret, "oz")
    assert 0 < first < EC_ORDER
    assert 0 < second < EC_ORDER
    assert first != second


def test_private_key_hex_round_trips_through_parser():
    scalar = derive_private_key("u1", "s3cret", "oz")
    encoded = private_key_to_hex(scalar)
    assert encoded.startswith("0x") and len(encoded) == 66
    assert parse_private_key(encoded) == scalar
    assert parse_private_key(encoded[2:]) == scalar


@pytest.mark.parametrize("value", [0, EC_ORDER, "0x0"])
def test_parse_private_key_rejects_out_of_range(value):
    with pytest.raises(ValueError):
        parse_private_key(value)


def test_public_key_is_deterministic():
    scalar = derive_private_key("u1", "s3cret", "oz")
    assert public_key_for(scalar) == public_key_for(private_key_to_hex(scalar))
