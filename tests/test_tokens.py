import base64
import hashlib
from datetime import datetime, timedelta, timezone

import pytest

from tokengate.service import tokens
from tokengate.service.errors import RandomSourceExhausted
from tokengate.service.tokens import (
    TOKEN_BYTES,
    TOKEN_LENGTH,
    decode_token,
    encode_token,
    generate_token,
    token_digest,
    token_ttl,
)

_BASE32_ALPHABET = set("ABCDEFGHIJKLMNOPQRSTUVWXYZ234567")


def test_generated_token_has_fixed_length_and_alphabet():
    token = generate_token(7, timedelta(hours=2), ["read:a"])

    assert token.plaintext is not None
    assert len(token.plaintext) == TOKEN_LENGTH
    assert set(token.plaintext) <= _BASE32_ALPHABET
    assert "=" not in token.plaintext


def test_generated_token_digest_matches_plaintext():
    token = generate_token(7, timedelta(hours=2), [])

    expected = hashlib.sha256(token.plaintext.encode("utf-8")).hexdigest()
    assert token.digest == expected
    assert token_digest(token.plaintext) == expected
    assert len(token.digest) == 64


def test_generated_token_carries_owner_scope_and_expiry():
    issued = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    token = generate_token(3, timedelta(minutes=90), ["write:a", "read:a", "write:a"], now=issued)

    assert token.user_id == 3
    assert token.scope == ("write:a", "read:a")
    assert token.expiry == issued + timedelta(minutes=90)
    assert token.id is None


def test_generated_tokens_are_unique():
    seen = {generate_token(1, timedelta(hours=1), []).plaintext for _ in range(200)}
    assert len(seen) == 200


def test_encode_decode_preserves_raw_bytes():
    raw = bytes(range(TOKEN_BYTES))
    text = encode_token(raw)

    assert len(text) == TOKEN_LENGTH
    assert decode_token(text) == raw
    assert base64.b32encode(raw).decode("ascii").startswith(text)


def test_random_source_failure_is_reported(monkeypatch):
    def exhausted(_n):
        raise OSError("no entropy")

    monkeypatch.setattr(tokens.secrets, "token_bytes", exhausted)

    with pytest.raises(RandomSourceExhausted):
        generate_token(1, timedelta(hours=1), [])


class TestTokenTTL:
    def test_zero_extension_is_base_lifetime(self, settings):
        assert token_ttl(0, settings) == timedelta(hours=2)

    def test_bounds_are_inclusive(self, settings):
        assert token_ttl(-55, settings) == timedelta(minutes=65)
        assert token_ttl(1380, settings) == timedelta(hours=25)

    def test_out_of_range_extension_is_clamped(self, settings):
        assert token_ttl(-500, settings) == timedelta(minutes=65)
        assert token_ttl(10_000, settings) == timedelta(hours=25)
