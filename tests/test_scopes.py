import pytest

from tokengate.service.errors import InsufficientScope, ScopeNotGranted, UnknownScope
from tokengate.service.scopes import (
    can_request_scope,
    has_scope,
    normalize_scope,
    parse_scope,
    serialize_scope,
    validate_vocabulary,
)

VOCABULARY = ("read:a", "read:b", "write:a", "write:b")


def test_normalize_scope_strips_and_deduplicates_in_order():
    assert normalize_scope([" write:a", "read:a", "", "write:a "]) == ("write:a", "read:a")
    assert normalize_scope(None) == ()
    assert normalize_scope("read:a") == ("read:a",)


def test_storage_encoding():
    assert serialize_scope(["read:a", "write:a"]) == "read:a,write:a"
    assert parse_scope("read:a,write:a") == ("read:a", "write:a")
    assert parse_scope("") == ()
    assert parse_scope(None) == ()


class TestHasScope:
    def test_empty_requirement_always_passes(self):
        has_scope((), ())
        has_scope(("read:a",), None)

    def test_superset_passes(self):
        has_scope(VOCABULARY, ("read:a", "write:a"))

    def test_missing_capability_is_named(self):
        with pytest.raises(InsufficientScope) as excinfo:
            has_scope(("read:a",), ("read:a", "write:a", "read:b"))

        assert excinfo.value.missing == "write:a"
        assert "write:a" in excinfo.value.message
        assert excinfo.value.status_code == 401

    def test_empty_token_scope_fails_any_requirement(self):
        with pytest.raises(InsufficientScope):
            has_scope((), ("read:a",))


class TestCanRequestScope:
    def test_subset_is_allowed(self):
        can_request_scope(VOCABULARY, ("read:a",))
        can_request_scope(("read:a",), ())

    def test_ungranted_capability_is_rejected(self):
        with pytest.raises(ScopeNotGranted) as excinfo:
            can_request_scope(("read:a",), ("read:a", "write:b"))

        assert excinfo.value.scope == "write:b"
        assert excinfo.value.status_code == 400
        assert "write:b" in excinfo.value.message


class TestValidateVocabulary:
    def test_known_scopes_are_normalized(self):
        assert validate_vocabulary(["read:b", "read:b"], VOCABULARY) == ("read:b",)

    def test_unknown_scope_is_rejected(self):
        with pytest.raises(UnknownScope) as excinfo:
            validate_vocabulary(["read:a", "admin"], VOCABULARY)

        assert excinfo.value.scope == "admin"
        assert excinfo.value.status_code == 400
