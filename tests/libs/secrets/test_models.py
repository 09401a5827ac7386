"""Tests for the secrets file data model (libs/secrets/models.py)."""

import base64

import pydantic
import pytest

from libs.secrets.models import Key, Value, filter_by_key_manager, sort_by_region
from tests.conftest import alias_arn


def _value(key_id: str, key_manager: str = "kms") -> Value:
    return Value(
        key_id=key_id,
        key_manager=key_manager,
        algorithm="chacha20poly1305",
        key_ciphertext=base64.b64encode(b"wrapped").decode(),
        ciphertext=base64.b64encode(b"ct").decode(),
    )


class TestValue:
    @pytest.mark.unit()
    def test_region_from_arn(self) -> None:
        assert _value(alias_arn("us-west-2")).region == "us-west-2"
        assert _value("alias/strongbox-default").region is None
        assert _value("").region is None

    @pytest.mark.unit()
    def test_rejects_invalid_base64(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            Value(algorithm="none", ciphertext="not base64!!")

    @pytest.mark.unit()
    def test_rejects_unknown_fields(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            Value(algorithm="none", ciphertext="", extra="x")

    @pytest.mark.unit()
    def test_to_document_omits_empty_fields(self) -> None:
        value = Value(algorithm="none", ciphertext=base64.b64encode(b"x").decode())

        assert value.to_document() == {"algorithm": "none", "ciphertext": "eA=="}

    @pytest.mark.unit()
    def test_bytes_accessors(self) -> None:
        value = _value(alias_arn("us-east-1"))

        assert value.ciphertext_bytes() == b"ct"
        assert value.key_ciphertext_bytes() == b"wrapped"

    @pytest.mark.unit()
    def test_from_key_builds_template_entry(self) -> None:
        key = Key(key_manager="kms", key_id=alias_arn("us-east-1"), algorithm="aesgcm256")

        value = Value.from_key(key)

        assert value.key == key
        assert value.ciphertext == ""
        assert value.key_ciphertext == ""


class TestKey:
    @pytest.mark.unit()
    def test_template_key_ignores_algorithm(self) -> None:
        first = Key(key_manager="kms", key_id="k1", algorithm="aesgcm256")
        second = Key(key_manager="kms", key_id="k1", algorithm="chacha20poly1305")

        assert first.template_key == second.template_key == "kmsk1"

    @pytest.mark.unit()
    def test_keys_are_hashable(self) -> None:
        key = Key(key_manager="kms", key_id="k1", algorithm="none")

        assert len({key, Key(key_manager="kms", key_id="k1", algorithm="none")}) == 1


class TestSortByRegion:
    """Test suite for sort_by_region."""

    @pytest.mark.unit()
    def test_priorities_first_then_original_order(self) -> None:
        values = [
            _value(alias_arn("us-east-1")),
            _value(alias_arn("us-west-1")),
            _value(alias_arn("us-west-2")),
        ]

        ordered = sort_by_region(values, ["us-west-2"])

        assert [value.region for value in ordered] == ["us-west-2", "us-east-1", "us-west-1"]

    @pytest.mark.unit()
    def test_unknown_regions_sort_last(self) -> None:
        values = [_value("bare-key-id"), _value(alias_arn("us-west-1"))]

        ordered = sort_by_region(values, ["us-east-1", "us-west-1"])

        assert [value.key_id for value in ordered] == [alias_arn("us-west-1"), "bare-key-id"]

    @pytest.mark.unit()
    def test_duplicate_priorities_use_first_position(self) -> None:
        values = [_value(alias_arn("us-east-1")), _value(alias_arn("us-west-2"))]

        ordered = sort_by_region(values, ["us-west-2", "us-east-1", "us-west-2"])

        assert [value.region for value in ordered] == ["us-west-2", "us-east-1"]

    @pytest.mark.unit()
    def test_no_priorities_keeps_order(self) -> None:
        values = [_value(alias_arn("us-west-2")), _value(alias_arn("us-east-1"))]

        assert sort_by_region(values, []) == values


@pytest.mark.unit()
def test_filter_by_key_manager() -> None:
    values = [_value("a", "kms"), _value("b", "none"), _value("c", "kms")]

    assert [value.key_id for value in filter_by_key_manager(values, "kms")] == ["a", "c"]
