"""Tests for input validators: relative paths, source refs, categories, digests."""

import pytest

from leyline_sync.validators import (
    format_validation_error,
    is_valid_digest,
    validate_category_name,
    validate_relative_path,
    validate_source_ref,
)


class TestFormatValidationError:
    def test_joins_field_and_reason(self):
        assert format_validation_error("Path", "cannot be empty") == (
            "Path cannot be empty"
        )


class TestValidateRelativePath:
    @pytest.mark.parametrize(
        "path",
        [
            "tenets/simplicity.md",
            "bindings/categories/go/error-wrapping.md",
            "README.md",
        ],
    )
    def test_valid_paths(self, path):
        assert validate_relative_path(path) == (True, "")

    @pytest.mark.parametrize(
        "path, fragment",
        [
            ("", "cannot be empty"),
            ("   ", "cannot be empty"),
            ("/etc/passwd", "must be relative"),
            ("tenets\\simplicity.md", "backslashes"),
            ("../outside.md", "'..' segments"),
            ("tenets/../../x.md", "'..' segments"),
            ("./tenets/a.md", "'..' segments"),
            ("tenets//a.md", "empty path segments"),
            ("tenets/", "empty path segments"),
        ],
    )
    def test_invalid_paths(self, path, fragment):
        ok, reason = validate_relative_path(path)
        assert ok is False
        assert fragment in reason


class TestValidateSourceRef:
    @pytest.mark.parametrize(
        "ref",
        ["master", "v1.2.0", "feature/new-bindings", "a" * 40],
    )
    def test_valid_refs(self, ref):
        assert validate_source_ref(ref) == (True, "")

    @pytest.mark.parametrize(
        "ref, fragment",
        [
            ("", "cannot be empty"),
            ("--upload-pack=evil", "cannot start with '-'"),
            ("my branch", "whitespace"),
            ("main..evil", "'..'"),
        ],
    )
    def test_invalid_refs(self, ref, fragment):
        ok, reason = validate_source_ref(ref)
        assert ok is False
        assert fragment in reason


class TestValidateCategoryName:
    @pytest.mark.parametrize("name", ["go", "typescript", "web-ui", "db_2"])
    def test_valid_names(self, name):
        assert validate_category_name(name) == (True, "")

    @pytest.mark.parametrize("name", ["", "Go", "-go", "go/extra", "c++"])
    def test_invalid_names(self, name):
        ok, reason = validate_category_name(name)
        assert ok is False
        assert reason.startswith("Category")


class TestIsValidDigest:
    def test_sha256_hex(self):
        assert is_valid_digest("0" * 64)
        assert is_valid_digest("ab" * 32)

    def test_rejects_wrong_length_case_and_empty(self):
        assert not is_valid_digest("0" * 63)
        assert not is_valid_digest("AB" * 32)
        assert not is_valid_digest("")
        assert not is_valid_digest(None)
