"""Tests for module metadata records and content files."""

from __future__ import annotations

import json

import pytest

from cascadedocs.errors import MalformedState, NotFound
from cascadedocs.models import ModuleRecord
from cascadedocs.stores.modules import is_valid_slug, slugify


def test_create_module_writes_record_and_placeholder(workspace) -> None:
    record = workspace.metadata.create_module(
        "billing", "Billing", description="Invoices.", files=["a.php", "b.php", "a.php"]
    )

    assert record.undocumented_files == ["a.php", "b.php"]
    assert record.files == []
    payload = json.loads(workspace.metadata.metadata_path("billing").read_text(encoding="utf-8"))
    assert payload["module_slug"] == "billing"
    assert payload["statistics"] == {"total_files": 2, "documented_files": 0, "undocumented_files": 2}
    assert workspace.metadata.read_content("billing").startswith("# Billing Module\n\n## Overview\n\nInvoices.")
    with pytest.raises(FileExistsError):
        workspace.metadata.create_module("billing", "Billing")


def test_create_module_rejects_invalid_slug(workspace) -> None:
    with pytest.raises(ValueError):
        workspace.metadata.create_module("Not A Slug", "Nope")


def test_documented_lifecycle(workspace) -> None:
    workspace.metadata.create_module("billing", "Billing", files=["a.php"])
    workspace.metadata.add_files("billing", ["b.php", "a.php"])

    record = workspace.metadata.mark_files_documented(
        "billing", ["a.php", "b.php"], tiers={"a.php": "expansive"}, sha="abc"
    )
    assert record.undocumented_files == []
    assert [(entry.path, entry.documentation_tier) for entry in record.files] == [
        ("a.php", "expansive"),
        ("b.php", None),
    ]
    assert record.last_synced == "abc"

    record = workspace.metadata.move_file_to_undocumented("billing", "a.php")
    assert [entry.path for entry in record.files] == ["b.php"]
    assert record.undocumented_files == ["a.php"]

    record = workspace.metadata.remove_files("billing", ["a.php", "b.php"])
    assert record.member_paths() == []


def test_mutating_unknown_module_raises(workspace) -> None:
    with pytest.raises(NotFound):
        workspace.metadata.update_summary("missing", "text")


def test_malformed_records_are_ignored(workspace) -> None:
    workspace.add_module("billing")
    workspace.metadata.metadata_dir.joinpath("broken.json").write_text("{not json", encoding="utf-8")
    workspace.metadata.metadata_dir.joinpath("nameless.json").write_text('{"module_slug": "x"}', encoding="utf-8")

    assert workspace.metadata.list_all() == ["billing"]
    assert workspace.metadata.load("broken") is None


def test_record_from_dict_validates_shape() -> None:
    with pytest.raises(MalformedState):
        ModuleRecord.from_dict({"module_slug": "x", "module_name": "X", "files": "nope"})

    record = ModuleRecord.from_dict(
        {"module_slug": "x", "module_name": "X", "files": ["a.php", {"path": "b.php", "documented": True}]}
    )
    assert [entry.path for entry in record.files] == ["a.php", "b.php"]


def test_ensure_content_keeps_existing_text(workspace) -> None:
    record = workspace.add_module("billing", "Billing", summary="Money.")
    assert workspace.metadata.ensure_content(record).startswith("# Billing Module\n\n## Overview\n\nMoney.")

    workspace.metadata.write_content("billing", "Custom.\n")
    assert workspace.metadata.ensure_content(record) == "Custom.\n"


def test_slug_helpers() -> None:
    assert slugify("User Authentication") == "user-authentication"
    assert slugify("TwoFactorAuth") == "two-factor-auth"
    assert slugify("  Orders & Checkout!! ") == "orders-checkout"
    assert is_valid_slug("billing-2")
    assert not is_valid_slug("Billing")
    assert not is_valid_slug("-billing")


@pytest.mark.parametrize(
    "field, value",
    [("files", {}), ("files", ""), ("undocumented_files", {}), ("undocumented_files", 0)],
)
def test_record_rejects_wrongly_typed_empty_lists(field, value) -> None:
    with pytest.raises(MalformedState):
        ModuleRecord.from_dict({"module_slug": "x", "module_name": "X", field: value})
