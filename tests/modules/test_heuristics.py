"""Tests for deterministic potential-module suggestions."""

from __future__ import annotations

from cascadedocs.modules.heuristics import (
    common_words,
    suggest_module_name,
    suggest_potential_modules,
)


def test_groups_files_sharing_a_directory() -> None:
    suggestions = suggest_potential_modules(
        [
            "app/Billing/InvoiceA.php",
            "app/Billing/InvoiceB.php",
            "app/Billing/Refund.php",
            "app/Helpers/Format.php",
        ]
    )

    assert len(suggestions) == 1
    assert suggestions[0]["suggested_name"] == "billing"
    assert suggestions[0]["file_count"] == 3
    assert suggestions[0]["confidence"] == 0.6
    assert suggestions[0]["reason"] == "Files located in same directory: app/Billing"


def test_groups_files_sharing_a_concept() -> None:
    suggestions = suggest_potential_modules(
        ["app/A/PaymentX.php", "app/B/payment_y.php", "app/C/StripeClient.php"]
    )

    assert [item["suggested_name"] for item in suggestions] == ["billing"]
    assert suggestions[0]["reason"] == "Files share common concept: billing"
    assert suggestions[0]["confidence"] == 0.3


def test_small_groups_are_not_suggested() -> None:
    assert suggest_potential_modules(["app/Billing/Invoice.php", "app/Billing/Refund.php"]) == []


def test_module_name_falls_back_to_common_words() -> None:
    files = ["app/UserService.php", "app/UserRepository.php"]

    assert common_words(files) == ["user", "repository", "service"]
    assert suggest_module_name("app", files) == "user-repository"
