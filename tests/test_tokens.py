"""
Tests for token resolution.

Every token must resolve to a string for any input, and missing data at
any depth must give an empty string rather than an error.
"""

import sys
import os
from datetime import datetime, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from composition.tokens import TOKEN_NAMES, TokenResolver, resolve_token, substitute_tokens
from composition.formatting import format_currency, format_date, format_percent
from composition.registration import format_bank_details, get_registration_labels
from composition.models import BusinessSettings


def sample_project_data():
    return {
        "project": {
            "name": "Smith Residence",
            "quote_number": "Q-1042",
            "created_at": "2024-03-05T10:00:00Z",
            "installation_date": "2024-04-02",
        },
        "client": {
            "name": "Jane Smith",
            "email": "jane@example.com",
            "address": "12 High St",
            "city": "Leeds",
            "zip_code": "LS1 4AB",
        },
        "businessSettings": {
            "company_name": "Drape & Co",
            "country": "United Kingdom",
            "currency": "GBP",
            "date_format": "dd/MM/yyyy",
            "timezone": "Europe/London",
            "registration_number": "0123456",
            "tax_number": "GB999",
            "bank_name": "Barclays",
            "bank_account_name": "Drape & Co Ltd",
            "bank_sort_code": "20-00-00",
            "bank_account_number": "12345678",
        },
        "subtotal": 1000,
        "taxAmount": 200,
        "taxRate": 0.2,
        "total": 1200,
        "payment": {"type": "deposit", "percentage": 50},
    }


@pytest.mark.parametrize("payload", [None, {}, [], "garbage", {"project": "x", "client": 5, "businessSettings": []}])
def test_every_token_is_empty_for_missing_data(payload):
    resolver = TokenResolver(payload)
    for name in TOKEN_NAMES:
        assert resolver.resolve(name) == "", name


def test_unknown_token_is_empty():
    assert resolve_token("no_such_token", sample_project_data()) == ""


def test_identity_tokens():
    resolver = TokenResolver(sample_project_data())
    assert resolver.resolve("company_name") == "Drape & Co"
    assert resolver.resolve("client_name") == "Jane Smith"
    assert resolver.resolve("client_address") == "12 High St, Leeds, LS1 4AB"
    assert resolver.resolve("quote_number") == "Q-1042"
    assert resolver.resolve("job_number") == "Q-1042"


def test_money_tokens_use_business_currency():
    resolver = TokenResolver(sample_project_data())
    assert resolver.resolve("currency") == "GBP"
    assert resolver.resolve("currency_symbol") == "£"
    assert resolver.resolve("subtotal") == "£1,000.00"
    assert resolver.resolve("tax_amount") == "£200.00"
    assert resolver.resolve("tax_rate") == "20%"
    assert resolver.resolve("tax_label") == "VAT"
    assert resolver.resolve("total") == "£1,200.00"
    assert resolver.resolve("deposit_amount") == "£600.00"
    assert resolver.resolve("balance_due") == "£600.00"


def test_dates_follow_timezone_and_format():
    resolver = TokenResolver(sample_project_data())
    assert resolver.resolve("date") == "05/03/2024"
    assert resolver.resolve("installation_date") == "02/04/2024"
    # 30 days after the quote date
    assert resolver.resolve("valid_until") == "04/04/2024"


def test_quote_date_falls_back_to_now():
    now = datetime(2024, 1, 31, 23, 30, tzinfo=timezone.utc)
    data = {"businessSettings": {"timezone": "Australia/Sydney", "date_format": "yyyy-MM-dd"}}
    resolver = TokenResolver(data, now=now)
    # already the next day in Sydney
    assert resolver.resolve("date") == "2024-02-01"


def test_substitution():
    text = "Quote {{ quote_number }} for {{client_name}}: {{ missing }}{{ total }}"
    assert substitute_tokens(text, sample_project_data()) == "Quote Q-1042 for Jane Smith: £1,200.00"
    assert substitute_tokens("no tokens here", {}) == "no tokens here"
    assert substitute_tokens(None, {}) == ""


def test_bank_and_registration_composites():
    resolver = TokenResolver(sample_project_data())
    assert resolver.resolve("company_bank_details") == (
        "Bank: Barclays | Account Name: Drape & Co Ltd | Sort Code: 20-00-00 | Account: 12345678"
    )
    assert resolver.resolve("company_registration_footer") == "Company Reg: 0123456 | VAT: GB999"


def test_bank_details_fall_back_when_country_unknown():
    settings = BusinessSettings(bank_name="ANZ", bank_bsb="012-003", bank_account_number="999")
    assert format_bank_details(settings) == "Bank: ANZ | BSB: 012-003 | Account: 999"


def test_registration_labels_by_code_or_name():
    assert get_registration_labels("AU").registration == "ACN"
    assert get_registration_labels("australia").tax == "GST"
    assert get_registration_labels("Atlantis").tax == "Tax ID"


def test_currency_formatting():
    assert format_currency(1234.5, "USD") == "$1,234.50"
    assert format_currency(1234.5, "EUR") == "1.234,50 €"
    assert format_currency(-5, "GBP") == "-£5.00"
    assert format_currency(10, "CHF") == "CHF\u00a010.00"
    assert format_currency(None, "USD") == ""
    # unknown codes fall back to the code itself
    assert format_currency(3, "XYZ") == "XYZ\u00a03.00"


def test_percent_and_date_helpers():
    assert format_percent(0.085) == "8.5%"
    assert format_percent(15) == "15%"
    assert format_percent(None) == ""
    assert format_date("2024-12-25", "MMM d, yyyy") == "Dec 25, 2024"
    assert format_date("not a date") == ""


def test_as_dict_covers_vocabulary():
    values = TokenResolver(sample_project_data()).as_dict()
    assert set(values) == set(TOKEN_NAMES)
    assert all(isinstance(v, str) for v in values.values())
