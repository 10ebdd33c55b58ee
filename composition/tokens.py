"""
Token resolution for template text.

Any scalar text in a block may contain ``{{ token_name }}`` placeholders.  A
resolver is built once per render pass from the project data and returns a
display string for each token; a missing field at any depth gives "".
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Optional

from enhanced_error_handler import handle_errors
from .models import ProjectData
from .formatting import (
    FALLBACK_CURRENCY,
    currency_symbol,
    format_currency,
    format_date,
    format_percent,
    get_timezone,
    localize,
    parse_date,
    resolve_currency,
    to_decimal,
)
from .registration import (
    format_bank_details,
    format_registration_footer,
    get_registration_labels,
    normalize_country,
)

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r"\{\{\s*([A-Za-z0-9_]+)\s*\}\}")

DEFAULT_VALIDITY_DAYS = 30

TOKEN_NAMES = (
    # business identity
    "company_name", "company_legal_name", "company_address", "company_phone", "company_email",
    "company_website", "company_country", "company_abn", "company_registration_number",
    "company_tax_number", "company_registration_footer", "company_bank_name", "company_bank_details",
    # client
    "client_name", "client_email", "client_phone", "client_address", "client_company",
    # project
    "project_name", "quote_number", "job_number",
    # dates
    "date", "quote_date", "start_date", "due_date", "valid_until", "installation_date",
    # money
    "currency", "currency_symbol", "subtotal", "discount", "tax_amount", "tax_rate", "tax_label",
    "total", "deposit_amount", "balance_due", "payment_status",
    # text
    "terms", "notes",
)


def _text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def join_present(parts, separator: str) -> str:
    return separator.join(p for p in (_text(part) for part in parts) if p)


class TokenResolver:
    """Resolves the token vocabulary against one project snapshot."""

    def __init__(self, project_data, *, now: Optional[datetime] = None,
                 default_currency: str = FALLBACK_CURRENCY, default_timezone: str = "UTC",
                 default_date_format: Optional[str] = None):
        self.data = ProjectData.from_raw(project_data)
        self.project = self.data.resolved_project
        self.client = self.data.resolved_client
        self.business = self.data.resolved_business
        self.now = now
        self.default_currency = default_currency or FALLBACK_CURRENCY
        self.tz = get_timezone(self.business.timezone, default_timezone)
        self.date_format = self.business.date_format or default_date_format

        self._tokens = {
            "company_name": lambda: _text(self.business.company_name),
            "company_legal_name": lambda: _text(self.business.legal_name),
            "company_address": lambda: self._address(self.business),
            "company_phone": lambda: _text(self.business.business_phone),
            "company_email": lambda: _text(self.business.business_email),
            "company_website": lambda: _text(self.business.website),
            "company_country": lambda: _text(self.business.country),
            "company_abn": lambda: _text(self.business.abn),
            "company_registration_number": lambda: _text(self.business.registration_number),
            "company_tax_number": lambda: _text(self.business.tax_number),
            "company_registration_footer": lambda: format_registration_footer(self.business),
            "company_bank_name": lambda: _text(self.business.bank_name),
            "company_bank_details": lambda: format_bank_details(self.business),
            "client_name": lambda: _text(self.client.name),
            "client_email": lambda: _text(self.client.email),
            "client_phone": lambda: _text(self.client.phone),
            "client_address": lambda: self._address(self.client),
            "client_company": lambda: _text(self.client.company_name),
            "project_name": lambda: _text(self.project.name),
            "quote_number": lambda: _text(self.project.quote_number or self.project.job_number),
            "job_number": lambda: _text(self.project.job_number or self.project.quote_number),
            "date": lambda: self._format(self._quote_date()),
            "quote_date": lambda: self._format(self._quote_date()),
            "start_date": lambda: self._format(self.project.start_date),
            "due_date": lambda: self._format(self._first_date(
                self.project.due_date, self.project.completion_date, self.project.installation_date, self.now)),
            "valid_until": lambda: self._format(self._valid_until()),
            "installation_date": lambda: self._format(self._first_date(
                self.project.installation_date, self.project.start_date, self.now)),
            "currency": lambda: self._configured_currency() or "",
            "currency_symbol": lambda: currency_symbol(self._configured_currency())
            if self._configured_currency() else "",
            "subtotal": lambda: self._money(self.data.subtotal),
            "discount": lambda: self._money(self.data.discount),
            "tax_amount": lambda: self._money(self.data.tax_amount),
            "tax_rate": lambda: format_percent(self.tax_rate()),
            "tax_label": self._tax_label,
            "total": lambda: self._money(self.data.total),
            "deposit_amount": lambda: self._money(self.deposit_amount()),
            "balance_due": lambda: self._money(self.balance_due()),
            "payment_status": lambda: _text(self.data.payment.status) if self.data.payment else "",
            "terms": lambda: _text(self.business.default_terms),
            "notes": lambda: _text(self.project.notes),
        }

    # ----------------------- currency -----------------------

    def _configured_currency(self) -> Optional[str]:
        for code in (self.data.currency, self.business.currency):
            if isinstance(code, str) and code.strip():
                return code.strip().upper()
        return None

    @property
    def currency_code(self) -> str:
        """Currency used for formatting amounts; always set."""
        return resolve_currency(self._configured_currency(), default=self.default_currency)

    def _money(self, amount) -> str:
        if amount is None:
            return ""
        return format_currency(amount, self.currency_code)

    def tax_rate(self):
        if self.data.tax_rate is not None:
            return self.data.tax_rate
        return self.business.tax_rate

    def _tax_label(self) -> str:
        if _text(self.business.tax_type):
            return _text(self.business.tax_type)
        if normalize_country(self.business.country):
            return get_registration_labels(self.business.country).tax
        return ""

    def deposit_amount(self):
        payment = self.data.payment
        if payment is None or (payment.type or "").lower() != "deposit":
            return None
        if payment.amount is not None:
            return payment.amount
        if payment.percentage is None or self.data.total is None:
            return None
        share = to_decimal(payment.percentage)
        if abs(share) > 1:
            share = share / 100
        return float(to_decimal(self.data.total) * share)

    def balance_due(self):
        if self.data.total is None:
            return None
        deposit = self.deposit_amount()
        if deposit is None:
            return self.data.total
        return float(to_decimal(self.data.total) - to_decimal(deposit))

    # ----------------------- dates -----------------------

    @staticmethod
    def _first_date(*candidates):
        for value in candidates:
            parsed = parse_date(value)
            if parsed is not None:
                return parsed
        return None

    def _quote_date(self):
        return self._first_date(self.project.quote_date, self.project.created_at,
                                self.project.start_date, self.now)

    def _valid_until(self):
        explicit = parse_date(self.project.valid_until)
        if explicit is not None:
            return explicit
        base = self._quote_date()
        if base is None:
            return None
        days = self.business.quote_validity_days
        if days is None:
            days = DEFAULT_VALIDITY_DAYS
        return localize(base, self.tz) + timedelta(days=int(days))

    def _format(self, value) -> str:
        if value is None:
            return ""
        return format_date(value, self.date_format, self.tz)

    @staticmethod
    def _address(entity) -> str:
        return join_present([getattr(entity, f, None) for f in ("address", "city", "state", "zip_code")], ", ")

    # ----------------------- public -----------------------

    @handle_errors('token_error', fallback_response="")
    def resolve(self, token: str) -> str:
        """Display string for token; unknown tokens resolve to ""."""
        getter = self._tokens.get(_text(token))
        if getter is None:
            return ""
        return getter() or ""

    def substitute(self, text) -> str:
        """Replace every ``{{ token }}`` in text."""
        if not isinstance(text, str):
            return ""
        if "{{" not in text:
            return text
        return TOKEN_PATTERN.sub(lambda m: self.resolve(m.group(1)), text)

    def as_dict(self):
        return {name: self.resolve(name) for name in TOKEN_NAMES}


def resolve_token(token, project_data, **kwargs) -> str:
    return TokenResolver(project_data, **kwargs).resolve(token)


def substitute_tokens(text, project_data, **kwargs) -> str:
    return TokenResolver(project_data, **kwargs).substitute(text)
