"""
Country-aware labels for business registration, tax and bank details.

Countries may be given by name ("United Kingdom") or ISO code ("GB", "UK").
"""

from collections import namedtuple

RegistrationLabels = namedtuple("RegistrationLabels", ["registration", "tax", "bank_scheme"])

# bank_scheme picks which bank fields identify the account
COUNTRY_LABELS = {
    "Australia": RegistrationLabels("ACN", "GST", "bsb"),
    "New Zealand": RegistrationLabels("NZBN", "GST", "account"),
    "United Kingdom": RegistrationLabels("Company Reg", "VAT", "sort_code"),
    "Ireland": RegistrationLabels("CRO", "VAT", "iban"),
    "United States": RegistrationLabels("State Reg", "EIN", "routing"),
    "Canada": RegistrationLabels("BN", "GST/HST", "transit"),
    "Germany": RegistrationLabels("HRB", "USt-ID", "iban"),
    "France": RegistrationLabels("SIRET", "TVA", "iban"),
    "Netherlands": RegistrationLabels("KVK", "BTW", "iban"),
    "Lithuania": RegistrationLabels("Įmonės kodas", "PVM", "iban"),
    "Poland": RegistrationLabels("KRS", "NIP", "iban"),
    "Italy": RegistrationLabels("Codice Fiscale", "P.IVA", "iban"),
    "Spain": RegistrationLabels("CIF", "NIF-IVA", "iban"),
    "South Africa": RegistrationLabels("CIPC Reg", "VAT", "branch"),
    "India": RegistrationLabels("CIN", "GSTIN", "ifsc"),
    "Indonesia": RegistrationLabels("NIB", "NPWP", "account"),
    "Singapore": RegistrationLabels("UEN", "GST", "account"),
    "Hong Kong": RegistrationLabels("CR No.", "BR No.", "account"),
}
DEFAULT_LABELS = RegistrationLabels("Company Reg", "Tax ID", None)

COUNTRY_CODES = {
    "AU": "Australia", "NZ": "New Zealand", "GB": "United Kingdom", "UK": "United Kingdom",
    "IE": "Ireland", "US": "United States", "USA": "United States", "CA": "Canada",
    "DE": "Germany", "FR": "France", "NL": "Netherlands", "LT": "Lithuania", "PL": "Poland",
    "IT": "Italy", "ES": "Spain", "ZA": "South Africa", "IN": "India", "ID": "Indonesia",
    "SG": "Singapore", "HK": "Hong Kong",
}

# (label, BusinessSettings attribute) in display order
BANK_SCHEMES = {
    "bsb": [("BSB", "bank_bsb"), ("Account", "bank_account_number")],
    "sort_code": [("Sort Code", "bank_sort_code"), ("Account", "bank_account_number")],
    "routing": [("Routing", "bank_routing_number"), ("Account", "bank_account_number")],
    "transit": [("Transit", "bank_transit_number"), ("Account", "bank_account_number")],
    "iban": [("IBAN", "bank_iban"), ("BIC/SWIFT", "bank_swift_bic")],
    "ifsc": [("IFSC", "bank_ifsc"), ("Account", "bank_account_number")],
    "branch": [("Branch Code", "bank_branch_code"), ("Account", "bank_account_number")],
    "account": [("Account", "bank_account_number")],
}

# Fallback order when the country is unknown or its scheme fields are empty
_ANY_BANK_FIELDS = [
    ("BSB", "bank_bsb"),
    ("Sort Code", "bank_sort_code"),
    ("Routing", "bank_routing_number"),
    ("Transit", "bank_transit_number"),
    ("IFSC", "bank_ifsc"),
    ("Branch Code", "bank_branch_code"),
    ("IBAN", "bank_iban"),
    ("BIC/SWIFT", "bank_swift_bic"),
    ("Account", "bank_account_number"),
]


def normalize_country(country):
    """Canonical country name, or None when not recognised."""
    if not isinstance(country, str) or not country.strip():
        return None
    text = country.strip()
    if text.upper() in COUNTRY_CODES:
        return COUNTRY_CODES[text.upper()]
    for name in COUNTRY_LABELS:
        if name.lower() == text.lower():
            return name
    return None


def get_registration_labels(country) -> RegistrationLabels:
    return COUNTRY_LABELS.get(normalize_country(country), DEFAULT_LABELS)


def _field(settings, attr):
    value = getattr(settings, attr, None)
    return value.strip() if isinstance(value, str) and value.strip() else None


def format_bank_details(settings) -> str:
    """"Bank: X | Account Name: Y | BSB: .. | Account: .." with only the present parts."""
    if settings is None:
        return ""
    parts = []
    if _field(settings, "bank_name"):
        parts.append(f"Bank: {_field(settings, 'bank_name')}")
    if _field(settings, "bank_account_name"):
        parts.append(f"Account Name: {_field(settings, 'bank_account_name')}")

    scheme = get_registration_labels(getattr(settings, "country", None)).bank_scheme
    fields = BANK_SCHEMES.get(scheme, [])
    identifying = [(label, _field(settings, attr)) for label, attr in fields if _field(settings, attr)]
    if not identifying:
        identifying = [(label, _field(settings, attr)) for label, attr in _ANY_BANK_FIELDS if _field(settings, attr)]
    parts.extend(f"{label}: {value}" for label, value in identifying)
    return " | ".join(parts)


def format_registration_footer(settings) -> str:
    if settings is None:
        return ""
    labels = get_registration_labels(getattr(settings, "country", None))
    parts = []
    if _field(settings, "abn"):
        parts.append(f"ABN: {_field(settings, 'abn')}")
    if _field(settings, "registration_number"):
        parts.append(f"{labels.registration}: {_field(settings, 'registration_number')}")
    if _field(settings, "tax_number"):
        parts.append(f"{labels.tax}: {_field(settings, 'tax_number')}")
    return " | ".join(parts)
