import re
import unicodedata


def normalize_phone(value: str | None) -> str | None:
    """Strip every whitespace character; riders are matched on the result."""
    if value is None:
        return None
    value = re.sub(r"\s+", "", str(value))
    return value or None


def normalize_company_code(value: str | None) -> str:
    if not value:
        return ""

    value = unicodedata.normalize("NFKD", value)
    value = value.encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^A-Za-z0-9-]", "", value)

    return value.upper()
