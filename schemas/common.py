from pydantic import BaseModel
import phonenumbers
from core.config import settings


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


def paginate(page: int, limit: int, total: int) -> Pagination:
    pages = (total + limit - 1) // limit if limit else 0
    return Pagination(page=page, limit=limit, total=total, pages=pages)


def normalize_phone(value: str) -> str:
    """
    Validates a phone number with Google's phonenumbers library and returns it in
    E.164. Numbers without a country code are read in the configured default region.
    """
    try:
        parsed = phonenumbers.parse(value, settings.PHONE_DEFAULT_REGION)
        if not phonenumbers.is_valid_number(parsed):
            raise ValueError('Invalid phone number')

        return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)

    except phonenumbers.NumberParseException:
        raise ValueError('Invalid phone number (e.g.: +9779841234567 or 9841234567)')
