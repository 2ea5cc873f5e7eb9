"""
Value formatters for AAMVA fields.

Every formatter is tolerant: input it does not recognise comes back unchanged.
"""
import re

GENDER_CODES = {
    '1': 'Male',
    'M': 'Male',
    '2': 'Female',
    'F': 'Female',
    '0': 'Not Specified',
    '9': 'Not Specified',
}

_NON_DIGITS = re.compile(r'\D')


def _valid_date_parts(year: str, month: str, day: str) -> bool:
    return int(year) > 1900 and 1 <= int(month) <= 12 and 1 <= int(day) <= 31


def format_date(value: str) -> str:
    """
    Renders an 8-digit AAMVA date as MM/DD/YYYY.
    CCYYMMDD is tried first, then MMDDCCYY.
    """
    if not value:
        return value

    digits = _NON_DIGITS.sub('', value)
    if len(digits) != 8:
        return value

    # CCYYMMDD
    year, month, day = digits[0:4], digits[4:6], digits[6:8]
    if _valid_date_parts(year, month, day):
        return f"{month}/{day}/{year}"

    # MMDDCCYY
    month, day, year = digits[0:2], digits[2:4], digits[4:8]
    if _valid_date_parts(year, month, day):
        return f"{month}/{day}/{year}"

    return value


def format_gender(value: str) -> str:
    return GENDER_CODES.get(value, value)


def format_height(value: str) -> str:
    """
    AAMVA heights are usually total inches ("069" -> 5'9").
    Longer digit strings are read as one feet digit followed by inches ("6011" -> 6'11").
    """
    if not value:
        return value

    if value.lower().endswith('cm'):
        return value

    if not value.isdigit():
        return value

    if len(value) <= 3:
        total = int(value)
        return f"{total // 12}'{total % 12}\""

    feet, inches = int(value[0]), int(value[1:])
    if inches < 12:
        return f"{feet}'{inches}\""

    return value


def format_zip(value: str) -> str:
    """ZIP+4 gets its dash; anything that isn't a 5 or 9 digit US ZIP is kept as-is."""
    if not value:
        return value

    digits = _NON_DIGITS.sub('', value)
    if len(digits) == 9:
        return f"{digits[:5]}-{digits[5:]}"
    if len(digits) == 5:
        return digits
    return value
