import re

# Mainland mobile numbers, 11 digits.
PHONE_PATTERN = re.compile(r"(13[0-9]|14[57]|15[0-35-9]|18[07-9])[0-9]{8}")


def validate_phone(phone: str) -> bool:
    return PHONE_PATTERN.fullmatch(phone) is not None
