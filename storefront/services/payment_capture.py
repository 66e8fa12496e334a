# storefront/services/payment_capture.py
import re
from typing import List
from storefront.models.checkout import CardSubmission, PaymentDescriptor
from storefront.services.errors import ValidationError

MIN_CARD_DIGITS = 16

_NON_DIGITS = re.compile(r"\D", re.ASCII)
_MONTH = re.compile(r"(0[1-9]|1[0-2])")
_YEAR = re.compile(r"\d{2}", re.ASCII)
_CVV = re.compile(r"\d{3,4}", re.ASCII)


def card_digits(card_number: str) -> str:
    return _NON_DIGITS.sub("", card_number or "")


def detect_card_brand(card_number: str) -> str:
    digits = card_digits(card_number)
    if digits.startswith("4"):
        return "Visa"
    if re.match(r"5[1-5]", digits):
        return "Mastercard"
    if re.match(r"3[47]", digits):
        return "American Express"
    if re.match(r"6(?:011|5)", digits):
        return "Discover"
    return "Card"


def format_card_number(card_number: str) -> str:
    digits = card_digits(card_number)
    return " ".join(digits[i:i + 4] for i in range(0, len(digits), 4))


def mask_card_number(card_number: str) -> str:
    return f"**** **** **** {card_digits(card_number)[-4:]}"


def validate_card(card: CardSubmission) -> List[str]:
    """Return the names of the fields that fail validation."""
    errors = []
    if len(card.cardholder_name.strip()) < 3:
        errors.append("cardholder_name")
    if len(card_digits(card.card_number)) < MIN_CARD_DIGITS:
        errors.append("card_number")
    if not _MONTH.fullmatch(card.expiry_month.strip()):
        errors.append("expiry_month")
    if not _YEAR.fullmatch(card.expiry_year.strip()):
        errors.append("expiry_year")
    if not _CVV.fullmatch(card.cvv.strip()):
        errors.append("cvv")
    return errors


def capture(card: CardSubmission) -> PaymentDescriptor:
    """Normalize a submitted card into an immutable descriptor.

    The brand is advisory and derived from the digits as submitted. The CVV
    is checked for shape and then dropped.
    """
    errors = validate_card(card)
    if errors:
        if "card_number" in errors:
            message = f"Card number must have at least {MIN_CARD_DIGITS} digits"
        else:
            message = f"Invalid payment details: {', '.join(errors)}"
        raise ValidationError(message, fields=errors)

    digits = card_digits(card.card_number)
    return PaymentDescriptor(
        holder_name=card.cardholder_name.strip().upper(),
        masked_number=mask_card_number(digits),
        brand=detect_card_brand(digits),
        expiry_month=card.expiry_month.strip(),
        expiry_year=card.expiry_year.strip(),
        last_four=digits[-4:],
    )
