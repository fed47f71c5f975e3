from decimal import Decimal, InvalidOperation

CENT = Decimal("0.01")


def parse_amount(value: object) -> Decimal:
    """
    Parse user-supplied money input into a Decimal.

    Accepts Decimal, int and float values as well as strings such as "12.50",
    "12,50", "$12.50" or "1.234,56". Floats go through their shortest repr so
    0.1 becomes Decimal("0.1") and not its binary expansion.
    """
    if isinstance(value, bool):
        raise ValueError("Invalid amount")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(repr(value))
    if not isinstance(value, str):
        raise ValueError("Invalid amount")

    clean = value.strip().replace("€", "").replace("$", "").replace(" ", "")
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    if not clean:
        raise ValueError("Amount is required")
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    return amount


def to_cents(amount: Decimal) -> int:
    return int((amount / CENT).to_integral_value())


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) * CENT).quantize(CENT)
