"""Пересчёт цен: центы USD <-> минимальные единицы USDC (6 знаков) и форматирование для UI."""

USDC_DECIMALS = 6
_UNITS_PER_CENT = 10 ** (USDC_DECIMALS - 2)  # 10_000


def cents_to_usdc_units(cents: int) -> int:
    """50 центов -> 500_000 единиц USDC."""
    return int(cents) * _UNITS_PER_CENT


def usdc_units_to_cents(units: int) -> int:
    """Округляет вниз: дробные центы баланса не считаем доступными для оплаты."""
    return int(units) // _UNITS_PER_CENT


def format_price(cents: int) -> str:
    """Вернуть строку вида «$0.50»."""
    return f"${cents / 100:.2f}"
