"""
Formatting utilities.
"""


def format_currency(amount: float, currency: str = "USD") -> str:
    """
    Format an amount as currency, rounded to whole units.

    Args:
        amount: The amount in whole units (e.g., dollars, not cents).
        currency: Currency code (default USD).

    Returns:
        Formatted currency string. Negative amounts carry a leading minus.
    """
    symbols = {
        "USD": "$",
        "GBP": "£",
        "EUR": "€",
    }
    symbol = symbols.get(currency, currency + " ")
    rounded = int(round(amount))
    sign = "-" if rounded < 0 else ""
    return f"{sign}{symbol}{abs(rounded):,}"


def format_percent(value: float, decimals: int = 1, signed: bool = False) -> str:
    """
    Format a number as a percentage.

    Args:
        value: The percentage value (15.0 means 15%).
        decimals: Number of decimal places.
        signed: Prefix non-negative values with "+".

    Returns:
        Formatted percentage string.
    """
    sign = "+" if signed and value >= 0 else ""
    return f"{sign}{value:.{decimals}f}%"
