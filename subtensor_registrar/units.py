"""
TAO / rao conversion.
"""

from decimal import Decimal
from typing import Union

RAO_PER_TAO = Decimal("1000000000")


def tao_to_rao(value: Union[int, float, str, Decimal]) -> int:
    """
    Convert a TAO amount to rao with exact precision.

    Floats go through str() first: float(0.1) * 1e9 is not exactly 1e8.

    Examples:
        >>> tao_to_rao(0.1)
        100000000
        >>> tao_to_rao("0.000000001")
        1
    """
    if isinstance(value, Decimal):
        dec_value = value
    elif isinstance(value, str):
        dec_value = Decimal(value.strip())
    else:
        dec_value = Decimal(str(value))

    if dec_value < 0:
        raise ValueError(f"TAO value {value} is negative")

    rao = dec_value * RAO_PER_TAO
    if rao != rao.to_integral_value():
        raise ValueError(f"TAO value {value} results in fractional rao: {rao}")

    return int(rao)


def format_tao(rao: int) -> str:
    """Render a rao amount as a TAO string, e.g. 1500000000 -> '1.5 TAO'."""
    tao = (Decimal(rao) / RAO_PER_TAO).normalize()
    # normalize() turns 100 into 1E+2
    return f"{tao:f} TAO"
