# fundledger/core/units.py
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from fundledger.core.errors import InvalidAmount
from fundledger.core.types import ZERO_ADDRESS

WEI_PER_ETHER = 10**18
MINIMUM_DONATION = 10**14  # 0.0001 ETH, keeps dust donations from spamming the histories


def parse_ether(value: Union[str, int, Decimal]) -> int:
    """Convert an ether amount ("1.5", Decimal) to integer wei."""
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmount(f"Not a number: {value!r}") from e
    if not amount.is_finite() or amount < 0:
        raise InvalidAmount(f"Amount must be a non-negative number: {value!r}")
    wei = amount * WEI_PER_ETHER
    if wei != wei.to_integral_value():
        raise InvalidAmount(f"Amount has more than 18 decimals: {value!r}")
    return int(wei)


def format_ether(wei: int) -> str:
    """Render integer wei as an ether string without trailing zeros ("1.0", "0.0001")."""
    if wei < 0:
        raise InvalidAmount(f"Negative amount: {wei}")
    whole, frac = divmod(int(wei), WEI_PER_ETHER)
    frac_str = f"{frac:018d}".rstrip("0") or "0"
    return f"{whole}.{frac_str}"


def normalize_identity(identity: Optional[str]) -> str:
    """Strip whitespace; lower-case hex addresses so checksummed forms compare equal."""
    if identity is None:
        return ""
    ident = str(identity).strip()
    if ident[:2].lower() == "0x":
        ident = ident.lower()
    return ident


def is_null_identity(identity: Optional[str]) -> bool:
    ident = normalize_identity(identity)
    return ident == "" or ident == ZERO_ADDRESS
