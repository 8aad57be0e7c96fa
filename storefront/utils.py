from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
import bleach


def sanitize_text(value: Optional[str]) -> Optional[str]:
    """Clean user-supplied catalog text before it is stored and served back.

    - Removes NULL bytes
    - Strips HTML tags using bleach.clean(..., strip=True)
    - Trims whitespace

    ``None`` passes through so optional fields stay unset.
    """
    if value is None:
        return None
    val = value.replace("\x00", "")
    val = bleach.clean(val, tags=[], strip=True)
    return val.strip()


# Business rule: money stored rounded to 2 decimals, half up
def round_amount(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
