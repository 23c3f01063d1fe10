"""Human-readable formatting helpers used in logs and error messages."""

UNIT = 1024
UNIT_PREFIXES = "KMGTPE"


def format_bytes(size: int) -> str:
    """Format a byte count using binary (1024-based) units.

    Counts below 1KB are printed as whole bytes, everything else with one
    decimal place, e.g. 1536 -> "1.5 KB" and 10485760 -> "10.0 MB".
    """
    if size < 0:
        raise ValueError("Byte count must not be negative")
    if size < UNIT:
        return f"{size} B"

    divisor, exponent = UNIT, 0
    remaining = size // UNIT
    while remaining >= UNIT and exponent < len(UNIT_PREFIXES) - 1:
        divisor *= UNIT
        exponent += 1
        remaining //= UNIT

    return f"{size / divisor:.1f} {UNIT_PREFIXES[exponent]}B"
