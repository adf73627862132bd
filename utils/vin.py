import re
from typing import Optional

VIN_LENGTH = 17
# I, O and Q are never used in a VIN
_VIN_PATTERN = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")


def normalize_vin(vin: Optional[str]) -> str:
    return (vin or "").strip().upper()


def vin_error(vin: Optional[str]) -> Optional[str]:
    """Why ``vin`` is not a valid VIN, or None when it is."""
    vin = normalize_vin(vin)
    if not vin:
        return "VIN is required and cannot be empty"
    if len(vin) != VIN_LENGTH:
        return f"VIN must be exactly {VIN_LENGTH} characters (provided: {len(vin)})"
    if not _VIN_PATTERN.match(vin):
        return "VIN must contain only alphanumeric characters (A-Z, 0-9) excluding I, O, and Q"
    return None


def is_valid_vin(vin: Optional[str]) -> bool:
    return vin_error(vin) is None
