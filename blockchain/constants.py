"""Constants for the chainsync engine."""

# Addresses
NULL_ADDRESS = "0x0000000000000000000000000000000000000000"  # Native asset pseudo-token
NAT_KEY = "NaT"  # Singleton document listing non-token addresses

# Unit conversion
ETHER_DECIMALS = 18  # wei per ether: 10 ** 18

# Document keys
BALANCE_SUFFIX = "balance"

# Empty bytecode answers from getCode
EMPTY_CODE = ("", "0x", "0x0", b"", None)


def balance_key(address: str, token: str = NULL_ADDRESS) -> str:
    """Natural key of a balance record: ``<address>.<token>.balance``."""
    return f"{address}.{token}.{BALANCE_SUFFIX}".lower()
