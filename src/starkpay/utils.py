"""
Shared helpers: felt/hex normalization, canonical JSON and logger setup.
"""

import json
import logging
from typing import Any, Dict, Optional, Union

from .engine.exceptions import InvalidArgument

#: Field prime of the Stark curve; every felt must be strictly below it.
FIELD_PRIME: int = 2**251 + 17 * 2**192 + 1

_PACKAGE_LOGGER = "starkpay"
_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def canonical_json(data: Dict[str, Any]) -> str:
    """
    RFC8785-ish: sort_keys + no whitespace
    """
    return json.dumps(data, separators=(",", ":"), sort_keys=True, ensure_ascii=False)


def to_felt(value: Union[int, str]) -> int:
    """
    Parse an int or hex/decimal string into a field element.

    Hex strings must carry the ``0x`` prefix; bare digit strings are read as
    decimal, mirroring how Starknet calldata is written by hand.

    Raises:
        InvalidArgument: If the value is not a number or falls outside the field.
    """
    if isinstance(value, bool):
        raise InvalidArgument(f"Invalid felt: {value!r}")
    if isinstance(value, int):
        felt = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            if text.lower().startswith("0x"):
                felt = int(text, 16)
            else:
                felt = int(text, 10)
        except ValueError as e:
            raise InvalidArgument(f"Invalid felt: {value!r}") from e
    else:
        raise InvalidArgument(f"Invalid felt type: {type(value).__name__}")

    if felt < 0 or felt >= FIELD_PRIME:
        raise InvalidArgument(f"Felt out of range: {value!r}")
    return felt


def to_hex(value: Union[int, str]) -> str:
    """Compact 0x-prefixed hex of a felt (no padding)."""
    return hex(to_felt(value))


def to_padded_hex(value: Union[int, str]) -> str:
    """0x-prefixed, 64-hex-char representation of a felt (addresses, keys)."""
    return "0x" + format(to_felt(value), "064x")


def short_hex(value: Optional[str], keep: int = 10) -> str:
    """Truncate a hex string for log output."""
    if not value:
        return "<none>"
    return value if len(value) <= keep else value[:keep] + "..."


def setup_logger(level: Union[int, str] = logging.INFO) -> logging.Logger:
    """
    Configure the ``starkpay`` package logger once.

    Repeated calls only adjust the level; a handler is attached the first time.
    """
    logger = logging.getLogger(_PACKAGE_LOGGER)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        logger.addHandler(handler)
    return logger
