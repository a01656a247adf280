"""
Block Ingestion - Type Normalizer.

============================================================
RESPONSIBILITY
============================================================
Converts decoded, loosely-typed ledger values into canonical
domain values.

Rules, in precedence order:
1. Numeric-looking value        -> int / Decimal
2. {geohash, digest}            -> community identifier (CID)
3. {bits}                       -> fixed-point balance (Decimal)
4. Other mapping / sequence     -> normalized member-wise
5. Anything else                -> unchanged

============================================================
DESIGN PRINCIPLES
============================================================
- Pure and total: the same input always gives the same output
- Decoded values are trees (dict / list / scalar), never cyclic
- The CID alias table is policy data, injected at construction

============================================================
"""

import binascii
import re
from decimal import Decimal, InvalidOperation, localcontext
from typing import Any, Dict, Mapping, Optional

import base58

from core.config import DEFAULT_CID_ALIASES
from core.exceptions import DecodingError


# I64F64 fixed point: 64 fractional bits
FIXED_POINT_SCALE = 2 ** 64
FIXED_POINT_PRECISION = 60

CID_KEYS = frozenset({"geohash", "digest"})
BALANCE_KEY = "bits"

_INTEGER_RE = re.compile(r"^[+-]?(\d+|\d{1,3}(,\d{3})+)$")
_DECIMAL_RE = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+(\.\d*)?[eE][+-]?\d+)$")


# ============================================================
# SCALAR HELPERS
# ============================================================

def parse_numeric(value: Any) -> Optional[Any]:
    """
    Return value as a native number if it looks numeric, else None.

    Integers (optionally thousands-separated) become int,
    decimal and exponent notation becomes Decimal. Booleans are
    not numbers here.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return value
    if not isinstance(value, str):
        return None

    text = value.strip()
    if _INTEGER_RE.match(text):
        return int(text.replace(",", ""))
    if _DECIMAL_RE.match(text):
        try:
            return Decimal(text)
        except InvalidOperation:
            return None
    return None


def _decode_text(text: str, field_name: str) -> bytes:
    """Hex-prefixed text is hex-decoded, anything else is taken as UTF-8."""
    if text.startswith("0x"):
        try:
            return binascii.unhexlify(text[2:])
        except (binascii.Error, ValueError) as e:
            raise DecodingError(
                f"Malformed hex in CID {field_name}", value=text, cause=e
            ) from e
    return text.encode("utf-8")


def bits_to_balance(bits: Any) -> Decimal:
    """Convert fixed-point bits (int or comma-grouped text) to a decimal amount."""
    if isinstance(bits, bool):
        raise DecodingError("Balance bits must be an integer", value=bits)
    if isinstance(bits, str):
        try:
            bits = int(bits.replace(",", "").strip())
        except ValueError as e:
            raise DecodingError("Malformed balance bits", value=bits, cause=e) from e
    if not isinstance(bits, int):
        raise DecodingError("Balance bits must be an integer", value=bits)

    with localcontext() as ctx:
        ctx.prec = FIXED_POINT_PRECISION
        return Decimal(bits) / Decimal(FIXED_POINT_SCALE)


# ============================================================
# TYPE NORMALIZER
# ============================================================

class TypeNormalizer:
    """
    Recursive normalizer for decoded ledger values.

    Args:
        cid_aliases: Legacy CID -> canonical CID table
    """

    def __init__(self, cid_aliases: Optional[Mapping[str, str]] = None) -> None:
        self._cid_aliases: Dict[str, str] = dict(
            DEFAULT_CID_ALIASES if cid_aliases is None else cid_aliases
        )

    @property
    def cid_aliases(self) -> Mapping[str, str]:
        return dict(self._cid_aliases)

    def community_identifier(self, geohash: str, digest: str) -> str:
        """Build the canonical CID string from a geohash and a digest."""
        if not isinstance(geohash, str) or not isinstance(digest, str):
            raise DecodingError(
                "CID geohash and digest must be text",
                value={"geohash": geohash, "digest": digest},
            )

        if geohash.startswith("0x"):
            try:
                geohash = _decode_text(geohash, "geohash").decode("ascii")
            except UnicodeDecodeError as e:
                raise DecodingError("CID geohash is not ASCII", value=geohash, cause=e) from e

        encoded = base58.b58encode(_decode_text(digest, "digest")).decode("ascii")
        cid = geohash + encoded
        return self._cid_aliases.get(cid, cid)

    def normalize(self, value: Any) -> Any:
        """Normalize a decoded value tree."""
        number = parse_numeric(value)
        if number is not None:
            return number

        if isinstance(value, Mapping):
            keys = set(value.keys())
            if keys == CID_KEYS:
                return self.community_identifier(value["geohash"], value["digest"])
            if keys == {BALANCE_KEY}:
                return bits_to_balance(value[BALANCE_KEY])
            return {key: self.normalize(member) for key, member in value.items()}

        if isinstance(value, (list, tuple)):
            return [self.normalize(member) for member in value]

        return value


_default_normalizer = TypeNormalizer()


def normalize(value: Any) -> Any:
    """Normalize with the built-in CID alias table."""
    return _default_normalizer.normalize(value)
