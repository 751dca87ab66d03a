"""
Field Encoder — text and salt values → BN254 scalar-field elements.

Both the proving side and any off-circuit equality check MUST use these
functions; a divergent encoding makes proofs unverifiable.

    encode_text("OMEGA-742", 8)
        → (79, 77, 69, 71, 65, 45, 55, 52)     # trailing "2" dropped

    encode_scalar("0x1f")   → 31
    encode_scalar("12345")  → 12345

Truncation policy: bytes beyond ``width`` are silently discarded. Two
answers that differ only after the ``width``-th UTF-8 byte therefore
encode identically and compare equal.
"""

from typing import Sequence, Tuple

# BN254 (alt_bn128) scalar field order
FIELD_MODULUS: int = int(
    "21888242871839275222246405745257275088548364400416034343698204186575808495617"
)

DEFAULT_WIDTH: int = 8

FieldVector = Tuple[int, ...]


def encode_text(value: str, width: int = DEFAULT_WIDTH) -> FieldVector:
    """
    Spread the UTF-8 bytes of ``value`` across ``width`` field slots.

    One byte per slot, zero-padded on the right, truncated beyond ``width``.
    """
    if width < 1:
        raise ValueError(f"width must be positive, got {width}")
    raw = (value or "").encode("utf-8")[:width]
    return tuple(raw) + (0,) * (width - len(raw))


def encode_scalar(value) -> int:
    """
    Map a salt-like value to a single field element.

    Hex-prefixed strings are parsed as unsigned integers and reduced modulo
    the field order. Anything else must be a decimal string already inside
    the field.
    """
    text = value if isinstance(value, str) else str(value)
    text = text.strip()

    if text[:2] in ("0x", "0X"):
        digits = text[2:]
        if not digits:
            return 0
        return int(digits, 16) % FIELD_MODULUS

    if not text.isdigit():
        raise ValueError(f"not a decimal or hex field element: {text[:16]!r}")
    scalar = int(text)
    if scalar >= FIELD_MODULUS:
        raise ValueError("decimal value exceeds the field modulus")
    return scalar


def vectors_equal(a: Sequence[int], b: Sequence[int]) -> bool:
    """Element-wise equality of two encoded vectors."""
    if len(a) != len(b):
        return False
    return all(x == y for x, y in zip(a, b))
