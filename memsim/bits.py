"""Bit-manipulation helpers working on 64-bit unsigned quantities."""

MASK64 = (1 << 64) - 1


def lg2(n: int) -> int:
    """Return floor(log2(n)), with 0 for any n below 2."""
    return n.bit_length() - 1 if n >= 2 else 0


def bitmask(begin: int, end: int = 0) -> int:
    """Return a mask with bits [end, begin) set.

    A width of 64 or more, or an end past the beginning, yields all 64 bits set.
    """
    width = begin - end
    if width < 0 or width >= 64:
        return MASK64
    return ((1 << width) - 1) << end


def splice_bits(upper: int, lower: int, bits: int) -> int:
    """Take the low ``bits`` bits from ``lower`` and the rest from ``upper``."""
    mask = bitmask(bits)
    return ((upper & (MASK64 ^ mask)) | (lower & mask)) & MASK64