# tile_overlay/domain/encoding.py


def number_to_encoded(number: int, encoding: str) -> str:
    """Positional encoding of a non-negative int, most significant digit first.

    The radix is ``len(encoding)`` and ``0`` maps to ``encoding[0]``.
    """
    if number < 0:
        raise ValueError("number must be non-negative")
    if len(encoding) < 2:
        raise ValueError("encoding alphabet needs at least two characters")

    base = len(encoding)
    if number == 0:
        return encoding[0]

    digits = []
    while number > 0:
        number, rem = divmod(number, base)
        digits.append(encoding[rem])
    return "".join(reversed(digits))
