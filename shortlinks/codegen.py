"""Short code generation.

Codes are drawn from a URL-safe alphabet with the lookalike characters
(``0 O 1 l I``) removed, so they can be read back from print and embedded in a
path segment without escaping. Collisions are detected by the store's unique
index, not here.
"""

from nanoid import generate

__all__ = ["ALPHABET", "DEFAULT_CODE_LENGTH", "generate_short_code"]

ALPHABET = "23456789abcdefghijkmnopqrstuvwxyzABCDEFGHJKLMNPQRSTUVWXYZ"
DEFAULT_CODE_LENGTH = 6


def generate_short_code(length: int = DEFAULT_CODE_LENGTH) -> str:
    if not isinstance(length, int) or length <= 0:
        raise ValueError(f"length must be a positive integer, got {length!r}")
    return generate(ALPHABET, length)
