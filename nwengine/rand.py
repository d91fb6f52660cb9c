"""
rand.py
~~~~~~~

Deterministic 32-bit additive-feedback random number generator.

Each draw is ``x[n] = x[n - 5] + x[n - 17] (mod 2**32)``, kept in a
17-word window walked by two tap indices. The generator is an explicit
object so every caller that needs randomness receives it as a parameter.
"""

from typing import Iterator, List, Sequence, TypeVar

T = TypeVar('T')

MASK32 = 0xFFFFFFFF
INT32_MAX = 0x7FFFFFFF

WINDOW_SIZE = 17
_SEED_MULTIPLIER = 4226497


class Rand32:
    """
    Lagged additive generator producing unsigned 32-bit integers.

    Example:
        >>> rng = Rand32(1234)
        >>> first = [rng.next() for _ in range(3)]
        >>> rng.randomize(1234)
        >>> [rng.next() for _ in range(3)] == first
        True
    """

    def __init__(self, seed: int = 0):
        self._window: List[int] = [0] * WINDOW_SIZE
        self._ix1 = WINDOW_SIZE - 1
        self._ix2 = 4
        self.randomize(seed)

    def randomize(self, seed: int) -> None:
        """
        Reset the sequence from a seed.

        The seed is squared first so that nearby seeds (such as consecutive
        timestamps) produce unrelated sequences.
        """
        seed = (seed * seed) & MASK32

        for ix in range(WINDOW_SIZE):
            self._window[ix] = seed
            seed = (seed * _SEED_MULTIPLIER + 1) & MASK32

        # Break up the alternating even/odd pattern left by the fill.
        for ix in (1, 8, 15):
            self._window[ix] = (self._window[ix] + 1) & MASK32

        self._ix1 = WINDOW_SIZE - 1
        self._ix2 = 4

    def next(self) -> int:
        """Return the next value in [0, 2**32)."""
        result = (self._window[self._ix1] + self._window[self._ix2]) & MASK32
        self._window[self._ix1] = result

        self._ix1 -= 1
        if self._ix1 < 0:
            self._ix1 = WINDOW_SIZE - 1
        self._ix2 -= 1
        if self._ix2 < 0:
            self._ix2 = WINDOW_SIZE - 1

        return result

    __call__ = next

    def __iter__(self) -> Iterator[int]:
        while True:
            yield self.next()

    def weight(self) -> float:
        """Return a connection/bias weight drawn uniformly from about [-1, 1]."""
        return (float(self.next()) - INT32_MAX) / INT32_MAX

    def below(self, n: int) -> int:
        """Return a draw reduced modulo ``n``."""
        if n <= 0:
            raise ValueError(f"n must be positive, got {n}")
        return self.next() % n

    def shuffled(self, items: Sequence[T]) -> List[T]:
        """
        Return the items in a random order.

        Each pick chooses one of the remaining items with ``below``, so the
        permutation depends only on the generator state.
        """
        remaining = list(items)
        order = []
        while remaining:
            order.append(remaining.pop(self.below(len(remaining))))
        return order
