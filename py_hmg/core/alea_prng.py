"""
Seeded Alea PRNG used by every randomized phase of terrain generation.

Based on Johannes Baagøe's Alea algorithm. The same seed always yields the
same sequence, which keeps level distribution, POI placement and the road
network reproducible across runs and platforms.
"""

from typing import Dict, List, Sequence, TypeVar

T = TypeVar("T")


def _uint32(n):
    """Convert to unsigned 32-bit integer."""
    return int(n) & 0xFFFFFFFF


class AleaPRNG:
    """
    Alea PRNG with convenience helpers for integer ranges and weighted picks.
    """

    def __init__(self, seed):
        """Initialize with seed string or number."""
        self.call_count = 0
        self.seed = seed

        if hasattr(seed, "__iter__") and not isinstance(seed, str):
            args = list(seed)
        else:
            args = [seed]

        mash_n = 0xEFC8249D

        def mash(data):
            nonlocal mash_n
            data = str(data)
            for char in data:
                mash_n = mash_n + ord(char)
                h = 0.02519603282416938 * mash_n
                mash_n = _uint32(h)
                h -= mash_n
                h *= mash_n
                mash_n = _uint32(h)
                h -= mash_n
                mash_n += h * 0x100000000  # 2^32
            return _uint32(mash_n) * 2.3283064365386963e-10  # 2^-32

        self.s0 = mash(" ")
        self.s1 = mash(" ")
        self.s2 = mash(" ")
        self.c = 1

        for arg in args:
            self.s0 -= mash(arg)
            if self.s0 < 0:
                self.s0 += 1
            self.s1 -= mash(arg)
            if self.s1 < 0:
                self.s1 += 1
            self.s2 -= mash(arg)
            if self.s2 < 0:
                self.s2 += 1

    def random(self) -> float:
        """Generate next random number in [0, 1)."""
        self.call_count += 1
        t = 2091639 * self.s0 + self.c * 2.3283064365386963e-10  # 2^-32
        self.s0 = self.s1
        self.s1 = self.s2
        self.c = int(t)
        self.s2 = t - self.c
        return self.s2

    def uniform(self, low: float, high: float) -> float:
        """Random float in [low, high)."""
        return low + (high - low) * self.random()

    def randint(self, low: int, high: int) -> int:
        """Random integer in the inclusive range [low, high]."""
        if high < low:
            raise ValueError(f"Empty range [{low}, {high}]")
        return low + int(self.random() * (high - low + 1))

    def choice(self, seq: Sequence[T]) -> T:
        """Choose a random element from a non-empty sequence."""
        if not seq:
            raise IndexError("Cannot choose from an empty sequence")
        return seq[int(self.random() * len(seq))]

    def weighted_choice(self, weights: Dict[T, float]) -> T:
        """
        Pick a key with probability proportional to its weight.

        Keys are visited in sorted order so the result only depends on the
        seed, not on dict insertion order.
        """
        items = [(key, weight) for key, weight in sorted(weights.items()) if weight > 0]
        if not items:
            raise ValueError("weighted_choice needs at least one positive weight")

        total = sum(weight for _, weight in items)
        roll = self.random() * total
        for key, weight in items:
            roll -= weight
            if roll < 0:
                return key
        return items[-1][0]

    def shuffle(self, items: List[T]) -> List[T]:
        """Fisher-Yates shuffle in place; returns the list for chaining."""
        for i in range(len(items) - 1, 0, -1):
            j = int(self.random() * (i + 1))
            items[i], items[j] = items[j], items[i]
        return items
