"""
Random number generation utilities.

All generation phases draw from the Alea PRNG so a seed fully determines
the produced terrain. Python's random and NumPy's random are not used by
the generators.
"""

from typing import Optional, Union

from ..core.alea_prng import AleaPRNG

# Global PRNG instance
_prng = None


def set_random_seed(seed: Union[str, int]) -> None:
    """
    Set the seed of the shared Alea PRNG.

    Args:
        seed: Seed string or number to use
    """
    global _prng
    _prng = AleaPRNG(seed)


def get_prng() -> AleaPRNG:
    """
    Get the shared Alea PRNG instance, creating a default-seeded one if needed.

    Returns:
        AleaPRNG instance
    """
    global _prng
    if _prng is None:
        _prng = AleaPRNG("default")
    return _prng


def make_prng(seed: Optional[Union[str, int]] = None, salt: str = "") -> AleaPRNG:
    """
    Build an independent PRNG for one phase.

    With a seed the stream is derived from ``seed`` and ``salt`` so phases
    sharing a seed do not share a sequence. Without one the shared PRNG is
    returned.
    """
    if seed is None:
        return get_prng()
    return AleaPRNG(f"{seed}:{salt}" if salt else seed)
