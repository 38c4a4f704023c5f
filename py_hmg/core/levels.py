"""
Level model: discrete height tiers and the height-difference invariant.

Level 0 is ground, negative levels are underwater and levels above the
maximum walkable level are visual-only mountain peaks. Every level sits at
``level_id * max_height_difference`` world units, so two adjacent levels
are exactly one character-scaled step apart.
"""

from dataclasses import dataclass
from typing import Optional

DEFAULT_CHARACTER_HEIGHT = 180.0  # ~1.8m humanoid in world units
HEIGHT_DIFFERENCE_RATIO = 1.5
MAX_HEIGHT_DIFFERENCE = DEFAULT_CHARACTER_HEIGHT * HEIGHT_DIFFERENCE_RATIO  # 270 units
DEFAULT_MAX_WALKABLE_LEVEL = 2


@dataclass(frozen=True)
class LevelConfig:
    """Level-to-height mapping parameters."""

    character_height: float = DEFAULT_CHARACTER_HEIGHT
    max_height_difference: Optional[float] = None  # derived from character height when None
    max_walkable_level: int = DEFAULT_MAX_WALKABLE_LEVEL
    max_variation_ratio: float = 0.1  # plateau detail budget as a fraction of a level step

    def __post_init__(self):
        if self.character_height <= 0:
            raise ValueError(f"character_height must be positive, got {self.character_height}")
        if self.max_height_difference is None:
            object.__setattr__(
                self,
                "max_height_difference",
                self.character_height * HEIGHT_DIFFERENCE_RATIO,
            )
        elif self.max_height_difference <= 0:
            raise ValueError(
                f"max_height_difference must be positive, got {self.max_height_difference}"
            )
        if not 0 <= self.max_variation_ratio < 0.5:
            raise ValueError(
                f"max_variation_ratio must be in [0, 0.5), got {self.max_variation_ratio}"
            )

    @property
    def max_variation(self) -> float:
        """Allowed deviation of a plateau cell from its base height."""
        return self.max_height_difference * self.max_variation_ratio

    def base_height(self, level_id: int) -> float:
        return level_id * self.max_height_difference

    def height_difference_valid(self, level_a: int, level_b: int) -> bool:
        difference = abs(self.base_height(level_b) - self.base_height(level_a))
        return difference <= self.max_height_difference

    def is_visual_only(self, level_id: int) -> bool:
        return level_id > self.max_walkable_level


DEFAULT_LEVEL_CONFIG = LevelConfig()


def base_height(level_id: int, config: LevelConfig = DEFAULT_LEVEL_CONFIG) -> float:
    """
    Base height of a level in world units.

    >>> base_height(1)
    270.0
    >>> base_height(-1)
    -270.0
    """
    return config.base_height(level_id)


def height_difference_valid(
    level_a: int, level_b: int, config: LevelConfig = DEFAULT_LEVEL_CONFIG
) -> bool:
    """
    Whether two levels are close enough to be joined by a ramp.

    This is the hard precondition for every ramp and every level change
    the pathfinder is allowed to make.
    """
    return config.height_difference_valid(level_a, level_b)


def is_underwater_level(level_id: int) -> bool:
    return level_id < 0


def is_mountain_peak_level(
    level_id: int, max_walkable_level: int = DEFAULT_MAX_WALKABLE_LEVEL
) -> bool:
    return level_id > max_walkable_level
