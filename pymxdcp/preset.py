from dataclasses import dataclass
from typing import Optional

# MX-DCP mixers store presets in slots 1-50
MAX_PRESET_NUMBER = 50


@dataclass(frozen=True)
class Preset:
    """A named preset stored in one of the mixer's slots.

    Attributes:
        number: Slot number (1 to MAX_PRESET_NUMBER).
        name: Display name, stripped of surrounding whitespace.
        locked: True/False when the query reported lock status, None when unknown.
            The current-preset query never reports it, so presets returned by
            that path always carry None.
    """
    number: int
    name: str
    locked: Optional[bool] = None

    def __post_init__(self):
        if not (1 <= self.number <= MAX_PRESET_NUMBER):
            raise ValueError(
                f"Preset number must be between 1 and {MAX_PRESET_NUMBER}, got {self.number}"
            )
        if self.name is None or not self.name.strip():
            raise ValueError("Preset name cannot be empty")
        object.__setattr__(self, "name", self.name.strip())

    @property
    def lock_known(self) -> bool:
        """Whether lock status was reported for this preset."""
        return self.locked is not None
