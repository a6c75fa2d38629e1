"""Typed identifiers for the unknowns of the calibration graph.

Each unknown is addressed by a Symbol (tag character + integer slot):
    - X(i): navigation state of keyframe i
    - C(0): extrinsic rotation R_BtoI, C(1): extrinsic translation p_BinI
    - G(0): gravity vector in the mocap reference frame
    - T(0): IMU-to-mocap time offset
"""

from dataclasses import dataclass


@dataclass(frozen=True, order=True)
class Symbol:
    """Identifier of one unknown.

    Attributes:
        tag: Single character naming the unknown family.
        index: Slot within the family (keyframe index for states).
    """

    tag: str
    index: int

    def __post_init__(self) -> None:
        if not isinstance(self.tag, str) or len(self.tag) != 1:
            raise ValueError(f"Symbol tag must be a single character, got {self.tag!r}")
        if int(self.index) != self.index or self.index < 0:
            raise ValueError(f"Symbol index must be a non-negative integer, got {self.index}")

    def __str__(self) -> str:
        return f"{self.tag}{self.index}"


ROTATION_SLOT = 0
TRANSLATION_SLOT = 1


def X(index: int) -> Symbol:
    """Keyframe navigation state."""
    return Symbol("x", int(index))


def C(index: int) -> Symbol:
    """Calibration slot (0 = rotation, 1 = translation)."""
    if index not in (ROTATION_SLOT, TRANSLATION_SLOT):
        raise ValueError(f"Calibration slot must be 0 or 1, got {index}")
    return Symbol("c", index)


def G(index: int = 0) -> Symbol:
    """Gravity vector."""
    return Symbol("g", int(index))


def T(index: int = 0) -> Symbol:
    """Time offset."""
    return Symbol("t", int(index))


CALIB_ROTATION = C(ROTATION_SLOT)
CALIB_TRANSLATION = C(TRANSLATION_SLOT)
