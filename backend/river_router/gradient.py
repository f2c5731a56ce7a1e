from __future__ import annotations

from typing import Literal

from .river_network import M_PER_FT, M_PER_MI

GradientClass = Literal["pool", "riffle", "rapid_mild", "rapid_steep"]

SEVERITY: dict[str, int] = {"pool": 0, "riffle": 1, "rapid_mild": 2, "rapid_steep": 3}


def gradient_ft_per_mi(drop_m: float, length_m: float) -> float:
    """Absolute gradient in ft/mi; 0 for zero-length segments."""
    if length_m <= 0:
        return 0.0
    return abs(drop_m / M_PER_FT) / (length_m / M_PER_MI)


def classify_gradient(ft_per_mi: float) -> GradientClass:
    # Rounded so exact 5/15/30 ft/mi boundaries survive unit-conversion noise.
    g = round(abs(ft_per_mi), 6)
    if g < 5:
        return "pool"
    if g < 15:
        return "riffle"
    if g < 30:
        return "rapid_mild"
    return "rapid_steep"
