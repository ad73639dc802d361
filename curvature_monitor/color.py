from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

HUE_MAX = 179
CHANNEL_MAX = 255

HSV = Tuple[int, int, int]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def rgb_to_hsv(r: int, g: int, b: int) -> HSV:
    """
    Convert 8-bit RGB to HSV on the OpenCV 8-bit scale (h in [0, 179], s/v in [0, 255]).

    Achromatic input (r == g == b) has no hue sector and maps to h = 0.
    """
    rf, gf, bf = r / 255.0, g / 255.0, b / 255.0
    cmax = max(rf, gf, bf)
    cmin = min(rf, gf, bf)
    diff = cmax - cmin

    h = 0.0
    s = 0.0 if cmax == 0 else diff / cmax
    v = cmax
    if diff != 0:
        if cmax == rf:
            h = ((gf - bf) / diff + (6.0 if gf < bf else 0.0)) / 6.0
        elif cmax == gf:
            h = ((bf - rf) / diff + 2.0) / 6.0
        else:
            h = ((rf - gf) / diff + 4.0) / 6.0
    return _round_half_up(h * HUE_MAX), _round_half_up(s * CHANNEL_MAX), _round_half_up(v * CHANNEL_MAX)


def _check_channel(name: str, value) -> int:
    try:
        ivalue = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer in [0, 255], got {value!r}") from None
    if ivalue != value or not 0 <= ivalue <= CHANNEL_MAX:
        raise ValueError(f"{name} must be an integer in [0, 255], got {value!r}")
    return ivalue


@dataclass(frozen=True)
class ColorSample:
    r: int
    g: int
    b: int
    h: int
    s: int
    v: int

    @classmethod
    def from_rgb(cls, r: int, g: int, b: int) -> "ColorSample":
        r, g, b = (_check_channel(n, c) for n, c in (("r", r), ("g", g), ("b", b)))
        h, s, v = rgb_to_hsv(r, g, b)
        return cls(r=r, g=g, b=b, h=h, s=s, v=v)

    @property
    def rgb(self) -> Tuple[int, int, int]:
        return self.r, self.g, self.b

    @property
    def hsv(self) -> HSV:
        return self.h, self.s, self.v

    def describe(self) -> str:
        return f"RGB({self.r}, {self.g}, {self.b}) HSV({self.h}, {self.s}, {self.v})"


@dataclass(frozen=True)
class ToleranceBand:
    lower: HSV
    upper: HSV

    def contains(self, hsv: HSV) -> bool:
        return all(lo <= c <= hi for lo, c, hi in zip(self.lower, hsv, self.upper))


def tolerance_band(sample: ColorSample, hue_tolerance: int, sv_cap: int = 50) -> ToleranceBand:
    """
    Build the inclusive HSV band around ``sample``.

    Hue is symmetric and clamped to [0, 179]. Saturation and value only extend
    downwards, by at most ``sv_cap`` units, and always reach 255 at the top so
    brighter or more saturated pixels of the same hue still match.
    """
    hue_tolerance = max(0, int(hue_tolerance))
    sat_range = min(sv_cap, sample.s)
    val_range = min(sv_cap, sample.v)
    lower = (
        max(0, sample.h - hue_tolerance),
        max(0, sample.s - sat_range),
        max(0, sample.v - val_range),
    )
    upper = (min(HUE_MAX, sample.h + hue_tolerance), CHANNEL_MAX, CHANNEL_MAX)
    return ToleranceBand(lower=lower, upper=upper)
