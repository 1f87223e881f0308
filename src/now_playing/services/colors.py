"""Presentation colors derived from album artwork.

Everything here is a pure function of the image: the same image and the same
sampling parameters always produce the same colors.
"""

import colorsys
from dataclasses import dataclass

from PIL import Image, ImageStat

SATURATION_BOOST = 1.4
BRIGHTNESS_BOOST = 1.2

# Near-black and near-white make poor gradient anchors
MIN_BRIGHTNESS = 20
MAX_BRIGHTNESS = 235

PAD_DARKEN_FACTOR = 0.8


@dataclass(frozen=True)
class Color:
    """An sRGB color with 0-255 channels."""

    r: int
    g: int
    b: int

    @property
    def brightness(self) -> float:
        """Perceived brightness (ITU-R 601 luma), 0-255."""
        return (self.r * 299 + self.g * 587 + self.b * 114) / 1000

    def to_hex(self) -> str:
        return f"#{self.r:02x}{self.g:02x}{self.b:02x}"

    def darkened(self, factor: float = PAD_DARKEN_FACTOR) -> "Color":
        return Color(*(_clamp_channel(c * factor) for c in (self.r, self.g, self.b)))

    def boosted(
        self, saturation: float = SATURATION_BOOST, brightness: float = BRIGHTNESS_BOOST
    ) -> "Color":
        """Return a more vibrant version, clamped to the valid range."""
        h, s, v = colorsys.rgb_to_hsv(self.r / 255, self.g / 255, self.b / 255)
        s = min(s * saturation, 1.0)
        v = min(v * brightness, 1.0)
        r, g, b = colorsys.hsv_to_rgb(h, s, v)
        return Color(_clamp_channel(r * 255), _clamp_channel(g * 255), _clamp_channel(b * 255))


def _clamp_channel(value: float) -> int:
    return max(0, min(255, round(value)))


def average_color(image: Image.Image) -> Color:
    """Arithmetic mean of every pixel, boosted for vibrancy."""
    mean = ImageStat.Stat(image.convert("RGB")).mean
    return Color(*(_clamp_channel(c) for c in mean[:3])).boosted()


def extract_palette(
    image: Image.Image,
    count: int = 4,
    grid: int = 50,
    stride: int = 5,
    levels: int = 8,
) -> tuple[Color, ...]:
    """Pick up to ``count`` gradient colors from the most common color buckets.

    The image is shrunk to ``grid`` x ``grid`` and sampled every ``stride``
    pixels. Samples are quantized to ``levels`` steps per channel; each
    bucket's color is the mean of the samples that fell into it.
    """
    if count <= 0:
        return ()

    small = image.convert("RGB").resize((grid, grid), Image.Resampling.BILINEAR)
    pixels = small.load()
    step = 256 // levels

    # bucket -> [samples, sum_r, sum_g, sum_b]
    buckets: dict[tuple[int, int, int], list[int]] = {}
    for y in range(0, grid, stride):
        for x in range(0, grid, stride):
            r, g, b = pixels[x, y]
            key = (r // step, g // step, b // step)
            stats = buckets.setdefault(key, [0, 0, 0, 0])
            stats[0] += 1
            stats[1] += r
            stats[2] += g
            stats[3] += b

    if not buckets:
        return ()

    # Ties are broken by bucket index so the order never depends on dict order
    ranked = sorted(buckets.items(), key=lambda item: (-item[1][0], item[0]))
    colors = [
        Color(*(_clamp_channel(total / stats[0]) for total in stats[1:]))
        for _, stats in ranked
    ]

    palette = [c for c in colors if MIN_BRIGHTNESS <= c.brightness <= MAX_BRIGHTNESS][:count]
    if not palette:
        palette = [colors[0]]

    while len(palette) < count:
        palette.append(palette[-1].darkened())

    return tuple(c.boosted() for c in palette)


def extract_colors(image: Image.Image, count: int = 4) -> tuple[Color, tuple[Color, ...]]:
    """Return ``(dominant_color, gradient_palette)`` for an artwork image."""
    return average_color(image), extract_palette(image, count=count)
