# -----------------------------------------------------------------------------
# THE COMPOSITOR - LAYER RENDERING
# -----------------------------------------------------------------------------
# Responsibility: Render one instance of a template (one binding) into a
# raster. Layers are painted bottom-up onto a transparent canvas:
#
#   scale (Lanczos) -> rotate (bicubic, on a diagonal-sized buffer)
#   -> opacity -> center on canvas + offset -> alpha-over
#
# Rasters coming from the cache are shared and never modified in place.
# -----------------------------------------------------------------------------

import asyncio
import io
import math

from PIL import Image
from rich.console import Console

from blueprint.core.cache import ImageCache
from blueprint.domain.models import Binding, BlendMode, Layer, Template

console = Console()

TRANSPARENT = (0, 0, 0, 0)


class CompositeError(Exception):
    """Raised when an instance of a template cannot be rendered."""

    pass


class UnboundReference(CompositeError):
    """Raised when a layer references an alias missing from the binding."""

    def __init__(self, reference: str) -> None:
        super().__init__(f"Layer references unbound alias: {reference}")
        self.reference = reference


def scale_image(image: Image.Image, factor: float) -> Image.Image | None:
    """
    Resize uniformly by factor with a Lanczos filter, truncating to whole
    pixels. Returns None when either side truncates to zero.
    """
    width = int(image.width * factor)
    height = int(image.height * factor)
    if width == 0 or height == 0:
        return None
    return image.resize((width, height), Image.Resampling.LANCZOS)


def copy_to_center(src: Image.Image, dest: Image.Image) -> None:
    """Paste src onto the middle of dest."""
    x = dest.width // 2 - src.width // 2
    y = dest.height // 2 - src.height // 2
    dest.paste(src, (x, y))


def rotate_image(image: Image.Image, degrees: float) -> Image.Image:
    """
    Rotate clockwise about the image center without clipping any pixel.

    The image is first centered on a transparent square as wide as its
    diagonal, so the result is always that square.
    """
    side = math.ceil(math.hypot(image.width, image.height))
    buffer = Image.new("RGBA", (side, side), TRANSPARENT)
    copy_to_center(image, buffer)
    # PIL rotates counter-clockwise
    return buffer.rotate(
        -degrees,
        resample=Image.Resampling.BICUBIC,
        expand=False,
        fillcolor=TRANSPARENT,
    )


def apply_opacity(image: Image.Image, opacity: float) -> Image.Image:
    """Scale the alpha channel by opacity (truncating). Modifies image in place."""
    if opacity >= 1.0:
        return image
    alpha = image.getchannel("A").point(lambda value: int(value * opacity))
    image.putalpha(alpha)
    return image


def overlay(canvas: Image.Image, layer: Image.Image, x: int, y: int) -> None:
    """
    Alpha-composite layer onto canvas with its top-left corner at (x, y).

    Any part of the layer outside the canvas is clipped.
    """
    left, top = max(x, 0), max(y, 0)
    right = min(x + layer.width, canvas.width)
    bottom = min(y + layer.height, canvas.height)
    if right <= left or bottom <= top:
        return

    visible = layer.crop((left - x, top - y, right - x, bottom - y))
    canvas.alpha_composite(visible, dest=(left, top))


def transform_layer(image: Image.Image, layer: Layer) -> Image.Image | None:
    """Apply scale, rotation and opacity of a layer; returns a new image."""
    transformed = scale_image(image, layer.transform.scale)
    if transformed is None:
        return None
    transformed = rotate_image(transformed, layer.transform.rotate)
    return apply_opacity(transformed, layer.opacity)


def place_layer(canvas: Image.Image, transformed: Image.Image, layer: Layer) -> None:
    """Center the transformed layer on the canvas, shift by offset, and paint it."""
    dx, dy = layer.transform.offset
    x = canvas.width // 2 - transformed.width // 2 + dx
    y = canvas.height // 2 - transformed.height // 2 + dy
    overlay(canvas, transformed, x, y)


async def composite(template: Template, binding: Binding, cache: ImageCache) -> Image.Image:
    """
    Render one instance of a template.

    Args:
        template: The template document.
        binding: Alias -> locator for this instance.
        cache: The run's image cache.

    Returns:
        The rendered RGBA canvas.

    Raises:
        UnboundReference: If a layer's alias is not bound.
        LoadError: If an asset cannot be fetched or decoded.
    """
    width, height = template.canvas_size
    canvas = Image.new("RGBA", (width, height), TRANSPARENT)

    for layer in template.layers:
        locator = binding.get(layer.reference)
        if locator is None:
            raise UnboundReference(layer.reference)

        source = await cache.get(locator)

        if layer.blend_mode != BlendMode.NORMAL:
            console.print(
                f"[dim][COMPOSITOR] Blend mode '{layer.blend_mode.value}' painted as normal[/dim]"
            )

        transformed = await asyncio.to_thread(transform_layer, source, layer)
        if transformed is None:
            console.print(f"[dim][COMPOSITOR] Layer '{layer.reference}' scaled to nothing, skipped[/dim]")
            continue

        place_layer(canvas, transformed, layer)

    return canvas


def encode_png(image: Image.Image) -> bytes:
    """Lossless PNG encoding of a rendered instance."""
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()
