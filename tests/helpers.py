from io import BytesIO

import numpy as np
from PIL import Image

from cutout_service.raster import PixelBuffer


def solid(width, height, color):
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[..., :3] = color
    pixels[..., 3] = 255
    return PixelBuffer(width=width, height=height, pixels=pixels)


def framed_block(size=20, ring=5, ring_color=(250, 250, 250), block_color=(220, 20, 20)):
    """White ring around a solid block, e.g. a red car on a white sweep."""
    buffer = solid(size, size, ring_color)
    buffer.pixels[ring : size - ring, ring : size - ring, :3] = block_color
    return buffer


def png_bytes(buffer_or_array, mode=None):
    pixels = buffer_or_array.pixels if isinstance(buffer_or_array, PixelBuffer) else buffer_or_array
    image = Image.fromarray(pixels)
    if mode:
        image = image.convert(mode)
    buf = BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def decode(data):
    with Image.open(BytesIO(data)) as image:
        return np.array(image.convert("RGBA"))
