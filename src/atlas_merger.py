"""
Merges mod textures into the vanilla block atlas.

The base atlas stays at the origin; mod textures are stacked below it at
their native size. The canvas is square with a power-of-two side, and every
uv rectangle is (u0, v0, u1, v1) normalized by that side.
"""

import io
import logging
from dataclasses import dataclass, field

import pygame as pg

from block_model import normalize_id

log = logging.getLogger(__name__)


def upper_power_of_two(n: int) -> int:
    size = 1
    while size < n:
        size *= 2
    return size


@dataclass
class TextureAtlas:
    image: pg.Surface
    uv_map: dict[str, tuple[float, float, float, float]] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return self.image.get_width()

    def get_uv(self, texture_id: str):
        return self.uv_map.get(normalize_id(texture_id))

    def to_bytes(self) -> bytes:
        return pg.image.tobytes(self.image, 'RGBA')


def _base_uvs(base_uv_map: dict, size: int) -> dict:
    uv_map = {}
    for texture_id, rect in base_uv_map.items():
        if not rect:
            log.warning('[Atlas] Missing UV mapping for texture ID: %s', texture_id)
            continue
        x, y, w, h = rect
        # the published vanilla atlas reports a full animation strip height for some block textures
        if w != h and texture_id.startswith('block/'):
            h = w
        uv_map[normalize_id(texture_id)] = (x / size, y / size, (x + w) / size, (y + h) / size)
    return uv_map


def _decode(texture_id: str, blob: bytes) -> pg.Surface | None:
    if not blob:
        log.warning('[Atlas] Missing texture blob for ID: %s', texture_id)
        return None
    try:
        return pg.image.load(io.BytesIO(blob), 'texture.png')
    except pg.error as e:
        log.warning('[Atlas] Skipping undecodable texture %s: %s', texture_id, e)
        return None


def merge_atlases(base_image: pg.Surface, base_uv_map: dict, new_textures: dict[str, bytes]) -> TextureAtlas:
    """
    base_uv_map: texture id -> [x, y, w, h] in pixels of base_image.
    new_textures: texture id -> png bytes, placed in iteration order.
    """
    base_w, base_h = base_image.get_size()

    images = []
    for texture_id, blob in new_textures.items():
        surf = _decode(texture_id, blob)
        if surf is not None:
            images.append((texture_id, surf))

    if not images:
        size = upper_power_of_two(max(base_w, base_h))
    else:
        width = max(base_w, max(surf.get_width() for _, surf in images))
        height = base_h + sum(surf.get_height() for _, surf in images)
        size = upper_power_of_two(max(width, height))

    canvas = pg.Surface((size, size), pg.SRCALPHA)
    canvas.blit(base_image, (0, 0))
    uv_map = _base_uvs(base_uv_map, size)

    y = base_h
    for texture_id, surf in images:
        w, h = surf.get_size()
        canvas.blit(surf, (0, y))
        uv_map[texture_id] = (0.0, y / size, w / size, (y + h) / size)
        y += h

    log.info('[Atlas] Merged %d textures into %dx%d atlas', len(images), size, size)
    return TextureAtlas(canvas, uv_map)
