from __future__ import annotations

import pygame as pg
import pytest

from atlas_merger import merge_atlases, upper_power_of_two


def _base(width=32, height=16):
    surf = pg.Surface((width, height), pg.SRCALPHA)
    surf.fill((0, 0, 255, 255))
    return surf


@pytest.mark.parametrize('n, expected', [(1, 1), (2, 2), (3, 4), (16, 16), (17, 32), (300, 512)])
def test_upper_power_of_two(n, expected):
    assert upper_power_of_two(n) == expected


def test_merge_without_new_textures():
    atlas = merge_atlases(_base(32, 16), {'block/stone': [16, 0, 16, 16]}, {})
    assert atlas.size == 32
    assert atlas.get_uv('minecraft:block/stone') == (0.5, 0.0, 1.0, 0.5)


def test_merge_stacks_new_textures_below_base(png):
    atlas = merge_atlases(_base(32, 16), {'block/stone': [0, 0, 16, 16]}, {
        'create:block/axis': png(16, 16),
        'create:block/wide': png(32, 8, (0, 255, 0, 255)),
    })

    # 16 (base) + 16 + 8 = 40 rows -> 64
    assert atlas.size == 64
    assert atlas.get_uv('create:block/axis') == (0.0, 16 / 64, 16 / 64, 32 / 64)
    assert atlas.get_uv('create:block/wide') == (0.0, 32 / 64, 32 / 64, 40 / 64)
    assert atlas.get_uv('block/stone') == (0.0, 0.0, 0.25, 0.25)

    # pixels land where the uvs say
    assert tuple(atlas.image.get_at((0, 16)))[:3] == (255, 0, 0)
    assert tuple(atlas.image.get_at((20, 36)))[:3] == (0, 255, 0)
    assert tuple(atlas.image.get_at((1, 1)))[:3] == (0, 0, 255)


def test_uv_ratios_match_pixel_sizes(png):
    atlas = merge_atlases(_base(16, 16), {}, {'create:block/tall': png(16, 48)})
    u0, v0, u1, v1 = atlas.get_uv('create:block/tall')
    assert (u1 - u0) * atlas.size == 16
    assert (v1 - v0) * atlas.size == 48
    assert atlas.size & (atlas.size - 1) == 0


def test_block_textures_with_animation_strips_use_width_as_height():
    atlas = merge_atlases(_base(32, 32), {
        'block/water_still': [0, 0, 16, 512],
        'item/banner': [16, 0, 8, 16],
    }, {})
    assert atlas.get_uv('block/water_still') == (0.0, 0.0, 0.5, 0.5)
    assert atlas.get_uv('item/banner') == (0.5, 0.0, 0.75, 0.5)


def test_undecodable_textures_are_skipped(png):
    atlas = merge_atlases(_base(16, 16), {}, {
        'create:block/broken': b'not a png',
        'create:block/ok': png(16, 16),
    })
    assert atlas.get_uv('create:block/broken') is None
    assert atlas.get_uv('create:block/ok') == (0.0, 0.5, 0.5, 1.0)


def test_to_bytes_is_rgba(png):
    atlas = merge_atlases(_base(16, 16), {}, {})
    assert len(atlas.to_bytes()) == 16 * 16 * 4
