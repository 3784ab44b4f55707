from __future__ import annotations

from block_model import (TextureId, TextureVar, condition_key, direct_textures, facing_of,
                         iter_applies, iter_conditions, model_dir, normalize_id, parse_texture_ref,
                         parse_variant_key, resolve_texture, translate_elements)


def test_normalize_id_adds_default_namespace():
    assert normalize_id('block/stone') == 'minecraft:block/stone'
    assert normalize_id('create:block/shaft') == 'create:block/shaft'


def test_model_dir():
    assert model_dir('create:block/mechanical_pump/cog') == 'create:block/mechanical_pump'
    assert model_dir('create:block/shaft') == 'create:block'


def test_parse_variant_key_ignores_incomplete_pairs():
    assert parse_variant_key('facing=east,half=bottom') == {'facing': 'east', 'half': 'bottom'}
    assert parse_variant_key('') == {}
    assert parse_variant_key('facing=,=up,axis=y') == {'axis': 'y'}


def test_parse_texture_ref():
    assert parse_texture_ref('#side') == TextureVar('side')
    assert parse_texture_ref('create:block/axis') == TextureId('create:block/axis')


def test_resolve_texture_follows_chains():
    textures = {'particle': '#side', 'side': '#0', '0': 'create:block/axis'}
    assert resolve_texture(textures, '#particle') == 'create:block/axis'
    assert resolve_texture(textures, 'create:block/gearbox') == 'create:block/gearbox'


def test_resolve_texture_gives_up_on_cycles_and_dangling_refs():
    assert resolve_texture({'a': '#b', 'b': '#a'}, '#a') is None
    assert resolve_texture({'a': '#a'}, '#a') is None
    assert resolve_texture({}, '#missing') is None


def test_direct_textures_skips_variables():
    textures = {'0': 'create:block/axis', 'particle': '#0', 'empty': ''}
    assert direct_textures(textures) == ['create:block/axis']


def test_iter_applies_and_conditions():
    assert iter_applies({'model': 'a'}) == [{'model': 'a'}]
    assert iter_applies([{'model': 'a'}, {'model': 'b'}]) == [{'model': 'a'}, {'model': 'b'}]
    assert iter_applies(None) == []

    when = {'OR': [{'north': 'true'}, {'AND': [{'up': 'true'}, {'down': 'false'}]}]}
    assert iter_conditions(when) == [{'north': 'true'}, {'up': 'true'}, {'down': 'false'}]


def test_condition_key_is_order_independent():
    assert condition_key({'a': '1', 'b': '2'}) == condition_key({'b': '2', 'a': '1'})
    assert condition_key(None) == condition_key({})


def test_facing_of():
    assert facing_of({'facing': 'north', 'powered': 'true'}) == 'north'
    assert facing_of({'OR': [{'facing': 'north'}]}) is None
    assert facing_of(None) is None


def test_translate_elements_moves_origins_and_children():
    elements = [{
        'from': [0, 0, 0], 'to': [16, 2, 16],
        'rotation': {'angle': 0, 'axis': 'y', 'origin': [8, 8, 8]},
        'children': [{'from': [1, 1, 1], 'to': [2, 2, 2]}],
    }]
    translate_elements(elements, 0, 16, 0)
    assert elements[0]['from'] == [0, 16, 0]
    assert elements[0]['to'] == [16, 18, 16]
    assert elements[0]['rotation']['origin'] == [8, 24, 8]
    assert elements[0]['children'][0]['from'] == [1, 17, 1]
