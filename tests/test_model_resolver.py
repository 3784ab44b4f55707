from __future__ import annotations

import asyncio
import logging

from block_model import resolve_texture
from model_resolver import ModelResolver, build_funnel_fallback, flatten_children


def _resolve(resolver, model_id):
    return asyncio.run(resolver.resolve_model(model_id))


def test_resolution_is_idempotent(provider):
    provider.add('models/block/shaft.json', {
        'parent': 'block/block',
        'textures': {'0': 'create:block/axis', 'particle': '#0'},
        'elements': [{'from': [6, 0, 6], 'to': [10, 16, 10], 'faces': {}}],
    })
    provider.add('textures/block/axis.png', b'png')
    resolver = ModelResolver(provider)

    first = _resolve(resolver, 'create:block/shaft')
    second = _resolve(resolver, 'create:block/shaft')

    assert first is second
    assert provider.calls['models/block/shaft.json'] == 1
    assert provider.calls['textures/block/axis.png'] == 1
    assert resolver.textures == {'create:block/axis': b'png'}


def test_unknown_model_is_recorded_once(provider):
    resolver = ModelResolver(provider)
    assert _resolve(resolver, 'create:block/nope') is None
    assert _resolve(resolver, 'create:block/nope') is None
    assert resolver.missing_resources == ['Model: create:block/nope']


def test_other_namespaces_are_not_fetched(provider):
    resolver = ModelResolver(provider)
    assert _resolve(resolver, 'minecraft:block/cube_all') is None
    assert provider.calls == {}
    assert resolver.missing_resources == []


def test_parent_is_resolved_first(provider):
    provider.add('models/block/base.json', {'textures': {'side': 'create:block/side'}})
    provider.add('models/block/child.json', {'parent': 'create:block/base'})
    resolver = ModelResolver(provider)

    _resolve(resolver, 'create:block/child')
    assert resolver.has_model('create:block/base')
    assert resolver.missing_resources == ['Texture: create:block/side']


def test_reference_cycle_terminates(provider):
    provider.add('models/block/a.json', {'parent': 'create:block/b'})
    provider.add('models/block/b.json', {'parent': 'create:block/a'})
    resolver = ModelResolver(provider)

    assert _resolve(resolver, 'create:block/a') is not None
    assert resolver.has_model('create:block/b')


def test_smart_prefix_fallback(provider, caplog):
    provider.add('models/block/fluid_pipe/window.json', {'elements': []})
    resolver = ModelResolver(provider)

    with caplog.at_level(logging.WARNING, logger='model_resolver'):
        model = _resolve(resolver, 'create:block/fluid_pipe/smart_window')
    assert '[Resolver] Missing create:block/fluid_pipe/smart_window, using fallback ' \
        'create:block/fluid_pipe/window' in caplog.messages
    assert model == {'elements': []}
    assert resolver.missing_resources == []


def test_funnel_fallback_is_synthesized(provider):
    provider.add('models/block/funnel/block_horizontal.json', {'elements': []})
    resolver = ModelResolver(provider)

    model = _resolve(resolver, 'create:block/andesite_funnel_push')
    assert model['parent'] == 'create:block/funnel/block_horizontal'
    assert model['textures']['direction'] == 'create:block/funnel/funnel_closed'
    assert 'Model: create:block/andesite_funnel_push' not in resolver.missing_resources


def test_belt_funnel_fallback_parent():
    model = build_funnel_fallback('create:block/brass_belt_funnel_pulling', 'create')
    assert model['parent'] == 'create:block/belt_funnel/block_pulling'
    assert build_funnel_fallback('create:block/shaft', 'create') is None


def test_flatten_children_renames_child_textures():
    model = {
        'textures': {'particle': 'create:block/casing', 'body': 'create:block/body'},
        'elements': [],
        'children': {
            'cog': {
                'textures': {'body': 'create:block/cog', 'particle': 'create:block/other'},
                'elements': [{'from': [0, 0, 0], 'to': [1, 1, 1],
                              'faces': {'north': {'texture': '#body'}}}],
            },
        },
    }
    flatten_children(model)

    assert 'children' not in model
    assert len(model['elements']) == 1
    face_ref = model['elements'][0]['faces']['north']['texture']
    assert face_ref == '#cog_body'
    assert model['textures']['cog_body'] == 'create:block/cog'
    assert model['textures']['cog_particle'] == 'create:block/other'
    assert model['textures']['body'] == 'create:block/body'


def test_flattened_child_variables_still_resolve():
    model = {
        'textures': {'0': 'create:block/parent_tex', '1': 'create:block/parent_other'},
        'elements': [],
        'children': {
            'cog': {
                'textures': {'1': 'create:block/cog_tex', 'side': '#1', 'particle': '#1'},
                'elements': [{'from': [0, 0, 0], 'to': [1, 1, 1],
                              'faces': {'north': {'texture': '#side'}, 'up': {'texture': '#1'}}}],
            },
        },
    }
    flatten_children(model)

    textures = model['textures']
    for face in model['elements'][0]['faces'].values():
        assert resolve_texture(textures, face['texture']) == 'create:block/cog_tex'
    assert resolve_texture(textures, '#particle') == 'create:block/cog_tex'
    assert textures['1'] == 'create:block/parent_other'


def test_flatten_without_child_elements_keeps_parent_geometry():
    model = {'parent': 'create:block/base', 'children': {}}
    flatten_children(model)
    assert model == {'parent': 'create:block/base'}

    model = {'parent': 'create:block/base', 'children': {'empty': {'textures': {'0': 'create:block/a'}}}}
    flatten_children(model)
    assert 'elements' not in model
    assert model['textures'] == {'empty_0': 'create:block/a'}


def test_pipe_patches_run_on_resolution(provider):
    provider.add('models/block/fluid_pipe/lu_x.json', {
        'textures': {'0': 'create:block/pipe'},
        'elements': [{'from': [4, 4, 4], 'to': [12, 12, 12],
                      'faces': {'north': {'uv': [0, 0, 8, 8], 'texture': '#0'}}}],
    })
    resolver = ModelResolver(provider)

    model = _resolve(resolver, 'create:block/fluid_pipe/lu_x')
    assert len(model['elements']) == 3
    assert len(model['elements'][0]['faces']) == 6


def test_obj_model_geometry(provider):
    provider.add('models/block/wheel.json', {
        'loader': 'forge:obj',
        'model': 'create:models/block/wheel.obj',
        'textures': {'0': 'create:block/wheel'},
    })
    provider.add('models/block/wheel.obj', 'v 0 0 0\nv 1 0 0\nv 0 1 0\nusemtl m_0\nf 1 2 3\n')
    resolver = ModelResolver(provider)

    model = _resolve(resolver, 'create:block/wheel')
    assert len(model['elements']) == 1
    assert model['elements'][0].texture == '0'
    assert provider.calls['textures/block/wheel.png'] == 1


def test_missing_obj_file_leaves_no_geometry(provider):
    provider.add('models/block/wheel.json', {'loader': 'forge:obj', 'model': 'create:block/wheel'})
    resolver = ModelResolver(provider)

    model = _resolve(resolver, 'create:block/wheel')
    assert model['elements'] == []


def test_fluid_textures_load_flow_twin(provider):
    provider.add('models/block/tank.json', {'textures': {'0': 'create:block/fluid/honey_still'}})
    provider.add('textures/block/fluid/honey_still.png', b'still')
    provider.add('textures/block/fluid/honey_flow.png', b'flow')
    resolver = ModelResolver(provider)

    _resolve(resolver, 'create:block/tank')
    assert resolver.textures['create:block/fluid/honey_flow'] == b'flow'


def test_published_models_are_returned(provider):
    resolver = ModelResolver(provider)
    resolver.publish_model('create:block/mechanical_arm/cog', {'elements': []})
    assert _resolve(resolver, 'create:block/mechanical_arm/cog') == {'elements': []}
    assert provider.calls == {}


def test_accessors_return_copies(provider):
    resolver = ModelResolver(provider)
    resolver.publish_model('create:block/x', {})
    resolver.models.clear()
    assert resolver.has_model('create:block/x')
