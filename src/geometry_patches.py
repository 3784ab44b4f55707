"""
Procedural geometry for models whose authored data is missing or incomplete.

MODEL_PATCHES is evaluated in order by the resolver after composite children
are flattened and before the model is cached. Each entry is guarded by a
predicate on the model path ('block/fluid_pipe/lu_x') and must be safe to
apply twice: patches either check for their own output or only fire on
geometry they have not touched yet.

Patches receive the resolver as a handle to its model table:
  resolver.get_model(id), resolver.has_model(id), resolver.publish_model(id, model)
"""

from dataclasses import dataclass
from typing import Callable

import glm

from block_model import (FACE_NAMES, FACE_NORMALS, clone, find_core_element, is_cuboid,
                         model_name, normalize_id, split_id, translate_elements)

# ---------------------------------------------------------------------------
# Axis rotation
# ---------------------------------------------------------------------------

_AXES = {
    'x': glm.vec3(1, 0, 0),
    'y': glm.vec3(0, 1, 0),
    'z': glm.vec3(0, 0, 1),
}
_QUARTER_TURN = {axis: glm.rotate(glm.mat4(1.0), glm.radians(90.0), vec) for axis, vec in _AXES.items()}


def _rotate_vec(axis: str, v, w: float) -> tuple:
    """Rotate (x, y, z) a quarter turn about `axis`; w=1 for points, 0 for directions."""
    r = _QUARTER_TURN[axis] * glm.vec4(v[0], v[1], v[2], w)
    return (round(r.x, 4) + 0.0, round(r.y, 4) + 0.0, round(r.z, 4) + 0.0)


def _build_face_remap(axis: str) -> dict[str, str]:
    by_normal = {n: face for face, n in FACE_NORMALS.items()}
    return {face: by_normal[tuple(int(c) for c in _rotate_vec(axis, n, 0.0))]
            for face, n in FACE_NORMALS.items()}


# x: up->south, down->north, north->up, south->down, east/west unchanged
FACE_REMAP = {axis: _build_face_remap(axis) for axis in _AXES}


def _rotate_point(axis: str, p) -> list[float]:
    centered = (p[0] - 8, p[1] - 8, p[2] - 8)
    x, y, z = _rotate_vec(axis, centered, 1.0)
    return [x + 8, y + 8, z + 8]


def _rotate_axis_label(axis: str, label: str) -> tuple[str, int]:
    """Where an element rotation axis ends up, and the sign to apply to its angle."""
    rotated = _rotate_vec(axis, _AXES[label], 0.0)
    for name, i in (('x', 0), ('y', 1), ('z', 2)):
        if rotated[i] != 0:
            return name, (1 if rotated[i] > 0 else -1)
    return label, 1


def rotate_element_90(element: dict, axis: str = 'x') -> dict:
    el = clone(element)
    a = _rotate_point(axis, element['from'])
    b = _rotate_point(axis, element['to'])
    el['from'] = [min(a[i], b[i]) for i in range(3)]
    el['to'] = [max(a[i], b[i]) for i in range(3)]

    rotation = el.get('rotation')
    if rotation:
        if rotation.get('origin'):
            rotation['origin'] = _rotate_point(axis, rotation['origin'])
        if rotation.get('axis') in _AXES:
            new_axis, sign = _rotate_axis_label(axis, rotation['axis'])
            rotation['axis'] = new_axis
            if sign < 0:
                rotation['angle'] = -rotation.get('angle', 0)

    if el.get('faces'):
        remap = FACE_REMAP[axis]
        el['faces'] = {remap.get(name, name): face for name, face in el['faces'].items()}
    return el


def rotate_elements_90(elements: list, axis: str = 'x') -> list:
    """Copies of `elements` turned 90 degrees about `axis` through the block center."""
    return [rotate_element_90(el, axis) for el in elements if is_cuboid(el)]


# ---------------------------------------------------------------------------
# Connector limbs (fluid pipes)
# ---------------------------------------------------------------------------

# Model names are '<letters>_<axis>'; each letter is a connection in local space
PIPE_LIMB_DIRECTIONS = {
    'x': {'u': 'up', 'd': 'down', 'l': 'south', 'r': 'north'},
    'y': {'u': 'south', 'd': 'north', 'l': 'east', 'r': 'west'},
    'z': {'u': 'up', 'd': 'down', 'l': 'east', 'r': 'west'},
}

# Core (4..12) to block boundary
LIMB_BOXES = {
    'up':    ([4, 12, 4], [12, 16, 12]),
    'down':  ([4, 0, 4], [12, 4, 12]),
    'east':  ([12, 4, 4], [16, 12, 12]),
    'west':  ([0, 4, 4], [4, 12, 12]),
    'south': ([4, 4, 12], [12, 12, 16]),
    'north': ([4, 4, 0], [12, 12, 4]),
}

OPPOSITE = {'up': 'down', 'down': 'up', 'north': 'south', 'south': 'north', 'east': 'west', 'west': 'east'}

DEFAULT_CORE_UV = [12, 8, 16, 12]
DEFAULT_LIMB_UV = [4, 0, 12, 4]
DEFAULT_PIPE_TEXTURE = '#0'


def _valid_uv(face) -> list | None:
    uv = (face or {}).get('uv')
    if isinstance(uv, list) and len(uv) == 4:
        return uv
    return None


def complete_core_faces(model: dict) -> dict:
    """Give the 4..12 core cuboid all six faces, copying its first declared face."""
    core = find_core_element(model.get('elements') or [])
    if core is None:
        return model
    faces = core.setdefault('faces', {})
    sample = next(iter(faces.values()), None)
    uv = _valid_uv(sample) or DEFAULT_CORE_UV
    texture = (sample or {}).get('texture', DEFAULT_PIPE_TEXTURE)
    for name in ('north', 'south', 'east', 'west', 'up', 'down'):
        if name not in faces:
            faces[name] = {'texture': texture, 'uv': list(uv)}
    return model


def parse_pipe_name(model_id: str) -> tuple[str, str] | None:
    """'create:block/fluid_pipe/lu_x' -> ('lu', 'x'); None for cores and non-connection models."""
    name = model_name(model_id)
    if name.endswith('.json'):
        name = name[:-5]
    parts = name.split('_')
    if len(parts) < 2:
        return None
    letters, axis = parts[0], parts[1]
    if axis not in PIPE_LIMB_DIRECTIONS or letters == 'core':
        return None
    return letters, axis


def make_limb(direction: str, core: dict | None) -> dict:
    core_faces = (core or {}).get('faces') or {}
    sample = core_faces.get(direction) or next(iter(core_faces.values()), None)
    texture = (sample or {}).get('texture', DEFAULT_PIPE_TEXTURE)
    uv = _valid_uv(core_faces.get(direction)) or _valid_uv(sample) or DEFAULT_LIMB_UV

    start, end = LIMB_BOXES[direction]
    faces = {}
    for name in FACE_NAMES:
        if name == OPPOSITE[direction]:
            continue
        faces[name] = {'texture': texture, 'uv': list(uv)}
    return {'from': list(start), 'to': list(end), 'faces': faces}


def add_pipe_limbs(model: dict, model_id: str) -> dict:
    parsed = parse_pipe_name(model_id)
    if parsed is None:
        return model
    letters, axis = parsed
    elements = model.setdefault('elements', [])
    core = find_core_element(elements)
    present = {(tuple(el['from']), tuple(el['to'])) for el in elements if is_cuboid(el)}
    for letter in letters:
        direction = PIPE_LIMB_DIRECTIONS[axis].get(letter)
        if not direction:
            continue
        start, end = LIMB_BOXES[direction]
        if (tuple(start), tuple(end)) in present:
            continue
        elements.append(make_limb(direction, core))
        present.add((tuple(start), tuple(end)))
    return model


# ---------------------------------------------------------------------------
# Flaps
# ---------------------------------------------------------------------------

FUNNEL_FLAP_SEGMENTS = 4
FUNNEL_FLAP_STEP = 3

TUNNEL_FLAP_SEGMENTS = [(2, 5), (5, 8), (8, 11), (11, 14)]
TUNNEL_FLAP_TEXTURE = 'block/funnel/funnel_back'


def expand_funnel_flap(model: dict) -> dict:
    """One authored flap element -> four segments stepped along -x."""
    elements = model.get('elements')
    if not isinstance(elements, list) or len(elements) != 1 or not is_cuboid(elements[0]):
        return model
    base = clone(elements[0])
    clones = [base]
    for i in range(1, FUNNEL_FLAP_SEGMENTS):
        c = clone(base)
        shift = FUNNEL_FLAP_STEP * i
        c['from'][0] -= shift
        c['to'][0] -= shift
        origin = (c.get('rotation') or {}).get('origin')
        if origin:
            origin[0] -= shift
        c['name'] = f"{base.get('name') or 'flap'}_{i}"
        clones.append(c)
    model['elements'] = clones
    return model


def _make_tunnel_flap(start, end, texture_key, rotate_down, rotate_up) -> dict:
    return {
        'name': 'Flap',
        'from': list(start),
        'to': list(end),
        'rotation': {'angle': 0, 'axis': 'y', 'origin': [8, 8, 8]},
        'faces': {
            'north': {'uv': [6, 8, 6.5, 14.5], 'texture': texture_key},
            'east': {'uv': [6, 8, 7.5, 14.5], 'rotation': 180, 'texture': texture_key},
            'south': {'uv': [7, 8, 7.5, 14.5], 'texture': texture_key},
            'west': {'uv': [6, 8, 7.5, 14.5], 'texture': texture_key},
            'up': {'uv': [6, 8.5, 7.5, 8], 'rotation': rotate_up, 'texture': texture_key},
            'down': {'uv': [6, 14, 7.5, 14.5], 'rotation': rotate_down, 'texture': texture_key},
        },
    }


def add_tunnel_flaps(model: dict, model_id: str, resolver) -> dict:
    """Belt tunnels ship without flaps; add two static rows of four."""
    elements = model.get('elements')
    if not elements and model.get('parent'):
        parent = resolver.get_model(normalize_id(model['parent']))
        if parent and parent.get('elements'):
            model['elements'] = clone(parent['elements'])
    elements = model.get('elements')
    if not elements:
        return model
    if any('flap' in (el.get('name') or '').lower() for el in elements if isinstance(el, dict)):
        return model

    texture_key = '#back'
    textures = model.setdefault('textures', {})
    if not textures.get('back'):
        namespace, _ = split_id(model_id)
        textures.setdefault('_flap', f'{namespace}:{TUNNEL_FLAP_TEXTURE}')
        texture_key = '#_flap'

    for z0, z1 in TUNNEL_FLAP_SEGMENTS:
        elements.append(_make_tunnel_flap([0.5, -2.5, z0], [1.5, 10.5, z1], texture_key, 270, 90))
    for z0, z1 in reversed(TUNNEL_FLAP_SEGMENTS):
        elements.append(_make_tunnel_flap([14.5, -2.5, z0], [15.5, 10.5, z1], texture_key, 90, 270))
    return model


# ---------------------------------------------------------------------------
# Kinetic sub-assemblies
# ---------------------------------------------------------------------------

KINETIC_TOKEN = 'gear'
ARM_OFFSET = (0, 16, 0)


def split_kinetic_elements(model: dict, token: str = KINETIC_TOKEN) -> tuple[list, list]:
    """(moving, body): cuboids whose name contains `token`, and the remaining cuboids."""
    moving, body = [], []
    for el in (model or {}).get('elements') or []:
        if not is_cuboid(el):
            continue
        if token in (el.get('name') or '').lower():
            moving.append(clone(el))
        else:
            body.append(clone(el))
    return moving, body


def arm_ids(namespace: str) -> tuple[str, str]:
    return f'{namespace}:block/mechanical_arm/item', f'{namespace}:block/mechanical_arm/cog'


def ensure_arm_cog(resolver, namespace: str) -> str | None:
    """Publish the arm's cog (from the item model) as its own model so it can spin."""
    item_id, cog_id = arm_ids(namespace)
    if resolver.has_model(cog_id):
        return cog_id
    item = resolver.get_model(item_id)
    if not item:
        return None
    cog, _ = split_kinetic_elements(item)
    if not cog:
        return None
    resolver.publish_model(cog_id, {
        'parent': 'block/block',
        'elements': translate_elements(cog, *ARM_OFFSET),
        'textures': dict(item.get('textures') or {}),
    })
    return cog_id


def pose_mechanical_arm(model: dict, model_id: str, resolver) -> dict:
    """Use the folded item pose for the arm body; the cog becomes a separate model."""
    namespace, _ = split_id(model_id)
    item = resolver.get_model(arm_ids(namespace)[0])
    if not item:
        return model
    _, body = split_kinetic_elements(item)
    if body:
        model['elements'] = translate_elements(body, *ARM_OFFSET)
        model['textures'] = {**(model.get('textures') or {}), **(item.get('textures') or {})}
    ensure_arm_cog(resolver, namespace)
    return model


def crafter_gear_ids(namespace: str) -> tuple[str, str, str]:
    base = f'{namespace}:block/mechanical_crafter'
    return f'{base}/item', f'{base}/gears_horizontal', f'{base}/gears_vertical'


def publish_crafter_gears(resolver, namespace: str) -> str | None:
    """Horizontal and vertical gear models cut from the crafter item model."""
    item_id, horizontal_id, vertical_id = crafter_gear_ids(namespace)
    item = resolver.get_model(item_id)
    if not item:
        return None
    gears, _ = split_kinetic_elements(item)
    if not gears:
        return None
    textures = dict(item.get('textures') or {})
    resolver.publish_model(horizontal_id, {'parent': 'block/block', 'elements': gears,
                                           'textures': dict(textures)})
    resolver.publish_model(vertical_id, {'parent': 'block/block', 'elements': rotate_elements_90(gears, 'x'),
                                         'textures': dict(textures)})
    return horizontal_id


def fill_factory_gauge(model: dict, model_id: str, resolver) -> dict:
    if model.get('elements'):
        return model
    namespace, _ = split_id(model_id)
    panel = resolver.get_model(f'{namespace}:block/factory_gauge/panel')
    if not panel or not panel.get('elements'):
        return model
    model['elements'] = clone(panel['elements'])
    model['textures'] = {**(model.get('textures') or {}), **(panel.get('textures') or {})}
    if not model.get('display') and panel.get('display'):
        model['display'] = clone(panel['display'])
    return model


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def _no_requirements(model_id: str) -> list:
    return []


@dataclass
class ModelPatch:
    name: str
    matches: Callable[[str], bool]                    # model path, e.g. 'block/funnel/flap'
    apply: Callable[[dict, str, object], dict]        # (model, model_id, resolver)
    requires: Callable[[str], list] = _no_requirements


def _requires_arm_item(model_id: str) -> list:
    return [arm_ids(split_id(model_id)[0])[0]]


def _requires_gauge_panel(model_id: str) -> list:
    return [f'{split_id(model_id)[0]}:block/factory_gauge/panel']


MODEL_PATCHES = [
    ModelPatch('funnel_flap',
               lambda path: path in ('block/funnel/flap', 'block/belt_funnel/flap'),
               lambda model, model_id, resolver: expand_funnel_flap(model)),
    ModelPatch('tunnel_flaps',
               lambda path: path.startswith(('block/belt_tunnel/', 'block/tunnel/')),
               add_tunnel_flaps),
    ModelPatch('mechanical_arm_pose',
               lambda path: path == 'block/mechanical_arm/block',
               pose_mechanical_arm,
               _requires_arm_item),
    ModelPatch('factory_gauge',
               lambda path: path == 'block/factory_gauge/block',
               fill_factory_gauge,
               _requires_gauge_panel),
    ModelPatch('pipe_core_faces',
               lambda path: path.startswith('block/fluid_pipe/'),
               lambda model, model_id, resolver: complete_core_faces(model)),
    ModelPatch('pipe_limbs',
               lambda path: path.startswith('block/fluid_pipe/'),
               lambda model, model_id, resolver: add_pipe_limbs(model, model_id)),
]


def patches_for(model_id: str) -> list[ModelPatch]:
    _, path = split_id(model_id)
    return [patch for patch in MODEL_PATCHES if patch.matches(path)]
