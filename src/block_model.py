"""
Helpers shared by the resolver, the patcher and the geometry patches.

Block states and models stay the raw JSON dicts they are parsed from:
  - blockstate: {'variants': {key: ref | [ref]}} or {'multipart': [{'when', 'apply'}]}
  - model: {'parent', 'textures', 'elements' | 'loader' + 'model', 'children'}
  - element: {'from', 'to', 'rotation', 'faces': {face_name: {'texture', 'uv', ...}}}
"""

import copy
import json
from dataclasses import dataclass

from settings import DEFAULT_NAMESPACE, MAX_TEXTURE_REF_DEPTH

FACE_NAMES = ['up', 'down', 'north', 'south', 'west', 'east']

# Unit normals per face, used to relabel faces after rotating geometry
FACE_NORMALS = {
    'up':    (0, 1, 0),
    'down':  (0, -1, 0),
    'north': (0, 0, -1),
    'south': (0, 0, 1),
    'west':  (-1, 0, 0),
    'east':  (1, 0, 0),
}

# The shared core cuboid of connector models (pipes)
CORE_FROM = [4, 4, 4]
CORE_TO = [12, 12, 12]


def normalize_id(ref: str) -> str:
    """'block/stone' -> 'minecraft:block/stone'. Ids with a namespace are returned as-is."""
    if ':' not in ref:
        return f'{DEFAULT_NAMESPACE}:{ref}'
    return ref


def split_id(ref: str) -> tuple[str, str]:
    namespace, path = normalize_id(ref).split(':', 1)
    return namespace, path


def model_dir(ref: str) -> str:
    """Directory part of a model id: 'create:block/pump/cog' -> 'create:block/pump'."""
    ref = normalize_id(ref)
    return ref[:ref.rfind('/')] if '/' in ref else ref


def model_name(ref: str) -> str:
    return ref[ref.rfind('/') + 1:]


@dataclass(frozen=True)
class TextureId:
    """A direct texture id such as 'create:block/axis'."""
    id: str


@dataclass(frozen=True)
class TextureVar:
    """A '#name' indirection to another entry of the textures mapping."""
    name: str


def parse_texture_ref(value: str) -> TextureId | TextureVar:
    if value.startswith('#'):
        return TextureVar(value[1:])
    return TextureId(value)


def resolve_texture(textures: dict, value: str) -> str | None:
    """Follow '#var' chains through `textures` until a direct id is found.

    Returns None for dangling variables and for chains longer than
    MAX_TEXTURE_REF_DEPTH (self references, cycles).
    """
    ref = parse_texture_ref(value)
    depth = 0
    while isinstance(ref, TextureVar):
        depth += 1
        if depth > MAX_TEXTURE_REF_DEPTH:
            return None
        target = textures.get(ref.name)
        if not isinstance(target, str) or not target:
            return None
        ref = parse_texture_ref(target)
    return ref.id


def direct_textures(textures: dict) -> list[str]:
    """All texture values that are ids rather than '#var' indirections."""
    return [v for v in textures.values()
            if isinstance(v, str) and v and isinstance(parse_texture_ref(v), TextureId)]


def parse_variant_key(key: str) -> dict[str, str]:
    """Parse a variant key: "facing=east,half=bottom" -> {'facing': 'east', 'half': 'bottom'}.
    Pairs without a key or a value are ignored."""
    props = {}
    if not key:
        return props
    for pair in key.split(','):
        if '=' not in pair:
            continue
        k, v = pair.split('=', 1)
        k, v = k.strip(), v.strip()
        if k and v:
            props[k] = v
    return props


def iter_applies(apply) -> list[dict]:
    """A multipart 'apply' (or a variant entry) is one model reference or a weighted list."""
    if isinstance(apply, list):
        return [a for a in apply if isinstance(a, dict)]
    if isinstance(apply, dict):
        return [apply]
    return []


def condition_key(when) -> str:
    return json.dumps(when or {}, sort_keys=True)


def iter_conditions(when) -> list[dict]:
    """Flat property conditions inside a 'when', with OR / AND combinators unrolled."""
    if not isinstance(when, dict):
        return []
    for combinator in ('OR', 'AND'):
        if isinstance(when.get(combinator), list):
            out = []
            for sub in when[combinator]:
                out.extend(iter_conditions(sub))
            return out
    return [when]


def facing_of(when) -> str | None:
    """The 'facing' value of a flat condition; combinators have no single facing."""
    if not isinstance(when, dict) or 'OR' in when or 'AND' in when:
        return None
    return when.get('facing')


def clone(data):
    return copy.deepcopy(data)


def is_cuboid(element) -> bool:
    return isinstance(element, dict) and 'from' in element and 'to' in element


def find_core_element(elements: list) -> dict | None:
    for element in elements:
        if is_cuboid(element) and element['from'] == CORE_FROM and element['to'] == CORE_TO:
            return element
    return None


def translate_elements(elements: list, dx: float, dy: float, dz: float) -> list:
    """Shift cuboids (and their rotation origins and nested children) in place."""
    for el in elements:
        if not isinstance(el, dict):
            continue
        if 'from' in el:
            el['from'] = [el['from'][0] + dx, el['from'][1] + dy, el['from'][2] + dz]
        if 'to' in el:
            el['to'] = [el['to'][0] + dx, el['to'][1] + dy, el['to'][2] + dz]
        origin = (el.get('rotation') or {}).get('origin')
        if origin:
            el['rotation']['origin'] = [origin[0] + dx, origin[1] + dy, origin[2] + dz]
        if isinstance(el.get('children'), list):
            translate_elements(el['children'], dx, dy, dz)
    return elements
