"""
Resolves mod model ids into flattened, patched model dicts and loads their textures.

One resolver serves one structure load. Its tables (visited ids, models,
textures, missing resources) are private: callers get copies, and only the
resolution code and the geometry patches (through get_model / publish_model)
write to them.

Resolution of a model id:
  1. skip ids already visited (a revisit counts as resolved, so reference
     cycles end with an incomplete model instead of an error)
  2. fetch models/<path>.json, resolving its parent first
  3. OBJ models: geometry comes from the referenced .obj file
  4. flatten composite children, run the geometry patches, cache
  5. load every direct texture the model declares
Models that cannot be fetched fall back to a synthesized funnel model, then to
the model without its 'smart_' prefix, and are otherwise recorded as missing.
"""

import logging

from block_model import (clone, direct_textures, is_cuboid, normalize_id, split_id)
from geometry_patches import patches_for
from meshes.obj_importer import parse_obj, remap_obj_materials
from resource_provider import ResourceNotFoundError
from settings import MOD_NAMESPACE, SMART_PREFIX

log = logging.getLogger(__name__)

FUNNEL_TEXTURES = {
    'back': 'block/funnel/funnel_open',
    'base': 'block/funnel/funnel_open',
    'redstone': 'block/funnel/funnel_closed',
    'particle': 'block/brass_block',
    'block': 'block/brass_block',
}


def build_funnel_fallback(model_id: str, namespace: str = MOD_NAMESPACE) -> dict | None:
    """Funnel variants without an authored file: a parent chosen by name plus funnel textures."""
    prefix = f'{namespace}:block/'
    if not model_id.startswith(prefix):
        return None
    name = model_id[len(prefix):]
    if 'funnel' not in name:
        return None

    textures = {key: f'{namespace}:{path}' for key, path in FUNNEL_TEXTURES.items()}
    direction = 'block/funnel/funnel_closed' if 'push' in name else 'block/funnel/funnel_open'
    textures['direction'] = f'{namespace}:{direction}'

    if 'belt_funnel' in name:
        parent = 'block_retracted'
        for state in ('extended', 'pulling', 'pushing'):
            if state in name:
                parent = f'block_{state}'
                break
        return {'parent': f'{namespace}:block/belt_funnel/{parent}', 'textures': textures}

    parent = 'block_horizontal'
    if 'vertical' in name:
        parent = 'block_vertical_filterless' if 'filterless' in name else 'block_vertical'
    return {'parent': f'{namespace}:block/funnel/{parent}', 'textures': textures}


def merge_child_textures(model: dict, child: dict, child_name: str) -> dict[str, str]:
    """Copy a child's textures into `model` under collision-free keys.
    Returns child key -> new key. The child's own '#var' values are rewritten
    to the renamed keys so they still resolve inside `model`."""
    textures = model.setdefault('textures', {})
    mapping = {}
    child_textures = child.get('textures')
    if not isinstance(child_textures, dict):
        return mapping
    for key, value in child_textures.items():
        if not isinstance(value, str) or not value:
            continue
        # variables are rewritten below, so they never share a slot
        is_var = value.startswith('#')
        if key == 'particle':
            free = not textures.get('particle') or (not is_var and textures['particle'] == value)
            candidate = 'particle' if free else f'{child_name}_particle'
        else:
            candidate = f'{child_name}_{key}'
        final = candidate
        suffix = 0
        while textures.get(final) and (is_var or textures[final] != value):
            suffix += 1
            final = f'{candidate}_{suffix}'
        textures[final] = value
        mapping[key] = final

    for key, final in mapping.items():
        value = child_textures[key]
        if value.startswith('#') and value[1:] in mapping:
            textures[final] = f'#{mapping[value[1:]]}'
    return mapping


def remap_element_textures(element: dict, mapping: dict[str, str]):
    for face in (element.get('faces') or {}).values():
        texture = (face or {}).get('texture')
        if not isinstance(texture, str) or not texture.startswith('#'):
            continue
        mapped = mapping.get(texture[1:])
        if mapped:
            face['texture'] = f'#{mapped}'


def flatten_children(model: dict) -> dict:
    """Fold composite 'children' sub-models into the model's own elements (depth-first)."""
    children = model.get('children')
    if not isinstance(children, dict):
        return model
    had_elements = isinstance(model.get('elements'), list)
    elements = model.get('elements') or []
    for child_name, child in children.items():
        if not isinstance(child, dict):
            continue
        flatten_children(child)
        mapping = merge_child_textures(model, child, child_name)
        child_elements = child.get('elements')
        if not isinstance(child_elements, list):
            continue
        for element in child_elements:
            copy = clone(element)
            if is_cuboid(copy):
                remap_element_textures(copy, mapping)
            elements.append(copy)
    # an explicit elements list hides the parent's geometry
    if had_elements or elements:
        model['elements'] = elements
    del model['children']
    return model


class ModelResolver:
    def __init__(self, provider, namespace: str = MOD_NAMESPACE):
        self.provider = provider
        self.namespace = namespace
        self._visited: set[str] = set()
        self._models: dict[str, dict] = {}
        self._textures: dict[str, bytes] = {}
        self._missing: set[str] = set()

    # -- read access --------------------------------------------------------

    @property
    def models(self) -> dict[str, dict]:
        return dict(self._models)

    @property
    def textures(self) -> dict[str, bytes]:
        return dict(self._textures)

    @property
    def missing_resources(self) -> list[str]:
        return sorted(self._missing)

    def owns(self, ref: str) -> bool:
        return split_id(ref)[0] == self.namespace

    def get_model(self, model_id: str) -> dict | None:
        return self._models.get(normalize_id(model_id))

    def has_model(self, model_id: str) -> bool:
        return normalize_id(model_id) in self._models

    def publish_model(self, model_id: str, model: dict):
        """Store a synthesized model (e.g. a split-off kinetic part) under its own id."""
        model_id = normalize_id(model_id)
        self._models[model_id] = model
        self._visited.add(model_id)

    def record_missing(self, descriptor: str):
        if descriptor in self._missing:
            return
        self._missing.add(descriptor)
        log.info('[Resolver] Missing %s', descriptor)

    def collect_textures(self, model: dict) -> dict:
        """Textures along the parent chain, child entries over parent entries."""
        chain = []
        seen = set()
        current = model
        while current is not None:
            chain.append(current)
            parent = current.get('parent')
            if not parent:
                break
            parent = normalize_id(parent)
            if parent in seen:
                break
            seen.add(parent)
            current = self._models.get(parent)
        textures = {}
        for m in reversed(chain):
            textures.update(m.get('textures') or {})
        return textures

    # -- provider access (failures are absences) -------------------------------

    async def _fetch_json(self, path: str):
        try:
            return await self.provider.get_json(path)
        except ResourceNotFoundError as e:
            log.debug('[Resolver] Provider error for %s: %s', path, e.reason)
            return None

    async def _fetch_text(self, path: str) -> str | None:
        try:
            return await self.provider.get_text(path)
        except ResourceNotFoundError as e:
            log.debug('[Resolver] Provider error for %s: %s', path, e.reason)
            return None

    async def _fetch_bytes(self, path: str) -> bytes | None:
        try:
            return await self.provider.get_bytes(path)
        except ResourceNotFoundError as e:
            log.debug('[Resolver] Provider error for %s: %s', path, e.reason)
            return None

    async def _fetch_model(self, model_id: str) -> dict | None:
        _, path = split_id(model_id)
        data = await self._fetch_json(f'models/{path}.json')
        if data is not None and not isinstance(data, dict):
            log.warning('[Resolver] Ignoring %s: model json is not an object', model_id)
            return None
        return data

    # -- resolution ---------------------------------------------------------

    async def resolve_model(self, model_id: str) -> dict | None:
        model_id = normalize_id(model_id)
        if model_id in self._visited:
            return self._models.get(model_id)
        self._visited.add(model_id)
        if model_id in self._models:
            return self._models[model_id]
        # other namespaces (vanilla parents such as block/cube_all) are resolved elsewhere
        if not self.owns(model_id):
            return None

        model = await self._fetch_model(model_id)
        if model is None:
            return await self._resolve_fallback(model_id)

        if model.get('parent'):
            await self.resolve_model(model['parent'])
        if 'obj' in (model.get('loader') or ''):
            await self._load_obj_geometry(model, model_id)
        return await self._finish(model_id, model)

    async def _resolve_fallback(self, model_id: str) -> dict | None:
        synthetic = build_funnel_fallback(model_id, self.namespace)
        if synthetic is not None:
            await self.resolve_model(synthetic['parent'])
            return await self._finish(model_id, synthetic)

        if SMART_PREFIX in model_id:
            fallback_id = model_id.replace(SMART_PREFIX, '', 1)
            fallback = await self._fetch_model(fallback_id)
            if fallback is not None:
                log.warning('[Resolver] Missing %s, using fallback %s', model_id, fallback_id)
                if fallback.get('parent'):
                    await self.resolve_model(fallback['parent'])
                return await self._finish(model_id, fallback)

        self.record_missing(f'Model: {model_id}')
        return None

    async def _finish(self, model_id: str, model: dict) -> dict:
        flatten_children(model)
        for patch in patches_for(model_id):
            for required in patch.requires(model_id):
                await self.resolve_model(required)
            patch.apply(model, model_id, self)
        self._models[model_id] = model

        for texture in direct_textures(model.get('textures') or {}):
            await self.load_texture(texture)
        return model

    async def _load_obj_geometry(self, model: dict, model_id: str):
        obj_path = model.get('model')
        if not obj_path:
            return
        if not obj_path.endswith('.obj'):
            obj_path += '.obj'
        relative = obj_path.split(':', 1)[1] if ':' in obj_path else obj_path
        if relative.startswith('models/'):
            relative = relative[len('models/'):]

        text = await self._fetch_text(f'models/{relative}')
        if text is None:
            log.warning('[Resolver] Failed to load OBJ: models/%s', relative)
            model['elements'] = []
            return

        parts = parse_obj(text)
        available = self.collect_textures(model)
        remap_obj_materials(parts, model_id, available)
        for texture in direct_textures(available):
            await self.load_texture(texture)
        model['elements'] = parts

    async def load_texture(self, texture_id: str):
        texture_id = normalize_id(texture_id)
        if not self.owns(texture_id):
            return
        if texture_id in self._textures or f'Texture: {texture_id}' in self._missing:
            return

        _, path = split_id(texture_id)
        blob = await self._fetch_bytes(f'textures/{path}.png')
        if blob is None:
            self.record_missing(f'Texture: {texture_id}')
            return
        self._textures[texture_id] = blob

        # fluids animate between a still and a flowing texture
        if '/fluid/' in texture_id and '_still' in texture_id:
            await self.load_texture(texture_id.replace('_still', '_flow'))
