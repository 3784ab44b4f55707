"""
Loads everything needed to render a structure: the vanilla bundle (block
states, models, atlas) plus every mod block the structure uses, merged into
one ResourceBundle.
"""

import asyncio
import logging
from dataclasses import dataclass, field

import pygame as pg

from atlas_merger import TextureAtlas, merge_atlases
from block_model import iter_conditions, normalize_id, parse_variant_key, split_id
from blockstate_patcher import BlockstatePatcher, extract_models
from model_manifest import ManifestError, load_model_manifest
from model_resolver import ModelResolver
from resource_provider import ResourceNotFoundError
from settings import DEFAULT_NAMESPACE, ENABLE_AUTO_SUBPARTS

log = logging.getLogger(__name__)

VANILLA_BLOCK_DEFINITIONS = 'block_definition.json'
VANILLA_MODELS = 'model.json'
VANILLA_ATLAS_UVS = 'atlas.json'
VANILLA_ATLAS_IMAGE = 'atlas.png'


class AssetLoadError(Exception):
    """A required vanilla resource could not be loaded."""


@dataclass
class VanillaAssets:
    block_states: dict
    block_models: dict
    uv_map: dict
    atlas_image: pg.Surface


@dataclass
class AssetBundle:
    definitions: dict[str, dict] = field(default_factory=dict)
    models: dict[str, dict] = field(default_factory=dict)
    textures: dict[str, bytes] = field(default_factory=dict)
    missing_resources: list[str] = field(default_factory=list)
    auto_subparts: list[dict] = field(default_factory=list)


@dataclass
class ResourceBundle:
    block_definitions: dict[str, dict]
    block_models: dict[str, dict]
    atlas: TextureAtlas
    block_properties: dict[str, dict[str, list[str]]]
    default_properties: dict[str, dict[str, str]]
    auto_subparts: list[dict]
    missing_resources: list[str]
    _warned_definitions: set = field(default_factory=set, repr=False)
    _warned_models: set = field(default_factory=set, repr=False)

    def _warn_once(self, seen: set, key: str, what: str):
        if key in seen:
            return
        seen.add(key)
        log.warning('[Resources] Missing %s for %s', what, key)

    def get_block_definition(self, block_id: str) -> dict | None:
        key = normalize_id(block_id)
        definition = self.block_definitions.get(key)
        if definition is None:
            self._warn_once(self._warned_definitions, key, 'block definition')
        return definition

    def get_block_model(self, model_id: str) -> dict | None:
        key = normalize_id(model_id)
        model = self.block_models.get(key)
        if model is None:
            self._warn_once(self._warned_models, key, 'block model')
        return model

    def get_texture_uv(self, texture_id: str):
        return self.atlas.get_uv(texture_id)

    def get_block_properties(self, block_id: str):
        return self.block_properties.get(normalize_id(block_id))

    def get_default_block_properties(self, block_id: str):
        return self.default_properties.get(normalize_id(block_id))


async def load_vanilla_assets(provider) -> VanillaAssets:
    try:
        block_states, block_models, uv_map, atlas_image = await asyncio.gather(
            provider.get_json(VANILLA_BLOCK_DEFINITIONS),
            provider.get_json(VANILLA_MODELS),
            provider.get_json(VANILLA_ATLAS_UVS),
            provider.get_image(VANILLA_ATLAS_IMAGE),
        )
    except ResourceNotFoundError as e:
        raise AssetLoadError(f'Failed to load vanilla assets: {e}') from e
    return VanillaAssets(block_states, block_models, uv_map, atlas_image)


def implicit_models(block_id: str, namespace: str) -> list[str]:
    """Models a patched block state needs beyond the ones it names."""
    extra = []
    if 'encased_cogwheel' in block_id:
        extra.append(f'{namespace}:block/cogwheel_shaftless')
        extra.append(f'{namespace}:block/large_cogwheel_shaftless')
    if 'encased_shaft' in block_id:
        extra.append(f'{namespace}:block/shaft')
    if 'mechanical_mixer' in block_id:
        extra.append(f'{namespace}:block/cogwheel_shaftless')
    return extra


async def load_block(block_id: str, resolver: ModelResolver, patcher: BlockstatePatcher) -> dict | None:
    """Fetch, patch and resolve one mod block. Returns its patched block state, or None if absent."""
    _, path = split_id(block_id)
    try:
        raw = await resolver.provider.get_json(f'blockstates/{path}.json')
    except ResourceNotFoundError:
        raw = None
    if not isinstance(raw, dict):
        resolver.record_missing(f'Blockstate: {block_id}')
        return None

    definition = await patcher.patch(block_id, raw)
    for model_id in extract_models(definition) + implicit_models(block_id, resolver.namespace):
        await resolver.resolve_model(model_id)
    return definition


async def load_mod_assets(block_ids, resolver: ModelResolver, patcher: BlockstatePatcher) -> AssetBundle:
    block_ids = [normalize_id(b) for b in block_ids]
    owned = [b for b in dict.fromkeys(block_ids) if resolver.owns(b)]
    log.info('[Loader] Loading assets for %d %s blocks...', len(owned), resolver.namespace)

    definitions = {}
    for block_id in owned:
        try:
            definition = await load_block(block_id, resolver, patcher)
        except Exception:
            log.exception('[Loader] Failed to load assets for %s', block_id)
            continue
        if definition is not None:
            definitions[block_id] = definition

    missing = resolver.missing_resources
    if missing:
        log.warning('[Loader] Missing %s resources: %s', resolver.namespace, ', '.join(missing))

    return AssetBundle(
        definitions=definitions,
        models=resolver.models,
        textures=resolver.textures,
        missing_resources=missing,
        auto_subparts=list(patcher.auto_subpart_log),
    )


def _when_options(value) -> list[str]:
    if value is None:
        return ['']
    if isinstance(value, list):
        return [str(v) for v in value]
    if isinstance(value, bool):
        return [str(value).lower()]
    return str(value).split('|')


def _collect_when(when, properties: dict):
    for condition in iter_conditions(when):
        for key, value in condition.items():
            for option in _when_options(value):
                properties.setdefault(key, {})[option] = None


def build_property_table(descriptor: dict) -> tuple[dict[str, list[str]], dict[str, str]]:
    """Property -> possible values, and a default state, as seen in a block state."""
    properties: dict[str, dict] = {}
    defaults: dict[str, str] = {}

    variants = descriptor.get('variants') or {}
    for key in variants:
        parsed = parse_variant_key(key)
        for k, v in parsed.items():
            properties.setdefault(k, {})[v] = None
        if not defaults and not key.strip():
            defaults = parsed
    if variants and not defaults:
        defaults = parse_variant_key(next(iter(variants)))

    multipart = descriptor.get('multipart') or []
    for part in multipart:
        _collect_when(part.get('when'), properties)
    if multipart and not defaults:
        first = next((p['when'] for p in multipart if p.get('when')), None)
        if first:
            for condition in iter_conditions(first):
                for k, v in condition.items():
                    defaults.setdefault(k, _when_options(v)[0])
                break

    table = {k: list(values) for k, values in properties.items()}
    for k, values in table.items():
        if k not in defaults and values:
            defaults[k] = values[0]
    return table, defaults


async def _load_manifest_or_none(provider):
    try:
        return await load_model_manifest(provider)
    except ManifestError as e:
        log.warning('[Loader] %s; sub-part discovery disabled', e)
        return None


async def load_resources_for_structure(block_ids, vanilla_provider, mod_provider, model_manifest=None,
                                       enable_auto_subparts: bool | None = None) -> ResourceBundle:
    if model_manifest is not None:
        vanilla = await load_vanilla_assets(vanilla_provider)
        manifest = model_manifest
    else:
        vanilla, manifest = await asyncio.gather(
            load_vanilla_assets(vanilla_provider),
            _load_manifest_or_none(mod_provider),
        )

    if enable_auto_subparts is None:
        enable_auto_subparts = ENABLE_AUTO_SUBPARTS
    resolver = ModelResolver(mod_provider)
    patcher = BlockstatePatcher(resolver, manifest, enable_auto_subparts=enable_auto_subparts and manifest is not None)
    mod = await load_mod_assets(block_ids, resolver, patcher)
    atlas = merge_atlases(vanilla.atlas_image, vanilla.uv_map, mod.textures)

    definitions = {f'{DEFAULT_NAMESPACE}:{k}': v for k, v in vanilla.block_states.items()}
    definitions.update(mod.definitions)
    models = {f'{DEFAULT_NAMESPACE}:{k}': v for k, v in vanilla.block_models.items()}
    models.update(mod.models)

    block_properties = {}
    default_properties = {}
    for block_id, definition in definitions.items():
        table, defaults = build_property_table(definition)
        if table:
            block_properties[block_id] = table
        if defaults:
            default_properties[block_id] = defaults

    return ResourceBundle(
        block_definitions=definitions,
        block_models=models,
        atlas=atlas,
        block_properties=block_properties,
        default_properties=default_properties,
        auto_subparts=mod.auto_subparts,
        missing_resources=mod.missing_resources,
    )
