"""
Normalizes mod block states to multipart form and attaches sub-part models
the block state never references (cogs, shafts, flaps, nozzles...).

Pipeline per block, in order:
  1. STRUCTURAL_PATCHES  rebuild block states whose authored form is unusable
  2. variants -> multipart
  3. subpart discovery   (allow-listed blocks, needs the model manifest)
  4. FAMILY_APPENDS      fixed extra parts for known block families

Every append goes through _append_unique, so patching a descriptor twice
leaves it unchanged.
"""

import logging
from dataclasses import dataclass
from typing import Callable

from block_model import (condition_key, facing_of, iter_applies, model_dir, model_name,
                         normalize_id, parse_variant_key, split_id)
from geometry_patches import crafter_gear_ids, ensure_arm_cog, publish_crafter_gears
from settings import ENABLE_AUTO_SUBPARTS

log = logging.getLogger(__name__)

SUBPART_TOKENS = ['head', 'blade', 'pole', 'cog', 'cogwheel', 'pointer', 'flap', 'hand', 'fan', 'shaft',
                  'arm', 'middle', 'hose', 'top', 'belt', 'claw', 'body', 'wheel', 'roller', 'valve',
                  'handle', 'casing', 'guard']

# Discovery only runs for these block id substrings
AUTO_SUBPART_BLOCKS = ['funnel', 'tunnel', 'spout', 'mechanical_mixer', 'mechanical_pump',
                       'portable_storage_interface', 'mechanical_saw', 'mechanical_drill', 'deployer',
                       'mechanical_press', 'analog_lever', 'hand_crank', 'weighted_ejector',
                       'create:water_wheel', 'mechanical_roller', 'chain_conveyor']

ROTATION_KEYS = ('x', 'y', 'z', 'uvlock')

# Sub-parts whose axis must follow the block's facing instead of the body's x/y
# (block token, sub-part token, facing -> (x, y))
FACING_OVERRIDES = [
    ('mechanical_pump', 'mechanical_pump/cog', {
        'north': (0, 0), 'south': (0, 180), 'east': (0, 90), 'west': (0, 270),
        'up': (270, 0), 'down': (90, 0),
    }),
    ('mechanical_drill', 'mechanical_drill/head', {
        'north': (0, 0), 'south': (0, 180), 'east': (0, 270), 'west': (0, 90),
        'up': (90, 0), 'down': (270, 0),
    }),
]
# without a facing, pump cogs keep their rotation wrapped into 0..359
WRAP_WITHOUT_FACING = {'mechanical_pump'}


def extract_models(descriptor: dict | None) -> list[str]:
    """Model ids referenced by a block state, in order of first appearance."""
    models = {}
    if not descriptor:
        return []
    for variant in (descriptor.get('variants') or {}).values():
        for apply in iter_applies(variant):
            if apply.get('model'):
                models[apply['model']] = None
    for part in descriptor.get('multipart') or []:
        for apply in iter_applies(part.get('apply')):
            if apply.get('model'):
                models[apply['model']] = None
    return list(models)


def variants_to_multipart(descriptor: dict) -> dict:
    """Move every variant into 'multipart' with its key parsed into a 'when' condition."""
    multipart = descriptor.setdefault('multipart', [])
    variants = descriptor.pop('variants', None)
    if not variants:
        return descriptor
    for key, variant in variants.items():
        entry = {'apply': variant}
        when = parse_variant_key(key)
        if when:
            entry['when'] = when
        multipart.append(entry)
    return descriptor


def _entry_key(apply: dict, when) -> str:
    # absent rotations are 0 and absent uvlock is False
    rot = '|'.join(str(apply.get(k) or 0) for k in ROTATION_KEYS)
    return f"{normalize_id(apply['model'])}|{rot}|{condition_key(when)}"


def _append_unique(descriptor: dict, model: str, when=None, **rotation) -> bool:
    """Append a multipart entry unless an identical one is already present."""
    apply = {'model': model}
    for k in ROTATION_KEYS:
        if rotation.get(k) is not None:
            apply[k] = rotation[k]
    key = _entry_key(apply, when)
    multipart = descriptor.setdefault('multipart', [])
    for part in multipart:
        for existing in iter_applies(part.get('apply')):
            if existing.get('model') and _entry_key(existing, part.get('when')) == key:
                return False
    entry = {'apply': apply}
    if when is not None:
        entry['when'] = when
    multipart.append(entry)
    return True


# ---------------------------------------------------------------------------
# Structural patches
# ---------------------------------------------------------------------------

BELT_HORIZONTAL = {
    'middle': ['belt/middle', 'belt/middle_bottom'],
    'start': ['belt/start', 'belt/start_bottom'],
    'end': ['belt/end', 'belt/end_bottom'],
    'pulley': ['belt_pulley'],
}
BELT_DIAGONAL = {
    'middle': ['belt/diagonal_middle'],
    'start': ['belt/diagonal_start'],
    'end': ['belt/diagonal_end'],
    'pulley': [],
}


def belt_models(props: dict, namespace: str) -> list[str]:
    """Belt states carry only a particle model; pick the real parts from slope/part/casing."""
    part = props.get('part')
    casing = props.get('casing') == 'true'
    if props.get('slope') == 'horizontal':
        models = list(BELT_HORIZONTAL.get(part, []))
        casing_model = f'belt_casing/horizontal_{part}'
    else:
        models = list(BELT_DIAGONAL.get(part, []))
        casing_model = f'belt_casing/diagonal_{part}'
    if casing and part in BELT_HORIZONTAL:
        models.append(casing_model)
    if not models:
        models.append('belt/particle')
    return [f'{namespace}:block/{m}' for m in models]


def patch_belt(descriptor: dict, namespace: str) -> dict:
    variants = descriptor.get('variants')
    if not variants:
        return descriptor
    multipart = []
    for key, variant in variants.items():
        applies = iter_applies(variant)
        if not applies:
            continue
        original = applies[0]
        props = parse_variant_key(key)
        for model in belt_models(props, namespace):
            apply = {'model': model}
            for k in ('x', 'y', 'uvlock'):
                if k in original:
                    apply[k] = original[k]
            entry = {'apply': apply}
            if props:
                entry['when'] = props
            multipart.append(entry)
    del descriptor['variants']
    descriptor['multipart'] = multipart
    return descriptor


@dataclass
class BlockPatch:
    name: str
    matches: Callable[[str], bool]            # block id
    apply: Callable                           # async (patcher, block_id, descriptor)


async def _structural_belt(patcher, block_id, descriptor):
    patch_belt(descriptor, patcher.namespace)


STRUCTURAL_PATCHES = [
    BlockPatch('belt', lambda block_id: split_id(block_id)[1] == 'belt', _structural_belt),
]


# ---------------------------------------------------------------------------
# Family appends
# ---------------------------------------------------------------------------

# (condition, pipe model) pairs, named by the limb each model is patched to carry
ENCASED_PIPE_LIMBS = [
    ({'up': 'true'}, 'fluid_pipe/u_x'),
    ({'down': 'true'}, 'fluid_pipe/d_x'),
    ({'south': 'true'}, 'fluid_pipe/l_x'),
    ({'north': 'true'}, 'fluid_pipe/r_x'),
    ({'east': 'true'}, 'fluid_pipe/l_y'),
    ({'west': 'true'}, 'fluid_pipe/r_y'),
]
# broad per-direction rules so junctions still show every limb
FLUID_PIPE_RULES = [
    ({'up': 'true'}, 'fluid_pipe/u_x'),
    ({'down': 'true'}, 'fluid_pipe/d_x'),
    ({'north': 'true'}, 'fluid_pipe/r_x'),
    ({'south': 'true'}, 'fluid_pipe/l_x'),
    ({'east': 'true'}, 'fluid_pipe/l_z'),
    ({'west': 'true'}, 'fluid_pipe/r_z'),
]
AXIS_ORIENTATION = [
    ({'axis': 'y'}, None, None),
    ({'axis': 'x'}, 90, 90),
    ({'axis': 'z'}, 90, None),
]
SPOUT_NOZZLES = ['spout/top', 'spout/middle', 'spout/bottom']


async def _append_encased_pipe(patcher, block_id, descriptor):
    ns = patcher.namespace
    for axis in ('x', 'y', 'z'):
        _append_unique(descriptor, f'{ns}:block/fluid_pipe/core_{axis}', {'OR': [{}]})
    for when, model in ENCASED_PIPE_LIMBS:
        _append_unique(descriptor, f'{ns}:block/{model}', dict(when))


async def _append_fluid_pipe(patcher, block_id, descriptor):
    for when, model in FLUID_PIPE_RULES:
        _append_unique(descriptor, f'{patcher.namespace}:block/{model}', dict(when))


async def _append_encased_axis(patcher, block_id, descriptor):
    ns = patcher.namespace
    if 'encased_cogwheel' in block_id:
        cog = 'large_cogwheel_shaftless' if 'large' in block_id else 'cogwheel_shaftless'
        model = f'{ns}:block/{cog}'
    else:
        model = f'{ns}:block/shaft'
    for when, x, y in AXIS_ORIENTATION:
        _append_unique(descriptor, model, dict(when), x=x, y=y)


async def _append_crafter_gears(patcher, block_id, descriptor):
    item_id, horizontal_id, vertical_id = crafter_gear_ids(patcher.namespace)
    await patcher.resolver.resolve_model(item_id)
    gear_model = publish_crafter_gears(patcher.resolver, patcher.namespace)
    if not gear_model:
        return
    generated = {horizontal_id, vertical_id}
    for part in list(descriptor.get('multipart') or []):
        applies = iter_applies(part.get('apply'))
        if not applies or normalize_id(applies[0].get('model', '')) in generated:
            continue
        apply = applies[0]
        facing = facing_of(part.get('when'))
        extra_x = 180 if facing == 'down' else 0 if facing == 'up' else 90
        _append_unique(descriptor, gear_model, part.get('when'),
                       x=(apply.get('x', 0) + extra_x) % 360, y=apply.get('y', 0) % 360,
                       uvlock=apply.get('uvlock'))


async def _append_arm_cog(patcher, block_id, descriptor):
    ns = patcher.namespace
    await patcher.resolver.resolve_model(f'{ns}:block/mechanical_arm/item')
    cog_id = ensure_arm_cog(patcher.resolver, ns)
    if not cog_id:
        return
    for part in list(descriptor.get('multipart') or []):
        for apply in iter_applies(part.get('apply')):
            if normalize_id(apply.get('model', '')) == cog_id:
                continue
            _append_unique(descriptor, cog_id, part.get('when'),
                           x=apply.get('x', 0) % 360, y=apply.get('y', 0) % 360,
                           uvlock=apply.get('uvlock'))


async def _append_spout_nozzles(patcher, block_id, descriptor):
    for nozzle in SPOUT_NOZZLES:
        model = f'{patcher.namespace}:block/{nozzle}'
        if await patcher.resolver.resolve_model(model) is None:
            continue
        if model in patcher.referenced(descriptor):
            continue
        _append_unique(descriptor, model)
        patcher.log_subpart(block_id, f'{patcher.namespace}:block/spout/block', model, None)


async def _append_flaps(patcher, block_id, descriptor):
    """Belt funnel / tunnel flaps follow the base part's rotation; vertical funnels have none."""
    ns = patcher.namespace
    flaps = []
    if 'funnel' in block_id:
        flaps.append((f'{ns}:block/funnel/flap', 'funnel'))
        flaps.append((f'{ns}:block/belt_funnel/flap', 'belt_funnel'))
    if 'tunnel' in block_id:
        flaps.append((f'{ns}:block/belt_tunnel/flap', 'tunnel'))

    base_parts = list(descriptor.get('multipart') or [])
    primary = next(iter(extract_models(descriptor)), block_id)
    for flap_id, source_token in flaps:
        if await patcher.resolver.resolve_model(flap_id) is None:
            log.warning('[Patcher] Missing flap model %s for %s; skipping attachment.', flap_id, block_id)
            continue
        for part in base_parts:
            when = part.get('when')
            if facing_of(when) in ('up', 'down'):
                continue
            for apply in iter_applies(part.get('apply')):
                model = apply.get('model') or ''
                if source_token not in model or model_name(model) == 'flap':
                    continue
                if _append_unique(descriptor, flap_id, when, x=apply.get('x'), y=apply.get('y')):
                    patcher.log_subpart(block_id, primary, flap_id, when)


async def _append_mixer_cog(patcher, block_id, descriptor):
    cog = f'{patcher.namespace}:block/cogwheel_shaftless'
    if await patcher.resolver.resolve_model(cog) is None:
        return
    if cog in patcher.referenced(descriptor):
        return
    _append_unique(descriptor, cog)
    patcher.log_subpart(block_id, next(iter(extract_models(descriptor)), block_id), cog, None)


def _named(name: str) -> Callable[[str], bool]:
    return lambda block_id: split_id(block_id)[1] == name


FAMILY_APPENDS = [
    BlockPatch('encased_fluid_pipe', _named('encased_fluid_pipe'), _append_encased_pipe),
    BlockPatch('fluid_pipe', _named('fluid_pipe'), _append_fluid_pipe),
    BlockPatch('encased_axis',
               lambda block_id: 'encased_cogwheel' in block_id or 'encased_shaft' in block_id,
               _append_encased_axis),
    BlockPatch('mechanical_crafter_gears', _named('mechanical_crafter'), _append_crafter_gears),
    BlockPatch('mechanical_arm_cog', _named('mechanical_arm'), _append_arm_cog),
    BlockPatch('spout_nozzles', lambda block_id: 'spout' in block_id, _append_spout_nozzles),
    BlockPatch('flaps', lambda block_id: 'funnel' in block_id or 'tunnel' in block_id, _append_flaps),
    BlockPatch('mixer_cog', lambda block_id: 'mechanical_mixer' in block_id, _append_mixer_cog),
]


# ---------------------------------------------------------------------------
# Patcher
# ---------------------------------------------------------------------------

class BlockstatePatcher:
    def __init__(self, resolver, model_manifest=None, enable_auto_subparts: bool = ENABLE_AUTO_SUBPARTS):
        self.resolver = resolver
        self.namespace = resolver.namespace
        self.model_manifest: list[str] = sorted(set(model_manifest or []))
        self.enable_auto_subparts = enable_auto_subparts
        self.auto_subpart_log: list[dict] = []

    def log_subpart(self, block_id: str, base_model: str, subpart: str, when):
        self.auto_subpart_log.append({
            'block_id': block_id,
            'base_model': base_model,
            'subpart': subpart,
            'when': dict(when) if isinstance(when, dict) else None,
        })

    @staticmethod
    def referenced(descriptor: dict) -> set[str]:
        return {normalize_id(m) for m in extract_models(descriptor)}

    async def patch(self, block_id: str, descriptor: dict | None) -> dict:
        """Patch `descriptor` in place and return it; None becomes an empty multipart."""
        if descriptor is None:
            return {'multipart': []}

        for patch in STRUCTURAL_PATCHES:
            if patch.matches(block_id):
                await patch.apply(self, block_id, descriptor)

        variants_to_multipart(descriptor)

        if self.enable_auto_subparts and any(token in block_id for token in AUTO_SUBPART_BLOCKS):
            await self.preload_subparts(extract_models(descriptor))
            self.attach_subparts(block_id, descriptor)

        for patch in FAMILY_APPENDS:
            if patch.matches(block_id):
                await patch.apply(self, block_id, descriptor)
        return descriptor

    # -- discovery ------------------------------------------------------------

    def subpart_candidates(self, base_model: str) -> list[str]:
        """Manifest ids near `base_model` whose file name carries a sub-part token."""
        base_model = normalize_id(base_model)
        ns, path = split_id(base_model)
        parts = path.split('/')
        dirs = {}

        if len(parts) >= 3 and parts[0] == 'block':
            dirs[f'{ns}:{parts[0]}/{parts[1]}'] = None
        lower = path.lower()
        if 'funnel' in lower:
            dirs[f'{ns}:block/funnel'] = None
            dirs[f'{ns}:block/belt_funnel'] = None
        if 'tunnel' in lower:
            dirs[f'{ns}:block/tunnel'] = None
            dirs[f'{ns}:block/belt_tunnel'] = None
        # the root block directory would sweep the whole manifest
        base_dir = model_dir(base_model)
        if base_dir != f'{ns}:block':
            dirs[base_dir] = None

        candidates = []
        for d in dirs:
            for candidate in self.model_manifest:
                if not candidate.startswith(d + '/') or candidate == base_model:
                    continue
                if any(token in model_name(candidate) for token in SUBPART_TOKENS):
                    candidates.append(candidate)
        return candidates

    async def preload_subparts(self, models: list[str]):
        queued = set()
        for model in models:
            for candidate in self.subpart_candidates(model):
                if candidate in queued:
                    continue
                queued.add(candidate)
                await self.resolver.resolve_model(candidate)

    def attach_subparts(self, block_id: str, descriptor: dict):
        """Attach resolved sibling sub-parts next to every base model that uses them."""
        usage: dict[str, list] = {}
        for part in descriptor.get('multipart') or []:
            for apply in iter_applies(part.get('apply')):
                if apply.get('model'):
                    usage.setdefault(normalize_id(apply['model']), []).append((apply, part.get('when')))
        referenced = set(usage)

        for base_model, entries in usage.items():
            directory = model_dir(base_model)
            if directory.endswith(':block'):
                continue
            for candidate in self.model_manifest:
                if not candidate.startswith(directory + '/') or candidate in referenced:
                    continue
                if not any(token in model_name(candidate) for token in SUBPART_TOKENS):
                    continue
                if not self.resolver.has_model(candidate):
                    continue
                for base_apply, when in entries:
                    rotation = {k: base_apply[k] for k in ROTATION_KEYS if k in base_apply}
                    rotation.update(self._facing_override(block_id, candidate, when, rotation))
                    if _append_unique(descriptor, candidate, when, **rotation):
                        self.log_subpart(block_id, base_model, candidate, when)

    @staticmethod
    def _facing_override(block_id: str, candidate: str, when, rotation: dict) -> dict:
        for block_token, part_token, table in FACING_OVERRIDES:
            if block_token not in block_id or part_token not in candidate:
                continue
            facing = facing_of(when)
            if facing in table:
                x, y = table[facing]
                return {'x': x, 'y': y}
            if block_token in WRAP_WITHOUT_FACING:
                return {'x': rotation.get('x', 0) % 360, 'y': rotation.get('y', 0) % 360}
            return {}
        return {}
