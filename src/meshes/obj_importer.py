"""
Imports Wavefront OBJ meshes referenced by models with an OBJ loader.

Each material ('usemtl') becomes one ObjMeshPart. Faces are fan-triangulated
and stored quad-style: every triangle (v0, vi-1, vi) is kept as the quad
(v0, vi-1, vi, vi) so the result slots into quad-based mesh building.

Per quad arrays (float32):
  positions  (n, 4, 3)   model space, 16 units per block
  uvs        (n, 4, 2)   top-left origin (v flipped from OBJ)
  normals    (n, 4, 3)   zero when the face gives no normal
"""

from dataclasses import dataclass, field

import numpy as np

from block_model import resolve_texture
from settings import BLOCK_UNITS, OBJ_METER_LIMIT

# Helper geometry (hitboxes) in source files; never rendered
BOUNDING_PREFIX = 'Bounding'
DEFAULT_MATERIAL = 'particle'
DEFAULT_TEXTURE_KEY = '0'

# (model id token, OBJ material -> texture variable), checked in order
FAMILY_MATERIAL_ALIASES = [
    ('crushing_wheel', {
        'crushing_wheel_insert': 'insert',
        'crushing_wheel_plates': 'plates',
        'm_axis': 'axis',
        'm_axis_top': 'axis_top',
        'm_spruce_log_top': 'spruce_log_top',
    }),
    ('mechanical_roller', {
        'roller_wheel': 'wheel',
    }),
    ('chain_conveyor', {
        'casing': 'conveyor_casing',
        'bullwheel': 'bullwheel',
        'axis': 'axis',
        'axis_top': 'axis_top',
        'port': 'conveyor_port',
    }),
    ('water_wheel', {
        'waterwheel_log': 'log',
        'waterwheel_plank': 'planks',
        'waterwheel_metal': 'metal',
        'waterwheel_stripped_log': 'log_top',
        'axis': 'axis',
        'axis_top': 'axis_top',
    }),
    ('valve_handle', {
        'Material': '3',
    }),
]


@dataclass
class ObjMeshPart:
    texture: str
    positions: np.ndarray = field(default_factory=lambda: np.empty((0, 4, 3), dtype='f4'))
    uvs: np.ndarray = field(default_factory=lambda: np.empty((0, 4, 2), dtype='f4'))
    normals: np.ndarray = field(default_factory=lambda: np.empty((0, 4, 3), dtype='f4'))

    @property
    def triangle_count(self) -> int:
        return len(self.positions)

    def is_empty(self) -> bool:
        return self.triangle_count == 0


def _is_bounding(tokens: list[str]) -> bool:
    name = tokens[1] if len(tokens) > 1 else ''
    return name.startswith(BOUNDING_PREFIX)


def detect_scale(lines: list[str]) -> float:
    """16 when every non-bounding vertex lies within OBJ_METER_LIMIT (authored in blocks), else 1."""
    max_coord = 0.0
    checking = True
    for line in lines:
        tokens = line.split()
        if not tokens:
            continue
        if tokens[0] in ('o', 'g'):
            checking = not _is_bounding(tokens)
        elif tokens[0] == 'v' and checking:
            for t in tokens[1:4]:
                max_coord = max(max_coord, abs(float(t)))
    if 0 < max_coord <= OBJ_METER_LIMIT:
        return float(BLOCK_UNITS)
    return 1.0


def _index(token: str, count: int) -> int | None:
    if not token:
        return None
    idx = int(token)
    # OBJ indices are 1-based; negatives count back from the end
    idx = idx - 1 if idx > 0 else count + idx
    if idx < 0 or idx >= count:
        return None
    return idx


def parse_obj(text: str) -> list[ObjMeshPart]:
    lines = text.split('\n')
    scale = detect_scale(lines)

    positions: list[tuple] = []
    uvs: list[tuple] = []
    normals: list[tuple] = []

    parts = []
    material = DEFAULT_MATERIAL
    quads_pos, quads_uv, quads_norm = [], [], []
    ignore_object = False

    def flush():
        nonlocal quads_pos, quads_uv, quads_norm
        if quads_pos and not ignore_object:
            parts.append(ObjMeshPart(
                texture=material,
                positions=np.array(quads_pos, dtype='f4'),
                uvs=np.array(quads_uv, dtype='f4'),
                normals=np.array(quads_norm, dtype='f4'),
            ))
        quads_pos, quads_uv, quads_norm = [], [], []

    for line in lines:
        tokens = line.split()
        if not tokens:
            continue
        kind = tokens[0]

        if kind in ('o', 'g'):
            flush()
            ignore_object = _is_bounding(tokens)
        elif kind == 'v':
            positions.append(tuple(float(t) * scale for t in tokens[1:4]))
        elif kind == 'vt':
            # OBJ v grows upwards and may be omitted; model uvs grow downwards
            v_coord = float(tokens[2]) if len(tokens) > 2 else 0.0
            uvs.append((float(tokens[1]), 1.0 - v_coord))
        elif kind == 'vn':
            normals.append(tuple(float(t) for t in tokens[1:4]))
        elif kind == 'usemtl':
            flush()
            material = tokens[1] if len(tokens) > 1 else DEFAULT_MATERIAL
        elif kind == 'f' and not ignore_object:
            verts = []
            for corner in tokens[1:]:
                idx = corner.split('/')
                v = _index(idx[0], len(positions))
                if v is None:
                    continue
                vt = _index(idx[1], len(uvs)) if len(idx) > 1 else None
                vn = _index(idx[2], len(normals)) if len(idx) > 2 else None
                verts.append((
                    positions[v],
                    uvs[vt] if vt is not None else (0.0, 0.0),
                    normals[vn] if vn is not None else (0.0, 0.0, 0.0),
                ))
            # triangle fan around the first vertex
            for i in range(2, len(verts)):
                quad = (verts[0], verts[i - 1], verts[i], verts[i])
                quads_pos.append([q[0] for q in quad])
                quads_uv.append([q[1] for q in quad])
                quads_norm.append([q[2] for q in quad])

    flush()
    return parts


def remap_obj_materials(parts: list[ObjMeshPart], model_id: str, textures: dict) -> list[ObjMeshPart]:
    """Point each part's material at one of the model's texture variables."""
    for token, aliases in FAMILY_MATERIAL_ALIASES:
        if token not in model_id:
            continue
        for part in parts:
            mapped = aliases.get(part.texture)
            if mapped:
                part.texture = mapped

    # only variables that lead to a texture id are usable targets
    keys = {key for key in textures if resolve_texture(textures, f'#{key}')}
    default_key = DEFAULT_TEXTURE_KEY if DEFAULT_TEXTURE_KEY in keys else None
    for part in parts:
        if part.texture in keys:
            continue
        stripped = part.texture[2:] if part.texture.startswith('m_') else part.texture
        if stripped in keys:
            part.texture = stripped
            continue
        no_hash = stripped[1:] if stripped.startswith('#') else stripped
        if no_hash in keys:
            part.texture = no_hash
            continue
        if default_key:
            part.texture = default_key
    return parts
