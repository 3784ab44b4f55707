from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from model_manifest import ManifestError, build_model_manifest, load_model_manifest, write_model_manifest


def test_load_manifest(provider):
    provider.add('model_manifest.json', ['create:block/shaft', 'create:block/cogwheel'])
    assert asyncio.run(load_model_manifest(provider)) == ['create:block/shaft', 'create:block/cogwheel']


@pytest.mark.parametrize('payload', [{'models': []}, ['ok', 3], 'create:block/shaft'])
def test_malformed_manifest_raises(provider, payload):
    provider.add('model_manifest.json', payload)
    with pytest.raises(ManifestError, match='invalid'):
        asyncio.run(load_model_manifest(provider))


def test_unreachable_manifest_raises(provider):
    with pytest.raises(ManifestError, match='Failed to fetch'):
        asyncio.run(load_model_manifest(provider))


def _write_models(root: Path, *paths: str):
    for path in paths:
        target = root / 'models' / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text('{}', encoding='utf-8')


def test_build_manifest_is_sorted(tmp_path: Path):
    _write_models(tmp_path, 'block/shaft.json', 'block/mechanical_pump/cog.json', 'block/belt/start.json')
    (tmp_path / 'models' / 'block' / 'wheel.obj').write_text('', encoding='utf-8')

    assert build_model_manifest(str(tmp_path / 'models'), 'create') == [
        'create:block/belt/start',
        'create:block/mechanical_pump/cog',
        'create:block/shaft',
    ]


def test_write_manifest(tmp_path: Path):
    _write_models(tmp_path, 'block/shaft.json')
    path = write_model_manifest(str(tmp_path), 'create')

    assert path == str(tmp_path / 'model_manifest.json')
    assert json.loads(Path(path).read_text(encoding='utf-8')) == ['create:block/shaft']


def test_write_manifest_without_models(tmp_path: Path):
    assert write_model_manifest(str(tmp_path), 'create') is None
