"""
The model manifest: a JSON array of every model id a mod ships
(e.g. "create:block/mechanical_pump/cog"). Sub-part discovery needs it because
resource providers cannot list directories.
"""

import json
import logging
import os

from resource_provider import ResourceNotFoundError
from settings import MODEL_MANIFEST_FILE, MOD_NAMESPACE

log = logging.getLogger(__name__)


class ManifestError(Exception):
    """The manifest could not be fetched or is not a list of strings."""


async def load_model_manifest(provider, path: str = MODEL_MANIFEST_FILE) -> list[str]:
    try:
        payload = await provider.get_json(path)
    except ResourceNotFoundError as e:
        raise ManifestError(f'Failed to fetch model manifest {path}: {e.reason}') from e
    if not isinstance(payload, list) or not all(isinstance(p, str) for p in payload):
        raise ManifestError(f'Model manifest {path} is invalid (expected string array)')
    return payload


def build_model_manifest(models_dir: str, namespace: str = MOD_NAMESPACE) -> list[str]:
    ids = set()
    for dirpath, _, filenames in os.walk(models_dir):
        for filename in filenames:
            if not filename.endswith('.json'):
                continue
            rel = os.path.relpath(os.path.join(dirpath, filename), models_dir)
            rel = rel[:-len('.json')].replace(os.sep, '/')
            ids.add(f'{namespace}:{rel}')
    return sorted(ids)


def write_model_manifest(assets_dir: str, namespace: str = MOD_NAMESPACE) -> str | None:
    """Scan <assets_dir>/models and write the manifest next to it. Returns the path written."""
    models_dir = os.path.join(assets_dir, 'models')
    if not os.path.isdir(models_dir):
        return None
    ids = build_model_manifest(models_dir, namespace)
    manifest_path = os.path.join(assets_dir, MODEL_MANIFEST_FILE)
    with open(manifest_path, 'w', encoding='utf-8') as f:
        f.write(json.dumps(ids, indent=2) + '\n')
    log.info('[Manifest] Wrote %d entries to %s', len(ids), manifest_path)
    return manifest_path
