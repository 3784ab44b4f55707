import asyncio
import logging
import sys

import pygame as pg

from asset_loader import load_resources_for_structure
from model_manifest import write_model_manifest
from resource_provider import FileResourceProvider
from settings import *


class AssetResolverApp:
    def __init__(self, block_ids, vanilla_dir=None, mod_dir=None):
        self.block_ids = block_ids
        self.vanilla_provider = FileResourceProvider(vanilla_dir or VANILLA_ASSETS_DIR)
        self.mod_provider = FileResourceProvider(mod_dir or MOD_ASSETS_DIR)
        self.bundle = None

        print(f'[Assets] Vanilla: {self.vanilla_provider.base_path()}')
        print(f'[Assets] {MOD_NAMESPACE}: {self.mod_provider.base_path()}')

    async def load(self):
        print(f'[Loader] Resolving {len(self.block_ids)} blocks...')
        self.bundle = await load_resources_for_structure(
            self.block_ids, self.vanilla_provider, self.mod_provider)
        return self.bundle

    def report(self):
        bundle = self.bundle
        mod_models = [m for m in bundle.block_models if m.startswith(f'{MOD_NAMESPACE}:')]
        print(f'[Loader] {len(bundle.block_definitions)} block definitions, '
              f'{len(bundle.block_models)} models ({len(mod_models)} {MOD_NAMESPACE})')
        for block_id in self.block_ids:
            definition = bundle.get_block_definition(block_id)
            if definition is None:
                continue
            print(f'  {block_id}: {len(definition.get("multipart", []))} multipart entries')

        print(f'[Subparts] {len(bundle.auto_subparts)} attached')
        for entry in bundle.auto_subparts:
            print(f'  {entry["block_id"]}: {entry["base_model"]} + {entry["subpart"]}')

        if bundle.missing_resources:
            print(f'[Missing] {len(bundle.missing_resources)} resources')
            for missing in bundle.missing_resources:
                print(f'  {missing}')

        print(f'[Atlas] {bundle.atlas.size}x{bundle.atlas.size}, {len(bundle.atlas.uv_map)} textures')

    def save_atlas(self, path=ATLAS_OUTPUT_FILE):
        pg.image.save(self.bundle.atlas.image, path)
        print(f'[Atlas] Saved to {path}')

    def run(self):
        asyncio.run(self.load())
        self.report()
        self.save_atlas()


if __name__ == '__main__':
    logging.basicConfig(level=LOG_LEVEL, format='%(levelname)s %(name)s: %(message)s')

    if len(sys.argv) > 1 and sys.argv[1] == 'manifest':
        path = write_model_manifest(MOD_ASSETS_DIR)
        if path is None:
            print(f'[Manifest] No models directory under {MOD_ASSETS_DIR}')
            sys.exit(1)
        sys.exit()

    if len(sys.argv) < 2:
        print(f'Usage: python main.py <block_id> [block_id ...]')
        print(f'       python main.py manifest')
        print(f'  e.g.: python main.py create:mechanical_pump create:fluid_pipe minecraft:stone')
        print(f'  Assets are read from {ASSETS_DIR} (MODBLOCK_ASSETS_DIR)')
        sys.exit(1)

    app = AssetResolverApp(sys.argv[1:])
    app.run()
