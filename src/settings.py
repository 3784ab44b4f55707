import os

# src folder path
ROOT_DIR = os.path.dirname(os.path.abspath(__file__))

# namespaces
DEFAULT_NAMESPACE = 'minecraft'
MOD_NAMESPACE = os.environ.get('MODBLOCK_NAMESPACE', 'create')

# assets: <ASSETS_DIR>/minecraft holds the vanilla bundle, <ASSETS_DIR>/<mod> the mod resources
ASSETS_DIR = os.path.normpath(
    os.environ.get('MODBLOCK_ASSETS_DIR', os.path.join(ROOT_DIR, '..', 'assets'))
)
VANILLA_ASSETS_DIR = os.path.join(ASSETS_DIR, DEFAULT_NAMESPACE)
MOD_ASSETS_DIR = os.path.join(ASSETS_DIR, MOD_NAMESPACE)
MODEL_MANIFEST_FILE = 'model_manifest.json'
ATLAS_OUTPUT_FILE = 'merged_atlas.png'

# heuristics (set MODBLOCK_AUTO_SUBPARTS=0 if discovery over-attaches)
ENABLE_AUTO_SUBPARTS = os.environ.get('MODBLOCK_AUTO_SUBPARTS', '1') != '0'
SMART_PREFIX = 'smart_'

# geometry
BLOCK_UNITS = 16          # model space units per block
OBJ_METER_LIMIT = 4.0     # OBJ files with all coords within this are authored in blocks
MAX_TEXTURE_REF_DEPTH = 10

# logging
LOG_LEVEL = os.environ.get('MODBLOCK_LOG_LEVEL', 'INFO')
