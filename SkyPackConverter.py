import argparse
import glob
import logging
import os
import shutil
import sys
from dataclasses import dataclass

from sky_descriptor import FSB_NAMESPACE, SourcePathError, transcode
from sky_settings import LOG_LEVELS, NOTICE, configure_logging, load_settings

logger = logging.getLogger(__name__)

# --- LEGACY SKY LOCATIONS ---
# Checked in order. The flag records which namespace the sky was found under.
LEGACY_SKY_FOLDERS = (
    ('optifine', True),
    ('mcpatcher', False),
)
LEGACY_WORLD = "world0"
DESCRIPTOR_EXTENSION = ".properties"
# --- END LEGACY SKY LOCATIONS ---


@dataclass
class PackCheck:
    convert: bool
    optifine: bool


def legacy_sky_dir(pack_root, optifine):
    namespace = 'optifine' if optifine else 'mcpatcher'
    return os.path.join(pack_root, 'assets', 'minecraft', namespace, 'sky')


def check_pack(pack_root, settings):
    """
    Decides whether a pack needs converting. An existing FabricSkyboxes sky folder
    is removed when auto reconvert is on, otherwise the pack is skipped.
    """
    pack_name = os.path.basename(os.path.normpath(pack_root))
    fsb_root = os.path.join(pack_root, 'assets', FSB_NAMESPACE)

    if os.path.isdir(os.path.join(fsb_root, 'sky')):
        if settings.auto_reconvert:
            logger.log(NOTICE, "FSB: Reconverting %s", pack_name)
            shutil.rmtree(fsb_root)
        else:
            logger.info("FSB: Fabricskyboxes folder found in %s, skipping", pack_name)
            return PackCheck(convert=False, optifine=False)

    for namespace, optifine in LEGACY_SKY_FOLDERS:
        if os.path.isdir(legacy_sky_dir(pack_root, optifine)):
            logger.debug("FSB: Found %s sky folder in %s", namespace, pack_name)
            return PackCheck(convert=True, optifine=optifine)

    logger.info("FSB: Nothing to convert in %s, skipping", pack_name)
    return PackCheck(convert=False, optifine=False)


def find_descriptors(pack_root, optifine):
    world_dir = os.path.join(legacy_sky_dir(pack_root, optifine), LEGACY_WORLD)
    all_files = glob.glob(os.path.join(world_dir, '*' + DESCRIPTOR_EXTENSION))
    return sorted(f for f in all_files if os.path.isfile(f))


def convert_pack(pack_root, settings):
    """
    Converts every sky descriptor of one pack. A malformed or unwritable
    descriptor only aborts itself; SourcePathError aborts the pack.
    Returns the number of descriptors written.
    """
    check = check_pack(pack_root, settings)
    if not check.convert:
        return 0

    pack_name = os.path.basename(os.path.normpath(pack_root))
    logger.log(NOTICE, "FSB: Converting Pack %s", pack_name)

    converted = 0
    for descriptor_path in find_descriptors(pack_root, check.optifine):
        logger.debug("FSB: Converting %s", os.path.basename(descriptor_path))
        try:
            json_path = transcode(descriptor_path, pack_root, settings)
        except OSError as e:
            logger.error("FSB: Could not convert %s: %s", descriptor_path, e)
            continue
        if json_path is not None:
            converted += 1

    logger.info("FSB: Converted %d sky file(s) in %s", converted, pack_name)
    return converted


def build_parser():
    parser = argparse.ArgumentParser(
        description="Convert OptiFine/MCPatcher skies in resource packs to FabricSkyboxes"
    )
    parser.add_argument("packs", nargs="*", default=["."], help="Resource pack folders to convert")
    parser.add_argument("--config", help="JSON config file (fsbTransparent, autoReconvert, log)")
    parser.add_argument("--reconvert", action="store_true", default=None,
                        help="Delete and redo existing FabricSkyboxes output")
    parser.add_argument("--no-transparent", dest="transparent", action="store_false", default=None,
                        help="Keep sky pixels opaque instead of turning brightness into alpha")
    parser.add_argument("--log-level", choices=list(LOG_LEVELS), default=None,
                        help="Console verbosity")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(
            args.config,
            transparent=args.transparent,
            auto_reconvert=args.reconvert,
            log_level=args.log_level,
        )
    except (OSError, ValueError) as e:
        print(f"ERROR: Could not load settings: {e}")
        return 1

    configure_logging(settings.log_level)

    failed = []
    for pack_root in args.packs:
        if os.path.isfile(pack_root):
            logger.log(NOTICE, "FSB: %s is an archive, only folder packs are converted, skipping",
                       os.path.basename(pack_root))
            continue
        if not os.path.isdir(pack_root):
            logger.error("FSB: Pack not found: %s", pack_root)
            failed.append(pack_root)
            continue

        try:
            convert_pack(pack_root, settings)
        except (SourcePathError, OSError) as e:
            logger.error("FSB: Conversion of %s stopped: %s", pack_root, e)
            failed.append(pack_root)

    print("\n" + "=" * 50)
    if not failed:
        print("PROCESS COMPLETE: All packs were processed.")
    else:
        print(f"PROCESS FAILED: {len(failed)} pack(s) could not be converted: {', '.join(failed)}")
    print("=" * 50)

    return 1 if failed else 0


# ==============================================================================
# SCRIPT EXECUTION
# ==============================================================================

if __name__ == "__main__":
    sys.exit(main())
