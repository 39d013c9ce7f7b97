import json
import logging
import math
import os
import posixpath
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sky_atlas import FACES, convert_atlas, write_placeholders

logger = logging.getLogger(__name__)

# --- TARGET FORMAT CONFIGURATION ---
FSB_NAMESPACE = "fabricskyboxes"
SKY_ASSET_PATH = ("assets", FSB_NAMESPACE, "sky")
SCHEMA_VERSION = 2
SKY_TYPE = "square-textured"
DEFAULT_WORLDS = ["minecraft:overworld"]
DEFAULT_BLEND_TYPE = "add"
DEFAULT_AXIS = (0.0, 180.0, 0.0)
STATIC_ROTATION = [1, 1, 1]
# --- END TARGET FORMAT CONFIGURATION ---

TICKS_PER_DAY = 24000
# Legacy skies count time from midnight, the target counts from sunrise
TIME_OFFSET = 18000

FADE_OPTIONS = ('startFadeIn', 'endFadeIn', 'startFadeOut', 'endFadeOut')


class DescriptorError(ValueError):
    """A descriptor field could not be parsed. Aborts that descriptor only."""


class SourcePathError(ValueError):
    """A namespaced source reference without any folder component."""


@dataclass
class SkyDescriptor:
    name: str
    source: str
    start_fade_in: Optional[int] = None
    end_fade_in: Optional[int] = None
    start_fade_out: Optional[int] = None
    end_fade_out: Optional[int] = None
    blend_type: str = DEFAULT_BLEND_TYPE
    should_rotate: Optional[bool] = None
    rotation_speed: Optional[float] = None
    axis: Tuple[float, float, float] = DEFAULT_AXIS
    weather: Optional[List[str]] = None
    biomes: Optional[List[str]] = None
    heights: Optional[List[dict]] = None

    def fade(self):
        values = {
            'startFadeIn': self.start_fade_in,
            'endFadeIn': self.end_fade_in,
            'startFadeOut': self.start_fade_out,
            'endFadeOut': self.end_fade_out,
        }
        return {key: value for key, value in values.items() if value is not None}


@dataclass
class SourceReference:
    kind: str
    image_path: str
    output_dir: str
    base_name: str
    texture_base: str


def sky_output_root(pack_root):
    return os.path.join(pack_root, *SKY_ASSET_PATH)


# ==============================================================================
# PARSING
# ==============================================================================

def read_options(lines):
    """
    Splits descriptor lines into (option, value) pairs on the first '='.
    Blank lines are skipped, spaces and tabs around both halves are trimmed.
    """
    options = []
    for line in lines:
        line = line.rstrip('\r\n')
        if not line.strip(' \t'):
            continue
        option, _, value = line.partition('=')
        options.append((option.strip(' \t'), value.strip(' \t')))
    return options


def _round_half_up(number):
    return int(math.floor(number + 0.5))


def convert_time(value):
    """
    Converts a legacy "hh:mm" fade time into target ticks.

    Colons (escaped or not) are dropped and a 0 appended, so "12:30" reads as
    12300. Scaling the last three digits by 5/3 turns minutes into 1000ths of
    an hour, then the day is shifted by 18000 ticks and wrapped.
    """
    raw = value.replace('\\:', ':').replace(':', '') + '0'
    try:
        ticks = int(raw)
    except ValueError:
        raise DescriptorError(f"invalid time argument \"{raw}\" (from \"{value}\")") from None

    ticks = ticks // 1000 * 1000 + _round_half_up((ticks % 1000) / 3 * 5)
    return (ticks + TIME_OFFSET) % TICKS_PER_DAY


def _parse_float(token, option):
    try:
        number = float(token)
    except ValueError:
        raise DescriptorError(f"invalid {option} argument \"{token}\"") from None
    if not math.isfinite(number):
        raise DescriptorError(f"{option} argument \"{token}\" is not a finite number")
    return number


def parse_axis(value):
    """Reads three half-turn fractions and converts them to degrees."""
    tokens = value.split()
    if len(tokens) < 3:
        raise DescriptorError(f"axis needs three values, got \"{value}\"")
    return tuple(_parse_float(token, 'axis') * 180 for token in tokens[:3])


def parse_heights(value):
    """Parses "MIN-MAX" tokens. Tokens without a '-' are skipped."""
    heights = []
    for token in value.split():
        if '-' not in token:
            logger.debug("FSB: Skipping height range without '-': %s", token)
            continue
        low, _, high = token.partition('-')
        heights.append({
            'min': _parse_float(low, 'heights'),
            'max': _parse_float(high, 'heights'),
        })
    return heights


def derive_start_fade_out(start_fade_in, end_fade_in, end_fade_out):
    """Places the fade-out start so it lasts as long as the fade-in."""
    return (end_fade_out - end_fade_in + start_fade_in + TICKS_PER_DAY) % TICKS_PER_DAY


def parse_descriptor(lines, name):
    """Builds a SkyDescriptor from descriptor lines. Raises DescriptorError on bad numbers."""
    descriptor = SkyDescriptor(name=name, source=f"./{name}")

    for option, value in read_options(lines):
        if option == 'source':
            descriptor.source = value[:-4]
        elif option in FADE_OPTIONS:
            ticks = convert_time(value)
            if option == 'startFadeIn':
                descriptor.start_fade_in = ticks
            elif option == 'endFadeIn':
                descriptor.end_fade_in = ticks
            elif option == 'startFadeOut':
                descriptor.start_fade_out = ticks
            else:
                descriptor.end_fade_out = ticks
        elif option == 'blend':
            descriptor.blend_type = value
        elif option == 'rotate':
            descriptor.should_rotate = value == 'true'
        elif option == 'speed':
            descriptor.rotation_speed = _parse_float(value, 'speed')
        elif option == 'axis':
            descriptor.axis = parse_axis(value)
        elif option == 'weather':
            descriptor.weather = value.split()
        elif option == 'biomes':
            descriptor.biomes = value.split()
        elif option == 'heights':
            descriptor.heights = parse_heights(value)
        elif option == 'transition':
            # No counterpart in the target format yet
            logger.debug("FSB: Ignoring transition in %s", name)
        else:
            logger.debug("FSB: Unknown option '%s' in %s", option, name)

    fade_in_known = descriptor.start_fade_in is not None and descriptor.end_fade_in is not None
    if descriptor.start_fade_out is None and fade_in_known and descriptor.end_fade_out is not None:
        descriptor.start_fade_out = derive_start_fade_out(
            descriptor.start_fade_in, descriptor.end_fade_in, descriptor.end_fade_out
        )

    return descriptor


# ==============================================================================
# SOURCE RESOLUTION
# ==============================================================================

def resolve_source(source, descriptor_path, pack_root):
    """
    Works out where the atlas image lives and where its faces go.

    "./name" is looked up next to the descriptor. Anything else is a path
    from the pack root and must contain a folder ("optifine/sky/sun").
    """
    sky_root = sky_output_root(pack_root)

    if source.startswith('./'):
        remainder = source[2:]
        folder, base_name = posixpath.split(remainder)
        parts = [part for part in folder.split('/') if part]
        return SourceReference(
            kind='relative',
            image_path=os.path.join(os.path.dirname(descriptor_path), *remainder.split('/')) + '.png',
            output_dir=os.path.join(sky_root, *parts),
            base_name=base_name,
            texture_base=f"{FSB_NAMESPACE}:sky/{remainder}",
        )

    if '/' not in source:
        raise SourcePathError(f"source does not contain a /: \"{source}\"")

    folder, _, base_name = source.rpartition('/')
    parts = [part for part in folder.split('/') if part]
    texture_folder = ''.join(f"{part}/" for part in parts)
    return SourceReference(
        kind='namespaced',
        image_path=os.path.join(pack_root, *parts, base_name) + '.png',
        output_dir=os.path.join(sky_root, *parts),
        base_name=base_name,
        texture_base=f"{FSB_NAMESPACE}:sky/{texture_folder}{base_name}",
    )


# ==============================================================================
# OUTPUT DOCUMENT
# ==============================================================================

def build_document(descriptor, texture_base):
    """Generates the FabricSkyboxes v2 sky document for one descriptor."""
    conditions = {'worlds': list(DEFAULT_WORLDS)}
    if descriptor.weather is not None:
        conditions['weather'] = descriptor.weather
    if descriptor.biomes is not None:
        conditions['biomes'] = descriptor.biomes
    if descriptor.heights is not None:
        conditions['heights'] = descriptor.heights

    rotation = {'axis': list(descriptor.axis)}
    if descriptor.rotation_speed is not None:
        rotation['rotationSpeed'] = descriptor.rotation_speed
    rotation['static'] = list(STATIC_ROTATION)

    properties = {
        'blend': {'type': descriptor.blend_type},
        'rotation': rotation,
    }
    if descriptor.should_rotate is not None:
        properties['shouldRotate'] = descriptor.should_rotate
    properties['sunSkyTint'] = False
    properties['fade'] = descriptor.fade()

    return {
        'schemaVersion': SCHEMA_VERSION,
        'type': SKY_TYPE,
        'conditions': conditions,
        'blend': True,
        'properties': properties,
        'textures': {face: f"{texture_base}_{face}.png" for face in FACES},
    }


def write_document(document, json_path):
    os.makedirs(os.path.dirname(json_path), exist_ok=True)
    with open(json_path, 'w', encoding='utf-8') as f:
        json.dump(document, f, indent='\t')
        f.write('\n')


def read_descriptor_lines(descriptor_path):
    """
    Reads a descriptor as UTF-8 (BOM allowed). Legacy files written as Java
    properties are ISO-8859-1, so undecodable input is re-read as Latin-1.
    """
    with open(descriptor_path, 'rb') as f:
        data = f.read()
    try:
        text = data.decode('utf-8-sig')
    except UnicodeDecodeError:
        logger.debug("FSB: %s is not UTF-8, reading it as Latin-1", descriptor_path)
        text = data.decode('latin-1')
    return text.splitlines()


def transcode(descriptor_path, pack_root, settings):
    """
    Converts one .properties descriptor: splits (or stubs) its atlas and writes
    the JSON document. Returns the JSON path, or None if the descriptor was malformed.
    SourcePathError is not caught here.
    """
    name = os.path.splitext(os.path.basename(descriptor_path))[0]

    try:
        descriptor = parse_descriptor(read_descriptor_lines(descriptor_path), name)
    except DescriptorError as e:
        logger.error("FSB: Error: %s\n\tIn file \"%s\"", e, descriptor_path)
        return None

    reference = resolve_source(descriptor.source, descriptor_path, pack_root)
    logger.debug("FSB: %s source '%s' -> %s", reference.kind, descriptor.source, reference.image_path)

    if os.path.isfile(reference.image_path):
        convert_atlas(reference.image_path, reference.output_dir, reference.base_name, settings)
    else:
        logger.warning("FSB: File not found: %s", reference.image_path)
        write_placeholders(reference.output_dir, reference.base_name)

    document = build_document(descriptor, reference.texture_base)
    json_path = os.path.join(sky_output_root(pack_root), f"{name}.json")
    write_document(document, json_path)
    logger.debug("FSB: Wrote %s", json_path)
    return json_path
