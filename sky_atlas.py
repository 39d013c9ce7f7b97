import logging
import os

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)

# Absolute tolerance used instead of exact float equality in the HSV branches
EPSILON = np.finfo(float).eps

# --- FACE DEFINITION (FIXED) ---
FACES = ['top', 'bottom', 'north', 'south', 'east', 'west']
# --- END FACE DEFINITION ---

# --- ATLAS LAYOUT (FIXED 3x2 GRID) ---
# Format: (Face, Row, Column, Quarter Turns)
# Quarter Turns follow numpy.rot90: 1 = 90° CCW, -1 = 90° CW, 0 = None
ATLAS_COLUMNS = 3
ATLAS_ROWS = 2
ATLAS_LAYOUT = (
    ('bottom', 0, 0, 1),
    ('top',    0, 1, -1),
    ('south',  0, 2, 0),
    ('west',   1, 0, 0),
    ('north',  1, 1, 0),
    ('east',   1, 2, 0),
)
# --- END ATLAS LAYOUT ---

# Which of (c, x, 0) lands in the r, g and b channel for each 60° hue sextant
SEXTANT_CHANNELS = np.array([
    [0, 1, 2],  # [0, 60)    red is max, green rising
    [1, 0, 2],  # [60, 120)  green is max, red falling
    [2, 0, 1],  # [120, 180) green is max, blue rising
    [2, 1, 0],  # [180, 240) blue is max, green falling
    [1, 2, 0],  # [240, 300) blue is max, red rising
    [0, 2, 1],  # [300, 360) red is max, blue falling
])

PLACEHOLDER_PIXEL = (0, 0, 0, 255)


def _is_zero(a, b):
    return np.abs(a - b) < EPSILON


# ==============================================================================
# COLOR CODEC
# ==============================================================================

def rgb_to_hsv(r, g, b):
    """
    Converts 0-255 red/green/blue into hue [0, 360), saturation and value (both 0-100).
    Accepts scalars or numpy arrays of matching shape.
    """
    r = np.asarray(r, dtype=np.float64) * 20 / 51
    g = np.asarray(g, dtype=np.float64) * 20 / 51
    b = np.asarray(b, dtype=np.float64) * 20 / 51

    maximum = np.maximum(np.maximum(r, g), b)
    delta = maximum - np.minimum(np.minimum(r, g), b)

    # Grey pixels have no hue, keep the divisor away from zero for them
    no_delta = _is_zero(delta, 0.0)
    safe_delta = np.where(no_delta, 1.0, delta)

    hue = np.select(
        [no_delta, _is_zero(maximum, r), _is_zero(maximum, g)],
        [
            0.0,
            60 * ((g - b) / safe_delta) + 360,
            60 * ((b - r) / safe_delta) + 120,
        ],
        default=60 * ((r - g) / safe_delta) + 240,
    )
    hue = np.mod(hue, 360)

    no_max = _is_zero(maximum, 0.0)
    saturation = np.where(no_max, 0.0, delta / np.where(no_max, 1.0, maximum) * 100)

    return hue, saturation, maximum


def hsv_to_rgb(h, s, v):
    """Inverse of rgb_to_hsv, returns 0-255 floats."""
    h = np.asarray(h, dtype=np.float64)
    s = np.asarray(s, dtype=np.float64)
    v = np.asarray(v, dtype=np.float64)

    c = s * v / 10000
    x = c * (1 - np.abs(np.fmod(h / 60, 2) - 1))
    m = v / 100 - c

    sextant = np.clip(np.floor(h / 60), 0, 5).astype(np.intp)
    components = np.stack(np.broadcast_arrays(c, x, np.zeros_like(c)), axis=-1)
    rgb = (np.take_along_axis(components, SEXTANT_CHANNELS[sextant], axis=-1) + m[..., None]) * 255

    return rgb[..., 0], rgb[..., 1], rgb[..., 2]


# ==============================================================================
# ALPHA RECODING
# ==============================================================================

def value_to_alpha(value):
    """
    Legacy skies store per-pixel opacity as brightness and force alpha to 255.
    The HSV value (0-100) of such a pixel is its real opacity on the 0-255 scale.
    """
    return value * 51 / 20


def recode_alpha(face, enabled):
    """
    Rewrites every fully opaque pixel of an RGBA face so its brightness becomes
    its alpha and its colour is shown at full value. Operates in place.
    Pixels that already carry transparency are left alone.
    """
    if not enabled:
        return face

    opaque = face[..., 3] == 255
    if not opaque.any():
        return face

    pixels = face[opaque].astype(np.float64)
    hue, saturation, value = rgb_to_hsv(pixels[:, 0], pixels[:, 1], pixels[:, 2])
    alpha = value_to_alpha(value)
    r, g, b = hsv_to_rgb(hue, saturation, np.full_like(value, 100.0))

    recoded = np.stack([r, g, b, alpha], axis=-1)
    face[opaque] = np.clip(np.rint(recoded), 0, 255).astype(np.uint8)
    return face


# ==============================================================================
# ATLAS SPLITTING
# ==============================================================================

def split_atlas(atlas, transparent=True, label="atlas"):
    """
    Cuts a 3x2 sky atlas into its six faces, rotating top and bottom, and
    applies the alpha recoding to each face.
    Returns {face name: RGBA array}.
    """
    height, width = atlas.shape[:2]
    if width % ATLAS_COLUMNS != 0 or height % ATLAS_ROWS != 0:
        logger.warning(
            "FSB: Wrong dimensions (%dx%d): %s will be cropped to proper dimensions",
            width, height, label,
        )

    outw = width // ATLAS_COLUMNS
    outh = height // ATLAS_ROWS

    faces = {}
    for face_name, row, column, quarter_turns in ATLAS_LAYOUT:
        band = atlas[row * outh:(row + 1) * outh, column * outw:(column + 1) * outw]
        if quarter_turns:
            band = np.rot90(band, quarter_turns)
        face = np.array(band, dtype=np.uint8)
        faces[face_name] = recode_alpha(face, transparent)

    return faces


def load_rgba(image_path):
    """Decodes an image file into a writable (height, width, 4) uint8 array."""
    with Image.open(image_path) as img:
        return np.array(img.convert("RGBA"), dtype=np.uint8)


def save_face(face, path):
    Image.fromarray(np.ascontiguousarray(face, dtype=np.uint8)).save(path, "PNG")


def face_path(output_dir, base_name, face_name):
    return os.path.join(output_dir, f"{base_name}_{face_name}.png")


def convert_atlas(image_path, output_dir, base_name, settings):
    """
    Converts one atlas image into six <base_name>_<face>.png files inside output_dir.
    Codec failures are logged and the remaining faces are still written.
    Returns {face name: written path}.
    """
    logger.debug("FSB: Converting %s", os.path.basename(image_path))

    try:
        atlas = load_rgba(image_path)
    except (OSError, ValueError) as e:
        logger.error("FSB: png error: %s: %s", image_path, e)
        return {}

    faces = split_atlas(atlas, settings.transparent, label=image_path)

    if not os.path.exists(output_dir):
        os.makedirs(output_dir)
        logger.debug("FSB: Created output directory: %s", output_dir)

    written = {}
    for face_name in FACES:
        path = face_path(output_dir, base_name, face_name)
        try:
            save_face(faces[face_name], path)
        except (OSError, ValueError) as e:
            logger.error("FSB: png error: %s: %s", path, e)
            continue
        written[face_name] = path
        logger.debug("FSB:      -> Saved %s (%dx%d)", os.path.basename(path),
                     faces[face_name].shape[1], faces[face_name].shape[0])

    return written


def write_placeholders(output_dir, base_name):
    """Writes six 1x1 opaque black faces so texture references stay resolvable."""
    os.makedirs(output_dir, exist_ok=True)
    placeholder = np.array([[PLACEHOLDER_PIXEL]], dtype=np.uint8)

    written = {}
    for face_name in FACES:
        path = face_path(output_dir, base_name, face_name)
        try:
            save_face(placeholder, path)
        except (OSError, ValueError) as e:
            logger.error("FSB: png error: %s: %s", path, e)
            continue
        written[face_name] = path
    return written
