import json
import logging
import os
from typing import Dict, List, Tuple

from PIL import Image

from AtlasPacker import Sprite, PADDING

logger = logging.getLogger(__name__)

PADDING_COLOR = (255, 0, 0, 255)
CLEAR_COLOR = (0, 0, 0, 0)


###############################################################################
# Composition

def compose_atlas(width: int, height: int, sprites: List[Sprite], draw_padding: bool = False) -> Image.Image:
    """
    Copy every placed sprite onto a new RGBA canvas.

    With draw_padding the canvas starts out opaque red and each sprite gets a
    transparent one pixel frame, which makes the packing visible.
    """
    if width <= PADDING or height <= PADDING:
        raise ValueError(f"Invalid atlas size {width}×{height}")

    sheet_img = Image.new('RGBA', (width, height), PADDING_COLOR if draw_padding else CLEAR_COLOR)

    for sprite in sprites:
        if sprite.position is None:
            raise ValueError(f"Sprite {sprite.key} has not been packed")
        x, y = sprite.position
        if draw_padding:
            frame = (
                max(x - 1, 0),
                max(y - 1, 0),
                min(x + sprite.width + 1, width),
                min(y + sprite.height + 1, height),
            )
            sheet_img.paste(CLEAR_COLOR, frame)
        # No mask: source pixels replace the canvas, alpha included
        sheet_img.paste(sprite.image, (x, y))

    return sheet_img


def save_atlas_image(path: str, width: int, height: int, sprites: List[Sprite], draw_padding: bool = False):
    compose_atlas(width, height, sprites, draw_padding).save(path, format='PNG')


###############################################################################
# Metadata

class ImageMeta:
    """Where one sprite ended up, and how to undo its trimming."""
    def __init__(self, position: Tuple[int, int], size: Tuple[int, int],
                 original_size: Tuple[int, int], offset: Tuple[int, int]):
        self.position = position
        self.size = size
        self.original_size = original_size
        self.offset = offset

    def __repr__(self):
        return (f"ImageMeta(position={self.position}, size={self.size}, "
                f"original_size={self.original_size}, offset={self.offset})")

    def uv(self, atlas_width: int, atlas_height: int) -> Tuple[float, float, float, float]:
        """Return (u0, v0, u1, v1) texture coordinates of the trimmed image."""
        x, y = self.position
        w, h = self.size
        return (
            x / atlas_width,
            y / atlas_height,
            (x + w) / atlas_width,
            (y + h) / atlas_height,
        )

    def to_dict(self) -> Dict:
        return {
            "Position": {"X": self.position[0], "Y": self.position[1]},
            "Size": {"Width": self.size[0], "Height": self.size[1]},
            "OriginalSize": {"Width": self.original_size[0], "Height": self.original_size[1]},
            "Offset": {"X": self.offset[0], "Y": self.offset[1]},
        }


class AtlasMeta:
    """Atlas size plus an ImageMeta per sprite key."""
    def __init__(self, width: int, height: int, images: Dict[str, ImageMeta]):
        self.width = width
        self.height = height
        self.images = images

    @classmethod
    def from_sprites(cls, width: int, height: int, sprites: List[Sprite], strip: int = 0) -> 'AtlasMeta':
        images = {}
        for sprite in sprites:
            if sprite.position is None:
                raise ValueError(f"Sprite {sprite.key} has not been packed")
            key = strip_path(sprite.key, strip)
            if key in images:
                logger.warning("Duplicate atlas key %s, keeping the last one", key)
            images[key] = ImageMeta(
                sprite.position,
                (sprite.width, sprite.height),
                sprite.original_size,
                sprite.offset,
            )
        return cls(width, height, images)

    def to_dict(self) -> Dict:
        return {
            "Size": {"Width": self.width, "Height": self.height},
            "Images": {key: self.images[key].to_dict() for key in sorted(self.images)},
        }


def strip_path(path: str, strip: int) -> str:
    """Drop the first `strip` components of path, always keeping the last one."""
    if strip <= 0:
        return path
    parts = path.split(os.sep)
    return os.path.join(*parts[min(strip, len(parts) - 1):])


def save_json(path: str, meta: AtlasMeta):
    with open(path, 'w') as f:
        json.dump(meta.to_dict(), f, indent=2)


###############################################################################
# ActionScript 3 bindings

def as3_var_name(path: str) -> str:
    """Turn a sprite key into an identifier: anything but [A-Za-z0-9] becomes _."""
    return "".join(c if c.isascii() and c.isalnum() else "_" for c in path)


def clean_as3_path(path: str) -> str:
    return path.replace("\\", "/")


def _as3_string(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _split_class_name(name: str) -> Tuple[str, str]:
    package, _, class_name = name.rpartition(".")
    return package, class_name


def render_actionscript(meta: AtlasMeta, name: str) -> str:
    """Render the AS3 class describing meta; name is "package.ClassName"."""
    package, class_name = _split_class_name(name)
    aw, ah = meta.width, meta.height

    consts = []
    entries = []
    for path in sorted(meta.images):
        image = meta.images[path]
        x, y = image.position
        w, h = image.size
        ow, oh = image.original_size
        offx, offy = image.offset
        var = as3_var_name(path)
        consts.append(
            f"\t\tpublic static const {var}:AtlasImageMeta = new AtlasImageMeta("
            f"{x}, {y}, {w}, {h}, {ow}, {oh}, {offx}, {offy}, "
            f"{x}.0/{aw}.0, {y}.0/{ah}.0, "
            f"({x}.0+{w}.0)/{aw}.0, ({y}.0+{h}.0)/{ah}.0);"
        )
        entries.append(f"\t\t\t{_as3_string(clean_as3_path(path))}: {var}")

    lines = [
        f"package {package}".rstrip(),
        "{",
        f"\tpublic class {class_name}",
        "\t{",
        f"\t\tpublic static const width:uint = {aw};",
        f"\t\tpublic static const height:uint = {ah};",
        "",
        *consts,
        "",
        "\t\tpublic static const images:Object = {",
        ",\n".join(entries),
        "\t\t};",
        "\t}",
        "}",
        "",
    ]
    return "\n".join(lines)


def render_actionscript_meta_class(package: str) -> str:
    fields = ["x", "y", "width", "height", "orgwidth", "orgheight", "offx", "offy"]
    uvs = ["u0", "v0", "u1", "v1"]
    params = ", ".join([f"{f}:uint" for f in fields] + [f"{u}:Number" for u in uvs])
    body = "\n".join(f"\t\t\tthis.{f} = {f};" for f in fields + uvs)
    return "\n".join([
        f"package {package}".rstrip(),
        "{",
        "\tpublic class AtlasImageMeta",
        "\t{",
        "\t\tpublic var " + ", ".join(f"{f}:uint" for f in fields) + ";",
        "\t\tpublic var " + ", ".join(f"{u}:Number" for u in uvs) + ";",
        f"\t\tpublic function AtlasImageMeta({params})",
        "\t\t{",
        body,
        "\t\t}",
        "\t}",
        "}",
        "",
    ])


def save_actionscript(path: str, meta: AtlasMeta, name: str):
    """Write the atlas class to path and AtlasImageMeta.as next to it."""
    package, _ = _split_class_name(name)
    with open(path, 'w') as f:
        f.write(render_actionscript(meta, name))
    with open(os.path.join(os.path.dirname(path), "AtlasImageMeta.as"), 'w') as f:
        f.write(render_actionscript_meta_class(package))
