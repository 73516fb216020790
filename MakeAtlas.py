import argparse
import cProfile
import glob
import logging
import sys
from typing import List, Optional

from PIL import Image, UnidentifiedImageError

from AtlasPacker import PackingError, Sprite, pack_sprites, packing_efficiency
from AtlasOutput import AtlasMeta, save_actionscript, save_atlas_image, save_json

logger = logging.getLogger(__name__)

DEFAULT_WIDTH = 1024
DEFAULT_HEIGHT = 1024
DEFAULT_OUT = "atlas.png"
DEFAULT_AS3_NAME = "Atlas"


class SpriteLoadError(Exception):
    """Raised when an input image cannot be opened or decoded."""
    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(f"Error loading {path}: {reason}")


def load_sprite(path: str) -> Sprite:
    """Decode an image file and trim it. The key of the sprite is the path."""
    try:
        with Image.open(path) as img:
            img.load()
            sprite = Sprite.from_image(path, img)
    except (OSError, UnidentifiedImageError) as e:
        raise SpriteLoadError(path, str(e)) from e

    ow, oh = sprite.original_size
    print(f"{ow}x{oh} -> {sprite.width}x{sprite.height} : {path}")
    return sprite


def load_sprites(patterns: List[str]) -> List[Sprite]:
    """Load every file matched by the glob patterns, each pattern's matches sorted."""
    sprites = []
    for pattern in patterns:
        matches = sorted(glob.glob(pattern))
        if not matches:
            logger.warning("No files match %s", pattern)
        for path in matches:
            sprites.append(load_sprite(path))
    return sprites


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Trim sprites and pack them into a single atlas image')
    parser.add_argument('patterns', nargs='+', help='Image files or glob patterns')
    parser.add_argument('--width', type=int, default=DEFAULT_WIDTH, help='Width of generated atlas')
    parser.add_argument('--height', type=int, default=DEFAULT_HEIGHT, help='Height of generated atlas')
    parser.add_argument('--out', default=DEFAULT_OUT, help='Name of generated atlas')
    parser.add_argument('--drawpadding', action='store_true', help='Draw padding around images (debug feature)')
    parser.add_argument('--json', help='Save atlas meta as JSON')
    parser.add_argument('--as3', help='Save atlas meta as ActionScript')
    parser.add_argument('--as3name', default=DEFAULT_AS3_NAME,
                        help='Package and class name of ActionScript object')
    parser.add_argument('--strip', type=int, default=0, help='Number of path elements to strip')
    parser.add_argument('--workers', type=int, default=1, help='Threads used to search for placements')
    parser.add_argument('--cpuprofile', help='Write cProfile stats to file')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')
    return parser


def run(args: argparse.Namespace) -> int:
    sprites = load_sprites(args.patterns)
    if not sprites:
        print("No sprite files found", file=sys.stderr)
        return 1

    print(f"Packing {len(sprites)} sprites")
    pack_sprites(args.width, args.height, sprites, workers=args.workers)

    print(f"Done, writing {args.out}...")
    save_atlas_image(args.out, args.width, args.height, sprites, args.drawpadding)

    if args.json or args.as3:
        meta = AtlasMeta.from_sprites(args.width, args.height, sprites, args.strip)
        if args.json:
            save_json(args.json, meta)
        if args.as3:
            save_actionscript(args.as3, meta, args.as3name)

    efficiency = packing_efficiency(args.width, args.height, sprites)
    print(f"Packing efficiency: {efficiency:.2f}%")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.width <= 1 or args.height <= 1:
        print("Invalid width or height", file=sys.stderr)
        return 1

    profiler = cProfile.Profile() if args.cpuprofile else None
    if profiler is not None:
        profiler.enable()
    try:
        return run(args)
    except (SpriteLoadError, PackingError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        if profiler is not None:
            profiler.disable()
            profiler.dump_stats(args.cpuprofile)


if __name__ == "__main__":
    sys.exit(main())
