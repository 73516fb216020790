import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterator, List, Optional, Tuple

from PIL import Image

logger = logging.getLogger(__name__)

# Every sprite reserves one extra pixel to the right and below it, and the
# root of the tree starts one pixel in from the top-left corner of the canvas.
PADDING = 1


class Rectangle:
    """Represents a rectangle with width, height, and position (x, y)."""
    def __init__(self, width: int, height: int, x: int = 0, y: int = 0):
        self.width = width
        self.height = height
        self.x = x
        self.y = y

    def __repr__(self):
        return f"Rectangle({self.width}×{self.height} at ({self.x},{self.y}))"

    def __eq__(self, other):
        if not isinstance(other, Rectangle):
            return NotImplemented
        return self.box() == other.box()

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def box(self) -> Tuple[int, int, int, int]:
        """Return (left, top, right, bottom), the form Pillow expects."""
        return self.x, self.y, self.right, self.bottom

    def intersects(self, other: 'Rectangle') -> bool:
        """Check if this rectangle intersects with another."""
        return not (
            self.x + self.width <= other.x or
            self.y + self.height <= other.y or
            self.x >= other.x + other.width or
            self.y >= other.y + other.height
        )

    def contains(self, other: 'Rectangle') -> bool:
        """Check if another rectangle lies completely inside this one."""
        return (
            other.x >= self.x and
            other.y >= self.y and
            other.right <= self.right and
            other.bottom <= self.bottom
        )

    def can_hold(self, width: int, height: int) -> bool:
        return width <= self.width and height <= self.height

    def area(self) -> int:
        """Get the area of the rectangle."""
        return self.width * self.height


class PackingError(Exception):
    """Raised when the remaining sprites cannot all be placed on the canvas."""
    def __init__(self, unplaced: List[str]):
        self.unplaced = list(unplaced)
        super().__init__(f"Failed to fit all images ({len(self.unplaced)} left unplaced)")


###############################################################################
# Trimmer

def _alpha_channel(img: Image.Image) -> Tuple[Image.Image, Image.Image]:
    """Return the image as RGBA together with the alpha plane used for trimming.

    Images that carry no transparency at all are treated as fully opaque.
    """
    if img.mode == 'RGBA':
        return img, img.getchannel('A')

    has_alpha = 'A' in img.getbands() or 'transparency' in img.info
    rgba = img.convert('RGBA')
    if has_alpha:
        return rgba, rgba.getchannel('A')

    logger.debug("Image mode %s has no alpha, treating as opaque", img.mode)
    return rgba, Image.new('L', img.size, 255)


def _max_alpha(alpha: Image.Image, box: Tuple[int, int, int, int]) -> int:
    return alpha.crop(box).getextrema()[1]


def trim_image(img: Image.Image) -> Tuple[Image.Image, Tuple[int, int]]:
    """
    Crop an image to the bounding box of its non-transparent pixels.

    Each edge is moved inwards one pixel at a time for as long as the strip
    of pixels just inside it is fully transparent. Strips are always taken
    from the current (already shrunk) bounds. An axis stops shrinking once
    it is one pixel wide, so a fully transparent image trims to 1×1 at the
    origin instead of becoming empty.

    Returns the trimmed RGBA image and the (x, y) offset of its top-left
    corner inside the original image.
    """
    if img.width <= 0 or img.height <= 0:
        raise ValueError(f"Cannot trim an empty image ({img.width}×{img.height})")

    rgba, alpha = _alpha_channel(img)
    left, top, right, bottom = 0, 0, rgba.width, rgba.height

    while right - left > 1 and _max_alpha(alpha, (right - 1, top, right, bottom)) == 0:
        right -= 1
    while right - left > 1 and _max_alpha(alpha, (left, top, left + 1, bottom)) == 0:
        left += 1

    while bottom - top > 1 and _max_alpha(alpha, (left, bottom - 1, right, bottom)) == 0:
        bottom -= 1
    while bottom - top > 1 and _max_alpha(alpha, (left, top, right, top + 1)) == 0:
        top += 1

    return rgba.crop((left, top, right, bottom)), (left, top)


###############################################################################
# Packing tree

class Candidate:
    """A free leaf that could hold a requested size, and how well it fits."""
    __slots__ = ('node', 'score')

    def __init__(self, node: 'Node', score: int):
        self.node = node
        self.score = score

    def __repr__(self):
        return f"Candidate({self.node.rect!r}, score={self.score})"


class Node:
    """
    A region of the canvas in a guillotine-cut binary tree.

    A leaf is either free or used. An internal node has exactly two children
    whose rectangles split its own rectangle with no gap and no overlap; it
    is never used itself.
    """
    __slots__ = ('rect', 'left', 'right', 'used')

    def __init__(self, rect: Rectangle):
        self.rect = rect
        self.left: Optional[Node] = None
        self.right: Optional[Node] = None
        self.used = False

    def __repr__(self):
        state = "used" if self.used else ("split" if self.left is not None else "free")
        return f"Node({self.rect!r}, {state})"

    @property
    def is_leaf(self) -> bool:
        return self.left is None

    def leaves(self) -> Iterator['Node']:
        """Yield every leaf below this node, left before right."""
        stack = [self]
        while stack:
            node = stack.pop()
            if node.is_leaf:
                yield node
            else:
                stack.append(node.right)
                stack.append(node.left)

    def find_candidates(self, width: int, height: int) -> Iterator[Candidate]:
        """
        Yield every unused leaf under this node that can hold width × height.

        Subtrees whose rectangle is too small are never entered. The score of
        a candidate is the smaller of the two leftover sides. Leaves come out
        in left-before-right depth-first order.
        """
        stack = [self]
        while stack:
            node = stack.pop()
            if not node.rect.can_hold(width, height):
                continue
            if not node.is_leaf:
                stack.append(node.right)
                stack.append(node.left)
            elif not node.used:
                yield Candidate(node, min(node.rect.width - width, node.rect.height - height))

    def commit(self, width: int, height: int) -> Rectangle:
        """
        Place a width × height rectangle at the top-left corner of this leaf.

        An exact fit marks the leaf used. Otherwise the leaf is cut along the
        axis with more slack: the left child gets the requested extent on
        that axis, the right child gets the rest, and the placement continues
        in the left child.
        """
        assert self.is_leaf, f"commit into split node {self!r}"
        assert not self.used, f"commit into used node {self!r}"

        rect = self.rect
        dw = rect.width - width
        dh = rect.height - height
        assert dw >= 0 and dh >= 0, f"{width}×{height} does not fit {self!r}"

        if dw == 0 and dh == 0:
            self.used = True
            return rect

        if dw >= dh:
            self.left = Node(Rectangle(width, rect.height, rect.x, rect.y))
            self.right = Node(Rectangle(dw, rect.height, rect.x + width, rect.y))
        else:
            self.left = Node(Rectangle(rect.width, height, rect.x, rect.y))
            self.right = Node(Rectangle(rect.width, dh, rect.x, rect.y + height))
        return self.left.commit(width, height)


###############################################################################
# Packer

class Sprite:
    """A trimmed source image and, once packed, its position on the canvas."""
    def __init__(self, key: str, image: Image.Image, original_size: Tuple[int, int],
                 offset: Tuple[int, int] = (0, 0)):
        self.key = key
        self.image = image
        self.original_size = original_size
        self.offset = offset
        self.position: Optional[Tuple[int, int]] = None

    @classmethod
    def from_image(cls, key: str, img: Image.Image) -> 'Sprite':
        """Trim img and wrap the result."""
        trimmed, offset = trim_image(img)
        return cls(key, trimmed, img.size, offset)

    def __repr__(self):
        return f"Sprite({self.key!r}, {self.width}×{self.height}, position={self.position})"

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def padded_size(self) -> Tuple[int, int]:
        return self.width + PADDING, self.height + PADDING

    @property
    def rect(self) -> Optional[Rectangle]:
        """The trimmed footprint on the canvas, or None before packing."""
        if self.position is None:
            return None
        return Rectangle(self.width, self.height, *self.position)


def _best_candidate(root: Node, sprite: Sprite) -> Optional[Candidate]:
    best = None
    for candidate in root.find_candidates(*sprite.padded_size):
        if best is None or candidate.score < best.score:
            best = candidate
    return best


def pack_sprites(width: int, height: int, sprites: List[Sprite], workers: int = 1) -> Node:
    """
    Place every sprite on a width × height canvas, greedy best-fit.

    Each round looks at the candidates of every sprite still unplaced and
    commits the single lowest-scoring one. Equal scores go to the sprite that
    came first in `sprites`, then to the first candidate found in the tree.
    With workers > 1 the candidate search of a round runs on a thread pool;
    the tree is only modified after all searches of the round are done.

    Positions are stored on the sprites. Raises PackingError, leaving every
    sprite unplaced, when some sprite has nowhere to go.
    Returns the root of the packing tree.
    """
    if width <= PADDING or height <= PADDING:
        raise ValueError(f"Invalid atlas size {width}×{height}")

    root = Node(Rectangle(width - PADDING, height - PADDING, PADDING, PADDING))
    remaining = list(sprites)
    for sprite in remaining:
        sprite.position = None

    executor = ThreadPoolExecutor(max_workers=workers) if workers > 1 else None
    try:
        while remaining:
            logger.debug("%d images left...", len(remaining))

            if executor is not None:
                found = list(executor.map(lambda s: _best_candidate(root, s), remaining))
            else:
                found = [_best_candidate(root, s) for s in remaining]

            best_index = -1
            for i, candidate in enumerate(found):
                if candidate is None:
                    continue
                if best_index < 0 or candidate.score < found[best_index].score:
                    best_index = i

            if best_index < 0:
                unplaced = [s.key for s in remaining]
                logger.warning("No room left for %d sprites: %s", len(unplaced), ", ".join(unplaced))
                for sprite in sprites:
                    sprite.position = None
                raise PackingError(unplaced)

            sprite = remaining.pop(best_index)
            placed = found[best_index].node.commit(*sprite.padded_size)
            sprite.position = (placed.x, placed.y)
            logger.debug("Placed %s at (%d,%d), score %d",
                         sprite.key, placed.x, placed.y, found[best_index].score)
    finally:
        if executor is not None:
            executor.shutdown()

    return root


def packing_efficiency(width: int, height: int, sprites: List[Sprite]) -> float:
    """Percentage of the canvas covered by trimmed sprite pixels."""
    total_pixels = width * height
    sprite_pixels = sum(s.width * s.height for s in sprites)
    return (sprite_pixels / total_pixels) * 100 if total_pixels > 0 else 0
