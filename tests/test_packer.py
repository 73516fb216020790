"""
Tests for the greedy best-fit packer.
"""

import random
from typing import List

import pytest
from PIL import Image

from AtlasPacker import PackingError, Rectangle, Sprite, pack_sprites, packing_efficiency


def make_sprite(key: str, width: int, height: int) -> Sprite:
    return Sprite(key, Image.new('RGBA', (width, height), (255, 255, 255, 255)), (width, height))


def random_sprites(seed: int, count: int, low: int = 1, high: int = 20) -> List[Sprite]:
    rng = random.Random(seed)
    return [make_sprite(f"s{i}", rng.randint(low, high), rng.randint(low, high)) for i in range(count)]


def padded_rect(sprite: Sprite) -> Rectangle:
    width, height = sprite.padded_size
    return Rectangle(width, height, *sprite.position)


class TestPackSprites:
    def test_two_small_sprites(self) -> None:
        a = make_sprite("a", 1, 1)
        b = make_sprite("b", 1, 1)

        pack_sprites(5, 5, [a, b])

        assert a.position == (1, 1)
        assert b.position == (1, 3)

    def test_too_small_canvas_for_padded_pair(self) -> None:
        # 4x4 leaves a 3x3 region, which holds only one 2x2 padded footprint
        a = make_sprite("a", 1, 1)
        b = make_sprite("b", 1, 1)

        with pytest.raises(PackingError) as excinfo:
            pack_sprites(4, 4, [a, b])

        assert excinfo.value.unplaced == ["b"]
        assert a.position is None
        assert b.position is None

    def test_exact_fit_wins_over_input_order(self) -> None:
        small = make_sprite("small", 2, 2)
        exact = make_sprite("exact", 9, 4)

        pack_sprites(11, 11, [small, exact])

        assert exact.position == (1, 1)
        assert small.position == (1, 6)

    def test_equal_scores_go_to_first_sprite(self) -> None:
        sprites = [make_sprite(key, 3, 3) for key in ("first", "second", "third")]

        pack_sprites(64, 64, sprites)

        assert sprites[0].position == (1, 1)

    def test_placements_are_disjoint_and_inside_canvas(self) -> None:
        sprites = random_sprites(3, 40)
        canvas = Rectangle(255, 255, 1, 1)

        pack_sprites(256, 256, sprites)

        for i, a in enumerate(sprites):
            assert canvas.contains(padded_rect(a))
            for b in sprites[i + 1:]:
                assert not padded_rect(a).intersects(padded_rect(b))

    def test_oversized_sprites_report_fit_failure(self) -> None:
        sprites = [make_sprite(f"big{i}", 40, 40) for i in range(3)]

        with pytest.raises(PackingError) as excinfo:
            pack_sprites(64, 64, sprites)

        assert len(excinfo.value.unplaced) == 2
        assert all(s.position is None for s in sprites)

    def test_sprite_larger_than_canvas(self) -> None:
        with pytest.raises(PackingError):
            pack_sprites(16, 16, [make_sprite("huge", 16, 2)])

    @pytest.mark.parametrize("width, height", [(1, 64), (64, 1), (0, 0), (-5, 10)])
    def test_invalid_canvas_size(self, width: int, height: int) -> None:
        with pytest.raises(ValueError):
            pack_sprites(width, height, [make_sprite("a", 1, 1)])

    def test_no_sprites(self) -> None:
        root = pack_sprites(32, 32, [])

        assert root.is_leaf
        assert root.rect == Rectangle(31, 31, 1, 1)

    def test_repacking_is_deterministic(self) -> None:
        sprites = random_sprites(5, 25)
        pack_sprites(200, 200, sprites)
        first = [s.position for s in sprites]

        pack_sprites(200, 200, sprites)

        assert [s.position for s in sprites] == first

    def test_thread_pool_matches_serial(self) -> None:
        serial = random_sprites(9, 30)
        threaded = random_sprites(9, 30)

        pack_sprites(256, 256, serial)
        pack_sprites(256, 256, threaded, workers=4)

        assert [s.position for s in threaded] == [s.position for s in serial]

    def test_tree_leaves_cover_used_placements(self) -> None:
        sprites = random_sprites(13, 20)

        root = pack_sprites(160, 160, sprites)

        used = sorted(leaf.rect.box()[:2] for leaf in root.leaves() if leaf.used)
        assert used == sorted(s.position for s in sprites)


class TestPackingEfficiency:
    def test_counts_trimmed_pixels(self) -> None:
        sprites = [make_sprite("a", 10, 10), make_sprite("b", 5, 2)]

        assert packing_efficiency(20, 20, sprites) == pytest.approx(27.5)

    def test_empty_canvas(self) -> None:
        assert packing_efficiency(0, 0, []) == 0
