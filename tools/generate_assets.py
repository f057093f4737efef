#!/usr/bin/env -S uv run python3
"""Redraw the bundled tile and sprite sheet PNGs.

Run:  uv run tools/generate_assets.py

Uses the SDL dummy video driver so it works headless. Output goes to
src/tilemap_demo/assets/, next to demo.tmx and demo.tsx.
"""

from __future__ import annotations

import os
from pathlib import Path

os.environ.setdefault("SDL_VIDEODRIVER", "dummy")

import pygame  # noqa: E402
import pygame.color  # noqa: E402
import pygame.display  # noqa: E402
import pygame.image  # noqa: E402
import pygame.rect  # noqa: E402
import pygame.surface  # noqa: E402

from tilemap_demo import ASSETS_DIR  # noqa: E402
from tilemap_demo import FRAME_HEIGHT  # noqa: E402
from tilemap_demo import FRAME_WIDTH  # noqa: E402
from tilemap_demo import FRAMES_PER_SHEET  # noqa: E402
from tilemap_demo import SHEET_ROWS  # noqa: E402
from tilemap_demo import Direction  # noqa: E402

TILE = 32

GRASS = pygame.color.Color(72, 140, 60)
GRASS_DARK = pygame.color.Color(56, 112, 48)
STONE = pygame.color.Color(120, 120, 128)
MORTAR = pygame.color.Color(80, 80, 88)
SKIN = pygame.color.Color(240, 200, 160)
LEGS = pygame.color.Color(40, 40, 60)
EYES = pygame.color.Color(20, 20, 20)
CLEAR = pygame.color.Color(0, 0, 0, 0)

CHARACTERS = {
    "wizard.png": (pygame.color.Color(70, 70, 200), pygame.color.Color(50, 50, 160), (14, 0, 20, 6)),
    "soldier.png": (pygame.color.Color(170, 60, 50), pygame.color.Color(150, 150, 160), (16, 2, 16, 5)),
}


def draw_grass() -> pygame.surface.Surface:
    surface = pygame.surface.Surface((TILE, TILE), pygame.SRCALPHA)
    _ = surface.fill(GRASS)
    for y in range(TILE):
        for x in range(TILE):
            if (x * 7 + y * 13) % 11 == 0:
                surface.set_at((x, y), GRASS_DARK)
    return surface


def draw_wall() -> pygame.surface.Surface:
    surface = pygame.surface.Surface((TILE, TILE), pygame.SRCALPHA)
    _ = surface.fill(STONE)
    for y in range(TILE):
        offset = 15 if (y // 8) % 2 == 0 else 7
        for x in range(TILE):
            if y % 8 == 7 or x % 16 == offset:
                surface.set_at((x, y), MORTAR)
    return surface


def draw_character(body: pygame.color.Color, hat: pygame.color.Color, hat_rect: tuple[int, int, int, int]) -> pygame.surface.Surface:
    """One row per moving Direction, one column per walk frame; column 1 is the standing pose."""
    surface = pygame.surface.Surface((FRAMES_PER_SHEET * FRAME_WIDTH, SHEET_ROWS * FRAME_HEIGHT), pygame.SRCALPHA)
    _ = surface.fill(CLEAR)
    for direction in (Direction.UP, Direction.RIGHT, Direction.DOWN, Direction.LEFT):
        for frame in range(FRAMES_PER_SHEET):
            origin = (frame * FRAME_WIDTH, direction.sheet_row * FRAME_HEIGHT)
            lift_left = 4 if frame == 0 else 0
            lift_right = 4 if frame == 2 else 0
            _ = surface.fill(LEGS, part(origin, 16, 48, 6, 14 - lift_left))
            _ = surface.fill(LEGS, part(origin, 26, 48, 6, 14 - lift_right))
            _ = surface.fill(body, part(origin, 14, 20, 20, 28))
            _ = surface.fill(SKIN, part(origin, 16, 4, 16, 16))
            _ = surface.fill(hat, part(origin, *hat_rect))
            if direction == Direction.DOWN:
                _ = surface.fill(EYES, part(origin, 19, 10, 3, 3))
                _ = surface.fill(EYES, part(origin, 27, 10, 3, 3))
            elif direction == Direction.LEFT:
                _ = surface.fill(EYES, part(origin, 17, 10, 3, 3))
            elif direction == Direction.RIGHT:
                _ = surface.fill(EYES, part(origin, 28, 10, 3, 3))
    return surface


def part(origin: tuple[int, int], x: int, y: int, w: int, h: int) -> pygame.rect.Rect:
    ox, oy = origin
    return pygame.rect.Rect(ox + x, oy + y, w, h)


def save(surface: pygame.surface.Surface, filename: Path) -> None:
    pygame.image.save(surface, filename)
    print(f"wrote {filename}")  # noqa: T201


def main() -> None:
    _ = pygame.init()
    # need a display surface even with the dummy driver
    _ = pygame.display.set_mode((1, 1))
    ASSETS_DIR.mkdir(parents=True, exist_ok=True)
    save(draw_grass(), ASSETS_DIR / "grass.png")
    save(draw_wall(), ASSETS_DIR / "wall.png")
    for filename, (body, hat, hat_rect) in CHARACTERS.items():
        save(draw_character(body, hat, hat_rect), ASSETS_DIR / filename)
    pygame.quit()


if __name__ == "__main__":
    main()
