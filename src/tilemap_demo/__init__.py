from __future__ import annotations

import argparse
import logging
import random
import sys
from contextlib import suppress
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import TYPE_CHECKING
from typing import Self
from typing import final
from typing import override

import pygame
import pygame.color
import pygame.constants
import pygame.display
import pygame.draw
import pygame.event
import pygame.image
import pygame.key
import pygame.rect
import pygame.surface
import pygame.time

from tilemap_demo.tiled import TiledMap
from tilemap_demo.tiled import TiledMapError
from tilemap_demo.tiled import load_map

if TYPE_CHECKING:
    from collections.abc import Iterable
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

BLACK = pygame.color.Color(64, 64, 64)
RED = pygame.color.Color(240, 64, 64)
BLUE = pygame.color.Color(64, 64, 240)
YELLOW = pygame.color.Color(240, 240, 64)

ASSETS_DIR = Path(__file__).parent / "assets"
MAP_FILENAME = ASSETS_DIR / "demo.tmx"
PLAYER_SHEET_FILENAME = ASSETS_DIR / "wizard.png"
PATROL_SHEET_FILENAME = ASSETS_DIR / "soldier.png"
WINDOW_TITLE = "Tile Map Demo"
FPS = 60

# sprite sheets are FRAMES_PER_SHEET columns by one row per moving Direction
FRAME_WIDTH = 48
FRAME_HEIGHT = 64
FRAME_SIZE = (FRAME_WIDTH, FRAME_HEIGHT)
FRAME_COUNT = 4  # ticks each animation frame is held
FRAMES_PER_SHEET = 3
SHEET_ROWS = 4
IDLE_FRAME = 1
HITBOX_HEIGHT = 16

PLAYER_SPEED = 5
PATROL_SPEED = 2
PATROL_TURN_TICKS = 60
PATROL_COUNT = 2
SPAWN_ATTEMPTS = 20

BARRIER_PROPERTY = "barrier"
BARRIER_GIDS = frozenset({1})
SPAWNS_OBJECT_GROUP = "spawns"


class AssetError(Exception):
    """A bundled map or image could not be loaded at startup."""


class Direction(IntEnum):
    """Facing of a sprite; the value of a moving direction is its sprite sheet row."""

    UP = 0
    RIGHT = 1
    DOWN = 2
    LEFT = 3
    IDLE = 4

    def delta(self: Self, speed: int) -> tuple[int, int]:
        dx, dy = {
            Direction.UP: (0, -1),
            Direction.RIGHT: (1, 0),
            Direction.DOWN: (0, 1),
            Direction.LEFT: (-1, 0),
            Direction.IDLE: (0, 0),
        }[self]
        return (dx * speed, dy * speed)

    def reverse(self: Self) -> Direction:
        return {
            Direction.UP: Direction.DOWN,
            Direction.RIGHT: Direction.LEFT,
            Direction.DOWN: Direction.UP,
            Direction.LEFT: Direction.RIGHT,
            Direction.IDLE: Direction.IDLE,
        }[self]

    @property
    def sheet_row(self: Self) -> int:
        if self == Direction.IDLE:
            return Direction.DOWN.value
        return self.value


@dataclass(frozen=True)
class Settings:
    map_filename: Path = MAP_FILENAME
    player_sheet: Path = PLAYER_SHEET_FILENAME
    patrol_sheet: Path = PATROL_SHEET_FILENAME
    barrier_gids: frozenset[int] = BARRIER_GIDS
    seed: int | None = None
    fps: int = FPS
    debug: bool = False

    @classmethod
    def from_args(cls: type[Self], args: argparse.Namespace) -> Self:
        barrier_gids = BARRIER_GIDS if args.barrier_gid is None else frozenset(args.barrier_gid)
        return cls(
            map_filename=args.map,
            player_sheet=args.player_sheet,
            patrol_sheet=args.patrol_sheet,
            barrier_gids=barrier_gids,
            seed=args.seed,
            fps=args.fps,
            debug=args.debug,
        )


class AnimatedSprite:
    sprite_sheet: pygame.surface.Surface
    x: int
    y: int
    direction: Direction
    frame: int
    frame_delay: int

    def __init__(
        self: Self,
        sprite_sheet: pygame.surface.Surface,
        position: tuple[int, int] = (0, 0),
        direction: Direction = Direction.IDLE,
    ) -> None:
        self.sprite_sheet = sprite_sheet
        self.x, self.y = position
        self.direction = direction
        self.frame = 0
        self.frame_delay = 0

    @override
    def __repr__(self: Self) -> str:
        return f"{type(self).__name__}(x={self.x}, y={self.y}, direction={self.direction.name})"

    @property
    def position(self: Self) -> tuple[int, int]:
        return (self.x, self.y)

    @property
    def rect(self: Self) -> pygame.rect.Rect:
        return pygame.rect.Rect(self.position, FRAME_SIZE)

    @property
    def hitbox(self: Self) -> pygame.rect.Rect:
        return hitbox_at(self.position)

    def next_position(self: Self, speed: int) -> tuple[int, int]:
        dx, dy = self.direction.delta(speed)
        return (self.x + dx, self.y + dy)

    def animate(self: Self) -> None:
        if self.direction == Direction.IDLE:
            self.frame = IDLE_FRAME
            return
        self.frame_delay += 1
        if self.frame_delay % FRAME_COUNT == 0:
            self.frame = (self.frame + 1) % FRAMES_PER_SHEET

    def frame_rect(self: Self) -> pygame.rect.Rect:
        frame = IDLE_FRAME if self.direction == Direction.IDLE else self.frame
        return pygame.rect.Rect((frame * FRAME_WIDTH, self.direction.sheet_row * FRAME_HEIGHT), FRAME_SIZE)

    def draw(self: Self, surface: pygame.surface.Surface) -> None:
        _ = surface.blit(self.sprite_sheet, self.position, area=self.frame_rect())


@final
class PatrolSprite(AnimatedSprite):
    move_count: int

    def __init__(
        self: Self,
        sprite_sheet: pygame.surface.Surface,
        position: tuple[int, int] = (0, 0),
        direction: Direction = Direction.RIGHT,
    ) -> None:
        super().__init__(sprite_sheet, position, direction)
        self.move_count = 0

    def tick(self: Self) -> bool:
        """Count one update and turn around every PATROL_TURN_TICKS; return True on a turn."""
        self.move_count += 1
        if self.move_count < PATROL_TURN_TICKS:
            return False
        self.move_count = 0
        self.turn()
        return True

    def turn(self: Self) -> None:
        self.direction = self.direction.reverse()


class Game:
    tiled_map: TiledMap
    tile_images: dict[int, pygame.surface.Surface]
    barriers: set[int]
    bounds: pygame.rect.Rect
    player: AnimatedSprite
    patrols: list[PatrolSprite]
    debug: bool
    _rng: random.Random

    def __init__(
        self: Self,
        tiled_map: TiledMap,
        tile_images: dict[int, pygame.surface.Surface],
        player_sheet: pygame.surface.Surface,
        patrol_sheet: pygame.surface.Surface,
        barrier_gids: Iterable[int] = BARRIER_GIDS,
        rng: random.Random | None = None,
        debug: bool = False,  # noqa: FBT001, FBT002
    ) -> None:
        self.tiled_map = tiled_map
        self.tile_images = tile_images
        self.bounds = pygame.rect.Rect((0, 0), tiled_map.pixel_size)
        self.barriers = find_barriers(tiled_map, barrier_gids)
        self.debug = debug
        self._rng = random.Random() if rng is None else rng
        self.player = AnimatedSprite(player_sheet, self.player_spawn())
        self.patrols = [PatrolSprite(patrol_sheet, position) for position in self.patrol_spawns()]
        logger.info(
            "game ready: %d barrier tile(s), player at %s, %d patrol(s)",
            len(self.barriers),
            self.player.position,
            len(self.patrols),
        )

    def player_spawn(self: Self) -> tuple[int, int]:
        if points := self.spawn_points("player"):
            return points[0]
        return (self.bounds.centerx - FRAME_WIDTH // 2, self.bounds.centery - FRAME_HEIGHT // 2)

    def patrol_spawns(self: Self) -> list[tuple[int, int]]:
        points = self.spawn_points("patrol")[:PATROL_COUNT]
        while len(points) < PATROL_COUNT:
            points.append(self.random_position())
        return points

    def spawn_points(self: Self, name: str) -> list[tuple[int, int]]:
        with suppress(KeyError):
            group = self.tiled_map.get_object_group(SPAWNS_OBJECT_GROUP)
            return [self.clamp_position((int(obj.x), int(obj.y))) for obj in group.named(name)]
        return []

    def random_position(self: Self) -> tuple[int, int]:
        max_x = max(1, self.bounds.width - FRAME_WIDTH)
        max_y = max(1, self.bounds.height - FRAME_HEIGHT)
        position = (0, 0)
        for _ in range(SPAWN_ATTEMPTS):
            position = (self._rng.randrange(max_x), self._rng.randrange(max_y))
            if not self.is_barrier(hitbox_at(position)):
                return position
            logger.debug("spawn at %s is blocked, re-rolling", position)
        return position

    def clamp_position(self: Self, position: tuple[int, int]) -> tuple[int, int]:
        rect = pygame.rect.Rect(position, FRAME_SIZE).clamp(self.bounds)
        return (rect.x, rect.y)

    def is_barrier(self: Self, rect: pygame.rect.Rect) -> bool:
        if not self.bounds.contains(rect):
            return True
        tilewidth, tileheight = self.tiled_map.tilewidth, self.tiled_map.tileheight
        for row in range(rect.top // tileheight, (rect.bottom - 1) // tileheight + 1):
            for column in range(rect.left // tilewidth, (rect.right - 1) // tilewidth + 1):
                if row * self.tiled_map.width + column in self.barriers:
                    return True
        return False

    def collides_with_patrol(self: Self, sprite: AnimatedSprite, rect: pygame.rect.Rect) -> bool:
        current = sprite.hitbox
        return any(
            rect.colliderect(patrol.hitbox) and not current.colliderect(patrol.hitbox)
            for patrol in self.patrols
            if patrol is not sprite
        )

    def update(self: Self, keys: pygame.key.ScancodeWrapper) -> None:
        self.update_player(keys)
        for patrol in self.patrols:
            self.update_patrol(patrol)

    def update_player(self: Self, keys: pygame.key.ScancodeWrapper) -> None:
        player = self.player
        direction = read_direction(keys, player, self.bounds)
        position = player.position
        if direction != Direction.IDLE:
            dx, dy = direction.delta(PLAYER_SPEED)
            position = self.clamp_position((player.x + dx, player.y + dy))
            target = hitbox_at(position)
            if self.is_barrier(target) or self.collides_with_patrol(player, target):
                direction = Direction.IDLE
                position = player.position
        player.direction = direction
        player.animate()
        player.x, player.y = position

    def update_patrol(self: Self, patrol: PatrolSprite) -> None:
        if patrol.tick():
            logger.debug("%r turned after %d ticks", patrol, PATROL_TURN_TICKS)
        wanted = patrol.next_position(PATROL_SPEED)
        position = self.clamp_position(wanted)
        if self.is_barrier(hitbox_at(position)):
            patrol.turn()
        else:
            patrol.x, patrol.y = position
            if position != wanted:
                patrol.turn()
        patrol.animate()

    def draw(self: Self, surface: pygame.surface.Surface) -> None:
        _ = surface.fill(BLACK)
        self.draw_map(surface)
        for sprite in sorted([self.player, *self.patrols], key=lambda s: s.rect.bottom):
            sprite.draw(surface)
        if self.debug:
            self.draw_debug(surface)

    def draw_map(self: Self, surface: pygame.surface.Surface) -> None:
        tilewidth, tileheight = self.tiled_map.tilewidth, self.tiled_map.tileheight
        for layer in self.tiled_map.layers:
            if not layer.visible:
                continue
            for x, y, gid in layer:
                if (image := self.tile_images.get(gid)) is None:
                    continue
                _ = surface.blit(image, (x * tilewidth, y * tileheight))

    def draw_debug(self: Self, surface: pygame.surface.Surface) -> None:
        tilewidth, tileheight = self.tiled_map.tilewidth, self.tiled_map.tileheight
        draw_grid(surface, tilewidth, tileheight)
        for index in self.barriers:
            row, column = divmod(index, self.tiled_map.width)
            rect = pygame.rect.Rect((column * tilewidth, row * tileheight), (tilewidth, tileheight))
            _ = pygame.draw.rect(surface, RED, rect, width=1)
        for sprite in (self.player, *self.patrols):
            _ = pygame.draw.rect(surface, YELLOW, sprite.hitbox, width=1)


class GameWindow:
    surface: pygame.surface.Surface
    clock: pygame.time.Clock
    settings: Settings
    game: Game
    _running: bool

    def __init__(self: Self, settings: Settings) -> None:
        self.settings = settings
        pygame.display.set_caption(WINDOW_TITLE)
        tiled_map = load_tiled_map(settings.map_filename)
        # tiles and sheets need a display mode before they can be converted
        self.surface = pygame.display.set_mode(tiled_map.pixel_size)
        logger.info("window %dx%d", *tiled_map.pixel_size)
        self.clock = pygame.time.Clock()
        self.game = Game(
            tiled_map,
            build_tile_images(tiled_map),
            load_sprite_sheet(settings.player_sheet),
            load_sprite_sheet(settings.patrol_sheet),
            barrier_gids=settings.barrier_gids,
            rng=random.Random(settings.seed),
            debug=settings.debug,
        )
        self._running = False

    def quit(self: Self) -> None:
        self._running = False

    def run(self: Self) -> None:
        self._running = True
        while self._running:
            self.run_once()
            pygame.display.flip()
            _ = self.clock.tick(self.settings.fps)

    def run_once(self: Self) -> None:
        self.handle_events(pygame.event.get())
        if not self._running:
            return
        self.game.update(pygame.key.get_pressed())
        self.game.draw(self.surface)

    def handle_events(self: Self, events: list[pygame.event.Event]) -> None:
        for event in events:
            if event.type == pygame.constants.QUIT:
                self.quit()
                return
            if event.type != pygame.constants.KEYDOWN:
                continue
            if event.key in (pygame.constants.K_ESCAPE, pygame.constants.K_q):  # pyright: ignore[reportAny]
                self.quit()
                return
            if event.key == pygame.constants.K_F3:  # pyright: ignore[reportAny]
                self.game.debug = not self.game.debug


def read_direction(
    keys: pygame.key.ScancodeWrapper,
    sprite: AnimatedSprite,
    bounds: pygame.rect.Rect,
) -> Direction:
    if keys[pygame.constants.K_LEFT] and sprite.x > bounds.left:
        return Direction.LEFT
    if keys[pygame.constants.K_RIGHT] and sprite.x < bounds.right - FRAME_WIDTH:
        return Direction.RIGHT
    if keys[pygame.constants.K_UP] and sprite.y > bounds.top:
        return Direction.UP
    if keys[pygame.constants.K_DOWN] and sprite.y < bounds.bottom - FRAME_HEIGHT:
        return Direction.DOWN
    return Direction.IDLE


def hitbox_at(position: tuple[int, int]) -> pygame.rect.Rect:
    x, y = position
    return pygame.rect.Rect((x, y + FRAME_HEIGHT - HITBOX_HEIGHT), (FRAME_WIDTH, HITBOX_HEIGHT))


def find_barriers(tiled_map: TiledMap, barrier_gids: Iterable[int] = BARRIER_GIDS) -> set[int]:
    blocked = tiled_map.gids_with_property(BARRIER_PROPERTY) | set(barrier_gids)
    return {
        y * tiled_map.width + x
        for layer in tiled_map.layers
        for x, y, gid in layer
        if gid in blocked
    }


def load_tiled_map(filename: Path) -> TiledMap:
    try:
        return load_map(filename)
    except TiledMapError as exc:
        msg = f"error parsing map: {exc}"
        raise AssetError(msg) from exc


def build_tile_images(tiled_map: TiledMap) -> dict[int, pygame.surface.Surface]:
    return {gid: surface.convert_alpha() for gid, surface in tiled_map.tile_images().items()}


def load_sprite_sheet(filename: Path) -> pygame.surface.Surface:
    try:
        image = pygame.image.load(filename).convert_alpha()
    except (OSError, pygame.error) as exc:
        msg = f"failed to load sprite sheet {filename}: {exc}"
        raise AssetError(msg) from exc
    width, height = image.get_size()
    if width < FRAMES_PER_SHEET * FRAME_WIDTH or height < SHEET_ROWS * FRAME_HEIGHT:
        msg = f"sprite sheet {filename} is {width}x{height}, too small for {FRAMES_PER_SHEET}x{SHEET_ROWS} frames"
        raise AssetError(msg)
    logger.info("loaded sprite sheet %s", filename.name)
    return image


def draw_grid(surface: pygame.surface.Surface, tilewidth: int, tileheight: int) -> None:
    width, height = surface.get_size()
    for x in range(0, width, tilewidth):
        _ = pygame.draw.line(surface, color=BLUE, start_pos=(x, 0), end_pos=(x, height), width=1)
    for y in range(0, height, tileheight):
        _ = pygame.draw.line(surface, color=BLUE, start_pos=(0, y), end_pos=(width, y), width=1)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="tilemap-demo", description="Tile map sprite demo.")
    parser.add_argument("--map", type=Path, default=MAP_FILENAME, help="TMX map to load")
    parser.add_argument("--player-sheet", type=Path, default=PLAYER_SHEET_FILENAME, help="player sprite sheet")
    parser.add_argument("--patrol-sheet", type=Path, default=PATROL_SHEET_FILENAME, help="patrol sprite sheet")
    parser.add_argument(
        "--barrier-gid",
        type=int,
        action="append",
        help="tile GID that blocks movement (repeatable, default: 1)",
    )
    parser.add_argument("--seed", type=int, default=None, help="seed for patrol spawn positions")
    parser.add_argument("--fps", type=int, default=FPS, help="frames per second")
    parser.add_argument("--debug", action="store_true", help="draw the tile grid, barriers and hitboxes (F3)")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="logging level",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    _ = pygame.init()
    try:
        window = GameWindow(Settings.from_args(args))
    except AssetError as exc:
        logger.critical("%s", exc)
        pygame.quit()
        sys.exit(1)
    window.run()
    pygame.quit()
    sys.exit()
