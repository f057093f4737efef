"""Reader for Tiled ``.tmx`` maps and ``.tsx`` tilesets."""

from __future__ import annotations

import binascii
import gzip
import logging
import zlib
from base64 import b64decode
from csv import reader
from functools import cached_property
from io import StringIO
from itertools import chain
from pathlib import Path
from typing import TYPE_CHECKING
from typing import Self

import pygame
import pygame.image
import pygame.rect
import pygame.surface
from defusedxml import DefusedXmlException
from defusedxml.ElementTree import ParseError
from defusedxml.ElementTree import parse as xml_parse

if TYPE_CHECKING:
    from collections.abc import Iterable
    from collections.abc import Iterator
    from xml.etree.ElementTree import Element

    from pygame.typing import Point

logger = logging.getLogger(__name__)

# high bits of a GID hold the flip/rotation flags
FLIPPED_HORIZONTALLY = 0x80000000
FLIPPED_VERTICALLY = 0x40000000
FLIPPED_DIAGONALLY = 0x20000000
ROTATED_HEXAGONAL_120 = 0x10000000
GID_MASK = ~(FLIPPED_HORIZONTALLY | FLIPPED_VERTICALLY | FLIPPED_DIAGONALLY | ROTATED_HEXAGONAL_120) & 0xFFFFFFFF

type TileProperties = dict[str, str | int | float | bool]


class TiledMapError(Exception):
    """A map or tileset file could not be read."""


class TiledMap:
    layers: list[TiledTileLayer]
    object_groups: list[TiledObjectGroup]
    tilesets: list[TiledTileset]
    width: int
    height: int
    tilewidth: int
    tileheight: int
    filename: Path

    def __init__(self: Self, filename: Path) -> None:
        root = parse_xml(filename)
        if root.tag != "map":
            msg = f"Not a TMX map: {filename}"
            raise TiledMapError(msg)
        self.filename = filename
        self.width = int(root.attrib["width"])
        self.height = int(root.attrib["height"])
        self.tilewidth = int(root.attrib["tilewidth"])
        self.tileheight = int(root.attrib["tileheight"])
        if min(self.width, self.height, self.tilewidth, self.tileheight) <= 0:
            msg = f"Map {filename} has a non-positive map or tile size"
            raise TiledMapError(msg)
        self.tilesets = [TiledTileset(el, self) for el in root.findall("tileset")]
        self.layers = [TiledTileLayer(el, self) for el in root.findall("layer")]
        self.object_groups = [TiledObjectGroup(el, self) for el in root.findall("objectgroup")]

    @property
    def pixel_size(self: Self) -> tuple[int, int]:
        return (self.width * self.tilewidth, self.height * self.tileheight)

    def get_layer(self: Self, key: str | int) -> TiledTileLayer:
        return lookup(self.layers, key, "layer")

    def get_object_group(self: Self, key: str | int) -> TiledObjectGroup:
        return lookup(self.object_groups, key, "object group")

    def get_tileset(self: Self, gid: int) -> TiledTileset:
        # tilesets are stored in ascending firstgid order
        for tileset in reversed(self.tilesets):
            if gid >= tileset.firstgid:
                return tileset
        msg = f"Tile GID {gid} not found in any tileset"
        raise KeyError(msg)

    def get_tile(self: Self, gid: int) -> pygame.surface.Surface:
        gid &= GID_MASK
        try:
            return self.get_tileset(gid)[gid]
        except KeyError:
            msg = f"Tile GID {gid} not found in any tileset"
            raise KeyError(msg) from None

    def tile_images(self: Self) -> dict[int, pygame.surface.Surface]:
        return dict(chain.from_iterable(tileset.tiles.items() for tileset in self.tilesets))

    def tile_properties(self: Self, gid: int) -> TileProperties:
        gid &= GID_MASK
        try:
            tileset = self.get_tileset(gid)
        except KeyError:
            return {}
        return tileset.properties.get(gid, {})

    def gids_with_property(self: Self, name: str) -> set[int]:
        return {
            gid
            for tileset in self.tilesets
            for gid, properties in tileset.properties.items()
            if properties.get(name) is True
        }


class TiledTileLayer:
    _parent: TiledMap
    data: list[tuple[int, ...]]
    name: str
    id: int
    width: int
    height: int
    visible: bool

    def __init__(self: Self, node: Element, parent: TiledMap) -> None:
        self._parent = parent
        self.name = node.attrib["name"]
        self.id = int(node.attrib.get("id", "0"))
        self.width = int(node.attrib["width"])
        self.height = int(node.attrib["height"])
        self.visible = parse_bool(node.attrib.get("visible", "1"))
        if (self.width, self.height) != (parent.width, parent.height):
            msg = f"Layer {self.name} is {self.width}x{self.height}, map is {parent.width}x{parent.height}"
            raise TiledMapError(msg)
        data_node = node.find("data")
        if data_node is None:
            msg = f"Layer {self.name} has no data"
            raise TiledMapError(msg)
        self.data = load_tiles_data(data_node, self.width, self.height)

    def __iter__(self: Self) -> Iterator[tuple[int, int, int]]:
        """Yield ``(column, row, gid)`` for every cell, empty cells included."""
        for y, row in enumerate(self.data):
            for x, gid in enumerate(row):
                yield (x, y, gid)

    def tiles(self: Self) -> Iterator[tuple[int, int, pygame.surface.Surface]]:
        """Yield ``(pixel_x, pixel_y, surface)`` for every non-empty cell."""
        tilewidth, tileheight = self._parent.tilewidth, self._parent.tileheight
        for x, y, gid in self:
            if gid == 0:
                continue
            yield (x * tilewidth, y * tileheight, self._parent.get_tile(gid))


class TiledObjectGroup:
    _parent: TiledMap
    objects: list[TiledObject]
    name: str
    id: int
    visible: bool
    locked: bool

    def __init__(self: Self, node: Element, parent: TiledMap) -> None:
        self._parent = parent
        self.name = node.attrib["name"]
        self.id = int(node.attrib.get("id", "0"))
        self.visible = parse_bool(node.attrib.get("visible", "1"))
        self.locked = parse_bool(node.attrib.get("locked", "0"))
        self.objects = [TiledObject(el, self) for el in node.findall("object")]

    def __iter__(self: Self) -> Iterator[TiledObject]:
        return iter(self.objects)

    def __getitem__(self: Self, key: str | int) -> TiledObject:
        return lookup(self.objects, key, "object")

    def named(self: Self, name: str) -> list[TiledObject]:
        return [obj for obj in self.objects if obj.name == name]


class TiledObject:
    _parent: TiledObjectGroup
    name: str | None
    id: int
    x: float
    y: float
    width: float
    height: float

    def __init__(self: Self, node: Element, parent: TiledObjectGroup) -> None:
        self._parent = parent
        self.name = node.attrib.get("name")
        self.id = int(node.attrib["id"])
        self.x = float(node.attrib["x"])
        self.y = float(node.attrib["y"])
        # point objects carry no size
        self.width = float(node.attrib.get("width", "0"))
        self.height = float(node.attrib.get("height", "0"))

    @cached_property
    def rect(self: Self) -> pygame.rect.FRect:
        return pygame.rect.FRect(self.x, self.y, self.width, self.height)

    @property
    def position(self: Self) -> Point:
        return (self.x, self.y)


class TiledTileset:
    """A tileset, either embedded in the map or read from an external TSX file.

    Two layouts are handled: a single sheet image cut into a grid (honouring
    ``margin`` and ``spacing``), and an image collection where every ``<tile>``
    names its own image file.
    """

    _parent: TiledMap
    tiles: dict[int, pygame.surface.Surface]
    properties: dict[int, TileProperties]
    firstgid: int
    source: Path | None
    name: str
    tilewidth: int
    tileheight: int
    tilecount: int
    columns: int
    margin: int
    spacing: int
    image_source: Path | None

    def __init__(self: Self, node: Element, parent: TiledMap) -> None:
        self._parent = parent
        self.firstgid = int(node.attrib["firstgid"])
        if "source" in node.attrib:
            self.source = parent.filename.parent / node.attrib["source"]
            root = parse_xml(self.source)
            base_dir = self.source.parent
        else:
            self.source = None
            root = node
            base_dir = parent.filename.parent
        self.name = root.attrib["name"]
        self.tilewidth = int(root.attrib["tilewidth"])
        self.tileheight = int(root.attrib["tileheight"])
        self.tilecount = int(root.attrib.get("tilecount", "0"))
        self.columns = int(root.attrib.get("columns", "0"))
        self.margin = int(root.attrib.get("margin", "0"))
        self.spacing = int(root.attrib.get("spacing", "0"))
        image_node = root.find("image")
        self.image_source = None if image_node is None else base_dir / image_node.attrib["source"]
        self.properties = {
            self.firstgid + int(el.attrib["id"]): parse_properties(el)
            for el in root.findall("tile")
            if el.find("properties") is not None
        }
        if self.image_source is not None:
            self.tiles = self.load_sheet_tiles(self.image_source)
        else:
            self.tiles = self.load_collection_tiles(root, base_dir)
        logger.debug("tileset %s: %d tiles from gid %d", self.name, len(self.tiles), self.firstgid)

    def load_sheet_tiles(self: Self, image_source: Path) -> dict[int, pygame.surface.Surface]:
        surface = load_image(image_source)
        width, height = surface.get_size()
        tiles: list[pygame.surface.Surface] = []
        for y in range(self.margin, height - self.tileheight + 1, self.tileheight + self.spacing):
            for x in range(self.margin, width - self.tilewidth + 1, self.tilewidth + self.spacing):
                rect = pygame.rect.Rect((x, y), (self.tilewidth, self.tileheight))
                tiles.append(surface.subsurface(rect))
        if self.tilecount:
            tiles = tiles[: self.tilecount]
        return dict(enumerate(tiles, start=self.firstgid))

    def load_collection_tiles(self: Self, root: Element, base_dir: Path) -> dict[int, pygame.surface.Surface]:
        tiles: dict[int, pygame.surface.Surface] = {}
        for el in root.findall("tile"):
            image_node = el.find("image")
            if image_node is None:
                continue
            tiles[self.firstgid + int(el.attrib["id"])] = load_image(base_dir / image_node.attrib["source"])
        return tiles

    def __getitem__(self: Self, gid: int) -> pygame.surface.Surface:
        return self.tiles[gid]


def load_map(filename: Path) -> TiledMap:
    """Parse ``filename``, turning every way it can be malformed into :class:`TiledMapError`."""
    try:
        tiled_map = TiledMap(filename)
    except (KeyError, ValueError) as exc:
        msg = f"Malformed map {filename}: {exc}"
        raise TiledMapError(msg) from exc
    logger.info(
        "loaded map %s: %dx%d tiles of %dx%d px, %d tileset(s)",
        filename.name,
        tiled_map.width,
        tiled_map.height,
        tiled_map.tilewidth,
        tiled_map.tileheight,
        len(tiled_map.tilesets),
    )
    return tiled_map


def parse_xml(filename: Path) -> Element:
    try:
        root = xml_parse(filename).getroot()
    except (OSError, ParseError, DefusedXmlException) as exc:
        msg = f"Failed to parse {filename}: {exc}"
        raise TiledMapError(msg) from exc
    if root is None:
        msg = f"Failed to parse {filename}"
        raise TiledMapError(msg)
    return root


def load_image(filename: Path) -> pygame.surface.Surface:
    try:
        return pygame.image.load(filename)
    except (OSError, pygame.error) as exc:
        msg = f"Failed to load tile image {filename}: {exc}"
        raise TiledMapError(msg) from exc


def load_tiles_data(node: Element, width: int, height: int) -> list[tuple[int, ...]]:
    encoding = node.attrib.get("encoding")
    if encoding is None:
        gids = [int(el.attrib.get("gid", "0")) for el in node.findall("tile")]
    elif encoding == "csv":
        gids = decode_csv(node.text or "")
    elif encoding == "base64":
        gids = decode_base64(node.text or "", node.attrib.get("compression"))
    else:
        msg = f"Unsupported layer encoding: {encoding}"
        raise TiledMapError(msg)
    if len(gids) != width * height:
        msg = f"Layer data has {len(gids)} tiles, expected {width * height}"
        raise TiledMapError(msg)
    return reshape([gid & GID_MASK for gid in gids], width)


def decode_csv(value: str) -> list[int]:
    buf = StringIO(value.replace("\n", ""))
    return [int(item) for item in map(str.strip, chain.from_iterable(reader(buf))) if item]


def decode_base64(value: str, compression: str | None) -> list[int]:
    if compression not in (None, "zlib", "gzip"):
        msg = f"Unsupported layer compression: {compression}"
        raise TiledMapError(msg)
    try:
        raw = b64decode(value.strip())
        if compression == "zlib":
            raw = zlib.decompress(raw)
        elif compression == "gzip":
            raw = gzip.decompress(raw)
    except (binascii.Error, zlib.error, gzip.BadGzipFile, EOFError) as exc:
        msg = f"Corrupt layer data ({compression or 'uncompressed'}): {exc}"
        raise TiledMapError(msg) from exc
    if len(raw) % 4:
        msg = "Layer data is not a whole number of 32-bit GIDs"
        raise TiledMapError(msg)
    return [int.from_bytes(raw[i : i + 4], "little") for i in range(0, len(raw), 4)]


def reshape[T](items: Iterable[T], n: int) -> list[tuple[T, ...]]:
    iterators = [iter(items)] * n
    return [*zip(*iterators, strict=True)]


def lookup[T: (TiledTileLayer, TiledObjectGroup, TiledObject)](items: Iterable[T], key: str | int, kind: str) -> T:
    """Find an item by name (str key) or id (int key)."""
    attribute = "name" if isinstance(key, str) else "id"
    for item in items:
        if getattr(item, attribute) == key:
            return item
    msg = f"No {kind} {key!r}"
    raise KeyError(msg)


def parse_bool(value: str) -> bool:
    value = value.strip().lower()
    if value in ("1", "true", "yes"):
        return True
    if value in ("0", "false", "no"):
        return False
    msg = f"Invalid boolean value: {value}"
    raise ValueError(msg)


def parse_properties(node: Element) -> TileProperties:
    properties: TileProperties = {}
    properties_node = node.find("properties")
    if properties_node is None:
        return properties
    for el in properties_node.findall("property"):
        value = el.attrib.get("value", el.text or "")
        kind = el.attrib.get("type", "string")
        if kind == "bool":
            properties[el.attrib["name"]] = parse_bool(value)
        elif kind == "int":
            properties[el.attrib["name"]] = int(value)
        elif kind == "float":
            properties[el.attrib["name"]] = float(value)
        else:
            properties[el.attrib["name"]] = value
    return properties
