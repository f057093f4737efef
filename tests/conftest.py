import os
from collections import defaultdict
from pathlib import Path

os.environ.setdefault("SDL_VIDEODRIVER", "dummy")

import pygame
import pytest

GRASS = pygame.Color(0, 200, 0)
WALL = pygame.Color(200, 200, 200)

TSX = """<?xml version="1.0" encoding="UTF-8"?>
<tileset version="1.10" name="test" tilewidth="32" tileheight="32" tilecount="2" columns="0">
 <tile id="0">
  <properties>
   <property name="barrier" type="bool" value="true"/>
  </properties>
  <image width="32" height="32" source="wall.png"/>
 </tile>
 <tile id="1">
  <image width="32" height="32" source="grass.png"/>
 </tile>
</tileset>
"""

TMX = """<?xml version="1.0" encoding="UTF-8"?>
<map version="1.10" orientation="orthogonal" width="{width}" height="{height}" tilewidth="32" tileheight="32">
 <tileset firstgid="1" source="test.tsx"/>
 <layer id="1" name="ground" width="{width}" height="{height}">
  <data encoding="csv">
{data}
</data>
 </layer>
{extra}
</map>
"""


@pytest.fixture(scope="session", autouse=True)
def headless_display():
    # convert_alpha() needs a display mode, even with the dummy driver
    pygame.init()
    pygame.display.set_mode((1, 1))
    yield
    pygame.quit()


def solid(size, color):
    surface = pygame.Surface(size, pygame.SRCALPHA)
    surface.fill(color)
    return surface


@pytest.fixture
def write_map(tmp_path):
    """Write a 32px-tile TMX map; 1 is a wall (barrier), 2 is grass."""
    pygame.image.save(solid((32, 32), GRASS), str(tmp_path / "grass.png"))
    pygame.image.save(solid((32, 32), WALL), str(tmp_path / "wall.png"))
    (tmp_path / "test.tsx").write_text(TSX)

    def _write(rows, extra="", name="test.tmx") -> Path:
        data = ",\n".join(",".join(str(gid) for gid in row) for row in rows)
        path = tmp_path / name
        path.write_text(TMX.format(width=len(rows[0]), height=len(rows), data=data, extra=extra))
        return path

    return _write


def open_rows(width=10, height=8):
    return [[2] * width for _ in range(height)]


def press(*keys):
    """Stand-in for pygame.key.get_pressed()."""
    state = defaultdict(bool)
    for key in keys:
        state[key] = True
    return state
