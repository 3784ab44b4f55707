from __future__ import annotations

import io
import json
from collections import Counter

import pygame as pg
import pytest

from resource_provider import ResourceNotFoundError, ResourceProvider


class MemoryProvider(ResourceProvider):
    """Serves resources from a dict; records how often each path was requested."""

    def __init__(self, files: dict | None = None, name: str = 'memory'):
        self.files = {}
        self.calls = Counter()
        self.name = name
        for path, value in (files or {}).items():
            self.add(path, value)

    def add(self, path: str, value):
        if isinstance(value, (dict, list)):
            value = json.dumps(value)
        if isinstance(value, str):
            value = value.encode('utf-8')
        self.files[path] = value

    def base_path(self) -> str:
        return f'memory://{self.name}/'

    async def get_bytes(self, path: str) -> bytes:
        self.calls[path] += 1
        if path not in self.files:
            raise ResourceNotFoundError(path)
        return self.files[path]


def make_png(width: int, height: int, color=(255, 0, 0, 255)) -> bytes:
    surf = pg.Surface((width, height), pg.SRCALPHA)
    surf.fill(color)
    buffer = io.BytesIO()
    pg.image.save(surf, buffer, 'texture.png')
    return buffer.getvalue()


@pytest.fixture()
def provider() -> MemoryProvider:
    return MemoryProvider(name='create')


@pytest.fixture()
def png():
    return make_png
