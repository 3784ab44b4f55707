"""
Resource providers: fetch raw assets by a path relative to a base location.

Every call may fail with ResourceNotFoundError. The resolver treats those
failures as "absent"; only callers that require a resource let it propagate.
"""

import asyncio
import io
import json
import os
import urllib.error
import urllib.request

import pygame as pg


class ResourceNotFoundError(Exception):
    """A requested path does not resolve (missing file, HTTP error, bad payload)."""

    def __init__(self, path: str, reason: str = 'not found'):
        super().__init__(f'{path}: {reason}')
        self.path = path
        self.reason = reason


class ResourceProvider:
    """Async resource access. Subclasses implement get_bytes; the rest decode it."""

    def base_path(self) -> str:
        raise NotImplementedError

    async def get_bytes(self, path: str) -> bytes:
        raise NotImplementedError

    async def get_text(self, path: str) -> str:
        data = await self.get_bytes(path)
        try:
            return data.decode('utf-8')
        except UnicodeDecodeError as e:
            raise ResourceNotFoundError(path, f'not utf-8 text ({e})') from e

    async def get_json(self, path: str):
        text = await self.get_text(path)
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ResourceNotFoundError(path, f'invalid json ({e})') from e

    async def get_image(self, path: str) -> pg.Surface:
        data = await self.get_bytes(path)
        try:
            return pg.image.load(io.BytesIO(data), os.path.basename(path))
        except pg.error as e:
            raise ResourceNotFoundError(path, f'unreadable image ({e})') from e


class FileResourceProvider(ResourceProvider):
    def __init__(self, root_dir: str):
        self.root_dir = os.path.abspath(root_dir)

    def base_path(self) -> str:
        return self.root_dir

    def _read(self, path: str) -> bytes:
        full = os.path.join(self.root_dir, *path.split('/'))
        if not os.path.isfile(full):
            raise ResourceNotFoundError(path)
        try:
            with open(full, 'rb') as f:
                return f.read()
        except OSError as e:
            raise ResourceNotFoundError(path, str(e)) from e

    async def get_bytes(self, path: str) -> bytes:
        return await asyncio.to_thread(self._read, path)


class HttpResourceProvider(ResourceProvider):
    def __init__(self, base_url: str, timeout: float = 30.0):
        if not base_url.endswith('/'):
            base_url += '/'
        self.base_url = base_url
        self.timeout = timeout

    def base_path(self) -> str:
        return self.base_url

    def _fetch(self, path: str) -> bytes:
        url = f'{self.base_url}{path}'
        try:
            with urllib.request.urlopen(url, timeout=self.timeout) as response:
                return response.read()
        except urllib.error.HTTPError as e:
            raise ResourceNotFoundError(path, f'HTTP {e.code}') from e
        except (urllib.error.URLError, TimeoutError) as e:
            raise ResourceNotFoundError(path, str(e)) from e

    async def get_bytes(self, path: str) -> bytes:
        return await asyncio.to_thread(self._fetch, path)
