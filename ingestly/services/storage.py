"""Object-storage and media-repository contracts, with in-memory implementations.

The ingestion pipeline depends only on the two protocols below.  The in-memory
classes back the default application wiring and the test suite.
"""

from typing import Dict, Iterable, List, Optional, Protocol

from ingestly.models.media_asset import MediaAsset


class ObjectStorage(Protocol):
    async def put(self, path: str, data: bytes, content_type: str) -> str:
        """Store *data* at *path* and return its public URL."""

    async def delete(self, paths: Iterable[str]) -> None:
        ...


class MediaRepository(Protocol):
    async def insert(self, asset: MediaAsset) -> MediaAsset:
        ...

    async def get(self, asset_id: str) -> Optional[MediaAsset]:
        ...

    async def update(self, asset: MediaAsset) -> MediaAsset:
        ...

    async def delete(self, asset_id: str) -> None:
        ...

    async def list_for_project(self, project_id: str) -> List[MediaAsset]:
        """Return the project's assets, newest first."""

    async def total_size(self, project_id: str) -> int:
        """Return the summed ``file_size`` of the project's assets in bytes."""

    async def exists_source_url(self, project_id: str, source_url: str) -> bool:
        ...

    async def increment_usage(self, asset_id: str) -> Optional[MediaAsset]:
        ...


class InMemoryObjectStorage:
    """Dict-backed object store serving objects under *base_url*."""

    def __init__(self, base_url: str = "memory://media") -> None:
        self.base_url = base_url.rstrip("/")
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        self.objects[path] = data
        self.content_types[path] = content_type
        return f"{self.base_url}/{path}"

    async def delete(self, paths: Iterable[str]) -> None:
        for path in paths:
            self.objects.pop(path, None)
            self.content_types.pop(path, None)


class InMemoryMediaRepository:
    def __init__(self) -> None:
        self.assets: Dict[str, MediaAsset] = {}

    async def insert(self, asset: MediaAsset) -> MediaAsset:
        self.assets[asset.id] = asset
        return asset

    async def get(self, asset_id: str) -> Optional[MediaAsset]:
        return self.assets.get(asset_id)

    async def update(self, asset: MediaAsset) -> MediaAsset:
        self.assets[asset.id] = asset
        return asset

    async def delete(self, asset_id: str) -> None:
        self.assets.pop(asset_id, None)

    async def list_for_project(self, project_id: str) -> List[MediaAsset]:
        assets = [a for a in self.assets.values() if a.project_id == project_id]
        return sorted(assets, key=lambda a: a.created_at, reverse=True)

    async def total_size(self, project_id: str) -> int:
        return sum(a.file_size for a in self.assets.values() if a.project_id == project_id)

    async def exists_source_url(self, project_id: str, source_url: str) -> bool:
        return any(
            a.project_id == project_id and a.source_url == source_url
            for a in self.assets.values()
        )

    async def increment_usage(self, asset_id: str) -> Optional[MediaAsset]:
        asset = self.assets.get(asset_id)
        if asset is None:
            return None
        asset.usage_count += 1
        return asset
