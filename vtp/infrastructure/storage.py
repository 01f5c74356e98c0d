"""Object-store binding.

The orchestrator depends only on the `ObjectStore` / `Bucket` protocols below;
`CloudStorageAdapter` implements them on top of google-cloud-storage.
"""

import logging
from pathlib import Path
from typing import IO, Dict, Optional, Protocol

from google.cloud import storage

_CHUNK_SIZE = 8 * 1024 * 1024


class Bucket(Protocol):
    """Operations on named blobs within one bucket."""

    name: str

    def download(self, path: str, destination: Path) -> None:
        ...

    def open_read(self, path: str) -> IO[bytes]:
        ...

    def upload(
        self,
        local_path: Path,
        destination: str,
        content_type: str,
        cache_control: Optional[str] = None,
        public: bool = False,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        ...

    def copy(
        self,
        source: str,
        destination: str,
        content_type: str,
        cache_control: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        ...

    def update_metadata(
        self,
        path: str,
        content_type: Optional[str] = None,
        cache_control: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        ...

    def make_public(self, path: str) -> None:
        ...

    def delete(self, path: str) -> None:
        ...


class ObjectStore(Protocol):
    def bucket(self, name: str) -> Bucket:
        ...


class BucketAdapter:
    """Bucket protocol backed by a google.cloud.storage.Bucket."""

    def __init__(self, bucket: storage.Bucket):
        self._bucket = bucket
        self.name = bucket.name

    def download(self, path: str, destination: Path) -> None:
        self._bucket.blob(path).download_to_filename(str(destination))

    def open_read(self, path: str) -> IO[bytes]:
        return self._bucket.blob(path).open("rb", chunk_size=_CHUNK_SIZE)

    def upload(
        self,
        local_path: Path,
        destination: str,
        content_type: str,
        cache_control: Optional[str] = None,
        public: bool = False,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        blob = self._bucket.blob(destination)
        if cache_control:
            blob.cache_control = cache_control
        if metadata:
            blob.metadata = metadata
        blob.upload_from_filename(str(local_path), content_type=content_type)
        if public:
            blob.make_public()

    def copy(
        self,
        source: str,
        destination: str,
        content_type: str,
        cache_control: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        new_blob = self._bucket.copy_blob(self._bucket.blob(source), self._bucket, destination)
        new_blob.content_type = content_type
        if cache_control:
            new_blob.cache_control = cache_control
        if metadata:
            new_blob.metadata = metadata
        new_blob.patch()

    def update_metadata(
        self,
        path: str,
        content_type: Optional[str] = None,
        cache_control: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        blob = self._bucket.blob(path)
        if content_type:
            blob.content_type = content_type
        if cache_control:
            blob.cache_control = cache_control
        if metadata:
            blob.metadata = metadata
        blob.patch()

    def make_public(self, path: str) -> None:
        self._bucket.blob(path).make_public()

    def delete(self, path: str) -> None:
        self._bucket.blob(path).delete()


class CloudStorageAdapter:
    """ObjectStore over one long-lived storage.Client (created once per process)."""

    def __init__(self, client: Optional[storage.Client] = None):
        self._client = client
        self.logger = logging.getLogger(__name__)

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            self._client = storage.Client()
            self.logger.info(f"Storage client created (project={self._client.project})")
        return self._client

    def bucket(self, name: str) -> BucketAdapter:
        return BucketAdapter(self.client.bucket(name))
