"""
S3 object store for Episode Processor.
Thin async wrapper around boto3; blocking calls run in worker threads.
"""

import asyncio
import mimetypes
import os
import posixpath
from typing import Any, Callable, Dict, List, Optional, Tuple

import boto3
from boto3.s3.transfer import TransferConfig

from .logger import get_logger


PART_SIZE = 25 * 1024 * 1024
SIGNED_URL_EXPIRY = 7 * 24 * 60 * 60


def join_s3_path(*parts: Optional[str]) -> str:
    """Join key components with '/', ignoring empty ones."""
    parts = [part.replace(os.sep, '/') for part in parts if part]
    return posixpath.normpath(posixpath.join(*parts)) if parts else ""


class ObjectStore:
    """
    S3-compatible object store (AWS S3, DigitalOcean Spaces, MinIO...).

    Args:
        options: Keyword arguments for boto3.client('s3'), e.g. endpoint_url,
            region_name, aws_access_key_id, aws_secret_access_key.
        episode: Value stored in each object's "episode" metadata.
    """

    def __init__(self, options: Optional[Dict[str, Any]] = None, episode: str = "", client=None):
        self.options = dict(options or {})
        self.episode = episode
        self._client = client or boto3.client('s3', **self.options)
        self._transfer_config = TransferConfig(
            multipart_threshold=PART_SIZE,
            multipart_chunksize=PART_SIZE
        )
        self._logger = get_logger('s3')

    async def bucket_names(self) -> List[str]:
        response = await asyncio.to_thread(self._client.list_buckets)
        return [bucket['Name'] for bucket in response.get('Buckets', [])]

    async def count_objects(self, bucket: str, prefix: str, sample_size: int = 10) -> Tuple[int, List[str]]:
        """
        Count objects under a prefix.

        Returns:
            (key count, first few keys)
        """
        response = await asyncio.to_thread(
            self._client.list_objects_v2,
            Bucket=bucket,
            Prefix=prefix
        )
        keys = [item['Key'] for item in response.get('Contents', [])]
        return response.get('KeyCount', len(keys)), keys[:sample_size]

    def location(self, bucket: str, key: str) -> str:
        endpoint = self._client.meta.endpoint_url.rstrip('/')
        return f"{endpoint}/{bucket}/{key}"

    async def put(
        self,
        bucket: str,
        key: str,
        file_path: str,
        public: bool = False,
        metadata: Optional[Dict[str, str]] = None,
        progress: Optional[Callable[[int, int], None]] = None
    ) -> str:
        """
        Upload a local file.

        Args:
            bucket: Target bucket.
            key: Object key.
            file_path: Local file to upload.
            public: Upload with public-read ACL.
            metadata: Extra object metadata.
            progress: Callback(loaded_bytes, total_bytes), called on the event loop.

        Returns:
            Object URL.
        """
        total = os.path.getsize(file_path)
        loop = asyncio.get_running_loop()
        loaded = 0

        def on_bytes(amount: int) -> None:
            nonlocal loaded
            loaded += amount
            if progress:
                loop.call_soon_threadsafe(progress, loaded, total)

        extra_args = {
            'ACL': 'public-read' if public else 'private',
            'Metadata': {**(metadata or {}), 'episode': self.episode},
        }
        content_type, _ = mimetypes.guess_type(key)
        if content_type:
            extra_args['ContentType'] = content_type

        self._logger.info(f"Uploading {os.path.basename(file_path)} to s3://{bucket}/{key}")
        await asyncio.to_thread(
            self._client.upload_file,
            file_path,
            bucket,
            key,
            ExtraArgs=extra_args,
            Callback=on_bytes,
            Config=self._transfer_config
        )
        return self.location(bucket, key)

    async def presign(self, bucket: str, key: str, expires: int = SIGNED_URL_EXPIRY) -> str:
        """Signed GET URL for a private object."""
        return await asyncio.to_thread(
            self._client.generate_presigned_url,
            'get_object',
            Params={'Bucket': bucket, 'Key': key},
            ExpiresIn=expires
        )


def format_upload_progress(loaded: int, total: int) -> str:
    pct = (loaded / total) * 100 if total else 100.0
    return f"{loaded} / {total} ({pct:.0f}%)"
