"""S3-backed ObjectStore.

Thin over boto3 so failure modes stay familiar: client errors are wrapped
in ``ObjectStoreError``, a missing key on ``head`` is ``None``.
"""

from __future__ import annotations

import logging
from typing import Any

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from edgesite.models.artifacts import ObjectHead
from edgesite.platform import ObjectStoreError
from edgesite.platform.object_store import normalize_key

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class S3ObjectStore:
    """ObjectStore over a single S3 bucket.

    Parameters
    ----------
    bucket:
        Bucket name.
    region_name:
        Region for the client; the default credential/region chain applies
        when omitted.
    endpoint_url:
        Custom S3-compatible endpoint (LocalStack, MinIO).
    client:
        Pre-built client, mainly for tests.
    """

    def __init__(
        self,
        bucket: str,
        *,
        region_name: str | None = None,
        endpoint_url: str | None = None,
        client: Any | None = None,
    ) -> None:
        if not bucket:
            raise ObjectStoreError("Bucket name is required")
        self.bucket = bucket
        if client is None:
            cfg = BotoConfig(
                signature_version="s3v4",
                retries={"max_attempts": 5, "mode": "standard"},
                connect_timeout=3,
                read_timeout=10,
            )
            kwargs: dict[str, Any] = {"config": cfg}
            if region_name:
                kwargs["region_name"] = region_name
            if endpoint_url:
                kwargs["endpoint_url"] = endpoint_url
            client = boto3.client("s3", **kwargs)
        self.client = client

    def head(self, key: str) -> ObjectHead | None:
        k = normalize_key(key)
        try:
            resp = self.client.head_object(Bucket=self.bucket, Key=k)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                return None
            raise ObjectStoreError(f"S3 head_object failed for {k}: {exc}") from exc
        except BotoCoreError as exc:
            raise ObjectStoreError(f"S3 head_object failed for {k}: {exc}") from exc
        return ObjectHead(
            key=k,
            etag=str(resp.get("ETag", "")).strip('"'),
            size_bytes=int(resp.get("ContentLength", 0)),
            content_type=resp.get("ContentType"),
            cache_control=resp.get("CacheControl"),
        )

    def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        cache_control: str | None = None,
    ) -> str:
        k = normalize_key(key)
        params: dict[str, Any] = {"Bucket": self.bucket, "Key": k, "Body": data}
        if content_type:
            params["ContentType"] = content_type
        if cache_control:
            params["CacheControl"] = cache_control
        try:
            resp = self.client.put_object(**params)
        except (ClientError, BotoCoreError) as exc:
            raise ObjectStoreError(f"S3 put_object failed for {k}: {exc}") from exc
        logger.debug("S3ObjectStore: put s3://%s/%s (%d bytes)", self.bucket, k, len(data))
        return str(resp.get("ETag", "")).strip('"')

    def get(self, key: str) -> bytes:
        k = normalize_key(key)
        try:
            resp = self.client.get_object(Bucket=self.bucket, Key=k)
            return resp["Body"].read()
        except (ClientError, BotoCoreError) as exc:
            raise ObjectStoreError(f"S3 get_object failed for {k}: {exc}") from exc

    def list_keys(self, prefix: str = "") -> list[str]:
        keys: list[str] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        except (ClientError, BotoCoreError) as exc:
            raise ObjectStoreError(f"S3 list_objects_v2 failed for {prefix!r}: {exc}") from exc
        return sorted(keys)

    def delete(self, key: str) -> None:
        k = normalize_key(key)
        try:
            self.client.delete_object(Bucket=self.bucket, Key=k)
        except (ClientError, BotoCoreError) as exc:
            raise ObjectStoreError(f"S3 delete_object failed for {k}: {exc}") from exc
