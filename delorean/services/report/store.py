"""Object storage used by the report importers and the cleanup job.

``ObjectStore`` is the narrow interface the services use; ``S3Store`` is the
boto3 implementation. Tests use an in-memory store.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from delorean.core.result import Err, Ok, Result
from delorean.services.report.errors import ReportError

__all__ = ["ObjectInfo", "ObjectStore", "S3Store", "new_s3_store"]

DEFAULT_REGION = "eu-west-1"

# DeleteObjects accepts at most this many keys per request.
_DELETE_BATCH = 1000


@dataclass(frozen=True, slots=True)
class ObjectInfo:
    key: str
    size: int = 0


class ObjectStore(Protocol):
    def list_objects(
        self, bucket: str, *, prefix: str = "", delimiter: str = ""
    ) -> Result[list[ObjectInfo], ReportError]: ...

    def get_tags(self, bucket: str, key: str) -> Result[dict[str, str], ReportError]: ...

    def put_tags(self, bucket: str, key: str, tags: Mapping[str, str]) -> Result[None, ReportError]:
        """Replace the whole tag set of ``key``."""
        ...

    def download(self, bucket: str, key: str, dest: Path) -> Result[Path, ReportError]: ...

    def copy(self, bucket: str, key: str, dest_key: str) -> Result[None, ReportError]: ...

    def delete(self, bucket: str, keys: Sequence[str]) -> Result[None, ReportError]: ...


def _s3_error(action: str, bucket: str, e: Exception) -> ReportError:
    return ReportError(kind="remote_failed", message=f"s3 {action} failed on {bucket}", hint=str(e))


class S3Store:
    def __init__(self, client: Any) -> None:
        self._s3 = client

    def list_objects(
        self, bucket: str, *, prefix: str = "", delimiter: str = ""
    ) -> Result[list[ObjectInfo], ReportError]:
        params: dict[str, str] = {"Bucket": bucket}
        if prefix:
            params["Prefix"] = prefix
        if delimiter:
            params["Delimiter"] = delimiter

        objects: list[ObjectInfo] = []
        try:
            paginator = self._s3.get_paginator("list_objects_v2")
            for page in paginator.paginate(**params):
                for item in page.get("Contents", []):
                    objects.append(ObjectInfo(key=item["Key"], size=int(item.get("Size", 0))))
        except (BotoCoreError, ClientError) as e:
            return Err(_s3_error("list", bucket, e))
        return Ok(objects)

    def get_tags(self, bucket: str, key: str) -> Result[dict[str, str], ReportError]:
        try:
            response = self._s3.get_object_tagging(Bucket=bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            return Err(_s3_error(f"get tags of {key}", bucket, e))
        return Ok({tag["Key"]: tag["Value"] for tag in response.get("TagSet", [])})

    def put_tags(self, bucket: str, key: str, tags: Mapping[str, str]) -> Result[None, ReportError]:
        tag_set = [{"Key": k, "Value": v} for k, v in tags.items()]
        try:
            self._s3.put_object_tagging(Bucket=bucket, Key=key, Tagging={"TagSet": tag_set})
        except (BotoCoreError, ClientError) as e:
            return Err(_s3_error(f"put tags of {key}", bucket, e))
        return Ok(None)

    def download(self, bucket: str, key: str, dest: Path) -> Result[Path, ReportError]:
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            self._s3.download_file(bucket, key, str(dest))
        except (BotoCoreError, ClientError, OSError) as e:
            return Err(_s3_error(f"download of {key}", bucket, e))
        return Ok(dest)

    def copy(self, bucket: str, key: str, dest_key: str) -> Result[None, ReportError]:
        try:
            self._s3.copy_object(
                Bucket=bucket, Key=dest_key, CopySource={"Bucket": bucket, "Key": key}
            )
        except (BotoCoreError, ClientError) as e:
            return Err(_s3_error(f"copy of {key}", bucket, e))
        return Ok(None)

    def delete(self, bucket: str, keys: Sequence[str]) -> Result[None, ReportError]:
        for start in range(0, len(keys), _DELETE_BATCH):
            batch = keys[start : start + _DELETE_BATCH]
            try:
                response = self._s3.delete_objects(
                    Bucket=bucket,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
            except (BotoCoreError, ClientError) as e:
                return Err(_s3_error("delete", bucket, e))
            errors = response.get("Errors", [])
            if errors:
                first = errors[0]
                return Err(
                    ReportError(
                        kind="remote_failed",
                        message=f"s3 delete failed for {len(errors)} object(s) in {bucket}",
                        hint=f"{first.get('Key')}: {first.get('Message')}",
                    )
                )
        return Ok(None)


def new_s3_store(
    *, access_key_id: str, secret_access_key: str, region: str = DEFAULT_REGION
) -> S3Store:
    client = boto3.client(
        "s3",
        region_name=region,
        aws_access_key_id=access_key_id,
        aws_secret_access_key=secret_access_key,
    )
    return S3Store(client)
