"""Upload product images to S3-compatible object storage.

Brand CDNs block hotlinking from outside their own sites, so every
`imageUrl` in the merged catalogs is fetched once and stored in our own
bucket. A manifest maps original URLs to stored URLs and lets an
interrupted run pick up where it stopped.
"""

import hashlib
import json
import logging
import os
import random
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import boto3
import requests  # type: ignore[import-untyped]
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from organize.config import (
    DOWNLOAD_HEADERS,
    DOWNLOAD_TIMEOUT,
    MANIFEST_PATH,
    MAX_RETRIES,
    MAX_RETRY_BACKOFF,
    RETRY_BACKOFF_BASE,
    STORAGE_BUCKET,
    STORAGE_PREFIX,
    UPLOAD_DELAY,
    UPLOAD_MAX_WORKERS,
)
from organize.logging_config import get_logger, log_organize_event
from organize.models import UploadOutcome, UploadSummary
from organize.normalize import utc_timestamp
from organize.relocate import write_json
from organize.shutdown import ShutdownHandler, get_shutdown_handler
from organize.url_validation import URLValidationError, extension_for, validate_image_url

__all__ = [
    "StorageConfigError",
    "ImageUploadError",
    "StorageSettings",
    "UploadManifest",
    "ImageStorageUploader",
    "create_s3_client",
    "create_session",
    "collect_image_jobs",
    "annotate_catalog",
]

logger = get_logger("storage")

RETRY_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}

ImageJob = Tuple[str, str]  # (brand label, image URL)


class StorageConfigError(RuntimeError):
    """Raised when storage credentials are missing."""


class ImageUploadError(RuntimeError):
    """Raised when an image could not be stored after all retries."""


# =============================================================================
# Settings and clients
# =============================================================================

@dataclass
class StorageSettings:
    endpoint_url: Optional[str]
    access_key_id: str
    secret_access_key: str
    region: str
    bucket: str = STORAGE_BUCKET
    public_base_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "StorageSettings":
        """Read settings from the environment (after load_env()).

        Raises:
            StorageConfigError: If the access key or secret is missing
        """
        access_key = os.getenv("STORAGE_ACCESS_KEY_ID")
        secret_key = os.getenv("STORAGE_SECRET_ACCESS_KEY")
        missing = [
            name for name, value in (
                ("STORAGE_ACCESS_KEY_ID", access_key),
                ("STORAGE_SECRET_ACCESS_KEY", secret_key),
            ) if not value
        ]
        if missing:
            raise StorageConfigError(
                f"Storage environment variables are not set: {', '.join(missing)}\n"
                f"Add them to .env.local or .env."
            )
        return cls(
            endpoint_url=os.getenv("STORAGE_ENDPOINT_URL") or None,
            access_key_id=access_key or "",
            secret_access_key=secret_key or "",
            region=os.getenv("STORAGE_REGION", "us-east-1"),
            bucket=os.getenv("STORAGE_BUCKET", STORAGE_BUCKET),
            public_base_url=os.getenv("STORAGE_PUBLIC_BASE_URL") or None,
        )

    def public_url_base(self) -> str:
        """Base URL under which stored objects are publicly reachable."""
        if self.public_base_url:
            return self.public_base_url.rstrip("/")
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com"


def create_s3_client(settings: StorageSettings) -> Any:
    """Create a boto3 S3 client; path-style addressing for non-AWS endpoints."""
    return boto3.client(
        "s3",
        endpoint_url=settings.endpoint_url,
        aws_access_key_id=settings.access_key_id,
        aws_secret_access_key=settings.secret_access_key,
        region_name=settings.region,
        config=Config(
            signature_version="s3v4",
            s3={"addressing_style": "path" if settings.endpoint_url else "auto"},
        ),
    )


def create_session() -> requests.Session:
    """Create a requests Session with browser-like headers."""
    session = requests.Session()
    session.headers.update(DOWNLOAD_HEADERS)
    session.headers.setdefault("Accept", "image/avif,image/webp,image/*,*/*;q=0.8")
    return session


# =============================================================================
# Manifest
# =============================================================================

class UploadManifest:
    """Progress file: {"processed": {url: stored_url}, "failed": [...], "lastUpdate": ...}"""

    def __init__(self, path: Path = Path(MANIFEST_PATH)) -> None:
        self.path = Path(path)
        self.processed: Dict[str, str] = {}
        self.failed: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    @classmethod
    def load(cls, path: Path = Path(MANIFEST_PATH)) -> "UploadManifest":
        manifest = cls(path)
        if not manifest.path.exists():
            return manifest
        try:
            with open(manifest.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not load manifest {manifest.path}: {e}; starting fresh")
            return manifest

        processed = data.get("processed") if isinstance(data, dict) else None
        if isinstance(processed, dict):
            manifest.processed = {str(k): str(v) for k, v in processed.items()}
        failed = data.get("failed") if isinstance(data, dict) else None
        if isinstance(failed, list):
            manifest.failed = [f for f in failed if isinstance(f, dict)]
        return manifest

    def is_processed(self, url: str) -> bool:
        with self._lock:
            return url in self.processed

    def record_success(self, url: str, stored_url: str) -> None:
        with self._lock:
            self.processed[url] = stored_url
            self.failed = [f for f in self.failed if f.get("imageUrl") != url]
            self._save_locked()

    def record_failure(self, url: str, brand: str, error: str) -> None:
        with self._lock:
            self.failed = [f for f in self.failed if f.get("imageUrl") != url]
            self.failed.append({
                "imageUrl": url,
                "brand": brand,
                "error": error,
                "timestamp": utc_timestamp(),
            })

    def save(self) -> None:
        with self._lock:
            self._save_locked()

    def _save_locked(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            write_json(self.path, {
                "processed": self.processed,
                "failed": self.failed,
                "lastUpdate": utc_timestamp(),
            })
        except OSError as e:
            logger.error(f"Failed to save manifest {self.path}: {e}")


# =============================================================================
# Catalog helpers
# =============================================================================

def _image_url_of(record: Any) -> Optional[str]:
    if not isinstance(record, dict):
        return None
    url = record.get("imageUrl") or record.get("image_url")
    return url if isinstance(url, str) and url.strip() else None


def collect_image_jobs(catalogs: Iterable[Tuple[str, Path]]) -> List[ImageJob]:
    """Distinct (brand, image URL) pairs across catalogs, in catalog order.

    Args:
        catalogs: (brand label, path to products.json) pairs

    Unreadable catalogs are logged and skipped.
    """
    jobs: List[ImageJob] = []
    seen = set()
    for label, path in catalogs:
        try:
            with open(path, "r", encoding="utf-8") as f:
                records = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Cannot read catalog {path}: {e}")
            continue
        if not isinstance(records, list):
            logger.warning(f"Catalog {path} is not an array; skipping")
            continue

        count = 0
        for record in records:
            url = _image_url_of(record)
            if url is None or url in seen:
                continue
            seen.add(url)
            jobs.append((label, url))
            count += 1
        logger.info(f"{label}: {count} distinct images in {path}")
    return jobs


def annotate_catalog(path: Path, stored_urls: Dict[str, str], field: str = "storageImageUrl") -> int:
    """Write stored image URLs into catalog records; returns records updated."""
    with open(path, "r", encoding="utf-8") as f:
        records = json.load(f)
    if not isinstance(records, list):
        return 0

    updated = 0
    for record in records:
        url = _image_url_of(record)
        if url is None:
            continue
        stored = stored_urls.get(url)
        if stored and record.get(field) != stored:
            record[field] = stored
            updated += 1

    if updated:
        write_json(path, records)
    return updated


# =============================================================================
# Uploader
# =============================================================================

class ImageStorageUploader:
    """Downloads product images and stores them in a bucket.

    Args:
        s3_client: boto3 S3 client (or compatible)
        bucket: Target bucket name
        public_url_base: Prefix for public object URLs
        session: requests Session used for downloads
        manifest: Progress manifest (skips URLs already stored)
        max_workers: Thread pool size
        max_retries: Retries per image after the first attempt
        delay: Pause after each stored image (seconds)
        sleep: Injected for tests
    """

    def __init__(
        self,
        s3_client: Any,
        bucket: str,
        public_url_base: str,
        session: Optional[requests.Session] = None,
        manifest: Optional[UploadManifest] = None,
        max_workers: int = UPLOAD_MAX_WORKERS,
        max_retries: int = MAX_RETRIES,
        delay: float = UPLOAD_DELAY,
        prefix: str = STORAGE_PREFIX,
        shutdown: Optional[ShutdownHandler] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.s3_client = s3_client
        self.bucket = bucket
        self.public_url_base = public_url_base.rstrip("/")
        self.session = session or create_session()
        self.manifest = manifest or UploadManifest()
        self.max_workers = max(1, max_workers)
        self.max_retries = max_retries
        self.delay = delay
        self.prefix = prefix
        self.shutdown = shutdown or get_shutdown_handler()
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: StorageSettings, **kwargs: Any) -> "ImageStorageUploader":
        return cls(
            s3_client=create_s3_client(settings),
            bucket=settings.bucket,
            public_url_base=settings.public_url_base(),
            **kwargs,
        )

    def object_key(self, brand: str, url: str, content_type: Optional[str] = None) -> str:
        """Stable key for an image URL, e.g. products/alloso/3f2a...9c.jpg"""
        digest = hashlib.sha1(url.encode("utf-8")).hexdigest()[:20]
        return f"{self.prefix}/{brand}/{digest}{extension_for(url, content_type)}"

    def public_url(self, key: str) -> str:
        return f"{self.public_url_base}/{key}"

    def _backoff(self, attempt: int) -> float:
        return min(RETRY_BACKOFF_BASE ** attempt, MAX_RETRY_BACKOFF) + random.uniform(0, 1)

    def download(self, url: str) -> Tuple[bytes, str]:
        """Fetch image bytes and content type.

        Raises:
            requests.RequestException: On network or HTTP errors
        """
        resp = self.session.get(url, timeout=DOWNLOAD_TIMEOUT)
        resp.raise_for_status()
        content_type = resp.headers.get("Content-Type", "image/jpeg").split(";")[0].strip()
        if not content_type.startswith("image/"):
            content_type = "image/jpeg"
        return resp.content, content_type

    def _store_once(self, brand: str, url: str) -> UploadOutcome:
        body, content_type = self.download(url)
        key = self.object_key(brand, url, content_type)
        self.s3_client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=body,
            ContentType=content_type,
        )
        return UploadOutcome(
            image_url=url,
            object_key=key,
            stored_url=self.public_url(key),
            size_bytes=len(body),
        )

    def store_image(self, brand: str, url: str) -> UploadOutcome:
        """Download one image and upload it, retrying with backoff.

        Raises:
            ImageUploadError: If the image could not be stored
        """
        try:
            url = validate_image_url(url)
        except URLValidationError as e:
            raise ImageUploadError(str(e)) from e

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries + 1):
            try:
                return self._store_once(brand, url)
            except requests.exceptions.HTTPError as e:
                status = e.response.status_code if e.response is not None else None
                if status not in RETRY_STATUS_CODES:
                    raise ImageUploadError(f"HTTP {status} downloading {url}") from e
                last_error = e
            except (requests.exceptions.RequestException, ClientError, BotoCoreError) as e:
                last_error = e

            if attempt < self.max_retries:
                backoff = self._backoff(attempt)
                logger.warning(
                    f"Failed ({last_error}), retrying in {backoff:.1f}s "
                    f"(attempt {attempt + 1}/{self.max_retries}): {url}"
                )
                self._sleep(backoff)

        raise ImageUploadError(
            f"Failed after {self.max_retries + 1} attempts: {last_error}"
        ) from last_error

    def _process(self, brand: str, url: str) -> Optional[UploadOutcome]:
        """Worker body; returns None when shutdown stopped it before starting."""
        if self.shutdown.shutdown_requested:
            return None
        try:
            outcome = self.store_image(brand, url)
        except ImageUploadError as e:
            return self._record_failure(brand, url, str(e))
        except Exception as e:
            # unexpected errors fail this image only, not the batch
            logger.exception(f"Unexpected error storing {url}")
            return self._record_failure(brand, url, f"{type(e).__name__}: {e}")

        self.manifest.record_success(url, outcome.stored_url or "")
        log_organize_event("image_uploaded", {
            "message": f"Stored {outcome.size_bytes / 1024:.1f}KB -> {outcome.stored_url}",
            "brand": brand,
            "image_url": url,
            "object_key": outcome.object_key,
            "size_bytes": outcome.size_bytes,
        }, logger_name="storage")
        if self.delay:
            self._sleep(self.delay)
        return outcome

    def _record_failure(self, brand: str, url: str, error: str) -> UploadOutcome:
        self.manifest.record_failure(url, brand, error)
        log_organize_event("image_failed", {
            "message": f"Upload failed: {url} - {error}",
            "brand": brand,
            "image_url": url,
            "error": error,
        }, level=logging.ERROR, logger_name="storage")
        return UploadOutcome(image_url=url, error=error)

    def upload_all(self, jobs: List[ImageJob]) -> UploadSummary:
        """Store every image not already in the manifest."""
        summary = UploadSummary(total=len(jobs))
        pending: List[ImageJob] = []
        for brand, url in jobs:
            if self.manifest.is_processed(url):
                summary.skipped += 1
                summary.outcomes.append(UploadOutcome(
                    image_url=url, stored_url=self.manifest.processed.get(url), skipped=True,
                ))
            else:
                pending.append((brand, url))

        logger.info(
            f"{summary.total} images: {summary.skipped} already stored, {len(pending)} to upload"
        )
        if not pending:
            return summary

        done = 0
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures: Dict[Future, ImageJob] = {
                pool.submit(self._process, brand, url): (brand, url) for brand, url in pending
            }
            for future in as_completed(futures):
                if future.cancelled():
                    continue
                outcome = future.result()
                if outcome is None:
                    summary.interrupted = True
                    continue
                done += 1
                summary.outcomes.append(outcome)
                if outcome.ok:
                    summary.uploaded += 1
                else:
                    summary.failed += 1
                if done % 25 == 0 or done == len(pending):
                    logger.info(f"Progress: {done}/{len(pending)} ({summary.failed} failed)")

                if self.shutdown.shutdown_requested and not summary.interrupted:
                    summary.interrupted = True
                    for other in futures:
                        other.cancel()

        self.manifest.save()
        return summary
