# blob_store.py
import mimetypes
import re
import time
from datetime import timedelta
from typing import Callable, Optional, Union

from google.api_core import exceptions as gcs_exceptions
from google.auth import default
from google.auth.transport.requests import Request
from google.cloud import storage

from errors import StoreIOError
from settings import SIGNED_URL_TTL_MINUTES, SIGNING_SA_EMAIL, UPLOAD_BUCKET


RE_WHITESPACE = re.compile(r"\s+")
RE_UNSAFE = re.compile(r"[^a-zA-Z0-9._-]")


def sanitize_name(name: str) -> str:
    safe = RE_UNSAFE.sub("", RE_WHITESPACE.sub("_", (name or "").strip())).lower()
    return safe or "fichier"


class GcsBlobStore:
    """Uploaded-file storage; objects are write-once."""

    def __init__(
        self,
        bucket_name: str = UPLOAD_BUCKET,
        *,
        client: Optional[storage.Client] = None,
        clock_ms: Callable[[], int] = lambda: int(time.time() * 1000),
    ) -> None:
        self.bucket_name = bucket_name
        self.client = client or storage.Client()
        self.bucket = self.client.bucket(bucket_name)
        self.clock_ms = clock_ms

    def object_path(self, owner_id: str, file_name: str) -> str:
        return f"{sanitize_name(owner_id)}/{sanitize_name(file_name)}-{self.clock_ms()}"

    def save(
        self,
        owner_id: str,
        file_name: str,
        content: Union[bytes, str],
        content_type: Optional[str] = None,
    ) -> str:
        path = self.object_path(owner_id, file_name)
        blob = self.bucket.blob(path)
        try:
            # generation 0 means "only if absent"
            blob.upload_from_string(
                content,
                content_type=content_type or mimetypes.guess_type(file_name)[0] or "application/octet-stream",
                if_generation_match=0,
            )
        except gcs_exceptions.PreconditionFailed as e:
            raise StoreIOError(f"Object {path!r} already exists in {self.bucket_name!r}") from e
        except Exception as e:
            raise StoreIOError(f"GCS upload of {path!r} failed: {e}") from e
        return path

    def signed_url(self, path: str, expiration_minutes: int = SIGNED_URL_TTL_MINUTES) -> str:
        # Cloud Run / IAM-compatible signing (no private key file required)
        service_account_email = SIGNING_SA_EMAIL
        if not service_account_email:
            raise StoreIOError("SIGNING_SA_EMAIL environment variable not set")

        try:
            credentials, _ = default()
            if getattr(credentials, "requires_scopes", False):
                credentials = credentials.with_scopes(["https://www.googleapis.com/auth/cloud-platform"])
            credentials.refresh(Request())

            return self.bucket.blob(path).generate_signed_url(
                version="v4",
                expiration=timedelta(minutes=expiration_minutes),
                method="GET",
                service_account_email=service_account_email,
                access_token=credentials.token,
            )
        except Exception as e:
            raise StoreIOError(f"Signing {path!r} failed: {e}") from e
