import logging
from typing import Optional

import requests

from ..errors import ProviderError

logger = logging.getLogger(__name__)

BLOB_API_URL = "https://blob.vercel-storage.com"
BLOB_TIMEOUT_S = 60


class BlobUploader:
    """Uploads a snapshot to public blob storage under a stable pathname."""

    def __init__(self, token: str, base_url: str = BLOB_API_URL, session: Optional[requests.Session] = None):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    def put(self, pathname: str, body: str) -> str:
        """Overwrite `pathname` with `body`; returns the public URL."""
        headers = {
            "authorization": f"Bearer {self.token}",
            "x-api-version": "7",
            "x-content-type": "application/json",
            "x-add-random-suffix": "0",
            "x-allow-overwrite": "1",
        }
        try:
            resp = self.session.put(
                f"{self.base_url}/{pathname}",
                data=body.encode("utf-8"),
                headers=headers,
                timeout=BLOB_TIMEOUT_S,
            )
            resp.raise_for_status()
            url = resp.json().get("url")
        except requests.RequestException as e:
            raise ProviderError(f"Blob upload failed: {e}", {"pathname": pathname})
        except ValueError as e:
            raise ProviderError(f"Blob upload returned invalid JSON: {e}", {"pathname": pathname})

        if not url:
            raise ProviderError("Blob upload response had no url", {"pathname": pathname})
        return url
