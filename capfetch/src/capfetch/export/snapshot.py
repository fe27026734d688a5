import json
import logging
from pathlib import Path
from typing import Dict, Optional

from pydantic import ValidationError as PayloadError

from ..errors import ProviderError, StructuralError, ValidationError
from ..models.company import Snapshot
from . import json_export
from .blob import BlobUploader
from .wire import snapshot_from_wire, snapshot_to_wire

logger = logging.getLogger(__name__)

BLOB_PATHNAME = "companies.json"


class SnapshotStore:
    """The current snapshot on local disk."""

    def __init__(self, path: str = "data/companies.json"):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Optional[Snapshot]:
        """Return the stored snapshot, or None when there is none yet."""
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text())
            return snapshot_from_wire(data)
        except (ValueError, PayloadError) as e:
            raise ValidationError(f"Invalid snapshot at {self.path}: {e}")

    def write(self, snapshot: Snapshot) -> Path:
        """Atomically replace the stored snapshot. An empty snapshot is never written."""
        if not snapshot.companies:
            raise StructuralError(
                "Refusing to write an empty snapshot over the current one.",
                {"path": str(self.path)},
            )
        json_export.export_json(snapshot_to_wire(snapshot), self.path)
        logger.info(f"Wrote {len(snapshot.companies)} companies to {self.path}")
        return self.path


def publish(snapshot: Snapshot, store: SnapshotStore, uploader: Optional[BlobUploader] = None) -> Dict[str, Optional[str]]:
    """
    Write the snapshot locally, then upload it if an uploader is configured.
    A failed upload is logged; the local file is still the run's output.
    """
    path = store.write(snapshot)
    locations: Dict[str, Optional[str]] = {"file": str(path), "blob": None}

    if uploader is not None:
        logger.info("Uploading snapshot to blob storage...")
        try:
            locations["blob"] = uploader.put(BLOB_PATHNAME, json.dumps(snapshot_to_wire(snapshot)))
            logger.info(f"Uploaded to: {locations['blob']}")
        except ProviderError as e:
            logger.error(f"Failed to upload snapshot: {e}")

    return locations
