"""Latest inbound reply per phone number."""

import json
import logging
import threading
from pathlib import Path

from pydantic import ValidationError

from tableback.models import ReplyRecord
from tableback.phone import phone_lookup_keys

logger = logging.getLogger(__name__)


class ReplyLedger:
    """Stores the latest classified reply per phone number.

    Every record is stored under all equivalent lookup keys of the phone
    number so a guest is found whether staff typed a local or an
    international number. When a path is given the ledger is mirrored to a
    JSON file and reloaded from it on start.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._records: dict[str, ReplyRecord] = {}
        self._lock = threading.Lock()
        self._path = Path(path) if path else None
        if self._path is not None:
            self._load()

    def get(self, phone: str) -> ReplyRecord | None:
        """Look up the latest reply for a phone number.

        Args:
            phone: Phone number in any supported format

        Returns:
            ReplyRecord or None if nothing was recorded
        """
        with self._lock:
            for key in phone_lookup_keys(phone):
                record = self._records.get(key)
                if record is not None:
                    return record
        return None

    def set(self, phone: str, record: ReplyRecord) -> None:
        """Store a reply record under every lookup key of a phone number."""
        keys = phone_lookup_keys(phone)
        if not keys:
            logger.warning(f"Ignoring reply record for unusable phone {phone!r}")
            return

        with self._lock:
            for key in keys:
                self._records[key] = record
            self._persist()

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._persist()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning(f"Could not read reply ledger at {self._path}, starting empty")
            return
        if not isinstance(raw, dict):
            logger.warning(f"Reply ledger at {self._path} is not a JSON object, starting empty")
            return

        for key, value in raw.items():
            try:
                self._records[key] = ReplyRecord.model_validate(value)
            except ValidationError:
                logger.debug(f"Skipping invalid ledger record for {key}")
        logger.info(f"Loaded {len(self._records)} reply records from {self._path}")

    def _persist(self) -> None:
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            payload = {
                key: record.model_dump(mode="json")
                for key, record in self._records.items()
            }
            self._path.write_text(json.dumps(payload), encoding="utf-8")
        except OSError:
            logger.exception(f"Failed to persist reply ledger to {self._path}")
