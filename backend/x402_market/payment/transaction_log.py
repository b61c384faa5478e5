"""
Transaction log for confirmed x402 payments.

Entries correlate a settled payment with the request that paid for it. The
default sink keeps a bounded in-memory history and writes one log line per
confirmation.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class TransactionLogEntry(BaseModel):
    """A confirmed payment. Unknown fields are kept as metadata."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    request_id: str = Field(..., min_length=1)
    transaction_hash: str = Field(..., min_length=1)
    network: str = Field(..., min_length=1)
    payer: str = Field(..., min_length=1)
    amount: Optional[str] = None
    agent_id: Optional[str] = None
    logged_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def metadata(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class TransactionLog(ABC):
    """Sink for confirmed payments."""

    @abstractmethod
    def record(self, entry: TransactionLogEntry) -> None:
        """Record a confirmed payment."""

    @abstractmethod
    def recent(self, limit: int = 50) -> List[TransactionLogEntry]:
        """Return the most recent entries, newest first."""


class InMemoryTransactionLog(TransactionLog):
    """Bounded in-memory transaction log."""

    def __init__(self, max_entries: int = 1000):
        self._lock = threading.Lock()
        self._entries: Deque[TransactionLogEntry] = deque(maxlen=max_entries)

    def record(self, entry: TransactionLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)
        logger.info(
            "Transaction confirmed: tx=%s network=%s payer=%s agent=%s amount=%s metadata=%s",
            entry.transaction_hash,
            entry.network,
            entry.payer,
            entry.agent_id,
            entry.amount,
            entry.metadata,
        )

    def recent(self, limit: int = 50) -> List[TransactionLogEntry]:
        with self._lock:
            entries = list(self._entries)
        return list(reversed(entries))[:limit]
