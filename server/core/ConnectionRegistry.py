from __future__ import annotations

from typing import Dict, Iterator, List, Optional, Tuple

from server.core.ConnectionLink import ConnectionLink
from server.core.MemoryTable import DEFAULT_PING_INTERVAL, ConnectionRecord, RegisterOutcome
from server.core.MessageTypes import LivenessState
from shared.envelope import DuplicateIdentityError
from shared.log import get_logger
from shared.utils import normalize_aux_address

logger = get_logger(__name__)

SnapshotEntry = Tuple[str, str, LivenessState]


class ConnectionRegistry:
    """
    In-memory identity -> ConnectionRecord table.

    Every method is synchronous. On a single asyncio loop that makes each
    mutation atomic, so two registrations for one identity can never both
    produce live records. Nothing outside this class touches ``_records``.
    """

    def __init__(self, ping_interval: float = DEFAULT_PING_INTERVAL):
        self.ping_interval = ping_interval
        self._records: Dict[str, ConnectionRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, identity: object) -> bool:
        return identity in self._records

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._records))

    def register(self, identity: str, link: ConnectionLink, aux_address: Optional[str] = None) -> RegisterOutcome:
        """
        Bind ``identity`` to ``link`` and start its liveness probe.

        Raises DuplicateIdentityError if an open connection already holds the
        identity; that record is left untouched. A record whose channel has
        closed is stale and gets evicted first.
        """
        existing = self._records.get(identity)
        replaced_stale = False
        if existing is not None:
            if existing.is_live():
                logger.warning("Duplicate registration attempt", extra={"identity": identity, "connection_id": link.connection_id})
                raise DuplicateIdentityError(identity)
            self._evict(existing)
            replaced_stale = True
            logger.info("Evicted stale record for %s (conn %s)", identity, existing.link.connection_id)

        # A link carries at most one identity
        if link.identity is not None and link.identity != identity:
            self.remove(link.identity, link)

        record = ConnectionRecord(identity=identity, link=link, aux_address=normalize_aux_address(aux_address))
        self._records[identity] = record
        link.identity = identity
        record.start_probe(self.ping_interval)
        return RegisterOutcome(record=record, replaced_stale=replaced_stale)

    def lookup(self, identity: str) -> Optional[ConnectionRecord]:
        return self._records.get(identity)

    def lookup_live(self, identity: str) -> Optional[ConnectionRecord]:
        """Lookup that ignores records whose channel is no longer open"""
        record = self._records.get(identity)
        if record is None or not record.is_live():
            return None
        return record

    def remove(self, identity: str, link: Optional[ConnectionLink] = None) -> bool:
        """
        Drop the record for ``identity`` and stop its probe. Idempotent.

        With ``link`` given, only a record bound to that exact link is removed,
        so tearing down an old connection never evicts a newer registration.
        """
        record = self._records.get(identity)
        if record is None:
            return False
        if link is not None and record.link is not link:
            logger.debug("Not removing %s: bound to a newer connection", identity,
                         extra={"connection_id": link.connection_id})
            return False
        self._evict(record)
        return True

    def release(self, link: ConnectionLink) -> Optional[str]:
        """Teardown entry point: remove whatever record ``link`` is bound to."""
        identity = link.identity
        if identity is None:
            return None
        if self.remove(identity, link):
            return identity
        return None

    def snapshot(self) -> List[SnapshotEntry]:
        """(identity, aux_address, liveness_state) in insertion order"""
        return [(r.identity, r.aux_address, r.liveness_state) for r in list(self._records.values())]

    def close(self) -> None:
        """Stop every probe and forget every record (process shutdown)."""
        for record in list(self._records.values()):
            self._evict(record)

    def _evict(self, record: ConnectionRecord) -> None:
        record.stop_probe()
        if self._records.get(record.identity) is record:
            del self._records[record.identity]
        if record.link.identity == record.identity:
            record.link.identity = None

    def log_connected_users(self) -> None:
        logger.info("Connected users: %d", len(self._records))
        for identity, aux_address, state in self.snapshot():
            logger.info(" - %s (%s) | state: %s", identity, aux_address, state.value)
