from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional

from server.core.ConnectionLink import ConnectionLink
from server.core.MessageTypes import LivenessState
from shared.envelope import create_ping
from shared.log import get_logger

logger = get_logger(__name__)

DEFAULT_PING_INTERVAL = 30.0


@dataclass
class ConnectionRecord:
    """Registry entry: one identity bound to one live link plus its keepalive task."""
    identity: str
    link: ConnectionLink
    aux_address: str
    probe: Optional[asyncio.Task] = field(default=None, repr=False)
    registered_at: float = field(default_factory=time.monotonic)

    def is_live(self) -> bool:
        return self.link.is_open()

    @property
    def liveness_state(self) -> LivenessState:
        return self.link.liveness_state

    def start_probe(self, interval: float) -> None:
        """Start the keepalive loop; a record only ever has one."""
        if self.probe is not None:
            raise RuntimeError(f"Liveness probe already running for {self.identity!r}")
        self.probe = asyncio.create_task(
            self._probe_loop(interval), name=f"liveness-probe:{self.link.connection_id}"
        )

    def stop_probe(self) -> bool:
        """Cancel the keepalive loop. Returns False if it was already stopped."""
        probe, self.probe = self.probe, None
        if probe is None:
            return False
        probe.cancel()
        return True

    async def _probe_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            if self.link.is_open():
                await self.link.send_envelope(create_ping())


@dataclass(frozen=True)
class RegisterOutcome:
    record: ConnectionRecord
    replaced_stale: bool = False

    @property
    def aux_address(self) -> str:
        return self.record.aux_address
