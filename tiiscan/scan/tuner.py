"""Tuner protocol and exclusive ownership handle."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from tiiscan.io.channels import ChannelId
from tiiscan.scan.errors import TunerFault, TunerUnavailable
from tiiscan.txdb.model import EnsembleIdentity
from tiiscan.util.logging import get_logger, log_exception

log = get_logger(__name__)


@dataclass(frozen=True)
class SyncState:
    """Receiver state reported by wait_for_sync().

    The ensemble identity is filled in once the FIC has been decoded;
    a channel counts as locked only with both.
    """

    synced: bool
    ensemble: Optional[EnsembleIdentity] = None
    ensemble_label: str = ""

    @property
    def locked(self) -> bool:
        return bool(self.synced and self.ensemble is not None)


NOT_SYNCED = SyncState(False)


class Tuner(Protocol):
    def tune(self, channel: ChannelId) -> Any: ...

    def wait_for_sync(self, timeout: float) -> SyncState: ...

    def sample_tii_window(self) -> Any: ...

    def read_snr(self) -> float: ...

    def release(self) -> None: ...


class TunerLease:
    """Scoped ownership of the tuner; every device call is mapped to TunerFault on error."""

    def __init__(self, handle: "TunerHandle", owner: str):
        self._handle = handle
        self.owner = owner
        self._closed = False

    @property
    def active(self) -> bool:
        return not self._closed

    def _device(self) -> Tuner:
        if self._closed:
            raise TunerFault(f"tuner lease held by {self.owner} already released")
        return self._handle.device

    def tune(self, channel: ChannelId) -> None:
        try:
            result = self._device().tune(channel)
        except TunerFault:
            raise
        except Exception as exc:
            raise TunerFault(f"tune to {channel.name} failed: {exc}") from exc
        if result is False:
            raise TunerFault(f"tuner rejected channel {channel.name}")

    def wait_for_sync(self, timeout: float) -> SyncState:
        try:
            state = self._device().wait_for_sync(timeout)
        except TunerFault:
            raise
        except Exception as exc:
            raise TunerFault(f"sync wait failed: {exc}") from exc
        if state is None:
            return NOT_SYNCED
        if isinstance(state, bool):
            return SyncState(state)
        return state

    def sample_tii_window(self) -> Any:
        try:
            return self._device().sample_tii_window()
        except TunerFault:
            raise
        except Exception as exc:
            raise TunerFault(f"TII sampling failed: {exc}") from exc

    def read_snr(self) -> float:
        try:
            return float(self._device().read_snr())
        except TunerFault:
            raise
        except Exception as exc:
            raise TunerFault(f"SNR read failed: {exc}") from exc

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._handle._release(self)

    def __enter__(self) -> "TunerLease":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class TunerHandle:
    """Ownership token for the single tuner device.

    Whoever holds a lease (scanner, playback) is the only caller allowed to
    drive the device; acquire() fails with TunerUnavailable instead of
    queueing.
    """

    def __init__(self, device: Tuner):
        self.device = device
        self._lock = threading.Lock()
        self._owner: Optional[str] = None

    @property
    def owner(self) -> Optional[str]:
        return self._owner

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def acquire(self, owner: str, timeout: float = 0.0) -> TunerLease:
        if timeout and timeout > 0:
            got = self._lock.acquire(timeout=timeout)
        else:
            got = self._lock.acquire(blocking=False)
        if not got:
            raise TunerUnavailable(f"tuner is held by {self._owner or 'another consumer'}")
        self._owner = owner
        return TunerLease(self, owner)

    def _release(self, lease: TunerLease) -> None:
        try:
            self.device.release()
        except Exception:
            log_exception(log, f"tuner release failed for {lease.owner}", error_type="tuner_release")
        finally:
            self._owner = None
            self._lock.release()
