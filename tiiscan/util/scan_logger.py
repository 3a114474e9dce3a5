"""JSON-lines log of scan events (session, channel, TII detection, cycle)."""

from __future__ import annotations

import json
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from tiiscan.util.time import utc_now_str

DEFAULT_LOG_NAME = "tiiscan-scan.log"


def _absolute(path: Union[str, Path]) -> Path:
    p = Path(path).expanduser()
    return p if p.is_absolute() else (Path.cwd() / p).absolute()


class ScanLogger:
    """Appends one JSON object per scan event to the log file and its mirrors.

    Every entry carries the run id of this logger and the current cycle.
    Write failures on one target do not affect the others.
    """

    def __init__(self, log_path: Union[str, Path], mirror_paths: Iterable[Union[str, Path]] = ()):
        self.log_path = _absolute(log_path)
        self.mirror_paths: List[Path] = []
        for mirror in mirror_paths:
            resolved = _absolute(mirror)
            if resolved != self.log_path and resolved not in self.mirror_paths:
                self.mirror_paths.append(resolved)
        for target in self.targets:
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
            except OSError:
                continue
        self.run_id = f"scan-{int(time.time() * 1000)}-{os.getpid()}"
        self.current_cycle: Optional[int] = None
        self._lock = threading.Lock()

    @property
    def targets(self) -> List[Path]:
        return [self.log_path, *self.mirror_paths]

    @classmethod
    def from_db_path(cls, db_path: Optional[str], extra_targets: Optional[List[str]] = None) -> "ScanLogger":
        """Place the log next to the transmitter database (cwd for in-memory databases)."""
        if not db_path or db_path == ":memory:":
            base_dir = Path.cwd()
        else:
            base_dir = _absolute(db_path).parent
        return cls(base_dir / DEFAULT_LOG_NAME, [t for t in extra_targets or [] if t])

    def start_cycle(self, cycle: int, **metadata: Any) -> None:
        self.current_cycle = cycle
        self.log("cycle_start", **metadata)

    def log(self, event: str, **fields: Any) -> None:
        entry: Dict[str, Any] = {"ts": utc_now_str(), "run_id": self.run_id, "cycle": self.current_cycle, "event": event}
        entry.update(fields)
        line = json.dumps(entry, default=str) + "\n"
        with self._lock:
            for target in self.targets:
                try:
                    with target.open("a", encoding="utf-8") as fh:
                        fh.write(line)
                except OSError:
                    continue
