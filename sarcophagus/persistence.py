"""JSON snapshots of the full protocol state"""

import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Optional

from .clock import TimeProvider, system_time
from .protocol import SarcophagusProtocol

logger = logging.getLogger(__name__)

STATE_FORMAT = 1


def save_state(protocol: SarcophagusProtocol, path: str = "data/sarcophagus_state.json") -> None:
    """Write every record to `path`, replacing the previous file atomically"""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)

    state = {
        "format": STATE_FORMAT,
        "saved_at": int(time.time()),
        "protocol": protocol.to_dict(),
    }

    tmp_fd, tmp_path = tempfile.mkstemp(dir=str(p.parent), suffix=".tmp", prefix="sarcophagus_state_")
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
            json.dump(state, f, indent=2)
        os.replace(tmp_path, str(p))
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise

    logger.info("Protocol state saved to %s (%d vaults)", p, len(protocol.vaults.owners()))


def load_state(
    path: str = "data/sarcophagus_state.json",
    clock: TimeProvider = system_time,
) -> Optional[SarcophagusProtocol]:
    """Restore a protocol from `path`; returns None when no state file exists"""
    p = Path(path)
    if not p.exists():
        logger.info("No state file at %s, starting fresh", p)
        return None

    with open(p, "r", encoding="utf-8") as f:
        state = json.load(f)

    if state.get("format") != STATE_FORMAT:
        raise ValueError(f"Unsupported state format {state.get('format')!r}")

    protocol = SarcophagusProtocol.from_dict(state["protocol"], clock)
    logger.info("Protocol state loaded from %s (%d vaults)", p, len(protocol.vaults.owners()))
    return protocol
