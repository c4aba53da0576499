"""Configuration for kv_storage.

Defines the parameters used to assemble a Store from a storage engine and a
codec strategy.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import ConfigError

ENGINES = ("memory", "log")
CODECS = ("owned", "zerocopy")


@dataclass
class StoreConfig:
    """Configuration parameters for a Store.

    Attributes:
        engine: Storage engine, "memory" or "log"
        codec: Value codec strategy, "owned" or "zerocopy"
        data_dir: Directory holding the log file (log engine only)
        log_name: File name of the log inside data_dir
        fsync_every_write: Whether to fsync after each append
        verify_checksums: Whether reads re-check record CRCs
        compact_on_open: Whether to rewrite the log with live entries only on open
    """

    engine: str = "memory"
    codec: str = "owned"
    data_dir: str | None = None
    log_name: str = "store.log"
    fsync_every_write: bool = True
    verify_checksums: bool = True
    compact_on_open: bool = False

    def __post_init__(self) -> None:
        if self.engine not in ENGINES:
            raise ConfigError(f"Unknown engine {self.engine!r}, expected one of {ENGINES}")
        if self.codec not in CODECS:
            raise ConfigError(f"Unknown codec {self.codec!r}, expected one of {CODECS}")
        if self.engine == "log" and not self.data_dir:
            raise ConfigError("The log engine requires data_dir")
        if not self.log_name or "/" in self.log_name:
            raise ConfigError(f"Invalid log_name {self.log_name!r}")
