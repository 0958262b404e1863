import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import yaml

from .logger import get_logger

log = get_logger("config")

DEFAULT_CONFIG_FILE = "config/webtail.yml"


@dataclass
class TailSettings:
    poll_interval: float = 0.01
    liveness_timeout: float = 60.0
    # heartbeats go out at this fraction of the liveness timeout
    heartbeat_ratio: float = 0.45
    write_timeout: float = 10.0
    max_message_size: int = 512
    max_read: int = 64 * 1024

    @property
    def heartbeat_interval(self) -> float:
        return self.liveness_timeout * self.heartbeat_ratio

    def validate(self):
        for name in ("poll_interval", "liveness_timeout", "write_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"tail.{name} must be positive")
        if not 0 < self.heartbeat_ratio < 1:
            raise ValueError("tail.heartbeat_ratio must be between 0 and 1")
        if self.max_message_size <= 0 or self.max_read <= 0:
            raise ValueError("tail.max_message_size and tail.max_read must be positive")


class Config:
    def __init__(self, path: Optional[str] = None):
        cfg: Dict[str, Any] = {}
        if path:
            with open(path, encoding="utf-8") as f:
                cfg = yaml.safe_load(f) or {}
            log.info("loaded configuration from %s", path)
        self.path = path

        server = cfg.get("server") or {}
        self.host: str = server.get("host", "")
        self.port: int = int(server.get("port", 8080))

        tail = cfg.get("tail") or {}
        defaults = TailSettings()
        self.tail = TailSettings(
            poll_interval=float(tail.get("poll_interval", defaults.poll_interval)),
            liveness_timeout=float(tail.get("liveness_timeout", defaults.liveness_timeout)),
            heartbeat_ratio=float(tail.get("heartbeat_ratio", defaults.heartbeat_ratio)),
            write_timeout=float(tail.get("write_timeout", defaults.write_timeout)),
            max_message_size=int(tail.get("max_message_size", defaults.max_message_size)),
            max_read=int(tail.get("max_read", defaults.max_read)),
        )

        logcfg = cfg.get("log") or {}
        self.log_level: str = str(logcfg.get("level", "INFO")).upper()
        self.log_file: Optional[str] = logcfg.get("file_path")
        self.log_backup_count: int = int(logcfg.get("backup_count", 14))
        self.log_timezone: str = logcfg.get("timezone", "UTC")

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Read ``path``, or the default file when it exists, or nothing at all."""
        if path is None and os.path.exists(DEFAULT_CONFIG_FILE):
            path = DEFAULT_CONFIG_FILE
        return cls(path)

    def set_addr(self, addr: str):
        host, sep, port = addr.rpartition(":")
        if not sep or not port.isdigit():
            raise ValueError(f"invalid address {addr!r}, expected HOST:PORT")
        self.host = host.strip("[]")
        self.port = int(port)

    def validate(self):
        if not 0 <= self.port <= 65535:
            raise ValueError(f"server.port out of range: {self.port}")
        self.tail.validate()
