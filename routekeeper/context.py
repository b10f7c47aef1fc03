"""Explicit application context shared by the engine components."""

import platform
from dataclasses import dataclass
from typing import Optional, Callable

from .backup import BackupManager
from .clock import Clock
from .config import CONFIG
from .fallback import FlatStore
from .logger import Logger
from .routedb import RouteDB
from .state import RouteBuffer
from .store import PersistenceStore
from .timer import ElapsedTimer


@dataclass
class AppContext:
    """Everything one capture session needs, passed by reference"""
    config: dict
    logger: Logger
    clock: Clock
    store: PersistenceStore
    buffer: RouteBuffer
    timer: ElapsedTimer
    backups: BackupManager
    notifier: Optional[Callable[[str, str], None]] = None

    def close(self):
        self.timer.stop()
        self.backups.stop_auto_backup()
        self.store.close()
        self.logger.close()


def device_info() -> dict:
    return {
        "platform": platform.platform(),
        "python": platform.python_version(),
        "node": platform.node(),
    }


def create_context(db_path: Optional[str] = None, fallback_path: Optional[str] = None,
                   logger: Optional[Logger] = None, clock: Optional[Clock] = None,
                   config: Optional[dict] = None, on_tick=None,
                   notifier: Optional[Callable[[str, str], None]] = None) -> AppContext:
    """Build the component graph; call ``await ctx.store.open()`` before use"""
    cfg = dict(CONFIG)
    if config:
        cfg.update(config)
    logger = logger or Logger()
    clock = clock or Clock()

    primary = RouteDB(db_path or cfg["db_path"], max_pages=cfg.get("db_max_pages"), logger=logger)
    fallback = FlatStore(fallback_path if fallback_path is not None else cfg["fallback_path"],
                         quota=cfg["fallback_quota"], logger=logger)
    store = PersistenceStore(primary, fallback, logger=logger, clock=clock)
    buffer = RouteBuffer(clock=clock, config=cfg, logger=logger)
    timer = ElapsedTimer(clock=clock, tick_interval=cfg["timer_tick_interval"],
                         on_tick=on_tick, logger=logger)
    backups = BackupManager(buffer, store, timer, clock=clock, config=cfg, logger=logger,
                            device_info=device_info())
    return AppContext(config=cfg, logger=logger, clock=clock, store=store,
                      buffer=buffer, timer=timer, backups=backups, notifier=notifier)
