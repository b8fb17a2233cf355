"""
Headless service runner for Snap Sync.

    python -m snap_sync start [-c PATH]   Run in the foreground until Ctrl-C / SIGTERM
    python -m snap_sync check [-c PATH]   Validate config and probe API and destinations

Without ``-c`` the configuration is read from the platform config
directory (see :mod:`snap_sync.platform_utils`).
"""

import logging
import logging.handlers
import signal
import sys
import threading
from pathlib import Path

from snap_sync import __app_name__, __version__
from snap_sync.broker import MqttListener
from snap_sync.config import Config, ConfigError
from snap_sync.dedup import DedupGuard
from snap_sync.descriptors import parse_descriptor
from snap_sync.destinations import Destination, TransferError, make_destination
from snap_sync.engine import SyncEngine
from snap_sync.events import MediaCategory
from snap_sync.router import EventRouter
from snap_sync.sources import EmbeddedSnapshotSource, FrigateApiClient, FrigateClipSource
from snap_sync.state import SubscriptionStateTracker
from snap_sync.uploader import RetryPolicy, UploadOrchestrator

logger = logging.getLogger(__name__)

# Third-party loggers that are noisy at INFO
_QUIET_LOGGERS = ("paramiko", "urllib3")


def setup_logging(cfg: Config) -> None:
    """Configure rotating file log and stderr handler."""
    log_path = cfg.log_file
    level = getattr(logging, cfg.log_level, logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    log_path.parent.mkdir(parents=True, exist_ok=True)
    fh = logging.handlers.RotatingFileHandler(
        str(log_path),
        maxBytes=cfg.max_log_size_mb * 1024 * 1024,
        backupCount=cfg.log_backup_count,
        encoding="utf-8",
    )
    fh.setLevel(level)
    fh.setFormatter(fmt)
    root_logger.addHandler(fh)

    sh = logging.StreamHandler(sys.stderr)
    sh.setLevel(level)
    sh.setFormatter(fmt)
    root_logger.addHandler(sh)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def build_destinations(cfg: Config) -> list[Destination]:
    """Create one destination per configured descriptor, in order."""
    return [
        make_destination(
            parse_descriptor(text),
            collision_mode=cfg.collision_mode,
            rename_pattern=cfg.rename_pattern,
            verify=cfg.verify_copies,
        )
        for text in cfg.upload_destinations
    ]


def build_engine(cfg: Config) -> tuple[SyncEngine, FrigateApiClient]:
    """
    Wire the sync engine from a validated config.

    Returns the engine and the API client so the caller can probe and
    close them.
    """
    api = FrigateApiClient(
        cfg.frigate_api_address,
        proxy=cfg.frigate_api_proxy,
        timeout=cfg.frigate_api_timeout,
    )
    tracker = SubscriptionStateTracker()
    router = EventRouter(
        tracker,
        sources={
            MediaCategory.SNAPSHOT: EmbeddedSnapshotSource(),
            MediaCategory.RECORDING: FrigateClipSource(api),
        },
        destinations=build_destinations(cfg),
    )
    orchestrator = UploadOrchestrator(
        DedupGuard(),
        RetryPolicy(
            max_attempts=cfg.retry_max_attempts,
            base_delay=cfg.retry_base_delay,
            max_delay=cfg.retry_max_delay,
        ),
    )
    return SyncEngine(tracker, router, orchestrator), api


def probe_all(api: FrigateApiClient, destinations: list[Destination]) -> bool:
    """Probe the API and every destination; log problems, return overall health."""
    healthy = api.test_call()
    for dest in destinations:
        try:
            dest.probe()
            logger.info("Destination ready: %s", dest.id)
        except TransferError as exc:
            healthy = False
            logger.warning("Destination %s is not usable yet (%s): %s", dest.id, exc.kind, exc)
    return healthy


def _load_config(path: Path | None) -> Config:
    cfg = Config(path)
    cfg.validate()
    return cfg


def run_foreground(cfg: Config) -> int:
    """Run the service until SIGINT/SIGTERM; return the process exit code."""
    setup_logging(cfg)
    logger.info("%s %s starting.", __app_name__, __version__)

    engine, api = build_engine(cfg)
    destinations = list(engine.router.destinations)
    probe_all(api, destinations)

    listener = MqttListener(
        cfg.mqtt_host,
        cfg.mqtt_port,
        on_message=engine.handle_message,
        username=cfg.mqtt_username,
        password=cfg.mqtt_password,
        client_id=cfg.mqtt_client_id,
        keep_alive=cfg.mqtt_keep_alive,
        topic_prefix=cfg.mqtt_topic_prefix,
    )
    listener.start()

    stop = threading.Event()

    def _handler(sig, frame):
        logger.info("Received signal %d, shutting down", sig)
        stop.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)

    print(f"{__app_name__} running (press Ctrl-C to stop)…")
    while not stop.is_set():
        stop.wait(1)

    listener.stop()
    clean = engine.shutdown(cfg.shutdown_grace)
    for dest in destinations:
        dest.close()
    api.close()
    logger.info("%s stopped.", __app_name__)
    print(f"{__app_name__} stopped.")
    return 0 if clean else 1


def check(cfg: Config) -> int:
    """Probe everything once and report; return the process exit code."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    engine, api = build_engine(cfg)
    destinations = list(engine.router.destinations)
    try:
        healthy = probe_all(api, destinations)
    finally:
        for dest in destinations:
            dest.close()
        api.close()
    print("All checks passed." if healthy else "Some checks failed, see log output above.")
    return 0 if healthy else 1


def _parse_args(argv: list[str]) -> tuple[str, Path | None]:
    cmd = ""
    config_path = None
    args = iter(argv)
    for arg in args:
        if arg in ("-c", "--config"):
            value = next(args, None)
            if value is None:
                raise ValueError(f"{arg} needs a path")
            config_path = Path(value)
        elif not cmd:
            cmd = arg
        else:
            raise ValueError(f"Unexpected argument: {arg}")
    return cmd, config_path


def main(argv: list[str] | None = None) -> int:
    """Entry point for the service CLI."""
    try:
        cmd, config_path = _parse_args(sys.argv[1:] if argv is None else argv)
    except ValueError as exc:
        print(f"ERROR: {exc}")
        _show_help()
        return 2

    actions = {"start": run_foreground, "check": check}
    if cmd not in actions:
        _show_help()
        return 2

    try:
        cfg = _load_config(config_path)
    except ConfigError as exc:
        print(f"ERROR: invalid configuration: {exc}")
        return 1
    return actions[cmd](cfg)


def _show_help() -> None:
    print(f"{__app_name__} {__version__}: Frigate snapshot and recording uploader")
    print()
    print("Usage:")
    print("  python -m snap_sync start [-c PATH]   Run in foreground (Ctrl-C to stop)")
    print("  python -m snap_sync check [-c PATH]   Validate config and probe API and destinations")


if __name__ == "__main__":
    sys.exit(main())
