import logging
import logging.handlers
import os

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

_FILE_HANDLER_NAME = "tube_orchestrator.file"


def configure_logging(config) -> None:
    """Configure root logging once from the orchestrator config"""
    level = getattr(logging, str(config.get("server.log_level", "info")).upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)

    log_file = config.get("logging.file")
    if not log_file:
        return

    root = logging.getLogger()
    if any(getattr(h, "name", None) == _FILE_HANDLER_NAME for h in root.handlers):
        return

    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    fh = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=int(config.get("logging.max_bytes", 5_000_000)),
        backupCount=int(config.get("logging.backup_count", 5)),
    )
    fh.set_name(_FILE_HANDLER_NAME)
    fh.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(fh)
