import json
import logging

from config.settings import settings

log = logging.getLogger("mediagen")

_configured = False


def setup_logging(level: str | None = None) -> None:
    """Configure root logging once from LOG_LEVEL."""
    global _configured
    if _configured:
        return
    name = (level or settings.LOG_LEVEL).upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    _configured = True


def jlog(msg: str, **kw) -> None:
    """Log a message with JSON-ish context; values must be JSON-serializable."""
    if not kw:
        log.info(msg)
        return
    try:
        ctx = " ".join(f"{k}={json.dumps(v, ensure_ascii=False)}" for k, v in kw.items())
    except (TypeError, ValueError) as e:
        log.info(f"{msg} | logging_error={e}")
        return
    log.info(f"{msg} | {ctx}")
