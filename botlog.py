# botlog.py — one-line console logging for the OGS bridge
import logging
import sys
import traceback
from datetime import datetime
from typing import Optional

LOGGER_NAME = "gtp2ogs"
logger = logging.getLogger(LOGGER_NAME)


class _BotFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        now = datetime.fromtimestamp(record.created).strftime("[%H:%M:%S]")
        gid = getattr(record, "gid", None)
        emoji = getattr(record, "emoji", "")
        tag = f" [{gid}]" if gid else ""
        head = f"{now}{tag} {emoji} " if emoji else f"{now}{tag} "
        return head + record.getMessage()


def setup_logging(debug: bool = False):
    """Install the console handler once; DEBUG also shows GTP traffic."""
    if not any(getattr(h, "_gtp2ogs", False) for h in logger.handlers):
        h = logging.StreamHandler(sys.stdout)
        h.setFormatter(_BotFormatter())
        h._gtp2ogs = True
        logger.addHandler(h)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    logger.propagate = False


def log(msg: str, emoji: str = "", gid=None, level: int = logging.INFO):
    logger.log(level, msg, extra={"gid": gid, "emoji": emoji})


def debug(msg: str, gid=None):
    logger.debug(msg, extra={"gid": gid, "emoji": ""})


def log_exc(where: str, e: BaseException, gid: Optional[object] = None):
    tb = "".join(traceback.format_exception(type(e), e, e.__traceback__, limit=8))
    log(f"[!] {where}: {e}\n{tb}", "⚠️", gid=gid, level=logging.ERROR)
