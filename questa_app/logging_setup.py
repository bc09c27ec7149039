from __future__ import annotations

import logging
import sys
from pathlib import Path

_configured = False


class _QuietThirdParty(logging.Filter):
    """Keep questa logs; let other libraries through only from WARNING up."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith(("questa_app", "questa_api")):
            return True
        return record.levelno >= logging.WARNING


def setup_logging(*, level: str | int = "INFO", log_dir: str | Path | None = None) -> None:
    """
    Configure root logging once per process.

    Streamlit re-executes the page script on every interaction, so repeated
    calls are no-ops.
    """
    global _configured
    if _configured:
        return

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(level if isinstance(level, int) else level.upper())
    ch.setFormatter(fmt)
    ch.addFilter(_QuietThirdParty())
    root.addHandler(ch)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(path / "questa.log"), encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(fmt)
        root.addHandler(fh)

    _configured = True
    logging.getLogger(__name__).debug("logging configured level=%s dir=%s", level, log_dir)
