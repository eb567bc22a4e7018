import faulthandler
import os
from typing import IO, Optional

CRASH_LOG_NAME = "crash.log"

_crash_log: Optional[IO[str]] = None


def enable_crash_logging(logs_dir: str) -> str:
    """Dump native tracebacks of all threads to ``crash.log`` on a hard crash.

    faulthandler holds a single target per process, so only the first call
    opens a file; later calls return the path of the one already in use.
    """
    global _crash_log
    if _crash_log is None:
        os.makedirs(logs_dir, exist_ok=True)
        _crash_log = open(os.path.join(logs_dir, CRASH_LOG_NAME), "a", encoding="utf-8")
        faulthandler.enable(file=_crash_log, all_threads=True)
    return _crash_log.name
