# agroscan/logger.py
import os

from rich.console import Console
from rich.traceback import install
from rich import pretty

# Pretty tracebacks for worker failures, locals off to keep image bytes out of logs
install(show_locals=False)
pretty.install()

# Shared console logger for the service, worker and poller
console = Console(
    log_path=os.getenv("AGROSCAN_LOG_PATHS", "0") == "1",
    force_terminal=os.getenv("AGROSCAN_FORCE_COLOR") == "1" or None,
)
