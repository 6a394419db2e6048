# archstrap/utils/logger.py
"""
Installer logging.

The operator watches a rich console (section headers, a spinner per external
command, one status line when it ends). Everything, including the EXECUTE
records and tracebacks, lands in the log file.
"""
import logging
import os
import sys
from contextlib import contextmanager

from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

from archstrap.utils.exceptions import ShellCommandError, InstallerError

SECTION_LEVEL_NUM = 25
EXECUTE_LEVEL_NUM = 26
logging.addLevelName(SECTION_LEVEL_NUM, 'SECTION')
logging.addLevelName(EXECUTE_LEVEL_NUM, 'EXECUTE')

# Failures the CLI reports in one line; their traceback goes to the file only
REPORTED_ERRORS = (ShellCommandError, InstallerError)

FILE_LOG_FORMAT = ('%(asctime)s - %(levelname_fixed)s - %(name_fixed)s - '
                   '%(filename_fixed)s:%(lineno_fixed)s - %(message)s')


class AppLogger(logging.Logger):
    """logging.Logger with the SECTION and EXECUTE levels."""

    def section(self, msg, *args, **kwargs):
        if self.isEnabledFor(SECTION_LEVEL_NUM):
            self._log(SECTION_LEVEL_NUM, msg, args, **kwargs)

    def execute(self, msg, *args, **kwargs):
        if self.isEnabledFor(EXECUTE_LEVEL_NUM):
            self._log(EXECUTE_LEVEL_NUM, msg, args, **kwargs)


logging.setLoggerClass(AppLogger)


class FileFormatter(logging.Formatter):
    """Fixed-width columns, so a whole installation reads as one table."""

    def __init__(self):
        super().__init__(FILE_LOG_FORMAT)

    def format(self, record):
        record.levelname_fixed = f"{record.levelname:<9}"
        record.name_fixed = f"{record.name:<15}"
        record.filename_fixed = f"{record.filename:<20}"
        record.lineno_fixed = f"{record.lineno:<5}"
        return super().format(record)


class ExecuteFilter(logging.Filter):
    """Keeps EXECUTE records off the console, where execution_step draws its own lines."""

    def filter(self, record):
        return record.levelno != EXECUTE_LEVEL_NUM


class RichAppLogger:
    """
    Wraps an AppLogger with the console the operator sees.
    """

    def __init__(self, console: Console, logger: AppLogger):
        self.console = console
        self.logger: AppLogger = logger

    def section(self, message: str, *args, **kwargs):
        """Prints a header for an installation phase and records it in the file."""
        self.console.print(Text(f"SECTION: {message}", style="bold yellow"))
        self.logger.section(f"SECTION: {message}", *args, **kwargs)

    @contextmanager
    def execution_step(self, message: str):
        """
        Shows a spinner while the block runs, then a [COMPLETED], [CRITICAL] or
        [FAILED] line.

        Command and installer errors ([CRITICAL]) are left to the caller to report;
        only anything else gets a traceback on the console.
        """
        with self.console.status(f"[bold green]...[/] [RUNNING] {message}", spinner="dots") as status:
            # Logged before the block runs so an interrupted command is still traceable
            self.logger.execute(f"[RUNNING] {message}")
            try:
                yield status
            except REPORTED_ERRORS:
                self._step_ended("[CRITICAL]", message)
                raise
            except Exception:
                self._step_ended("[FAILED]", message)
                self.console.print("\n[bold red]Traceback (most recent call last):[/bold red]")
                self.console.print_exception(show_locals=True)
                raise

            self.console.print(f"[green]✔ [COMPLETED][/green] {message}")
            self.logger.execute(f"[COMPLETED] {message}")

    def _step_ended(self, tag: str, message: str):
        self.console.print(f"[bold red]✘ {tag}[/bold red] {message}")
        self.logger.execute(f"{tag} {message}", exc_info=True)

    # --- Pass-through to the file and console handlers ---

    def info(self, message, *args, **kwargs):
        self.logger.info(message, *args, **kwargs)

    def warning(self, message, *args, **kwargs):
        self.logger.warning(message, *args, **kwargs)

    def error(self, message, *args, **kwargs):
        self.logger.error(message, *args, **kwargs)

    def debug(self, message, *args, **kwargs):
        self.logger.debug(message, *args, **kwargs)


def initialize_app_logger(
    app_name: str,
    log_directory: str = "logs",
    log_file_name: str = "installer.log",
    file_log_level: int = logging.DEBUG,
    console_log_level: int = logging.INFO,
) -> RichAppLogger:
    """
    Sets up `app_name` with a detailed file log and a rich console on stderr.
    Calling it again replaces the handlers instead of adding more.
    """
    logger: AppLogger = logging.getLogger(app_name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    os.makedirs(log_directory, exist_ok=True)
    file_handler = logging.FileHandler(os.path.join(log_directory, log_file_name), encoding='utf-8')
    file_handler.setLevel(file_log_level)
    file_handler.setFormatter(FileFormatter())
    logger.addHandler(file_handler)

    console = Console(file=sys.stderr, soft_wrap=True)
    console_handler = RichHandler(
        console=console,
        show_time=False,
        show_level=True,
        show_path=False,
        keywords=[],
        level=console_log_level,
    )
    console_handler.addFilter(ExecuteFilter())
    logger.addHandler(console_handler)

    return RichAppLogger(console, logger)
