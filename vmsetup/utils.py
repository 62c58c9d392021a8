"""Utility functions for the provisioning tool."""
import logging
import os
import re
import shutil
import time
from pathlib import Path
from typing import Optional, Union

import sh
import typer

logger = logging.getLogger("vmsetup")

# Seconds to wait after each operator-facing line
_pace = 1.0

# Handlers installed by setup_logging, replaced on each call
_handlers = []


class ProvisioningError(RuntimeError):
    """A fatal condition that aborts the provisioning workflow."""


def command_exists(command: str) -> bool:
    """Check if a command exists in the system PATH."""
    return shutil.which(command) is not None


def is_root() -> bool:
    """Check if the script is running as root."""
    return os.geteuid() == 0


def run(command: str, *args, **kwargs):
    """Run an external command through sh, raising sh.ErrorReturnCode on failure."""
    return sh.Command(command)(*args, **kwargs)


def apt_env() -> dict:
    """The current environment with apt's interactive prompts turned off."""
    return dict(os.environ, DEBIAN_FRONTEND="noninteractive")


def _emit(tag: str, color: str, message: str) -> None:
    typer.echo(f"{typer.style(tag, fg=color, bold=True)} {message}")
    time.sleep(_pace)


def log_info(message: str) -> None:
    """Log an informational message."""
    logger.info(message)
    _emit("[INFO]", typer.colors.GREEN, message)


def log_warning(message: str) -> None:
    """Log a warning; the workflow carries on."""
    logger.warning(message)
    _emit("[WARN]", typer.colors.YELLOW, message)


def log_error(message: str) -> None:
    """Log an error message."""
    logger.error(message)
    _emit("[ERROR]", typer.colors.RED, message)


def log_action(message: str) -> None:
    """Log an action being performed."""
    logger.info(message)
    typer.echo(f"  -> {message}")


def log_heading(title: str, color: str = typer.colors.CYAN) -> None:
    """Print a framed section heading."""
    rule = "=" * 40
    typer.echo()
    typer.secho(rule, fg=color)
    typer.secho(title, fg=color, bold=True)
    typer.secho(rule, fg=color)


def highlight(text: str) -> str:
    """Style a command or value the operator is expected to copy."""
    return typer.style(text, fg=typer.colors.CYAN)


def setup_logging(verbose: bool = False, pace: float = 1.0, log_file: Optional[Path] = None) -> None:
    """Setup logging configuration.

    Console lines are written by the log_* helpers. The standard logging tree
    carries the same messages to an optional log file, and in verbose mode
    also shows the commands sh runs.
    """
    global _pace
    _pace = pace

    root = logging.getLogger()
    for handler in _handlers:
        root.removeHandler(handler)
        handler.close()
    _handlers.clear()
    root.setLevel(logging.DEBUG)

    console = logging.StreamHandler()
    console.setLevel(logging.INFO if verbose else logging.CRITICAL)
    console.addFilter(lambda record: not record.name.startswith("vmsetup"))
    console.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    root.addHandler(console)
    _handlers.append(console)

    logging.getLogger("sh").setLevel(logging.INFO if verbose else logging.WARNING)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.INFO)
        file_handler.addFilter(lambda record: record.name.startswith("vmsetup"))
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s", "%Y-%m-%d %H:%M:%S"))
        root.addHandler(file_handler)
        _handlers.append(file_handler)


def set_directive(text: str, key: str, value: str, separator: str = " ",
                  commented: bool = True, append: bool = True) -> str:
    """Set a ``Key<separator>value`` directive in configuration text.

    Every existing occurrence is rewritten, including commented-out ones when
    ``commented`` is true. When the key is absent it is appended unless
    ``append`` is false.
    """
    prefix = r"^[ \t]*#?[ \t]*" if commented else r"^"
    pattern = re.compile(rf"{prefix}{re.escape(key)}(?=[ \t=]|$).*$", re.MULTILINE)
    line = f"{key}{separator}{value}"
    if pattern.search(text):
        return pattern.sub(lambda _: line, text)
    if not append:
        return text
    if text and not text.endswith("\n"):
        text += "\n"
    return text + line + "\n"


def edit_file(path: Union[str, Path], key: str, value: str, **kwargs) -> bool:
    """Apply set_directive to a file. Returns True when the file changed."""
    path = Path(path)
    original = path.read_text()
    updated = set_directive(original, key, value, **kwargs)
    if updated == original:
        return False
    path.write_text(updated)
    return True


def append_once(path: Union[str, Path], marker: str, block: str) -> bool:
    """Append ``block`` to a file unless ``marker`` already appears in it."""
    path = Path(path)
    current = path.read_text() if path.exists() else ""
    if marker in current:
        return False
    with open(path, "a") as f:
        if current and not current.endswith("\n"):
            f.write("\n")
        f.write(block)
    return True
