"""Operator confirmation.

The change-set workflow takes a ``confirm(question) -> bool`` callable.
prompt_confirm() is the interactive implementation; always_yes/always_no
are scripted ones for headless runs and tests.
"""

import logging
import sys
import threading
from typing import Callable, Optional, TextIO

from config import ConfigError

logger = logging.getLogger(__name__)

Confirm = Callable[[str], bool]

# One prompt on the terminal at a time
_prompt_lock = threading.Lock()


def prompt_confirm(
    question: str,
    read_line: Optional[Callable[[], str]] = None,
    out: Optional[TextIO] = None,
) -> bool:
    """Ask a Y/N question until a valid answer is given.

    Accepts y/n in either case. Any other input, including an empty line,
    logs a warning and asks again; there is no default.

    Raises:
        ConfigError: If input closes before an answer is given
    """
    read_line = read_line or input
    out = out or sys.stdout
    with _prompt_lock:
        while True:
            out.write(f"--\n{question} [Y/N]: ")
            out.flush()
            try:
                answer = read_line().strip().lower()
            except EOFError:
                out.write("\n")
                raise ConfigError(f"no answer to \"{question}\": input closed") from None
            if answer == 'y':
                return True
            if answer == 'n':
                return False
            logger.warning('invalid response, please type "Y" or "N"')


def always_yes(question: str) -> bool:
    logger.info(f"{question} [auto-confirmed]")
    return True


def always_no(question: str) -> bool:
    logger.info(f"{question} [auto-declined]")
    return False
