"""Logging for vdfkit.

Loggers from :py:func:`get_logger` take :py:meth:`str.format` placeholders, so
``LOGGER.debug('Removed "{}"', name)`` works. Library code only creates loggers. The
command-line tools call :py:func:`init_logging` to actually show the messages.
"""
from typing import Any, Mapping, Optional, Tuple
import logging
import os
import sys

from vdfkit import StringPath


__all__ = ['get_logger', 'init_logging']
ROOT_NAME = 'vdfkit'
#: If set to 1, debug messages are shown on the console as well.
DEBUG_ENV = 'VDFKIT_DEBUG'
CONSOLE_FORMAT = '[{levelname[0]}] {module}.{funcName}(): {message}'
FILE_FORMAT = '[{levelname}] {module}.{funcName}(): {message}'


class BraceMessage:
    """A message formatted with :py:meth:`str.format`, only once it is actually emitted."""
    __slots__ = ('fmt', 'args', 'kwargs')

    def __init__(self, fmt: str, args: Tuple[object, ...], kwargs: Mapping[str, object]) -> None:
        self.fmt = fmt
        self.args = args
        self.kwargs = kwargs

    def __str__(self) -> str:
        # Without arguments, braces are left alone.
        if self.args or self.kwargs:
            text = self.fmt.format(*self.args, **self.kwargs)
        else:
            text = self.fmt
        if '\n' not in text:
            return text
        # Parse errors span several lines, indent those under the first.
        first, *rest = text.rstrip('\n').split('\n')
        return first + ''.join([f'\n    {line}' for line in rest])


class VdfLogger(logging.LoggerAdapter):  # type: ignore[type-arg]
    """Passes messages through :py:class:`BraceMessage`, and records the module alias."""
    def __init__(self, logger: logging.Logger, alias: Optional[str] = None) -> None:
        super().__init__(logger, {'vdfkit_alias': alias})

    def log(  # type: ignore[override]
        self,
        level: int,
        msg: object,
        *args: object,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **kwargs: object,
    ) -> None:
        """Log a message, formatting ``args`` and ``kwargs`` into it with :py:meth:`str.format`."""
        if self.isEnabledFor(level):
            self.logger.log(
                level,
                BraceMessage(str(msg), args, kwargs),
                exc_info=exc_info,
                stack_info=stack_info,
                extra=self.extra,
                # Report the caller of debug()/info()/etc, not this method.
                stacklevel=stacklevel + 1,
            )


class AliasFormatter(logging.Formatter):
    """Shows the alias passed to :py:func:`get_logger` in place of the module name."""
    def format(self, record: logging.LogRecord) -> str:
        alias = getattr(record, 'vdfkit_alias', None)
        if alias is not None:
            record.module = alias
        return super().format(record)


def get_logger(name: str = '', alias: Optional[str] = None) -> VdfLogger:
    """Get a logger inside the ``vdfkit`` namespace.

    Pass ``__name__`` from inside the package. Other names are placed underneath ``vdfkit``.
    If set, ``alias`` is shown instead of the module name.
    """
    if not name:
        name = ROOT_NAME
    elif name != ROOT_NAME and not name.startswith(ROOT_NAME + '.'):
        name = f'{ROOT_NAME}.{name}'
    return VdfLogger(logging.getLogger(name), alias)


def init_logging(filename: Optional[StringPath] = None) -> logging.Logger:
    """Show vdfkit's log messages, for use by command-line tools.

    Messages go to stderr, leaving stdout free for output. Info and above is shown, or debug
    too if the ``VDFKIT_DEBUG`` environment variable is ``1``. If a filename is given,
    everything is also written there. Calling this again replaces the previous handlers.
    """
    logger = logging.getLogger(ROOT_NAME)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if os.environ.get(DEBUG_ENV) == '1' else logging.INFO)
    console.setFormatter(AliasFormatter(CONSOLE_FORMAT, style='{'))
    logger.addHandler(console)

    if filename is not None:
        folder = os.path.dirname(filename)
        if folder:
            os.makedirs(folder, exist_ok=True)
        log_file = logging.FileHandler(filename, mode='w', encoding='utf8')
        log_file.setLevel(logging.DEBUG)
        log_file.setFormatter(AliasFormatter(FILE_FORMAT, style='{'))
        logger.addHandler(log_file)
    return logger
