"""Test the logging system."""
from pathlib import Path
import logging

import pytest

from vdfkit.logger import BraceMessage, VdfLogger, get_logger, init_logging


@pytest.fixture
def vdf_handlers(monkeypatch: pytest.MonkeyPatch) -> logging.Logger:
    """init_logging() replaces the handlers of our logger, so ensure we undo that."""
    logger = logging.getLogger('vdfkit')
    monkeypatch.setattr(logger, 'handlers', [])
    monkeypatch.delenv('VDFKIT_DEBUG', raising=False)
    return logger


def function(logger: VdfLogger) -> None:
    """Log a few messages at different levels."""
    logger.info('Starting other function')
    logger.warning('Used wrong logic')
    logger.info('Finishing.')


def test_logging_output(capsys: pytest.CaptureFixture[str], vdf_handlers: logging.Logger) -> None:
    """Test the output of logging to the console."""
    init_logging()
    logger = get_logger('tests')
    logger.info('hello there')
    logger.error('Root error!:\n- Something failed.')
    get_logger('another').warning('A problem: {}', 45)
    function(logger)
    logger.debug('Hidden')

    out, err = capsys.readouterr()
    # Stdout is left alone, for the output of tools.
    assert out == ''
    assert '[I] ' in err
    assert 'hello there' in err
    assert '[E] ' in err
    assert 'Root error!:\n    - Something failed.\n' in err
    assert '[W] ' in err
    assert 'A problem: 45' in err
    assert 'Starting other function' in err
    assert 'Used wrong logic' in err
    assert 'Finishing.' in err
    assert 'Hidden' not in err


def test_debug_env(
    capsys: pytest.CaptureFixture[str],
    monkeypatch: pytest.MonkeyPatch,
    vdf_handlers: logging.Logger,
) -> None:
    """VDFKIT_DEBUG shows debug messages on the console."""
    monkeypatch.setenv('VDFKIT_DEBUG', '1')
    init_logging()
    get_logger('main').debug('Detailed {}', 'info')
    out, err = capsys.readouterr()
    assert '[D] ' in err
    assert 'Detailed info' in err


def test_alias(capsys: pytest.CaptureFixture[str], vdf_handlers: logging.Logger) -> None:
    """An alias replaces the module name."""
    init_logging()
    get_logger('aliased', alias='<custom>').info('Aliased message')
    get_logger('plain').info('Plain message')
    out, err = capsys.readouterr()
    assert '[I] <custom>.' in err
    assert 'Aliased message' in err
    assert 'Plain message' in err


def test_reinit(capsys: pytest.CaptureFixture[str], vdf_handlers: logging.Logger) -> None:
    """Calling init_logging() twice does not duplicate messages."""
    init_logging()
    init_logging()
    assert len(vdf_handlers.handlers) == 1
    get_logger('twice').info('Only once')
    out, err = capsys.readouterr()
    assert err.count('Only once') == 1


def test_log_file(tmp_path: Path, capsys: pytest.CaptureFixture[str], vdf_handlers: logging.Logger) -> None:
    """All levels are written to the log file."""
    filename = tmp_path / 'logs' / 'test.log'
    init_logging(filename)
    logger = get_logger('file')
    logger.debug('Debug {}', 'message')
    logger.info('Info message')
    for handler in vdf_handlers.handlers:
        handler.close()
    text = filename.read_text('utf8')
    assert '[DEBUG] ' in text
    assert 'Debug message' in text
    assert '[INFO] ' in text
    assert 'Info message' in text
    # The console didn't get the debug message.
    out, err = capsys.readouterr()
    assert 'Debug message' not in err
    assert 'Info message' in err


def test_get_logger_names() -> None:
    """Loggers are placed under the vdfkit namespace."""
    assert get_logger().logger.name == 'vdfkit'
    assert get_logger('another').logger.name == 'vdfkit.another'
    assert get_logger('vdfkit.keyvalues').logger.name == 'vdfkit.keyvalues'
    assert get_logger('vdfkitlike').logger.name == 'vdfkit.vdfkitlike'


def test_brace_message() -> None:
    """Test the str.format() wrapper."""
    assert str(BraceMessage('a {} {b}', (1,), {'b': 2})) == 'a 1 2'
    assert str(BraceMessage('{not formatted}', (), {})) == '{not formatted}'
    assert str(BraceMessage('one\ntwo\n', (), {})) == 'one\n    two'
    assert str(BraceMessage('{}\n{}', ('a', 'b'), {})) == 'a\n    b'
