"""Parses text into groups of tokens.

This is used internally by :py:mod:`vdfkit.keyvalues`, but can be driven directly to scan
KeyValues-like text.

The :py:class:`BaseTokenizer` class implements the calling protocol and error helpers, while
the :py:class:`Tokenizer` class takes a full string, a text file object or any iterable of
strings and actually splits it into tokens.

Once the tokenizer is created, either iterate over it or call the tokenizer to fetch the next
token/value pair. One token of lookahead is supported, accessed by the
:py:func:`BaseTokenizer.peek()` and :py:func:`BaseTokenizer.push_back()` methods. They also track
the current line number as data is read, letting you ``raise BaseTokenizer.error(...)`` to easily
produce an exception listing the relevant line number and filename.

Inside quoted strings, the escapes ``\\\\``, ``\\n``, ``\\r``, ``\\t`` and ``\\"`` are
recognised. Any other backslash sequence is kept exactly as written.
"""
import re
from typing import Iterable, Iterator, List, NoReturn, Optional, Tuple, Type, Union
from typing_extensions import Self, overload
from enum import Enum
from os import fspath as _conv_path
import abc

from vdfkit import StringPath


__all__ = [
    'TokenSyntaxError', 'Token', 'BaseTokenizer', 'Tokenizer',
    'escape_text', 'format_exc_fileinfo',
]


def format_exc_fileinfo(msg: str, file: Optional[StringPath], line_num: Optional[int]) -> str:
    """If a line number or file is provided, include those in the error message."""
    if file is None and line_num is None:
        return msg
    parts = [msg]
    if line_num is not None:
        parts.append(f'\nError occurred on line {line_num}')
        if file is not None:
            parts.append(f', with file "{file}".')
        else:
            parts.append('.')
    else:
        parts.append(f'\nError occurred with file "{file}".')
    return ''.join(parts)


class TokenSyntaxError(Exception):
    """An error that occurred when parsing a file.

    Normally this is created via :py:func:`BaseTokenizer.error()` which formats text into the error
    and includes the filename/line number from the tokenizer.

    The string representation will include the provided file and line number if present.
    """
    mess: str
    """The error message that occurred."""
    file: Optional[StringPath]
    """The filename of the file being parsed, or ``None`` if not known."""
    line_num: Optional[int]
    """The line where the error occurred, or ``None`` if not applicable."""

    def __init__(
        self,
        message: str,
        file: Optional[StringPath] = None,
        line: Optional[int] = None,
    ) -> None:
        super().__init__()
        self.mess = message
        self.file = file
        self.line_num = line

    def __repr__(self) -> str:
        return f'{type(self).__name__}({self.mess!r}, {self.file!r}, {self.line_num!r})'

    # This is mutable.
    __hash__ = None  # type: ignore[assignment]

    def __eq__(self, other: object) -> bool:
        if isinstance(other, TokenSyntaxError):
            return (
                self.mess == other.mess and
                self.file == other.file and
                self.line_num == other.line_num
            )
        return NotImplemented

    def __str__(self) -> str:
        """Generate the complete error message.

        This includes the line number and file, if available.
        """
        return format_exc_fileinfo(self.mess, self.file, self.line_num)


class Token(Enum):
    """A token type produced by the tokenizer."""
    EOF = 0  #: Produced indefinitely after the end of the file is reached.
    STRING = 1  #: Quoted or unquoted text.

    BRACE_OPEN = 6  #: A ``{`` character.
    BRACE_CLOSE = 7  #: A ``}`` character.

    PROP_FLAG = 11  #: A ``[$flag]`` conditional. The value excludes the brackets.


_OPERATOR_VALS = {
    Token.EOF: '',
    Token.BRACE_OPEN: '{',
    Token.BRACE_CLOSE: '}',
}

ESCAPES = {
    'n': '\n',
    't': '\t',
    'r': '\r',
    '"': '"',
    '\\': '\\',
}
ESCAPES_INV = {char: f'\\{sym}' for sym, char in ESCAPES.items()}
ESCAPE_RE = re.compile('|'.join(map(re.escape, ESCAPES_INV)))

#: These end a bare string, and are then reparsed as the next token.
BARE_TERMINATORS = frozenset('"{}')


class BaseTokenizer(abc.ABC):
    """Provides an interface for processing text into tokens.

    It then provides tools for using those to parse data. This is an :external:py:class:`abc.ABC`,
    a subclass must be used to provide a source for the tokens.
    """
    error_type: Type[TokenSyntaxError]
    """The exception class to produce if an error occurs. This must be a subtype of
    :py:class:`TokenSyntaxError`, since it is passed the line number and filename in addition to
    the error message.
    """
    filename: Optional[str]
    """The filename that is being parsed. This is passed along to the error class."""
    line_num: int
    """The line number the last token started on."""
    chars_read: int
    """The number of characters consumed from the source so far."""

    #: If set, this token will be returned next.
    _pushback: List[Tuple[Token, str]]

    def __init__(
        self,
        filename: Optional[StringPath],
        error: Type[TokenSyntaxError],
    ) -> None:
        if filename is not None:
            self.filename = _conv_path(filename)
            if isinstance(self.filename, bytes):
                # Only used for display, so strip the b'' off the repr.
                self.filename = repr(self.filename)[2:-1]
        else:
            self.filename = None

        if error is None:
            self.error_type = TokenSyntaxError
        else:
            if not issubclass(error, TokenSyntaxError):
                raise TypeError(f'Invalid error instance "{type(error).__name__}"!')
            self.error_type = error

        self._pushback = []
        self.line_num = 1
        self.chars_read = 0

    @overload
    def error(self, __message: Token) -> TokenSyntaxError: ...

    @overload
    def error(self, __message: Token, __value: str) -> TokenSyntaxError: ...

    @overload
    def error(self, __message: str, *args: object) -> TokenSyntaxError: ...

    def error(self, message: Union[str, Token], *args: object) -> TokenSyntaxError:
        """Produce a syntax error exception, for the caller to raise.

        The message can be a :py:class:`Token` with the associated string value to produce a
        wrong token error, or a string which will be ``{}``-formatted with the positional args
        if they are present.
        """
        if isinstance(message, Token):
            if len(args) > 1:
                raise TypeError(f'Token {message.name} passed with multiple values: {args}')
            tok_val = '' if len(args) == 0 else args[0]

            if message is Token.PROP_FLAG:
                message = f'Unexpected conditional [{tok_val}]!'
            elif message is Token.STRING:
                message = f'Unexpected string = "{tok_val}"!'
            elif message is Token.EOF:
                message = 'File ended unexpectedly!'
            else:
                message = f'Unexpected "{_OPERATOR_VALS[message]}" character!'
        elif args:
            message = message.format(*args)
        return self.error_type(
            message,
            self.filename,
            self.line_num,
        )

    def __reduce__(self) -> NoReturn:
        """Disallow pickling Tokenizers.

        The source files usually are not pickleable.
        """
        raise TypeError('Cannot pickle Tokenizers!')

    @abc.abstractmethod
    def _get_token(self) -> Tuple[Token, str]:
        """Compute the next token, must be implemented by subclasses."""
        raise NotImplementedError

    def __call__(self) -> Tuple[Token, str]:
        """Compute and fetch the next token."""
        if self._pushback:
            return self._pushback.pop()
        return self._get_token()

    def __iter__(self) -> Self:
        """Tokenizers are their own iterator."""
        return self

    def __next__(self) -> Tuple[Token, str]:
        """Iterate to produce a token, stopping at EOF."""
        tok_and_val = self()
        if tok_and_val[0] is Token.EOF:
            raise StopIteration
        return tok_and_val

    def push_back(self, tok: Token, value: Optional[str] = None) -> None:
        """Return a token, so it will be reproduced when called again.

        The value is required for :py:const:`Token.STRING` and :py:const:`~Token.PROP_FLAG`,
        but ignored for other token types.
        """
        if not isinstance(tok, Token):
            raise ValueError(repr(tok) + ' is not a Token!')

        try:
            value = _OPERATOR_VALS[tok]
        except KeyError:
            if value is None:
                raise ValueError(f'Value required for {tok.name!r}!') from None

        self._pushback.append((tok, value))

    def peek(self) -> Tuple[Token, str]:
        """Peek at the next token, without removing it from the stream."""
        tok_and_val = self()
        self._pushback.append(tok_and_val)
        return tok_and_val


class Tokenizer(BaseTokenizer):
    """Processes KeyValues text into groups of tokens.

    This groups strings, recognises braces and ``[$flag]`` conditionals, and removes comments.
    """
    _chunk_iter: Iterator[str]
    _cur_chunk: str
    _char_index: int
    # The line of the character most recently read, as opposed to line_num which is where the
    # current token began.
    _cur_line: int

    def __init__(
        self,
        data: Union[str, Iterable[str]],
        filename: Optional[StringPath] = None,
        error: Type[TokenSyntaxError] = TokenSyntaxError,
    ) -> None:
        # If a file-like object, automatically use the configured name.
        if filename is None and hasattr(data, 'name'):
            filename = data.name  # pyright: ignore

        super().__init__(filename, error)

        # Catch passing direct bytes far in advance.
        if isinstance(data, (bytes, bytearray)):
            raise TypeError(
                'Cannot parse binary data! Decode to the desired encoding, '
                'or wrap in io.TextIOWrapper() to decode gradually.'
            )

        # A literal string is kept as a single chunk, with an empty iterator behind it.
        if isinstance(data, str):
            self._cur_chunk = data
            self._chunk_iter = iter(())
        else:
            self._cur_chunk = ''
            self._chunk_iter = iter(data)
        self._char_index = -1
        self._cur_line = 1

    def __repr__(self) -> str:
        return f'<{type(self).__name__} for {self.filename!r}, line {self.line_num}>'

    def _next_char(self) -> Optional[str]:
        """Return the next character, or None if no more characters are there."""
        self._char_index += 1
        try:
            char = self._cur_chunk[self._char_index]
        except IndexError:
            # Retrieve a chunk from the iterable, skipping empty ones.
            try:
                for chunk in self._chunk_iter:
                    if isinstance(chunk, (bytes, bytearray)):
                        raise ValueError('Cannot parse binary data!')
                    if not isinstance(chunk, str):
                        raise ValueError('Data was not a string!')
                    if chunk:
                        self._cur_chunk = chunk
                        self._char_index = 0
                        char = chunk[0]
                        break
                else:
                    # Keep the index parked past the end.
                    self._char_index = len(self._cur_chunk)
                    return None
            except UnicodeDecodeError as exc:
                raise self.error('Could not decode file!') from exc
        self.chars_read += 1
        if char == '\n':
            self._cur_line += 1
        return char

    def _unread_char(self) -> None:
        """Step back one character, so it is produced again by the next read.

        Only the character most recently returned by :py:meth:`_next_char()` can be unread.
        """
        if self._cur_chunk[self._char_index] == '\n':
            self._cur_line -= 1
        self._char_index -= 1
        self.chars_read -= 1

    def _get_token(self) -> Tuple[Token, str]:
        """Return the next token, value pair."""
        while True:
            next_char = self._next_char()
            if next_char is None:
                self.line_num = self._cur_line
                return Token.EOF, ''
            if next_char.isspace():
                continue

            self.line_num = self._cur_line
            if next_char == '{':
                return Token.BRACE_OPEN, '{'
            elif next_char == '}':
                return Token.BRACE_CLOSE, '}'
            elif next_char == '"':
                return self._handle_string()
            elif next_char == '/':
                comment_next = self._next_char()
                if comment_next == '/':
                    self._skip_line_comment()
                    continue
                elif comment_next == '*':
                    self._skip_block_comment()
                    continue
                elif comment_next is not None:
                    # A lone slash is just the start of a bare string.
                    self._unread_char()
            return self._handle_bare(next_char)

    def _skip_line_comment(self) -> None:
        """Discard a // comment. The two slashes have been read already."""
        while True:
            next_char = self._next_char()
            if next_char == '\n' or next_char is None:
                return

    def _skip_block_comment(self) -> None:
        """Discard a /* */ comment. The opening characters have been read already."""
        comment_start = self._cur_line
        while True:
            next_char = self._next_char()
            if next_char == '*':
                next_char = self._next_char()
                if next_char == '/':
                    return
                elif next_char is not None:
                    # Reparse this, so "**/" ends the comment.
                    self._unread_char()
                    continue
            if next_char is None:
                self.line_num = self._cur_line
                raise self.error(
                    'Unclosed /* comment (starting on line {})!',
                    comment_start,
                )

    def _handle_string(self) -> Tuple[Token, str]:
        """Handle a quoted string definition. The last character was a quote."""
        value_chars: List[str] = []
        while True:
            next_char = self._next_char()
            if next_char == '"':
                return Token.STRING, ''.join(value_chars)
            elif next_char == '\\':
                escape = self._next_char()
                if escape is None:
                    raise self.error('Unterminated string!')
                try:
                    next_char = ESCAPES[escape]
                except KeyError:
                    next_char = '\\' + escape
            elif next_char is None:
                raise self.error('Unterminated string!')
            value_chars.append(next_char)

    def _handle_bare(self, first: str) -> Tuple[Token, str]:
        """Handle an unquoted string, or a [$flag]. The first character is passed in."""
        value_chars = [first]
        while True:
            next_char = self._next_char()
            if next_char is None or next_char.isspace():
                # The end of the file finishes the string, like whitespace.
                break
            elif next_char in BARE_TERMINATORS:
                # Produce this character as the next token.
                self._unread_char()
                break
            value_chars.append(next_char)
        value = ''.join(value_chars)
        if value[:2] == '[$' and value[-1] == ']':
            return Token.PROP_FLAG, value[1:-1]
        return Token.STRING, value


def escape_text(text: str) -> str:
    r"""Escape special characters and backslashes, so tokenising reproduces them."""
    return ESCAPE_RE.sub(lambda match: ESCAPES_INV[match.group()], text)
