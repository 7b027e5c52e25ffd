"""Reads and writes Valve's KeyValues files.

These files follow the following general format::

    "Name"
    {
        "Name" "Value" // Comment
        "Name"
        {
            "Name" "Value"
        }
        "Name" "Value" [$WIN32]
        "Other" "console-only" [$X360] /* This pair is discarded. */
        "Name" "multi-line values
    are supported like this.
    They end with a quote."
    }

Names are compared case-insensitively, and may repeat. Call ``Keyvalues.parse(file)`` to parse
a file into a new tree, or ``kv.read_from(file)`` to add the contents to an existing keyvalue.

This will perform a round-trip file read::

    >>> with open('filename.txt', 'r') as read_file:  # doctest: +SKIP
    ...     kv = Keyvalues.parse(read_file, 'filename.txt')
    ... with open('filename_2.txt', 'w') as write_file:
    ...     kv.serialise(write_file)

Each keyvalue either has children (a "block"), or is a "leaf" with a single string value. The
children are kept in a linked list, so appending and removing is cheap, and a keyvalue can be
detached from inside a loop over its parent::

    >>> kv = Keyvalues.parse('"Top" { "child1" "1" "child2" "0" "CHILD1" "2" }')
    >>> top = kv.sub_key('top')
    >>> top.sub_key('Child1')
    Keyvalues('child1', '1')
    >>> top['child3', 'default']
    'default'
    >>> top.int('child2', 5)
    0
    >>> for child in top:
    ...     if child.name == 'child1':
    ...         child.remove()
    >>> top
    Keyvalues('Top', [Keyvalues('child2', '0')])

Only the ``[$WIN32]`` conditional is understood. Every other ``[$FLAG]`` after a pair removes it.
"""
from typing import Iterable, Iterator, List, Optional, Protocol, Tuple, TypeVar, Union
from typing_extensions import overload
import builtins  # Keyvalues.int etc shadows these.
import io
import itertools
import math
import os
import sys

from vdfkit import StringPath, bool_as_int
from vdfkit.logger import get_logger
from vdfkit.tokenizer import (
    BaseTokenizer, Token, Tokenizer, TokenSyntaxError, escape_text, format_exc_fileinfo,
)


__all__ = [
    'KeyValError', 'ComplexKeyvalueError', 'AttachedKeyvalueError', 'Keyvalues',
    'escape_text',
]

LOGGER = get_logger(__name__)
T = TypeVar('T')

# The only conditional which is kept. It actually means "PC", not just Windows.
FLAG_KEEP = '$WIN32'

_INT64_MIN = -(2 ** 63)
_INT64_MAX = 2 ** 63 - 1
_UINT64_MAX = 2 ** 64 - 1


class KeyValError(TokenSyntaxError):
    """An error that occurred when parsing a Valve KeyValues file.

    See the base class :py:class:`TokenSyntaxError` for available attributes.
    """


class ComplexKeyvalueError(ValueError):
    """Raised when a method requiring a leaf keyvalue is run on a keyvalue with children.

    Blocks do not have a value, so reading or changing it is a usage error.
    """
    block: 'Keyvalues'  #: The keyvalue being used.
    operation: str  #: Name of the operation being performed.
    line_num: Optional[int]  #: The line number where the block is defined, if known.

    def __init__(self, block: 'Keyvalues', operation: str) -> None:
        super().__init__(operation)
        self.block = block
        self.operation = operation
        self.line_num = block.line_num

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.block!r}, {self.operation!r})'

    def __str__(self) -> str:
        return format_exc_fileinfo(
            f'Cannot {self.operation} the block "{self.block.real_name}", since it has children!',
            None, self.line_num,
        )


class AttachedKeyvalueError(ValueError):
    """Raised when appending a keyvalue which is already part of another tree.

    Call :py:meth:`Keyvalues.remove()` first to detach it.
    """
    child: 'Keyvalues'  #: The keyvalue which was being appended.

    def __init__(self, child: 'Keyvalues') -> None:
        super().__init__(child)
        self.child = child

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.child!r})'

    def __str__(self) -> str:
        return f'Cannot append "{self.child.real_name}", it is already in a tree!'


class _SupportsWrite(Protocol):
    """We accept any file object with a ``write()`` method."""
    def write(self, data: str, /) -> object: ...


def _parse_unsigned(text: str) -> builtins.int:
    """Parse digits with an optional base prefix.

    ``0x``, ``0o`` and ``0b`` select the base, otherwise a leading zero means octal.
    """
    # int() permits whitespace, signs and non-ASCII digits, which we don't.
    if not text.isascii() or not text[:1].isdigit() or text[-1].isspace():
        raise ValueError(f'Invalid integer "{text}"')
    if text[:2].casefold() in ('0x', '0o', '0b'):
        return int(text, 0)
    elif text[0] == '0':
        return int(text, 8)
    else:
        return int(text, 10)


def _parse_int(text: str) -> builtins.int:
    """Parse a signed 64-bit integer."""
    if text[:1] == '-':
        result = -_parse_unsigned(text[1:])
    elif text[:1] == '+':
        result = _parse_unsigned(text[1:])
    else:
        result = _parse_unsigned(text)
    if not _INT64_MIN <= result <= _INT64_MAX:
        raise ValueError(f'{text} does not fit in 64 bits')
    return result


def _parse_uint64(text: str) -> builtins.int:
    """Parse an unsigned 64-bit integer."""
    result = _parse_unsigned(text)
    if result > _UINT64_MAX:
        raise ValueError(f'{text} does not fit in 64 bits')
    return result


def _parse_float(text: str) -> builtins.float:
    """Parse a float, without the surrounding whitespace float() allows.

    Values too large for a double are rejected, unless the text is literally infinity.
    """
    if not text.isascii() or not text or text[0].isspace() or text[-1].isspace():
        raise ValueError(f'Invalid float "{text}"')
    result = float(text)
    if math.isinf(result) and 'inf' not in text.casefold():
        raise ValueError(f'{text} is out of range')
    return result


class Keyvalues:
    """Represents Valve's KeyValues 1 file format.

    Each keyvalue has a name, and either a string value (a leaf) or an ordered list of children
    (a block). A keyvalue is a block whenever it has at least one child.
    Root keyvalues have no name, and serialise each child at the topmost indent level. These are
    produced by :py:meth:`Keyvalues.parse()` and :py:meth:`Keyvalues.root()`.
    """
    # Helps decrease memory footprint with lots of keyvalues.
    __slots__ = (
        '_folded_name', '_real_name', '_value', 'line_num',
        '_parent', '_first_child', '_last_child', '_next', '_prev',
    )
    _folded_name: Optional[str]
    _real_name: Optional[str]
    _value: str
    #: If parsed from a file, the line number this keyvalue starts on.
    line_num: Optional[int]
    _parent: Optional['Keyvalues']
    _first_child: Optional['Keyvalues']
    _last_child: Optional['Keyvalues']
    _next: Optional['Keyvalues']
    _prev: Optional['Keyvalues']

    def __init__(self, name: str, value: str = '', line_num: Optional[int] = None) -> None:
        """Create a new, unattached leaf keyvalue."""
        if not isinstance(value, str):
            raise TypeError(f'Keyvalue values must be strings, not {type(value).__name__}!')
        self._real_name = sys.intern(name)
        self._folded_name = sys.intern(name.casefold())
        self._value = value
        self.line_num = line_num
        self._parent = self._first_child = self._last_child = None
        self._next = self._prev = None

    @classmethod
    def root(cls, *children: 'Keyvalues') -> 'Keyvalues':
        """Return a new 'root' keyvalue. These have no name, and are returned from :py:meth:`parse()`.

        When serialised, their children are directly written with no indents, allowing multiple
        keyvalue blocks to exist on the topmost level.
        """
        kv = cls.__new__(cls)
        kv._folded_name = kv._real_name = None
        kv._value = ''
        kv.line_num = None
        kv._parent = kv._first_child = kv._last_child = None
        kv._next = kv._prev = None
        for child in children:
            kv.append(child)
        return kv

    @property
    def name(self) -> str:
        """Produces a :py:meth:`str.casefold`-ed version of the keyvalue's name.

        Assigning to this automatically updates both this and :py:attr:`real_name`.
        Root keyvalues have a blank name.
        """
        return self._folded_name or ''

    @name.setter
    def name(self, new_name: str) -> None:
        # Intern names to help reduce duplicates in memory.
        self._real_name = sys.intern(new_name)
        self._folded_name = sys.intern(new_name.casefold())

    @property
    def real_name(self) -> str:
        """The original, case-sensitive version of this name.

        Assigning to this automatically updates both this and :py:attr:`name`.
        """
        return self._real_name or ''

    @real_name.setter
    def real_name(self, new_name: str) -> None:
        self.name = new_name

    @property
    def parent(self) -> Optional['Keyvalues']:
        """The keyvalue this is a child of, or None if it is not in a tree."""
        return self._parent

    @property
    def value(self) -> str:
        """The value of a leaf keyvalue.

        :raises ComplexKeyvalueError: If this keyvalue has children.
        """
        if self._first_child is not None:
            raise ComplexKeyvalueError(self, 'read the value of')
        return self._value

    @value.setter
    def value(self, value: str) -> None:
        if self._first_child is not None:
            raise ComplexKeyvalueError(self, 'set the value of')
        if not isinstance(value, str):
            raise TypeError(f'Keyvalue values must be strings, not {type(value).__name__}!')
        self._value = value

    def has_children(self) -> builtins.bool:
        """Does this have child keyvalues?"""
        return self._first_child is not None

    def is_root(self) -> builtins.bool:
        """Check if the keyvalue is a root, returned from :py:meth:`parse()` or :py:meth:`root()`."""
        return self._real_name is None

    # Typed conversions of our own value. These never raise, producing the default instead
    # if this is a block or the text doesn't parse.

    @overload
    def as_str(self) -> str: ...
    @overload
    def as_str(self, def_: T) -> Union[str, T]: ...

    def as_str(self, def_: Union[str, T] = '') -> Union[str, T]:
        """Return the value, or the default if this is a block."""
        if self._first_child is not None:
            return def_
        return self._value

    @overload
    def as_int(self) -> builtins.int: ...
    @overload
    def as_int(self, def_: T) -> Union[builtins.int, T]: ...

    def as_int(self, def_: Union[builtins.int, T] = 0) -> Union[builtins.int, T]:
        """Return the value as a signed 64-bit integer.

        ``0x``, ``0o`` and ``0b`` prefixes are understood, and a leading ``0`` means octal.
        If this is a block, or the value is invalid or out of range, the default is returned.
        """
        if self._first_child is not None:
            return def_
        try:
            return _parse_int(self._value)
        except ValueError:
            return def_

    @overload
    def as_uint64(self) -> builtins.int: ...
    @overload
    def as_uint64(self, def_: T) -> Union[builtins.int, T]: ...

    def as_uint64(self, def_: Union[builtins.int, T] = 0) -> Union[builtins.int, T]:
        """Return the value as an unsigned 64-bit integer, or the default if not possible.

        This reads the ``0x``-prefixed text produced by :py:meth:`set_uint64()`.
        """
        if self._first_child is not None:
            return def_
        try:
            return _parse_uint64(self._value)
        except ValueError:
            return def_

    @overload
    def as_float(self) -> builtins.float: ...
    @overload
    def as_float(self, def_: T) -> Union[builtins.float, T]: ...

    def as_float(self, def_: Union[builtins.float, T] = 0.0) -> Union[builtins.float, T]:
        """Return the value as a float, or the default if this is a block or invalid."""
        if self._first_child is not None:
            return def_
        try:
            return _parse_float(self._value)
        except ValueError:
            return def_

    def as_bool(self, def_: builtins.bool = False) -> builtins.bool:
        """Return the value as a boolean.

        The value is false only if it is the integer zero. If the value is missing or not an
        integer the default is used, so ``"yes"`` with a false default reads as false.
        """
        return self.as_int(1 if def_ else 0) != 0

    # Setters. Unlike the conversions above, using these on a block is an error.

    def set_str(self, value: str) -> None:
        """Set the value. This is the same as assigning to :py:attr:`value`."""
        self.value = value

    def set_int(self, value: builtins.int) -> None:
        """Set the value to an integer, written in base 10."""
        if self._first_child is not None:
            raise ComplexKeyvalueError(self, 'set the value of')
        if not isinstance(value, int):
            raise TypeError(f'Expected an integer, not {type(value).__name__}!')
        if not _INT64_MIN <= value <= _INT64_MAX:
            raise ValueError(f'{value} does not fit in a signed 64-bit integer!')
        self._value = str(int(value))

    def set_uint64(self, value: builtins.int) -> None:
        """Set the value to an unsigned integer, written as ``0x``-prefixed hexadecimal."""
        if self._first_child is not None:
            raise ComplexKeyvalueError(self, 'set the value of')
        if not isinstance(value, int):
            raise TypeError(f'Expected an integer, not {type(value).__name__}!')
        if not 0 <= value <= _UINT64_MAX:
            raise ValueError(f'{value} does not fit in an unsigned 64-bit integer!')
        self._value = f'0x{value:x}'

    def set_float(self, value: builtins.float) -> None:
        """Set the value to a float."""
        if self._first_child is not None:
            raise ComplexKeyvalueError(self, 'set the value of')
        if not isinstance(value, (int, float)):
            raise TypeError(f'Expected a number, not {type(value).__name__}!')
        self._value = repr(float(value))

    def set_bool(self, value: builtins.bool) -> None:
        """Set the value to ``"1"`` or ``"0"``."""
        if self._first_child is not None:
            raise ComplexKeyvalueError(self, 'set the value of')
        self._value = bool_as_int(value)

    # Tree structure.

    def sub_key(self, name: str) -> Optional['Keyvalues']:
        """Return the first child with this name (compared case-insensitively), or None."""
        folded = name.casefold()
        child = self._first_child
        while child is not None:
            if child._folded_name == folded:
                return child
            child = child._next
        return None

    def new_sub_key(self, name: str) -> 'Keyvalues':
        """Create a blank keyvalue with this name, append it as our last child, and return it."""
        child = Keyvalues(name)
        self.append(child)
        return child

    def append(self, child: Optional['Keyvalues']) -> None:
        """Append an unattached keyvalue as our last child.

        Passing None does nothing.

        :raises AttachedKeyvalueError: If the child already belongs to a tree.
        """
        if child is None:
            return
        if not isinstance(child, Keyvalues):
            raise TypeError(f'{type(child).__name__} is not a Keyvalue!')
        if child._parent is not None or child._next is not None or child._prev is not None:
            raise AttachedKeyvalueError(child)
        if child._real_name is None:
            raise ValueError('Root keyvalues cannot be added to another tree!')
        ancestor: Optional[Keyvalues] = self
        while ancestor is not None:
            if ancestor is child:
                raise ValueError(f'Cannot append "{child.real_name}" to its own descendant!')
            ancestor = ancestor._parent
        self._link(child)

    def _link(self, child: 'Keyvalues') -> None:
        """Attach a free keyvalue after our last child, without checking it."""
        child._parent = self
        child._prev = last = self._last_child
        if last is None:
            self._first_child = child
        else:
            last._next = child
        self._last_child = child

    def remove(self) -> None:
        """Detach this keyvalue from its parent. Does nothing if it has no parent."""
        parent = self._parent
        if self._next is not None:
            self._next._prev = self._prev
        elif parent is not None:
            parent._last_child = self._prev
        if self._prev is not None:
            self._prev._next = self._next
        elif parent is not None:
            parent._first_child = self._next
        self._parent = self._next = self._prev = None

    def __iter__(self) -> Iterator['Keyvalues']:
        """Iterate through our children.

        Children may be removed during the loop, including the one currently being visited.
        Children appended during the loop are visited too.
        """
        # Those still attached always come before any unvisited children.
        visited: List[Keyvalues] = []
        child = self._first_child
        while child is not None:
            yield child
            if child._parent is self:
                visited.append(child)
                child = child._next
                continue
            # Detached, so continue after the last visited child which remains.
            while visited and visited[-1]._parent is not self:
                visited.pop()
            child = visited[-1]._next if visited else self._first_child

    def __len__(self) -> builtins.int:
        """Count the number of children."""
        count = 0
        child = self._first_child
        while child is not None:
            count += 1
            child = child._next
        return count

    def __bool__(self) -> builtins.bool:
        """Keyvalues are true if we have children, or have a value."""
        return self._first_child is not None or self._value != ''

    def __contains__(self, key: str) -> builtins.bool:
        """Check to see if a name is present in the children."""
        return self.sub_key(key) is not None

    def iter_tree(self, blocks: builtins.bool = False) -> Iterator['Keyvalues']:
        """Iterate through all keyvalues in this tree, in the order they serialise in.

        If blocks is True, keyvalue blocks will be produced as well as leaves.
        """
        # One iterator per block we're inside.
        stack = [iter(self)]
        while stack:
            for kv in stack[-1]:
                if kv._first_child is not None:
                    if blocks:
                        yield kv
                    stack.append(iter(kv))
                    break
                yield kv
            else:
                stack.pop()

    def _copy_node(self) -> 'Keyvalues':
        """Copy just this keyvalue, without children."""
        result = Keyvalues.__new__(Keyvalues)
        result._real_name = self._real_name
        result._folded_name = self._folded_name
        result._value = self._value
        result.line_num = self.line_num
        result._parent = result._first_child = result._last_child = None
        result._next = result._prev = None
        return result

    def copy(self) -> 'Keyvalues':
        """Deep copy this keyvalue tree. The copy is not attached to any parent."""
        result = self._copy_node()
        todo = [(self, result)]
        while todo:
            orig, dest = todo.pop()
            for child in orig:
                child_copy = child._copy_node()
                dest._link(child_copy)
                todo.append((child, child_copy))
        return result

    __hash__ = None  # type: ignore[assignment]

    def __eq__(self, other: object) -> builtins.bool:
        """Two keyvalues are equal if their names, values and children all match."""
        if not isinstance(other, Keyvalues):
            return NotImplemented
        todo = [(self, other)]
        while todo:
            mine, theirs = todo.pop()
            if mine._real_name != theirs._real_name:
                return False
            if mine._first_child is None or theirs._first_child is None:
                if mine._first_child is not theirs._first_child or mine._value != theirs._value:
                    return False
                continue
            for mine_child, their_child in itertools.zip_longest(mine, theirs):
                if mine_child is None or their_child is None:
                    return False
                todo.append((mine_child, their_child))
        return True

    def __repr__(self) -> str:
        parts: List[str] = []
        # Either a keyvalue, or text to add directly.
        todo: List[Union[Keyvalues, builtins.str]] = [self]
        while todo:
            kv = todo.pop()
            if isinstance(kv, builtins.str):
                parts.append(kv)
                continue
            if kv._real_name is None:
                parts.append('Keyvalues.root(')
                todo.append(')')
            elif kv._first_child is None:
                parts.append(f'Keyvalues({kv._real_name!r}, {kv._value!r})')
                continue
            else:
                parts.append(f'Keyvalues({kv._real_name!r}, [')
                todo.append('])')
            children = list(kv)
            for i in reversed(range(len(children))):
                todo.append(children[i])
                if i:
                    todo.append(', ')
        return ''.join(parts)

    @overload
    def __getitem__(self, index: str) -> str: ...
    @overload
    def __getitem__(self, index: Tuple[str, T]) -> Union[str, T]: ...

    def __getitem__(self, index: Union[str, Tuple[str, T]]) -> Union[str, T]:
        """Find the value of the first child with this name.

        Pass a 2-tuple like ``kv[key, default]`` to return a default if the child is missing or
        is a block. Otherwise, :external:py:class:`IndexError` is raised for missing keys.
        """
        if isinstance(index, tuple):
            key, default = index
            child = self.sub_key(key)
            if child is None:
                return default
            return child.as_str(default)
        elif isinstance(index, str):
            child = self.sub_key(index)
            if child is None:
                raise IndexError(f'No key {index}!')
            return child.value
        else:
            raise TypeError(f'Unknown key type: {index!r}')

    # Conversions for children which may be missing.
    # These shadow the builtins, so builtins.x is used below here.

    @overload
    def int(self, key: str) -> builtins.int: ...
    @overload
    def int(self, key: str, def_: T) -> Union[builtins.int, T]: ...

    def int(self, key: str, def_: Union[builtins.int, T] = 0) -> Union[builtins.int, T]:
        """Return the integer value of the first child with this name.

        If no child is present, it is a block, or it does not parse, the default is returned.
        """
        child = self.sub_key(key)
        if child is None:
            return def_
        return child.as_int(def_)

    @overload
    def uint64(self, key: str) -> builtins.int: ...
    @overload
    def uint64(self, key: str, def_: T) -> Union[builtins.int, T]: ...

    def uint64(self, key: str, def_: Union[builtins.int, T] = 0) -> Union[builtins.int, T]:
        """Return the unsigned 64-bit value of the first child with this name, or the default."""
        child = self.sub_key(key)
        if child is None:
            return def_
        return child.as_uint64(def_)

    @overload
    def float(self, key: str) -> builtins.float: ...
    @overload
    def float(self, key: str, def_: T) -> Union[builtins.float, T]: ...

    def float(self, key: str, def_: Union[builtins.float, T] = 0.0) -> Union[builtins.float, T]:
        """Return the float value of the first child with this name, or the default."""
        child = self.sub_key(key)
        if child is None:
            return def_
        return child.as_float(def_)

    def bool(self, key: str, def_: builtins.bool = False) -> builtins.bool:
        """Return the boolean value of the first child with this name.

        As with :py:meth:`as_bool()`, only integers are understood.
        """
        child = self.sub_key(key)
        if child is None:
            return def_
        return child.as_bool(def_)

    # Parsing.

    @staticmethod
    def parse(
        file_contents: Union[builtins.str, BaseTokenizer, Iterable[builtins.str]],
        filename: Optional[StringPath] = None,
    ) -> 'Keyvalues':
        """Returns a Keyvalues tree parsed from given text.

        :param file_contents: should be an iterable of strings or a single string. Alternatively,
          file_contents may be an already created tokenizer.
        :param filename: If set this should be the source of the text for debug purposes. If not
          supplied, ``file_contents.name`` will be used if present.
        """
        root = Keyvalues.root()
        root.read_from(file_contents, filename)
        return root

    def read_from(
        self,
        file_contents: Union[builtins.str, BaseTokenizer, Iterable[builtins.str]],
        filename: Optional[StringPath] = None,
    ) -> builtins.int:
        """Parse text, appending the keyvalues found as children of this one.

        The arguments are the same as :py:meth:`parse()`.
        This returns the number of characters consumed.

        :raises KeyValError: If the text is not valid. Children parsed before the error remain.
        """
        if isinstance(file_contents, BaseTokenizer):
            tokenizer = file_contents
            if filename is not None:
                tokenizer.filename = os.fspath(filename)
            tokenizer.error_type = KeyValError
        else:
            tokenizer = Tokenizer(file_contents, filename, KeyValError)
        start_pos = tokenizer.chars_read

        # Grab a reference to the token values, so we avoid global lookups.
        STRING = Token.STRING
        PROP_FLAG = Token.PROP_FLAG
        BRACE_OPEN = Token.BRACE_OPEN
        BRACE_CLOSE = Token.BRACE_CLOSE
        EOF = Token.EOF

        # The blocks we are currently inside (outside to inside).
        # The last one is where new keys go.
        open_blocks: List[Keyvalues] = [self]
        # The most recently finished pair. Conditionals apply to this.
        last_complete: Optional[Keyvalues] = None

        while True:
            # First, we want a key.
            token_type, token_value = tokenizer()
            if token_type is EOF:
                break
            elif token_type is BRACE_OPEN:
                raise tokenizer.error('Unexpected "{": expected a key or a closing brace!')
            elif token_type is BRACE_CLOSE:
                if len(open_blocks) == 1:
                    raise tokenizer.error(
                        'Too many closing brackets.\n\n'
                        'An extra closing bracket was added which would '
                        'close the outermost level.',
                    )
                last_complete = open_blocks.pop()
                continue
            elif token_type is PROP_FLAG:
                if last_complete is None:
                    raise tokenizer.error(
                        'Unexpected conditional [{}]: expected a key!\n\n'
                        'Conditionals must follow a "name" "value" pair or a block.',
                        token_value,
                    )
                if token_value != FLAG_KEEP:
                    LOGGER.debug(
                        'Discarding "{}" on line {} due to [{}]',
                        last_complete.real_name, last_complete.line_num, token_value,
                    )
                    last_complete.remove()
                    last_complete = None
                continue

            keyvalue = Keyvalues(token_value, '', tokenizer.line_num)
            open_blocks[-1].append(keyvalue)

            # Then either a value, or a block.
            token_type, token_value = tokenizer()
            if token_type is STRING:
                keyvalue._value = token_value
                last_complete = keyvalue
            elif token_type is BRACE_OPEN:
                open_blocks.append(keyvalue)
                last_complete = None
            elif token_type is EOF:
                raise tokenizer.error(
                    'Key "{}" has no value, but hit EOF!',
                    keyvalue.real_name,
                )
            else:
                raise tokenizer.error(
                    'Unexpected "{}": expected "{{" or a value!',
                    '}' if token_type is BRACE_CLOSE else f'[{token_value}]',
                )

        # All the blocks should have been closed, leaving only ourselves.
        if len(open_blocks) > 1:
            raise KeyValError(
                'End of text reached with remaining open sections.\n\n'
                "File ended with at least one block that didn't "
                'have an ending "}".\n'
                'Open keyvalues: \n' + '\n'.join([
                    f'- "{kv.real_name}" on line {kv.line_num}'
                    for kv in open_blocks[1:]
                ]),
                tokenizer.filename,
                line=None,
            )
        return tokenizer.chars_read - start_pos

    # Serialisation.

    def _iter_text(self) -> Iterator[builtins.str]:
        """Produce the text for this keyvalue and all its descendants.

        An explicit stack is used, so deep trees don't hit the recursion limit.
        """
        # Either a keyvalue to write at a depth, or a closing brace line.
        todo: List[Tuple[Union[Keyvalues, builtins.str], builtins.int]] = [(self, 0)]
        while todo:
            kv, depth = todo.pop()
            if isinstance(kv, builtins.str):
                yield kv
                continue
            indent = '\t' * depth
            name = escape_text(kv._real_name or '')
            if kv._first_child is None:
                yield f'{indent}"{name}" "{escape_text(kv._value)}"\n'
            else:
                yield f'{indent}"{name}"\n{indent}{{\n'
                todo.append((f'{indent}}}\n', depth))
                todo.extend([(child, depth + 1) for child in reversed(list(kv))])

    def write_to(self, file: _SupportsWrite) -> builtins.int:
        """Write all our children to the file, returning the number of characters written.

        This writes the children at the outermost indent level, without a surrounding block
        for this keyvalue itself.
        """
        written = 0
        for child in self:
            for text in child._iter_text():
                file.write(text)
                written += len(text)
        return written

    @overload
    def serialise(self, file: _SupportsWrite, /) -> None: ...
    @overload
    def serialise(self, /) -> builtins.str: ...

    def serialise(self, file: Optional[_SupportsWrite] = None, /) -> Optional[builtins.str]:
        """Serialise the keyvalues data to a file, or return as a string.

        Root keyvalues write just their children, other keyvalues write themselves.
        Comments and conditionals are not kept, so they are not written.

        :param file: The file to write to. If omitted, the data is returned instead.
        """
        buffer: Optional[io.StringIO] = None
        if file is None:
            file = buffer = io.StringIO()

        if self._real_name is None:
            self.write_to(file)
        else:
            for text in self._iter_text():
                file.write(text)

        if buffer is not None:
            return buffer.getvalue()
        return None

    serialize = serialise  # Alias

    def __str__(self) -> builtins.str:
        return self.serialise()
