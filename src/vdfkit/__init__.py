"""Reads and writes Valve's KeyValues text format.

The main entry point is :py:class:`vdfkit.keyvalues.Keyvalues`, also exported here.
"""
from typing import TYPE_CHECKING, Union
from typing_extensions import Literal, TypeAlias
import os as _os


__version__: str
if not TYPE_CHECKING:
    from importlib import metadata as _metadata
    try:
        __version__ = _metadata.version('vdfkit')
    except _metadata.PackageNotFoundError:
        __version__ = '<unknown>'
    del _metadata

__all__ = [
    '__version__',
    'KeyValError', 'Keyvalues', 'ComplexKeyvalueError', 'AttachedKeyvalueError',
    'bool_as_int', 'StringPath',

    # Submodules:
    'keyvalues', 'logger', 'tokenizer',  # pyright: ignore
]

StringPath: TypeAlias = Union[str, '_os.PathLike[str]']


def bool_as_int(val: object) -> Literal['0', '1']:
    """Convert a True/False value into '1' or '0'.

    This is how KeyValues files store booleans.
    """
    if val:
        return '1'
    else:
        return '0'


# Import these, so people can reference 'vdfkit.Keyvalues' instead of 'vdfkit.keyvalues.Keyvalues'.
# Should be done after other code, so everything's initialised.
# isort: off
from vdfkit.keyvalues import (
    AttachedKeyvalueError, ComplexKeyvalueError, KeyValError, Keyvalues,
)
