"""Reformat a KeyValues file into the canonical layout.

The input may be UTF-8 or UTF-16, detected from the byte order mark. The result is written in
the same encoding, with the same byte order mark. Comments are removed, and pairs with
conditionals other than [$WIN32] are discarded.
"""
from typing import List, Optional
import argparse
import codecs
import sys

import attrs

from vdfkit.keyvalues import KeyValError, Keyvalues
from vdfkit.logger import get_logger, init_logging


__all__ = ['SourceEncoding', 'main']
LOGGER = get_logger(__name__, alias='<format>')


@attrs.frozen
class SourceEncoding:
    """The encoding of a file, as determined by its byte order mark."""
    codec: str
    bom: bytes = b''

    @classmethod
    def detect(cls, data: bytes) -> 'SourceEncoding':
        """Check the start of the data for a byte order mark. Without one, UTF-8 is assumed."""
        if data.startswith(codecs.BOM_UTF16_BE):
            return cls('utf-16-be', codecs.BOM_UTF16_BE)
        elif data.startswith(codecs.BOM_UTF16_LE):
            return cls('utf-16-le', codecs.BOM_UTF16_LE)
        elif data.startswith(codecs.BOM_UTF8):
            return cls('utf-8', codecs.BOM_UTF8)
        else:
            return cls('utf-8')

    def decode(self, data: bytes) -> str:
        """Decode the file, skipping the byte order mark."""
        return data[len(self.bom):].decode(self.codec)

    def encode(self, text: str) -> bytes:
        """Encode text to write out, prefixed by the same byte order mark."""
        return self.bom + text.encode(self.codec)


def reformat(data: bytes, filename: Optional[str] = None) -> bytes:
    """Parse the raw file data, and produce the reformatted version.

    :raises UnicodeDecodeError: If the data is not valid in the detected encoding.
    :raises KeyValError: If the text could not be parsed.
    """
    encoding = SourceEncoding.detect(data)
    LOGGER.debug('Reading {} as {}', filename or '<stdin>', encoding.codec)
    kv = Keyvalues.parse(encoding.decode(data), filename)
    return encoding.encode(kv.serialise())


def main(argv: Optional[List[str]] = None) -> int:
    """Run the formatter, returning the exit code."""
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "input",
        nargs='?',
        default='-',
        help="The file to reformat. If omitted or '-', standard input is read.",
    )
    parser.add_argument(
        "-o", "--output",
        default='-',
        help="The file to write to. If omitted or '-', standard output is used.",
    )
    parser.add_argument(
        "--log",
        metavar='FILE',
        default=None,
        help="Also write a detailed log to this file.",
    )
    result = parser.parse_args(argv)
    init_logging(result.log)

    filename: Optional[str]
    try:
        if result.input == '-':
            filename = None
            data = sys.stdin.buffer.read()
        else:
            filename = result.input
            with open(filename, 'rb') as f:
                data = f.read()
    except OSError as exc:
        LOGGER.error('Could not read "{}": {}', result.input, exc)
        return 1

    try:
        output = reformat(data, filename)
    except UnicodeDecodeError as exc:
        LOGGER.error('Could not decode "{}": {}', filename or '<stdin>', exc)
        return 1
    except KeyValError as exc:
        LOGGER.error('Could not parse "{}":\n{}', filename or '<stdin>', exc)
        return 1

    try:
        if result.output == '-':
            sys.stdout.flush()
            sys.stdout.buffer.write(output)
            sys.stdout.buffer.flush()
        else:
            with open(result.output, 'wb') as f:
                f.write(output)
    except OSError as exc:
        LOGGER.error('Could not write "{}": {}', result.output, exc)
        return 1
    LOGGER.debug('Wrote {} bytes to {}', len(output), result.output)
    return 0


if __name__ == '__main__':
    sys.exit(main(sys.argv[1:]))
