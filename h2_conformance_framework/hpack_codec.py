"""
Header block encoding for one session
"""

from typing import List, Tuple

from hpack import Encoder
from hpack.exceptions import HPACKError

from .errors import CodecError

HeaderFields = List[Tuple[str, str]]


class HeaderCodec:
    """HPACK encoder whose dynamic table belongs to a single connection"""

    def __init__(self, huffman: bool = True):
        self.encoder = Encoder()
        self.huffman = huffman

    def encode(self, fields: HeaderFields) -> bytes:
        """
        Encode an ordered list of header fields into a header block

        Field names are sent exactly as given; no lowercasing is applied.

        Args:
            fields: (name, value) pairs in wire order

        Returns:
            HPACK-encoded header block

        Raises:
            CodecError: If the encoder rejects the fields
        """
        try:
            return self.encoder.encode(list(fields), huffman=self.huffman)
        except (HPACKError, TypeError, ValueError) as e:
            raise CodecError(f"cannot encode header block: {e}") from e

    def __repr__(self):
        return f"HeaderCodec(table_size={self.encoder.header_table_size})"
