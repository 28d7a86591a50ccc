"""Huffman coding of byte streams with a stored frequency table."""

from __future__ import annotations

import heapq
import itertools
import os
import struct
from collections import Counter
from dataclasses import dataclass
from functools import partial
from typing import BinaryIO, Mapping

from .errors import BackupError, ErrorCode

_FILE_LEN = struct.Struct("<Q")
_COUNT = struct.Struct("<H")
_ENTRY = struct.Struct("<BQ")
_CHUNK = 1024


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise BackupError(ErrorCode.EEOF, "file eof")
    return data


@dataclass(eq=False)
class HuffmanNode:
    """A weighted node of a Huffman tree; leaves carry a byte value."""

    byte: int
    freq: int
    left: HuffmanNode | None = None
    right: HuffmanNode | None = None

    @property
    def is_leaf(self) -> bool:
        return self.left is None and self.right is None


class HuffmanCoder:
    """Builds a Huffman code from byte frequencies and encodes or decodes streams.

    The compressed layout is: the number of encoded bits (u64), the number of
    table entries (u16), the entries as (byte u8, frequency u64), then the
    code bits packed most significant bit first and zero padded to a byte.
    """

    def __init__(self, freq: Mapping[int, int] | None = None) -> None:
        self.freq: dict[int, int] = dict(freq or {})
        self.root: HuffmanNode | None = None
        self.codes: dict[int, tuple[int, int]] = {}
        self.file_len = 0
        self._file_len_pos = 0

    def count_freq(self, stream: BinaryIO) -> None:
        """Count the byte frequencies of the rest of a stream."""
        counts: Counter[int] = Counter()
        for chunk in iter(partial(stream.read, _CHUNK), b""):
            counts.update(chunk)
        for byte in sorted(counts):
            self.freq[byte] = self.freq.get(byte, 0) + counts[byte]

    def build_tree(self) -> HuffmanNode:
        """Build the tree from the frequency table and return its root."""
        if not self.freq:
            raise BackupError(ErrorCode.ERROR, "没有可编码的数据")
        order = itertools.count()
        heap = [
            (freq, next(order), HuffmanNode(byte, freq))
            for byte, freq in self.freq.items()
        ]
        heapq.heapify(heap)
        if len(heap) == 1:
            only = heap[0][2]
            heap = [(0, next(order), HuffmanNode(0, 0, only, None))]
        while len(heap) > 1:
            left_freq, _, left = heapq.heappop(heap)
            right_freq, _, right = heapq.heappop(heap)
            merged = HuffmanNode(0, left_freq + right_freq, left, right)
            heapq.heappush(heap, (merged.freq, next(order), merged))
        self.root = heap[0][2]
        return self.root

    def build_codes(self) -> dict[int, tuple[int, int]]:
        """Return the code table: byte -> (bit length, code value)."""
        root = self.root if self.root is not None else self.build_tree()
        self.codes = {}
        if root.is_leaf:
            self.codes[root.byte] = (1, 0)
            return self.codes
        stack: list[tuple[HuffmanNode | None, int, int]] = [(root, 0, 0)]
        while stack:
            node, length, value = stack.pop()
            if node is None:
                continue
            if node.is_leaf:
                self.codes[node.byte] = (length, value)
                continue
            stack.append((node.right, length + 1, (value << 1) | 1))
            stack.append((node.left, length + 1, value << 1))
        return self.codes

    def dump_freq(self, stream: BinaryIO) -> int:
        """Write the bit count and frequency table; return bytes written."""
        self._file_len_pos = stream.tell()
        stream.write(_FILE_LEN.pack(self.file_len))
        stream.write(_COUNT.pack(len(self.freq)))
        for byte, freq in self.freq.items():
            stream.write(_ENTRY.pack(byte, freq))
        return _FILE_LEN.size + _COUNT.size + len(self.freq) * _ENTRY.size

    def recover_freq(self, stream: BinaryIO) -> int:
        """Read the bit count and frequency table; return bytes read."""
        (self.file_len,) = _FILE_LEN.unpack(_read_exact(stream, _FILE_LEN.size))
        (count,) = _COUNT.unpack(_read_exact(stream, _COUNT.size))
        for _ in range(count):
            byte, freq = _ENTRY.unpack(_read_exact(stream, _ENTRY.size))
            self.freq[byte] = freq
        return _FILE_LEN.size + _COUNT.size + count * _ENTRY.size

    def compress(self, src: BinaryIO, dest: BinaryIO) -> int:
        """Encode src into dest and back-fill the bit count; return it."""
        codes = self.codes or self.build_codes()
        acc = 0
        nbits = 0
        total = 0
        for chunk in iter(partial(src.read, _CHUNK), b""):
            for byte in chunk:
                try:
                    length, value = codes[byte]
                except KeyError:
                    raise BackupError(
                        ErrorCode.ERROR, f"字节 {byte} 不在编码表中"
                    ) from None
                acc = (acc << length) | value
                nbits += length
                total += length
            if nbits >= 8:
                rem = nbits % 8
                dest.write((acc >> rem).to_bytes(nbits // 8, "big"))
                acc &= (1 << rem) - 1
                nbits = rem
        if nbits:
            dest.write((acc << (8 - nbits)).to_bytes(1, "big"))
        self.file_len = total
        dest.seek(self._file_len_pos)
        dest.write(_FILE_LEN.pack(self.file_len))
        dest.seek(0, os.SEEK_END)
        return total

    def decompress(self, src: BinaryIO, dest: BinaryIO) -> int:
        """Decode file_len bits from src into dest; return bytes written."""
        root = self.root if self.root is not None else self.build_tree()
        remaining_bits = self.file_len
        bytes_left = (self.file_len + 7) // 8
        node = root
        written = 0
        out = bytearray()
        while bytes_left > 0:
            chunk = src.read(min(_CHUNK, bytes_left))
            if not chunk:
                raise BackupError(ErrorCode.EEOF, "file eof")
            bytes_left -= len(chunk)
            for byte in chunk:
                for shift in range(7, -1, -1):
                    if remaining_bits == 0:
                        break
                    remaining_bits -= 1
                    node = node.right if (byte >> shift) & 1 else node.left
                    if node is None:
                        raise BackupError(ErrorCode.FORMAT_ERROR, "压缩数据格式错误")
                    if node.is_leaf:
                        out.append(node.byte)
                        node = root
            dest.write(out)
            written += len(out)
            out.clear()
        if node is not root:
            raise BackupError(ErrorCode.FORMAT_ERROR, "压缩数据不完整")
        return written