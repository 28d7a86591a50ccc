"""Whole-stream compression with Huffman coding."""

from __future__ import annotations

from typing import BinaryIO

from .huffman import HuffmanCoder


def compress_stream(src: BinaryIO, dest: BinaryIO) -> int:
    """Compress all of src into dest; return the number of encoded bits."""
    coder = HuffmanCoder()
    coder.count_freq(src)
    coder.build_tree()
    coder.build_codes()
    coder.dump_freq(dest)
    src.seek(0)
    return coder.compress(src, dest)


def decompress_stream(src: BinaryIO, dest: BinaryIO) -> int:
    """Decompress src written by :func:`compress_stream`; return bytes written."""
    coder = HuffmanCoder()
    coder.recover_freq(src)
    coder.build_tree()
    coder.build_codes()
    return coder.decompress(src, dest)