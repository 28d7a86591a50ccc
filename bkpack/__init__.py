"""Pack file trees into backup files and restore them; Huffman compression, AES encryption and a task scheduler."""

__version__ = "1.0.0"