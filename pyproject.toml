[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bkpack"
version = "1.0.0"
description = "Pack directory trees into a single backup file, with Huffman compression, AES encryption and a scheduler for timed re-backups."
requires-python = ">=3.10"
dependencies = [
    "cryptography",
]
keywords = ["backup", "archive", "restore", "huffman", "aes", "scheduler"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Archiving :: Backup",
    "Topic :: System :: Archiving :: Compression",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["bkpack"]

[tool.pytest.ini_options]
addopts = "-ra"
