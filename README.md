# bkpack

`bkpack` is a library that packs files and directory trees into a single
backup file and restores them again. A backup keeps what a plain copy loses:

- file type (regular files, directories, FIFOs, symbolic links),
- permissions, access and modification times, and (when running as root)
  owner and group,
- hard links, whose data is stored once and which are restored as links,
- regular files that packed symbolic links point to,
- a SHA-256 digest of every regular file.

Separate helpers compress a stream with a Huffman coder and encrypt a stream
with AES-256-CBC under a key derived from a password (PBKDF2-HMAC-SHA256,
10000 iterations).

The package works on POSIX systems and needs Python 3.10 or later.

## Installation

```
pip install .
```

## Packing and restoring

```python
from bkpack.file_tree import FileTree

tree = FileTree()
tree.pack_file_add("photos", "", recursively=True, is_partly=False)
tree.pack_file_add("notes.txt", "docs", recursively=True, is_partly=False)

with open("archive.bkp", "wb") as out:
    tree.full_dump(out)
```

The second argument of `pack_file_add` is the directory inside the backup
that the file is placed under; it must be a relative path, and intermediate
directories are created as needed. With `recursively=False` a directory is
added without its contents.

To restore, load the tree and recover a path inside it into a target
directory, which is created if missing. An empty pack path restores
everything:

```python
from bkpack.file_tree import FileTree

restored = FileTree()
with open("archive.bkp", "rb") as src:
    restored.load(src)
    restored.recover("docs/notes.txt", src, "restore")
```

`locate_node` returns the `FileNode` for a pack path (its `meta` is a
`FileMetadata`, its `children` a dict by name), or `None` if the backup has
no such entry, which can be used to list contents before restoring.

The record formats themselves are in `bkpack.file_meta`:
`BackupFileHeader` and `FileMetadata` each have `dump` and `load`, and
`FileMetadata.set_from_path` fills a record from a file on disk.

## Compression and encryption

```python
from bkpack.compress import compress_stream, decompress_stream
from bkpack.encrypt import encrypt_stream, decrypt_stream

with open("archive.bkp", "rb") as src, open("archive.huf", "wb") as dest:
    compress_stream(src, dest)

password = "password"
with open("archive.huf", "rb") as src, open("archive.enc", "wb") as dest:
    encrypt_stream(src, dest, password)
```

`compress_stream` reads its input twice and back-fills a length field, so
both streams must be seekable; an empty input cannot be compressed and raises
`BackupError`. The lower-level coder is `bkpack.huffman.HuffmanCoder`.

`decompress_stream` and `decrypt_stream` reverse the two steps. A wrong
password or damaged data is reported by `decrypt_stream` as a `BackupError`
with `PASSWORD_ERROR`.

`file_sha256` and `hash_to_hex` compute and display digests of the kind
stored with every regular file.

## File system helpers

`bkpack.filesys` holds the helpers the rest of the package uses, among them
`get_file_type`, `format_size`, `format_permission`, `format_time`,
`uid_to_name`, `gid_to_name` and `access`, which answers with an `ErrorCode`
(`OK`, `NOT_EXIST`, `NO_PERMISSION` or `ERROR`).

## Errors

Failures are raised as `bkpack.errors.BackupError`, which carries a numeric
`code` (an `ErrorCode` such as `NOT_EXIST`, `FORMAT_ERROR` or
`PASSWORD_ERROR`, or a system errno) and a `msg`.

## Configuration

`bkpack.config.Config` reads `config.json` from the current directory. It
must define the string values `task_path` (where scheduled tasks are stored)
and `temp_path`:

```json
{
    "task_path": "tasks.bin",
    "temp_path": "/tmp"
}
```

```python
from bkpack.config import Config

task_file = Config.get_instance().get("task_path")
```

Asking for a key that is not configured raises `BackupError`;
`Config.destroy_instance()` makes the next `get_instance()` read the file
again.

## Scheduled tasks

`bkpack.schedule.TaskScheduler` keeps a list of `BackupTask` entries, each to
be run every `interval` units of `TimeUnit` (seconds, minutes, hours, days,
weeks, months, years or milliseconds). The scheduler does not know how to
re-back up a file itself: it is given a `runner`, a function called on a
worker thread with each task that falls due.

```python
from bkpack.schedule import BackupTask, TaskScheduler, TimeUnit

def rebackup(task: BackupTask) -> None:
    ...  # re-pack task.backup_path

password = "password"
with TaskScheduler(rebackup, task_path="tasks.bin") as scheduler:
    scheduler.add_task(BackupTask("archive.bkp", 2, TimeUnit.DAY, True, password))
    scheduler.start()
    ...
```

Without `task_path` the configured `task_path` is used. Tasks are loaded from
that file when the scheduler is created and written back by `close()` (or on
leaving the `with` block). If the runner raises `BackupError` or `OSError`,
the task's `status` is set to the message and it is not run again.
`task_list()` returns copies of the current tasks, `delete_task()` cancels
the task for one backup file and `delete_all()` removes them all.

## What the package does not do

- There is no command-line program and no graphical interface; everything is
  used from Python.
- There is no single call that backs up a list of paths into a compressed,
  encrypted file or restores from one; the steps above (`FileTree`,
  `compress_stream`, `encrypt_stream` and their reverses) are combined by the
  caller.
- There is no check of a backup against the files on disk beyond the stored
  digests and metadata, which the caller may compare.
- The scheduler runs whatever `runner` it is given; it has no re-backup of
  its own.