"""File reading utilities for JSON-lines records."""

import json
from pathlib import Path
from typing import Any, Dict, Iterator, List, Union

from .logger import get_app_logger


def reverse_readline(
    file_path: Union[str, Path],
    buf_size: int = 8192
) -> Iterator[str]:
    """
    Read a file line by line from the end.

    Only buf_size bytes are held at a time, so tailing a long message
    log does not load the whole file.

    Args:
        file_path: Path to the file
        buf_size: Size of the read chunks

    Yields:
        Non-empty lines, newest first
    """
    file_path = Path(file_path)

    if not file_path.exists():
        return

    with open(file_path, 'rb') as f:
        f.seek(0, 2)
        position = f.tell()
        buffer = b''

        while position > 0:
            read_size = min(buf_size, position)
            position -= read_size
            f.seek(position)
            buffer = f.read(read_size) + buffer

            lines = buffer.split(b'\n')
            # the first piece may be the tail of an earlier line
            buffer = lines[0]

            for line in reversed(lines[1:]):
                if line.strip():
                    yield line.decode('utf-8', errors='replace')

        if buffer.strip():
            yield buffer.decode('utf-8', errors='replace')


def read_last_records(
    file_path: Union[str, Path],
    n: int,
    buf_size: int = 8192
) -> List[Dict[str, Any]]:
    """
    Decode the last N JSON records of a JSON-lines file.

    Undecodable lines are skipped.

    Args:
        file_path: Path to the file
        n: Maximum number of records
        buf_size: Size of the read chunks

    Returns:
        Records in chronological order (oldest first)
    """
    records: List[Dict[str, Any]] = []
    for line in reverse_readline(file_path, buf_size):
        try:
            records.append(json.loads(line))
        except json.JSONDecodeError:
            get_app_logger().warning(f"Skipping corrupt record in {file_path}")
            continue
        if len(records) >= n:
            break

    records.reverse()
    return records
