import json
import os
import threading

__all__ = ["append_jsonl_atomic", "read_jsonl"]

_LOCK = threading.Lock()


def append_jsonl_atomic(path: str, obj, ensure_ascii: bool = False) -> None:
    """
    Appends one JSON line. flush+fsync per line; the file is never rewritten,
    so appending stays O(1).
    """
    d = os.path.dirname(path) or "."
    os.makedirs(d, exist_ok=True)
    line = json.dumps(obj, ensure_ascii=ensure_ascii, default=str)
    with _LOCK:
        with open(path, "a", encoding="utf-8", newline="\n") as f:
            f.write(line + "\n")
            f.flush()
            os.fsync(f.fileno())


def read_jsonl(path: str):
    """Yields the decodable lines of a JSONL file; a torn last line is skipped."""
    if not os.path.exists(path):
        return
    with open(path, encoding="utf-8") as f:
        for ln in f:
            ln = ln.strip()
            if not ln:
                continue
            try:
                yield json.loads(ln)
            except ValueError:
                continue
