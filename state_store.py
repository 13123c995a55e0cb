"""
state_store.py — persisted probe state between invocations

Each probe run is a fresh short-lived process, so anything that has to
survive between runs (exceedance start times, usage history) goes through
a StateStore. A store hands out typed records by key:

    store = DirectoryStateStore('/var/tmp/disk_health_check.d', UsageSeries)
    series = store.load('/var')
    ...
    store.save('/var', series)

A missing, unreadable or malformed backing file is never an error: load()
returns the record type's empty value instead. Writes replace the whole
record via a temp file and an atomic rename.

No locking is done. Two instances of the same probe are assumed never to
run at the same time (the scheduler interval is longer than a run).
"""

import hashlib
import json
import logging
import os
import re
from typing import Any, Dict, Optional

log = logging.getLogger(__name__)

_PLAIN_PATH = re.compile(r'(/[A-Za-z0-9-][A-Za-z0-9.-]*)+')

def sanitize_key(key: str) -> str:
    """
    Turn a resource identifier (e.g. a mount point) into a safe file name
    or perfdata label. Distinct keys get distinct names.

    '/' is 'root' and plain absolute paths keep a readable form
    ('/var/log' -> 'var_log'). Anything else, including paths holding '_'
    or unsafe characters, gets a short hash of the raw key appended
    ('/var_log' -> 'var_log-<8 hex digits>').
    """
    if key == '/':
        return 'root'
    s = re.sub(r'[^A-Za-z0-9_.-]+', '_', key).strip('_')
    if _PLAIN_PATH.fullmatch(key) and s != 'root':
        return s
    digest = hashlib.sha1(key.encode('utf-8', 'surrogateescape')).hexdigest()[:8]
    return f"{s.strip('.') or 'root'}-{digest}"

class StateStore:
    """
    Base store: load/save typed records keyed by resource identity.

    record_type must provide empty(), from_json(data) and to_json().
    Subclasses implement _read(key) returning raw text (or None) and
    _write(key, text).
    """

    def __init__(self, record_type):
        self.record_type = record_type

    def load(self, key: str):
        try:
            raw = self._read(key)
        except (OSError, UnicodeDecodeError) as e:
            log.debug("state for %r unreadable (%s), starting fresh", key, e)
            return self.record_type.empty()
        if raw is None:
            log.debug("no state for %r, starting fresh", key)
            return self.record_type.empty()
        try:
            return self.record_type.from_json(json.loads(raw))
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            log.debug("state for %r is corrupt (%s), starting fresh", key, e)
            return self.record_type.empty()

    def save(self, key: str, record):
        self._write(key, json.dumps(record.to_json(), separators=(',', ':')))

    def _read(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def _write(self, key: str, content: str):
        raise NotImplementedError

def _read_file(path: str) -> Optional[str]:
    try:
        with open(path, 'r') as f:
            return f.read()
    except FileNotFoundError:
        return None

def _write_file_atomic(path: str, content: str):
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    tmp = path + '.tmp'
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        os.write(fd, content.encode())
        os.fsync(fd)
    finally:
        os.close(fd)
    os.replace(tmp, path)

class FileStateStore(StateStore):
    """One file holding the single record of one check; the key is informational."""

    def __init__(self, path: str, record_type):
        super().__init__(record_type)
        self.path = path

    def _read(self, key: str) -> Optional[str]:
        return _read_file(self.path)

    def _write(self, key: str, content: str):
        _write_file_atomic(self.path, content)

class DirectoryStateStore(StateStore):
    """One JSON file per key inside a directory."""

    def __init__(self, directory: str, record_type):
        super().__init__(record_type)
        self.directory = directory

    def path_for(self, key: str) -> str:
        return os.path.join(self.directory, sanitize_key(key) + '.json')

    def _read(self, key: str) -> Optional[str]:
        return _read_file(self.path_for(key))

    def _write(self, key: str, content: str):
        _write_file_atomic(self.path_for(key), content)

class MemoryStateStore(StateStore):
    """Dict-backed store, keeps the serialized form so round trips are real."""

    def __init__(self, record_type, initial: Optional[Dict[str, Any]] = None):
        super().__init__(record_type)
        self.data: Dict[str, str] = {}
        for key, raw in (initial or {}).items():
            self.data[key] = raw if isinstance(raw, str) else json.dumps(raw)

    def _read(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def _write(self, key: str, content: str):
        self.data[key] = content
