# -*- coding: utf-8 -*-
"""
Locks that keep two syncs from writing the same secrets.

ProcessLock is an advisory file lock shared between processes on one host,
the OS drops it when the holding process dies. TargetLocks serialises work on
a single (namespace, name) pair inside one process.
"""

import fcntl
import logging
import os
import threading
from datetime import datetime, timezone

from vaultwarden_k8s_sync.exceptions import SyncAlreadyRunning


class ProcessLock:
    def __init__(self, path):
        self._path = path
        self._fd = None
        self._mutex = threading.Lock()

    @property
    def path(self):
        return self._path

    @property
    def held(self):
        return self._fd is not None

    def try_acquire(self):
        """Take the lock without waiting, False when someone else has it."""
        return self.acquire(blocking=False)

    def acquire(self, blocking=True):
        with self._mutex:
            if self._fd is not None:
                return False
            fd = os.open(self._path, os.O_RDWR | os.O_CREAT, 0o644)
            flags = fcntl.LOCK_EX if blocking else fcntl.LOCK_EX | fcntl.LOCK_NB
            try:
                fcntl.flock(fd, flags)
            except BlockingIOError:
                os.close(fd)
                logging.getLogger(__name__).info(f"Lock {self._path} is held by another process")
                return False
            except OSError:
                os.close(fd)
                raise
            os.ftruncate(fd, 0)
            os.write(fd, f"{os.getpid()}\n{datetime.now(timezone.utc).isoformat()}\n".encode("utf-8"))
            os.fsync(fd)
            self._fd = fd
            logging.getLogger(__name__).debug(f"Acquired lock {self._path}")
            return True

    def release(self):
        with self._mutex:
            if self._fd is None:
                return
            fd, self._fd = self._fd, None
            try:
                os.ftruncate(fd, 0)
                fcntl.flock(fd, fcntl.LOCK_UN)
            finally:
                os.close(fd)
            logging.getLogger(__name__).debug(f"Released lock {self._path}")

    def __enter__(self):
        if not self.try_acquire():
            raise SyncAlreadyRunning(self._path)
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.release()
        return False


class TargetLocks:
    """One threading.Lock per (namespace, name)."""

    def __init__(self):
        self._locks = {}
        self._lock = threading.Lock()

    def for_target(self, namespace, name):
        key = (namespace, name)
        with self._lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def __len__(self):
        with self._lock:
            return len(self._locks)
