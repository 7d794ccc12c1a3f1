from __future__ import annotations

import contextlib
import dataclasses
import threading
from typing import Dict, Iterator, Optional

from tokengate.context import CallContext, ensure_context
from tokengate.storage.common import normalize_email
from tokengate.storage.errors import AlreadyExists, NotFound
from tokengate.storage.models import Identity


class ReadWriteLock:
    """Many concurrent readers or one writer.

    Writers are preferred: once a writer is waiting, new readers queue behind
    it so a steady stream of lookups cannot starve registration.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextlib.contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextlib.contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class MemoryIdentityStore:
    """Process-local identity store for tests and development.

    Both indices are only ever touched under ``_lock``; ``create`` does its
    collision check and both inserts inside one write section so concurrent
    registrations of the same email produce exactly one winner.
    """

    def __init__(self) -> None:
        self._by_id: Dict[str, Identity] = {}
        self._by_email: Dict[str, Identity] = {}
        self._lock = ReadWriteLock()

    def create(self, identity: Identity, ctx: Optional[CallContext] = None) -> None:
        ensure_context(ctx).check("create")
        key = normalize_email(identity.email)
        if identity.email != key:
            identity = dataclasses.replace(identity, email=key)
        with self._lock.write_locked():
            if key in self._by_email:
                raise AlreadyExists("email already exists", {"field": "email"})
            if identity.id in self._by_id:
                raise AlreadyExists("identifier already exists", {"field": "id"})
            self._by_email[key] = identity
            self._by_id[identity.id] = identity

    def find_by_secondary_key(
        self, email: str, ctx: Optional[CallContext] = None
    ) -> Identity:
        ensure_context(ctx).check("find_by_secondary_key")
        key = normalize_email(email)
        with self._lock.read_locked():
            identity = self._by_email.get(key)
        if identity is None:
            raise NotFound("identity not found", {"field": "email"})
        return identity

    def find_by_identifier(
        self, identity_id: str, ctx: Optional[CallContext] = None
    ) -> Identity:
        ensure_context(ctx).check("find_by_identifier")
        with self._lock.read_locked():
            identity = self._by_id.get(identity_id)
        if identity is None:
            raise NotFound("identity not found", {"field": "id"})
        return identity

    def ping(self, ctx: Optional[CallContext] = None) -> None:
        ensure_context(ctx).check("ping")

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._by_id)


__all__ = ["MemoryIdentityStore", "ReadWriteLock"]
