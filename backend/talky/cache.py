import logging
import threading
import time
from typing import Callable, Optional

from pydantic import ValidationError

from .backends import ContentBackend
from .errors import NotFound, Unavailable
from .models import Document, decode_document, integrity_problems, merge_documents

logger = logging.getLogger("talky.cache")


class DocumentCache:
    """
    Last loaded (or locally written) document plus the time it was fetched.

    - get() serves the cached document while it is younger than the
      freshness window, otherwise reloads from the backend
    - serves stale on a failed reload; a cold start with nothing stored
      synthesizes an empty document
    - never reloads while writes are held, a reload would bring back the
      pre-write state
    - every document handed out is a deep copy
    """

    def __init__(self, backend: ContentBackend, freshness: float = 3.0,
                 clock: Callable[[], float] = time.monotonic,
                 lock: Optional[threading.RLock] = None):
        self.backend = backend
        self.freshness = freshness
        self._clock = clock
        self.lock = lock or threading.RLock()
        self._doc: Optional[Document] = None
        self._fetched_at: Optional[float] = None
        self._held = 0

    @property
    def fetched_at(self) -> Optional[float]:
        return self._fetched_at

    @property
    def version(self) -> Optional[str]:
        with self.lock:
            return self._doc.version if self._doc is not None else None

    def _is_fresh(self) -> bool:
        if self._doc is None:
            return False
        if self._held:
            return True
        return self._clock() - self._fetched_at < self.freshness

    def _reload(self) -> Document:
        try:
            content, version = self.backend.read()
            doc = decode_document(content, version)
        except NotFound:
            logger.info("no document stored yet, starting from an empty one")
            doc = Document()
        except (Unavailable, ValidationError) as e:
            if self._doc is not None:
                logger.warning("reload failed, serving cached document: %s", e)
                # next retry after a full freshness window
                self._fetched_at = self._clock()
                return self._doc
            raise Unavailable(f"document store unavailable: {e}")

        for problem in integrity_problems(doc):
            logger.warning("document integrity: %s", problem)
        self._doc = doc
        self._fetched_at = self._clock()
        return doc

    def peek(self) -> Document:
        """The cached document itself, refreshed if stale. Caller must hold the lock."""
        if self._is_fresh():
            return self._doc
        return self._reload()

    def get(self) -> Document:
        with self.lock:
            return self.peek().deep_copy()

    def replace(self, doc: Document) -> None:
        with self.lock:
            self._doc = doc.deep_copy()
            if self._fetched_at is None:
                self._fetched_at = self._clock()

    def hold(self) -> None:
        with self.lock:
            self._held += 1

    def release(self) -> None:
        with self.lock:
            self._held = max(0, self._held - 1)

    def acknowledge(self, version: Optional[str]) -> None:
        """A write from this process landed; the backend is now at `version`."""
        with self.lock:
            if self._doc is not None:
                self._doc.version = version

    def absorb(self, written: Document, merged: Document) -> None:
        """Fold remote changes picked up by a merged write into the cached document."""
        with self.lock:
            if self._doc is None:
                return
            version = self._doc.version
            self._doc = merge_documents(written, self._doc, merged)
            self._doc.version = version
