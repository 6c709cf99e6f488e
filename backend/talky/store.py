import logging
import threading
import time
from typing import Callable, Optional

from . import config
from .backends import ContentBackend, FileContentBackend, GitHubContentBackend
from .cache import DocumentCache
from .models import Document
from .serializer import WriteJob, WriteSerializer

logger = logging.getLogger("talky.store")


class Store:
    """The only way the application reads or changes the document.

    load() returns a private copy of the current document. mutate(fn) runs
    fn on a copy, makes the result visible to every later load() in this
    process right away, and queues the durable write without waiting for it.
    """

    def __init__(self, backend: ContentBackend, freshness: float = 3.0, policy: str = "drop",
                 max_attempts: int = 3, backoff: float = 0.5,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.backend = backend
        self._lock = threading.RLock()
        self.cache = DocumentCache(backend, freshness, clock=clock, lock=self._lock)
        self.serializer = WriteSerializer(backend, self.cache, policy=policy,
                                          max_attempts=max_attempts, backoff=backoff, sleep=sleep)

    def load(self) -> Document:
        return self.cache.get()

    def mutate(self, fn: Callable[[Document], Document], label: str = "") -> Document:
        # the lock spans read, fn and enqueue so concurrent mutations apply
        # in the same order in the cache and in the write queue
        with self._lock:
            base = self.cache.peek()
            nxt = fn(base.deep_copy())
            if not isinstance(nxt, Document):
                raise TypeError("mutation must return the complete document")
            nxt.version = base.version
            self.cache.replace(nxt)
            self.cache.hold()
            self.serializer.enqueue(WriteJob(base, nxt.deep_copy(), base.version, label))
        return nxt

    def apply(self, op, *args, label: str = "", **kwargs):
        """mutate() with an in-place helper from talky.ops; returns what the helper returns."""
        result = []

        def fn(doc: Document) -> Document:
            result.append(op(doc, *args, **kwargs))
            return doc

        self.mutate(fn, label=label or op.__name__.replace("_", " "))
        return result[0]

    def flush(self, timeout: Optional[float] = None) -> bool:
        return self.serializer.flush(timeout)

    def close(self, timeout: Optional[float] = 10.0) -> None:
        self.serializer.stop(timeout)


def build_backend() -> ContentBackend:
    if config.github_configured():
        logger.info("using GitHub backend %s/%s:%s (%s)", config.GITHUB_OWNER,
                    config.GITHUB_REPO, config.DATA_PATH, config.GITHUB_BRANCH)
        return GitHubContentBackend(config.GITHUB_TOKEN, config.GITHUB_OWNER, config.GITHUB_REPO,
                                    config.DATA_PATH, branch=config.GITHUB_BRANCH)
    logger.info("GitHub not configured, using local file %s", config.LOCAL_DATA_FILE)
    return FileContentBackend(config.LOCAL_DATA_FILE)


def build_store(backend: Optional[ContentBackend] = None) -> Store:
    return Store(
        backend or build_backend(),
        freshness=config.CACHE_TTL_SECONDS,
        policy=config.CONFLICT_POLICY,
        max_attempts=config.WRITE_MAX_ATTEMPTS,
        backoff=config.WRITE_BACKOFF_SECONDS,
    )
