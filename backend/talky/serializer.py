import logging
import queue
import threading
import time
from typing import Callable, Optional

from .backends import ContentBackend
from .cache import DocumentCache
from .errors import Conflict, NotFound, Unavailable
from .models import Document, decode_document, encode_document, merge_documents, same_content

logger = logging.getLogger("talky.serializer")

POLICIES = ("drop", "merge")


class WriteJob:
    def __init__(self, base: Document, document: Document, version: Optional[str], label: str = ""):
        self.base = base
        self.document = document
        self.version = version
        self.label = label or "Update talky data"


class WriteSerializer:
    """
    FIFO of whole-document writes drained by a single background thread.

    Each job is written with the version captured when it was enqueued. When
    that version belongs to this process's own chain of writes it is replaced
    by the newest version we produced, so back-to-back mutations do not
    conflict with each other.

    On conflict the `drop` policy discards the job and adopts the backend's
    current version (the cache still holds the intended state and the next
    write carries it forward). The `merge` policy re-reads the backend and
    replays the job on top of it, retrying up to `max_attempts` times.
    Unavailable backends are retried with exponential backoff.
    """

    def __init__(self, backend: ContentBackend, cache: DocumentCache, policy: str = "drop",
                 max_attempts: int = 3, backoff: float = 0.5,
                 sleep: Callable[[float], None] = time.sleep):
        if policy not in POLICIES:
            raise ValueError(f"unknown conflict policy {policy!r}, expected one of {POLICIES}")
        self.backend = backend
        self.cache = cache
        self.policy = policy
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff
        self._sleep = sleep
        self._queue: "queue.Queue[Optional[WriteJob]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._start_lock = threading.Lock()
        self._idle = threading.Condition()
        self._pending = 0
        self._lineage = set()
        # versions captured by jobs still in the queue, with their counts
        self._waiting = {}
        self._head: Optional[str] = None
        self._head_doc: Optional[Document] = None
        self.written = 0
        self.dropped = 0
        self.abandoned = 0

    @property
    def pending(self) -> int:
        with self._idle:
            return self._pending

    def enqueue(self, job: WriteJob) -> None:
        with self._idle:
            self._pending += 1
            self._waiting[job.version] = self._waiting.get(job.version, 0) + 1
        self._queue.put(job)
        self._ensure_worker()

    def _ensure_worker(self) -> None:
        with self._start_lock:
            if self._thread is None or not self._thread.is_alive():
                self._thread = threading.Thread(target=self._run, name="talky-writer", daemon=True)
                self._thread.start()

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Block until every queued job has been handled. False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout)

    def stop(self, timeout: Optional[float] = None) -> None:
        self.flush(timeout)
        with self._start_lock:
            thread = self._thread
            self._thread = None
        if thread is not None and thread.is_alive():
            self._queue.put(None)
            thread.join(timeout)

    def _run(self) -> None:
        while True:
            job = self._queue.get()
            if job is None:
                return
            try:
                self._process(job)
            except Exception:
                # the writer thread must outlive any single bad job
                logger.exception("write job %r failed unexpectedly", job.label)
            finally:
                self.cache.release()
                with self._idle:
                    self._pending -= 1
                    self._forget(job.version)
                    self._idle.notify_all()

    def _forget(self, version: Optional[str]) -> None:
        # only the head and versions still waiting in the queue can chain
        left = self._waiting.pop(version, 1) - 1
        if left:
            self._waiting[version] = left
        self._lineage.intersection_update(set(self._waiting) | {self._head})

    def _read_remote(self) -> Document:
        try:
            content, version = self.backend.read()
        except NotFound:
            return Document()
        return decode_document(content, version)

    def _process(self, job: WriteJob) -> None:
        chained = self._head_doc is not None and job.version in self._lineage
        expected = self._head if chained else job.version
        base = self._head_doc if chained else job.base
        document = job.document
        if self.policy == "merge" and chained and not same_content(job.base, self._head_doc):
            # an earlier job was merged with remote changes; replay this one on top
            document = merge_documents(job.base, job.document, self._head_doc)

        attempt = 0
        while True:
            attempt += 1
            try:
                new_version = self.backend.write(encode_document(document), expected, job.label)
            except Conflict as e:
                if self.policy == "drop":
                    self._adopt_remote(job, expected, e)
                    return
                if attempt >= self.max_attempts:
                    self.abandoned += 1
                    logger.error("giving up on %r after %d conflicting attempts", job.label, attempt)
                    return
                logger.warning("conflict writing %r, merging with backend: %s", job.label, e)
                try:
                    theirs = self._read_remote()
                except Unavailable as re:
                    logger.warning("re-read for merge failed: %s", re)
                    self._sleep(self.backoff * 2 ** (attempt - 1))
                    continue
                document = merge_documents(base, document, theirs)
                base = theirs
                expected = theirs.version
                continue
            except Unavailable as e:
                if attempt >= self.max_attempts:
                    self.abandoned += 1
                    logger.error("abandoning %r after %d attempts: %s", job.label, attempt, e)
                    return
                delay = self.backoff * 2 ** (attempt - 1)
                logger.warning("backend unavailable writing %r, retrying in %.2fs: %s",
                               job.label, delay, e)
                self._sleep(delay)
                continue
            break

        self._lineage.update((job.version, expected, new_version))
        self._head = new_version
        self._head_doc = document
        self.written += 1
        self.cache.acknowledge(new_version)
        if document is not job.document and not same_content(document, job.document):
            self.cache.absorb(job.document, document)
        logger.debug("wrote %r as version %s", job.label, new_version)

    def _adopt_remote(self, job: WriteJob, expected: Optional[str], error: Conflict) -> None:
        self.dropped += 1
        logger.warning("dropping write %r after conflict: %s", job.label, error)
        try:
            theirs = self._read_remote()
        except Unavailable as e:
            logger.warning("could not learn current backend version: %s", e)
            return
        self._lineage.update((job.version, expected, theirs.version))
        self._head = theirs.version
        self._head_doc = theirs
        self.cache.acknowledge(theirs.version)
