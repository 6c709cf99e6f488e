import base64
import hashlib
import logging
import os
import tempfile
import threading
import time
from typing import List, Optional, Tuple
from urllib.parse import quote

import requests

from .errors import Conflict, NotFound, Unavailable

logger = logging.getLogger("talky.backends")


class ContentBackend:
    """One blob at a fixed path with compare-and-swap writes.

    read() returns (content, version). write() must be given the version that
    was read (None for a path that was never written) and returns the new one.
    """

    def read(self) -> Tuple[bytes, str]:
        raise NotImplementedError

    def write(self, content: bytes, expected_version: Optional[str], message: str = "") -> str:
        raise NotImplementedError


class MemoryContentBackend(ContentBackend):
    def __init__(self, content: Optional[bytes] = None, write_delay: float = 0.0):
        self._lock = threading.Lock()
        self._counter = 0
        self._content = None
        self._version = None
        self.write_delay = write_delay
        self.fail_reads = 0
        self.fail_writes = 0
        self.messages: List[str] = []
        if content is not None:
            self._store(content)

    def _store(self, content: bytes) -> str:
        self._counter += 1
        self._content = content
        self._version = f"v{self._counter}"
        return self._version

    @property
    def content(self) -> Optional[bytes]:
        with self._lock:
            return self._content

    @property
    def version(self) -> Optional[str]:
        with self._lock:
            return self._version

    @property
    def write_count(self) -> int:
        return len(self.messages)

    def bump(self, content: Optional[bytes] = None) -> str:
        """Simulate another writer replacing the blob behind our back."""
        with self._lock:
            return self._store(self._content if content is None else content)

    def read(self) -> Tuple[bytes, str]:
        with self._lock:
            if self.fail_reads:
                self.fail_reads -= 1
                raise Unavailable("memory backend read failure")
            if self._content is None:
                raise NotFound("no document stored yet")
            return self._content, self._version

    def write(self, content: bytes, expected_version: Optional[str], message: str = "") -> str:
        if self.write_delay:
            time.sleep(self.write_delay)
        with self._lock:
            if self.fail_writes:
                self.fail_writes -= 1
                raise Unavailable("memory backend write failure")
            if expected_version != self._version:
                raise Conflict(f"expected {expected_version}, backend has {self._version}")
            self.messages.append(message)
            return self._store(content)


class FileContentBackend(ContentBackend):
    """Local JSON file; the version is the sha256 of its bytes."""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    @staticmethod
    def _digest(content: bytes) -> str:
        return hashlib.sha256(content).hexdigest()

    def _current(self) -> Tuple[Optional[bytes], Optional[str]]:
        try:
            with open(self.path, "rb") as f:
                content = f.read()
        except FileNotFoundError:
            return None, None
        except OSError as e:
            raise Unavailable(f"cannot read {self.path}: {e}")
        return content, self._digest(content)

    def read(self) -> Tuple[bytes, str]:
        with self._lock:
            content, version = self._current()
        if content is None:
            raise NotFound(f"{self.path} does not exist")
        return content, version

    def write(self, content: bytes, expected_version: Optional[str], message: str = "") -> str:
        with self._lock:
            _, current = self._current()
            if expected_version != current:
                raise Conflict(f"{self.path} changed since version {expected_version}")
            directory = os.path.dirname(os.path.abspath(self.path))
            try:
                os.makedirs(directory, exist_ok=True)
                fd, tmp = tempfile.mkstemp(dir=directory, suffix=".tmp")
                with os.fdopen(fd, "wb") as f:
                    f.write(content)
                os.replace(tmp, self.path)
            except OSError as e:
                raise Unavailable(f"cannot write {self.path}: {e}")
            return self._digest(content)


GITHUB_API_BASE = "https://api.github.com"


class GitHubContentBackend(ContentBackend):
    """A file in a GitHub repository, through the REST "contents" API.

    The blob sha doubles as the version token: PUT with a stale sha fails
    with 409, which is exactly the compare-and-swap the store needs.
    """

    def __init__(self, token: str, owner: str, repo: str, path: str,
                 branch: str = "main", session: Optional[requests.Session] = None,
                 timeout: float = 10.0):
        self.owner = owner
        self.repo = repo
        self.path = path
        self.branch = branch
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "talky-server",
            "Authorization": f"Bearer {token}",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    @property
    def url(self) -> str:
        return f"{GITHUB_API_BASE}/repos/{self.owner}/{self.repo}/contents/{quote(self.path, safe='/')}"

    def _request(self, method: str, **kwargs) -> requests.Response:
        headers = dict(self.headers)
        headers.update(kwargs.pop("headers", {}))
        try:
            return self.session.request(method, self.url, headers=headers,
                                        timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise Unavailable(f"GitHub unreachable: {e}")

    @staticmethod
    def _fail(res: requests.Response) -> Unavailable:
        return Unavailable(f"GitHub API {res.status_code}: {res.text[:200]}")

    def read(self) -> Tuple[bytes, str]:
        res = self._request("GET", params={"ref": self.branch})
        if res.status_code == 404:
            raise NotFound(f"{self.path} not found on {self.branch}")
        if not res.ok:
            raise self._fail(res)
        body = res.json()
        sha = body["sha"]
        if body.get("encoding") == "base64" and body.get("content"):
            return base64.b64decode(body["content"]), sha
        # files over 1MB come back without inline content
        raw = self._request("GET", params={"ref": self.branch},
                            headers={"Accept": "application/vnd.github.raw+json"})
        if not raw.ok:
            raise self._fail(raw)
        return raw.content, sha

    def write(self, content: bytes, expected_version: Optional[str], message: str = "") -> str:
        body = {
            "message": message or "Update talky data",
            "content": base64.b64encode(content).decode("ascii"),
            "branch": self.branch,
        }
        if expected_version:
            body["sha"] = expected_version
        res = self._request("PUT", json=body)
        if res.status_code in (409, 422):
            raise Conflict(f"GitHub rejected sha {expected_version}: {res.text[:200]}")
        if not res.ok:
            raise self._fail(res)
        sha = res.json()["content"]["sha"]
        logger.debug("committed %s on %s as %s", self.path, self.branch, sha)
        return sha
