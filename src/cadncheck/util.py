# vim: set et ai ts=4 sts=4 sw=4:
import logging
import os
import time
import typing
from urllib.parse import urlsplit

import requests

from .errors import AcquisitionError, ProbeTimeout

LOG = logging.getLogger(__name__)

USER_AGENT = "check_ca_dn"


class Deadline:
    """Upper bound on the wall-clock time a run may take.

    Passed to every collaborator that blocks; each one asks for the
    time it has left instead of relying on a process-wide alarm.
    """

    def __init__(self, seconds: float, clock=time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self._end = clock() + seconds

    def remaining(self) -> float:
        left = self._end - self._clock()
        if left <= 0:
            raise ProbeTimeout(f"timeout after {self.seconds} seconds")
        return left

    @property
    def expired(self) -> bool:
        return self._clock() >= self._end


def split_sources(sources: typing.Union[str, typing.Iterable[str]]) -> list:
    if isinstance(sources, str):
        sources = sources.split(",")
    return [s.strip() for s in sources if s and s.strip()]


def _fetch_url(url, deadline):
    try:
        resp = requests.get(
            url, timeout=deadline.remaining(), headers={"User-Agent": USER_AGENT}
        )
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise AcquisitionError(f"{url}: {exc}") from exc
    return resp.content


def _fetch_file(path, max_age=0, now=None):
    try:
        if max_age:
            age = (now if now is not None else time.time()) - os.stat(path).st_mtime
            if age > max_age:
                raise AcquisitionError(
                    f"{path}: file is {int(age)} seconds old, max age is {max_age}"
                )
        with open(path, "rb") as fp:
            return fp.read()
    except OSError as exc:
        raise AcquisitionError(f"{path}: {exc.strerror or exc}") from exc


def fetch_one(source: str, deadline: Deadline, max_age: int = 0) -> bytes:
    parts = urlsplit(source)
    if parts.scheme in ("http", "https"):
        return _fetch_url(source, deadline)
    if parts.scheme == "file":
        return _fetch_file(parts.path, max_age)
    return _fetch_file(source, max_age)


def fetch_document(sources, deadline: Deadline, max_age: int = 0) -> bytes:
    """Try each source in turn and return the content of the first that works.

    Args:
        sources: comma-separated string or list of URLs and paths
        deadline: bounds the time spent on network fetches
        max_age: maximum age in seconds of local files, 0 for no limit

    Raises:
        AcquisitionError: no source could be read
    """

    failures = []
    for source in split_sources(sources):
        try:
            content = fetch_one(source, deadline, max_age)
        except AcquisitionError as exc:
            LOG.debug("fetch failed: %s", exc)
            failures.append(str(exc))
            continue
        LOG.debug("fetched %d bytes from %s", len(content), source)
        return content

    if not failures:
        raise AcquisitionError("no source given")
    raise AcquisitionError("; ".join(failures))
