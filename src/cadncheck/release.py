"""
Release descriptor of a CA distribution, e.g.

    <Release>
      <Version>1.131-1</Version>
      <Date>20240514</Date>
    </Release>
"""
import logging
import re
import xml.etree.ElementTree as ET
from datetime import datetime, timezone

from .errors import ParseError

LOG = logging.getLogger(__name__)

VERSION_RE = re.compile(r"^(\d+)\.(\d+)-(\d+)$")

_date_formats = ("%Y%m%d", "%Y-%m-%d", "%Y%m%d%H%M%S")


class Release:
    def __init__(self, date, version, previous_version, patch=None):
        self.date = date
        self.version = version
        self.previous_version = previous_version
        self.patch = patch

    def __repr__(self):
        return f"Release(version={self.version!r}, date={self.date.isoformat()})"


def parse_version(text: str):
    """Returns (version, previous_version, patch) for a MAJOR.MINOR-PATCH string."""
    m = VERSION_RE.match(text.strip())
    if not m:
        raise ParseError(f"invalid release version '{text}'")
    major, minor, patch = (int(x) for x in m.group(1, 2, 3))
    return f"{major}.{minor}", f"{major}.{minor - 1}", patch


def parse_date(text: str) -> datetime:
    text = text.strip()
    date = None
    for fmt in _date_formats:
        try:
            date = datetime.strptime(text, fmt)
            break
        except ValueError:
            continue
    if date is None:
        try:
            date = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ParseError(f"invalid release date '{text}'") from exc

    if date.tzinfo is None:
        date = date.replace(tzinfo=timezone.utc)
    return date


def _find(root, tag):
    for elem in root.iter():
        if elem.tag.lower() == tag:
            return elem
    return None


def resolve_release(document: bytes) -> Release:
    try:
        root = ET.fromstring(document)
    except ET.ParseError as exc:
        raise ParseError(f"cannot parse release descriptor: {exc}") from exc

    fields = {}
    for tag in ("version", "date"):
        elem = _find(root, tag)
        if elem is None or not (elem.text or "").strip():
            raise ParseError(f"release descriptor has no {tag.capitalize()}")
        fields[tag] = elem.text

    version, previous, patch = parse_version(fields["version"])
    release = Release(parse_date(fields["date"]), version, previous, patch)
    LOG.debug("resolved %r, previous version %s", release, previous)
    return release
