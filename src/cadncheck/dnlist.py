# vim: set et ai ts=4 sts=4 sw=4:
import logging
import typing

from .certutil import normalize_dn
from .errors import AcquisitionError, ParseError
from .util import fetch_document, split_sources

LOG = logging.getLogger(__name__)

EXEMPTED_DOMAIN = ".cern.ch"

# not expected from hosts in EXEMPTED_DOMAIN
EXEMPTED_DNS = frozenset(
    [
        "/DC=ch/DC=cern/CN=CERN Root Certification Authority 2",
        "/DC=ch/DC=cern/CN=CERN Grid Certification Authority",
    ]
)


def load_dn_set(content: typing.Union[bytes, str]) -> frozenset:
    """One DN per line; '#' starts a comment line."""
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ParseError(f"DN list is not valid UTF-8: {exc}") from exc

    dns = set()
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        dns.add(normalize_dn(line))
    return frozenset(dns)


def is_exempted_host(host: str, domain: str = EXEMPTED_DOMAIN) -> bool:
    host = host.lower().rstrip(".")
    domain = domain.lower().rstrip(".")
    return host.endswith(domain) or "." + host == domain


def filter_exempted(dns: frozenset, exempted: bool, exempted_dns=EXEMPTED_DNS):
    if not exempted:
        return dns
    return frozenset(dns) - frozenset(exempted_dns)


class DistributionLists:
    """The valid and obsolete DN sets of the current release and,
    when both could be loaded, of the previous one."""

    def __init__(
        self,
        current_valid,
        current_obsolete,
        previous_valid=None,
        previous_obsolete=None,
        notes=(),
    ):
        self.current_valid = frozenset(current_valid)
        self.current_obsolete = frozenset(current_obsolete)
        if previous_valid is None or previous_obsolete is None:
            self.previous_valid = self.previous_obsolete = None
        else:
            self.previous_valid = frozenset(previous_valid)
            self.previous_obsolete = frozenset(previous_obsolete)
        self.notes = list(notes)

    @property
    def has_previous(self) -> bool:
        return self.previous_valid is not None

    def exempt(self, host: str) -> "DistributionLists":
        """Copy with the exempted DNs dropped from the valid sets when
        host is in the exempted domain."""
        exempted = is_exempted_host(host)
        if exempted:
            LOG.debug("%s is in %s, dropping exempted DNs", host, EXEMPTED_DOMAIN)
        return DistributionLists(
            filter_exempted(self.current_valid, exempted),
            self.current_obsolete,
            filter_exempted(self.previous_valid, exempted)
            if self.has_previous
            else None,
            self.previous_obsolete,
            self.notes,
        )


def _versioned(sources, version):
    return [s.replace("{version}", version) for s in split_sources(sources)]


def load_distribution(
    valid_sources,
    obsolete_sources,
    deadline,
    previous_version=None,
    previous_valid_sources=None,
    previous_obsolete_sources=None,
    max_age=0,
) -> DistributionLists:
    """Fetch and parse the DN lists.

    The current lists are required; any failure propagates. The previous
    release lists are optional as a pair: if either one cannot be loaded
    both are dropped and a note is kept for the report.
    """

    current_valid = load_dn_set(fetch_document(valid_sources, deadline, max_age))
    current_obsolete = load_dn_set(
        fetch_document(obsolete_sources, deadline, max_age)
    )
    LOG.debug(
        "current release: %d valid, %d obsolete DNs",
        len(current_valid),
        len(current_obsolete),
    )

    notes = []
    previous_valid = previous_obsolete = None
    if not (previous_version and previous_valid_sources and previous_obsolete_sources):
        notes.append("previous release lists not configured, comparison skipped")
    else:
        try:
            previous_valid = load_dn_set(
                fetch_document(
                    _versioned(previous_valid_sources, previous_version),
                    deadline,
                    max_age,
                )
            )
            previous_obsolete = load_dn_set(
                fetch_document(
                    _versioned(previous_obsolete_sources, previous_version),
                    deadline,
                    max_age,
                )
            )
        except (AcquisitionError, ParseError) as exc:
            LOG.warning("previous release %s unavailable: %s", previous_version, exc)
            notes.append(
                f"previous release {previous_version} unavailable, comparison skipped"
            )
            previous_valid = previous_obsolete = None

    return DistributionLists(
        current_valid, current_obsolete, previous_valid, previous_obsolete, notes
    )
