"""
Reconcile the CA names a server advertises with a CA distribution release.

The decision runs in three named steps:

    current_ok            the server matches the current release exactly
    unknown_distribution  it matches neither the current nor the previous one
    age_check             it lags behind; severity follows the age of the
                          current release

When the previous release lists are not available the server is given
the benefit of the doubt and the age check decides.
"""
import logging
import typing
from datetime import datetime, timezone

from . import OK, WARNING, CRITICAL, STATUS_NAMES
from .certutil import normalize_dn
from .errors import ConfigError

LOG = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


class Verdict:
    def __init__(self, status: int, message: str, details=()):
        self.status = status
        self.message = message
        self.details = list(details)

    @property
    def name(self) -> str:
        return STATUS_NAMES[self.status]

    def text(self) -> str:
        return "; ".join([self.message] + self.details)

    def __repr__(self):
        return f"Verdict({self.name}, {self.message!r})"


class MatchResult:
    """Outcome of matching the advertised names against the DN sets.

    missing_* hold the expected DNs that were not advertised,
    obsolete_* the obsolete DNs that were. The previous_* fields are
    None when the previous release lists are not available.
    """

    def __init__(
        self,
        missing_current,
        obsolete_current,
        missing_previous=None,
        obsolete_previous=None,
    ):
        self.missing_current = missing_current
        self.obsolete_current = obsolete_current
        self.missing_previous = missing_previous
        self.obsolete_previous = obsolete_previous

    @property
    def has_previous(self) -> bool:
        return self.missing_previous is not None

    @property
    def should_compare(self) -> bool:
        return bool(self.missing_current or self.obsolete_current)

    @property
    def previous_compliant(self) -> bool:
        return (
            self.has_previous
            and not self.missing_previous
            and not self.obsolete_previous
        )


def match_advertised(
    advertised: typing.Iterable[str],
    current_valid,
    current_obsolete,
    previous_valid=None,
    previous_obsolete=None,
) -> MatchResult:
    """advertised must already be normalized; order and duplicates do not matter."""
    seen = frozenset(advertised)

    result = MatchResult(
        frozenset(current_valid) - seen, frozenset(current_obsolete) & seen
    )
    if previous_valid is not None and previous_obsolete is not None:
        result.missing_previous = frozenset(previous_valid) - seen
        result.obsolete_previous = frozenset(previous_obsolete) & seen
    return result


def age_in_days(release_date: datetime, now: datetime = None) -> float:
    now = now or datetime.now(timezone.utc)
    return round((now - release_date).total_seconds() / SECONDS_PER_DAY, 2)


def severity_for_age(age: float, warning_days: int, critical_days: int):
    if age >= critical_days:
        return CRITICAL, f"old CA distribution version found, new version is {age:.2f} days old"
    if age >= warning_days:
        return WARNING, f"old CA distribution version found, new version is {age:.2f} days old"
    if age > 0:
        return (
            OK,
            f"old CA distribution version found, new version is {age:.2f} days old, "
            "we're still within grace period",
        )
    return (
        OK,
        "valid CA distribution found; new version will be released "
        f"in {0.0 - age:.2f} days",
    )


def current_ok(version):
    return OK, f"CA distribution version {version} is correctly installed"


def unknown_distribution():
    return CRITICAL, "unrecognized (unknown) CA distribution version installed"


def age_check(release_date, warning_days, critical_days, now=None):
    return severity_for_age(age_in_days(release_date, now), warning_days, critical_days)


def decide(result: MatchResult, version, release_date, warning_days, critical_days, now=None):
    if not result.should_compare:
        LOG.debug("branch: current_ok")
        return current_ok(version)

    if result.has_previous and not result.previous_compliant:
        LOG.debug("branch: unknown_distribution")
        return unknown_distribution()

    # previous release verified, or not verifiable at all
    LOG.debug("branch: age_check (previous available: %s)", result.has_previous)
    return age_check(release_date, warning_days, critical_days, now)


def mismatch_details(result: MatchResult):
    details = []
    if result.missing_current:
        details.append("missing CAs: " + ", ".join(sorted(result.missing_current)))
    if result.obsolete_current:
        details.append("obsolete CAs: " + ", ".join(sorted(result.obsolete_current)))
    return details


def check_thresholds(warning_days, critical_days):
    if warning_days < 0 or critical_days < 0:
        raise ConfigError("warning and critical thresholds must not be negative")
    if warning_days > critical_days:
        raise ConfigError(
            f"warning threshold ({warning_days}) is above critical ({critical_days})"
        )


def reconcile(
    advertised,
    lists,
    release,
    warning_days: int,
    critical_days: int,
    now: datetime = None,
) -> Verdict:
    """Compute the verdict for the raw advertised CA names.

    Args:
        advertised: raw subject strings as sent by the server
        lists: DistributionLists, already exempted for the host
        release: Release of the current distribution

    Raises:
        ParseError: an advertised name cannot be parsed
        ConfigError: warning_days exceeds critical_days
    """

    check_thresholds(warning_days, critical_days)

    names = [normalize_dn(x) for x in advertised]
    LOG.debug("server advertises %d CA names", len(set(names)))

    result = match_advertised(
        names,
        lists.current_valid,
        lists.current_obsolete,
        lists.previous_valid,
        lists.previous_obsolete,
    )
    status, message = decide(
        result, release.version, release.date, warning_days, critical_days, now
    )

    text = [f"current CA distribution version is {release.version}"]
    text += lists.notes
    text.append(message)
    return Verdict(status, "; ".join(text), mismatch_details(result))
