import sys
import logging
import argparse

import yaml

from . import OK, UNKNOWN, __version__
from .dnlist import load_distribution
from .errors import CheckError, ConfigError
from .probe import TLS_NOT_ENABLED, probe_advertised_dns, resolve_endpoint
from .reconcile import Verdict, check_thresholds, reconcile
from .release import resolve_release
from .util import Deadline, fetch_document

LOG = logging.getLogger(__name__)

REPOSITORY = "https://repository.egi.eu/sw/production/cas/1"

DEFAULTS = {
    "release_url": f"{REPOSITORY}/current/meta/ca-policy-egi-core.release",
    "valid_url": f"{REPOSITORY}/current/meta/ca-policy-egi-core.subjectdn",
    "obsolete_url": f"{REPOSITORY}/current/meta/ca-policy-egi-core.obsoleted",
    "prev_valid_url": f"{REPOSITORY}/{{version}}/meta/ca-policy-egi-core.subjectdn",
    "prev_obsolete_url": f"{REPOSITORY}/{{version}}/meta/ca-policy-egi-core.obsoleted",
}


class PluginArgumentParser(argparse.ArgumentParser):
    """Usage errors exit with the UNKNOWN status."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(UNKNOWN, f"UNKNOWN - {self.prog}: {message}\n")


def build_parser():
    parser = PluginArgumentParser(prog="check_ca_dn")
    parser.add_argument("--loglevel", default="WARNING")
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument("--config")
    parser.add_argument("-H", "--host")
    parser.add_argument("-p", "--port", type=int, default=443)
    parser.add_argument("--cert")
    parser.add_argument("--key")
    parser.add_argument("--discovery-url")
    parser.add_argument("--release-url", default=DEFAULTS["release_url"])
    parser.add_argument("--valid-url", default=DEFAULTS["valid_url"])
    parser.add_argument("--obsolete-url", default=DEFAULTS["obsolete_url"])
    parser.add_argument("--prev-valid-url", default=DEFAULTS["prev_valid_url"])
    parser.add_argument("--prev-obsolete-url", default=DEFAULTS["prev_obsolete_url"])
    parser.add_argument("-w", "--warning", type=int, default=3)
    parser.add_argument("-c", "--critical", type=int, default=8)
    parser.add_argument("-t", "--timeout", type=int, default=120)
    parser.add_argument("--max-age", type=int, default=0)
    parser.add_argument("--openssl", default="openssl")
    return parser


def load_config(filename, parser):
    """Read option defaults from a YAML mapping keyed by option name."""
    try:
        with open(filename) as fp:
            data = yaml.safe_load(fp) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"cannot read config {filename}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"config {filename} is not a mapping")

    known = {a.dest for a in parser._actions}
    config = {}
    for k, v in data.items():
        dest = str(k).replace("-", "_")
        if dest not in known or dest in ("help", "version", "config"):
            raise ConfigError(f"unknown option '{k}' in {filename}")
        config[dest] = v
    return config


def parse_args(argv):
    parser = build_parser()
    pre, _ = parser.parse_known_args(argv)
    if pre.config:
        try:
            parser.set_defaults(**load_config(pre.config, parser))
        except ConfigError as exc:
            parser.error(str(exc))

    args = parser.parse_args(argv)
    if not args.host:
        parser.error("the following arguments are required: -H/--host")
    if args.timeout <= 0:
        parser.error("timeout must be positive")
    if not isinstance(logging.getLevelName(str(args.loglevel).upper()), int):
        parser.error(f"unknown log level '{args.loglevel}'")
    try:
        check_thresholds(args.warning, args.critical)
    except ConfigError as exc:
        parser.error(str(exc))
    return args


def run(args, now=None) -> Verdict:
    deadline = Deadline(args.timeout)

    host, port = resolve_endpoint(args.host, args.port, args.discovery_url, deadline)
    advertised = probe_advertised_dns(
        host, port, args.cert, args.key, deadline, args.openssl
    )
    if advertised is TLS_NOT_ENABLED:
        return Verdict(OK, f"TLS is not enabled on {host}:{port}")

    release = resolve_release(fetch_document(args.release_url, deadline, args.max_age))
    lists = load_distribution(
        args.valid_url,
        args.obsolete_url,
        deadline,
        release.previous_version,
        args.prev_valid_url,
        args.prev_obsolete_url,
        args.max_age,
    )

    return reconcile(
        advertised, lists.exempt(host), release, args.warning, args.critical, now
    )


def emit(verdict: Verdict, out=None) -> int:
    out = out or sys.stdout
    out.write(f"{verdict.name} - {verdict.text()}\n")
    return verdict.status


def set_logging(level):
    logging.getLogger().setLevel(level.upper())


def main(argv=sys.argv[1:]):
    """Entry point for the application script"""

    logging.basicConfig(level=logging.WARNING, stream=sys.stderr)

    args = parse_args(argv)
    set_logging(args.loglevel)

    try:
        verdict = run(args)
    except CheckError as exc:
        LOG.debug("check aborted: %r", exc)
        verdict = Verdict(exc.status, str(exc))
    except Exception as exc:
        LOG.exception("unexpected failure")
        verdict = Verdict(UNKNOWN, f"unexpected failure: {exc}")

    return emit(verdict)


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
