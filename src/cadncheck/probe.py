# vim: set et ai ts=4 sts=4 sw=4:
import logging
import os
import re
import signal
import subprocess
import typing
from urllib.parse import urlsplit

import requests

from .errors import AcquisitionError, ProbeTimeout
from .util import USER_AGENT, Deadline

LOG = logging.getLogger(__name__)

TLS_NOT_ENABLED = object()

DEFAULT_PORT = 443

CA_NAMES_HEADER = "Acceptable client certificate CA names"
NO_CA_NAMES = "No client certificate CA names sent"
NO_PEER_CERT = "no peer certificate available"

# lines s_client prints right after the CA names
_block_end_re = re.compile(
    r"^(---|Client Certificate Types|Requested Signature Algorithms|"
    r"Shared Requested Signature Algorithms|Peer signing digest|"
    r"Peer signature type|Server Temp Key|SSL handshake has read)"
)

CHALLENGE_URL_RE = re.compile(r"'(https?://[^']+)'")


def parse_s_client_output(text: str):
    """Returns the raw CA names the server asked for, or TLS_NOT_ENABLED.

    Raises:
        AcquisitionError: output carries neither a CA names block nor
            a recognised reason for its absence
    """

    lines = text.splitlines()
    for i, line in enumerate(lines):
        if line.strip() == CA_NAMES_HEADER:
            names = []
            for k in lines[i + 1 :]:
                k = k.strip()
                if not k or _block_end_re.match(k):
                    break
                names.append(k)
            return names

    if NO_PEER_CERT in text:
        return TLS_NOT_ENABLED
    if NO_CA_NAMES in text:
        return []
    raise AcquisitionError("no client CA names found in openssl s_client output")


def s_client_command(host, port, cert=None, key=None, openssl="openssl"):
    cmd = [
        openssl,
        "s_client",
        "-connect",
        f"{host}:{port}",
        "-servername",
        host,
        "-nameopt",
        "RFC2253",
    ]
    if cert:
        cmd += ["-cert", cert]
    if key:
        cmd += ["-key", key]
    return cmd


def probe_advertised_dns(
    host: str,
    port: int,
    cert: str = None,
    key: str = None,
    deadline: Deadline = None,
    openssl: str = "openssl",
):
    """Handshake with host:port and collect the acceptable client CA names.

    openssl runs in its own process group, which is killed as a whole
    when the deadline passes.
    """

    timeout = deadline.remaining() if deadline is not None else None
    cmd = s_client_command(host, port, cert, key, openssl)
    LOG.debug("running %s", " ".join(cmd))
    try:
        p = subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as exc:
        raise AcquisitionError(f"cannot run {openssl}: {exc}") from exc

    try:
        stdout, stderr = p.communicate(input=b"Q\n", timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_group(p)
        raise ProbeTimeout(f"openssl s_client to {host}:{port} timed out")

    output = stdout.decode("utf-8", "replace")
    LOG.debug("s_client exited with %s", p.returncode)
    try:
        return parse_s_client_output(output)
    except AcquisitionError:
        err = stderr.decode("utf-8", "replace").strip().splitlines()
        if err:
            raise AcquisitionError(f"{host}:{port}: {err[-1]}")
        raise


def _kill_group(p):
    try:
        os.killpg(p.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    p.communicate()


def parse_challenge(value: str, port: int = DEFAULT_PORT):
    """Extract (host, port) from the first single-quoted URL in a header."""
    m = CHALLENGE_URL_RE.search(value or "")
    if not m:
        return None
    parts = urlsplit(m.group(1))
    if not parts.hostname:
        return None
    return parts.hostname, parts.port or port


def resolve_endpoint(
    host: str,
    port: int,
    discovery_url: typing.Optional[str] = None,
    deadline: Deadline = None,
):
    """Follow the authentication challenge of a discovery endpoint to the
    host:port that actually terminates TLS."""

    if not discovery_url:
        return host, port

    timeout = deadline.remaining() if deadline is not None else None
    try:
        resp = requests.get(
            discovery_url,
            timeout=timeout,
            allow_redirects=False,
            headers={"User-Agent": USER_AGENT},
        )
    except requests.RequestException as exc:
        raise AcquisitionError(f"{discovery_url}: {exc}") from exc

    endpoint = parse_challenge(resp.headers.get("WWW-Authenticate"))
    if endpoint is None:
        LOG.debug(
            "no endpoint in challenge from %s (HTTP %s)", discovery_url, resp.status_code
        )
        return host, port

    LOG.debug(
        "%s:%s resolved to %s:%s (HTTP %s)", host, port, *endpoint, resp.status_code
    )
    return endpoint
