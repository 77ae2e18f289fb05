import logging
import subprocess
from unittest import mock

import pytest
import requests

from cadncheck.errors import AcquisitionError, ProbeTimeout
from cadncheck.probe import (
    TLS_NOT_ENABLED,
    parse_challenge,
    parse_s_client_output,
    probe_advertised_dns,
    resolve_endpoint,
    s_client_command,
)
from cadncheck.util import Deadline


def fixture_text(name):
    with open(f"tests/fixtures/{name}") as fp:
        return fp.read()


class TestParseOutput():

    def test_names(self):

        names = parse_s_client_output(fixture_text("s_client_current.txt"))
        assert names[0] == "CN=GridKa-CA,O=GermanGrid,C=DE"
        assert len(names) == 5
        assert not any(n.startswith("Requested") for n in names)

    def test_legacy_names(self):

        names = parse_s_client_output(fixture_text("s_client_previous.txt"))
        assert names == [
            "/C=DE/O=GermanGrid/CN=GridKa-CA",
            "/DC=ch/DC=cern/CN=CERN Root Certification Authority 2",
            "/C=NL/O=NIKHEF/CN=NIKHEF medium-security certification auth",
            "/C=XX/O=Old Grid/CN=Old Grid CA",
        ]

    def test_tls_not_enabled(self):

        assert parse_s_client_output(fixture_text("s_client_no_tls.txt")) is TLS_NOT_ENABLED

    def test_no_names_sent(self):

        assert parse_s_client_output(fixture_text("s_client_no_names.txt")) == []

    def test_garbage(self):

        with pytest.raises(AcquisitionError):
            parse_s_client_output("connect: Connection refused\nconnect:errno=111\n")


class TestProbe():

    def test_command(self):

        cmd = s_client_command("grid.example.org", 8443, "host.pem", "key.pem")
        assert cmd[:4] == ["openssl", "s_client", "-connect", "grid.example.org:8443"]
        assert "RFC2253" in cmd
        assert cmd[-4:] == ["-cert", "host.pem", "-key", "key.pem"]
        assert "-cert" not in s_client_command("grid.example.org", 443)

    def test_probe(self):

        proc = mock.Mock(pid=4242, returncode=0)
        proc.communicate.return_value = (fixture_text("s_client_current.txt").encode(), b"")
        with mock.patch("cadncheck.probe.subprocess.Popen", return_value=proc) as popen:
            names = probe_advertised_dns("grid.example.org", 8443, deadline=Deadline(30))

        assert "CN=GridKa-CA,O=GermanGrid,C=DE" in names
        assert popen.call_args[1]["start_new_session"] is True
        assert 0 < proc.communicate.call_args[1]["timeout"] <= 30

    def test_expired_deadline_starts_nothing(self):

        ticks = iter([0.0, 100.0])
        deadline = Deadline(10, clock=lambda: next(ticks))
        with mock.patch("cadncheck.probe.subprocess.Popen") as popen:
            with pytest.raises(ProbeTimeout):
                probe_advertised_dns("grid.example.org", 8443, deadline=deadline)

        popen.assert_not_called()

    def test_timeout_kills_group(self):

        proc = mock.Mock(pid=4242)
        proc.communicate.side_effect = [
            subprocess.TimeoutExpired("openssl", 30),
            (b"", b""),
        ]
        with mock.patch("cadncheck.probe.subprocess.Popen", return_value=proc), \
                mock.patch("cadncheck.probe.os.killpg") as killpg:
            with pytest.raises(ProbeTimeout):
                probe_advertised_dns("grid.example.org", 8443, deadline=Deadline(30))

        assert killpg.call_args[0][0] == 4242

    def test_connection_refused(self):

        proc = mock.Mock(pid=4242, returncode=1)
        proc.communicate.return_value = (b"", b"connect:errno=111\n")
        with mock.patch("cadncheck.probe.subprocess.Popen", return_value=proc):
            with pytest.raises(AcquisitionError) as exc:
                probe_advertised_dns("grid.example.org", 8443)
        assert "errno=111" in str(exc.value)

    def test_no_openssl(self):

        with mock.patch("cadncheck.probe.subprocess.Popen", side_effect=FileNotFoundError("openssl")):
            with pytest.raises(AcquisitionError):
                probe_advertised_dns("grid.example.org", 8443)


class TestEndpoint():

    def test_challenge(self):

        assert parse_challenge("Basic realm='https://voms.example.org:8443/login'") == (
            "voms.example.org",
            8443,
        )
        assert parse_challenge("x509 realm='https://voms.example.org/login'") == (
            "voms.example.org",
            443,
        )
        assert parse_challenge('Basic realm="no quotes"') is None
        assert parse_challenge(None) is None

    def test_no_discovery(self):

        assert resolve_endpoint("grid.example.org", 8443) == ("grid.example.org", 8443)

    def test_discovery(self):

        resp = mock.Mock(headers={"WWW-Authenticate": "x509 realm='https://auth.example.org:9443/'"})
        with mock.patch("cadncheck.probe.requests.get", return_value=resp) as get:
            endpoint = resolve_endpoint(
                "grid.example.org", 443, "https://grid.example.org/discover", Deadline(10)
            )

        assert endpoint == ("auth.example.org", 9443)
        assert get.call_args[1]["allow_redirects"] is False

    def test_discovery_without_challenge(self):

        resp = mock.Mock(headers={})
        with mock.patch("cadncheck.probe.requests.get", return_value=resp):
            assert resolve_endpoint("grid.example.org", 443, "https://d.example.org/") == (
                "grid.example.org",
                443,
            )

    def test_discovery_status_logged(self, caplog):

        resp = mock.Mock(headers={}, status_code=503)
        with mock.patch("cadncheck.probe.requests.get", return_value=resp), \
                caplog.at_level(logging.DEBUG, logger="cadncheck.probe"):
            resolve_endpoint("grid.example.org", 443, "https://d.example.org/")

        assert "HTTP 503" in caplog.text

    def test_discovery_failure(self):

        with mock.patch(
            "cadncheck.probe.requests.get", side_effect=requests.ConnectionError("refused")
        ):
            with pytest.raises(AcquisitionError):
                resolve_endpoint("grid.example.org", 443, "https://d.example.org/")
