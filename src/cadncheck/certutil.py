from cryptography import x509
from cryptography.x509.oid import NameOID

from .errors import ParseError

_tags = {
    "2.5.4.3": ("CN", "commonName"),
    "2.5.4.4": ("SN", "surname"),
    "2.5.4.5": ("serialNumber", "serialNumber"),
    "2.5.4.6": ("C", "countryName"),
    "2.5.4.7": ("L", "localityName"),
    "2.5.4.8": ("ST", "stateOrProvinceName"),
    "2.5.4.9": ("street", "streetAddress"),
    "2.5.4.10": ("O", "organizationName"),
    "2.5.4.11": ("OU", "organizationalUnitName"),
    "2.5.4.97": ("organizationIdentifier", "organizationIdentifier"),
    "0.9.2342.19200300.100.1.1": ("UID", "userId"),
    "0.9.2342.19200300.100.1.25": ("DC", "domainComponent"),
    "2.5.4.12": ("title", "title"),
    "2.5.4.15": ("businessCategory", "businessCategory"),
    "2.5.4.17": ("postalCode", "postalCode"),
    "2.5.4.41": ("name", "name"),
    "2.5.4.42": ("GN", "givenName"),
    "2.5.4.43": ("initials", "initials"),
    "2.5.4.44": ("generationQualifier", "generationQualifier"),
    "2.5.4.46": ("dnQualifier", "dnQualifier"),
    "2.5.4.65": ("pseudonym", "pseudonym"),
    "1.2.840.113549.1.9.1": ("emailAddress", "emailAddress"),
}

# openssl -nameopt RFC2253 prints these short names, most of which
# cryptography does not know
_name_overrides = {v[0]: x509.ObjectIdentifier(k) for k, v in _tags.items()}
_name_overrides["E"] = NameOID.EMAIL_ADDRESS


def tag_to_text(oid: str) -> str:
    """Maps dotted OID to a short name.
    If OID cannot be found that returns the dotted string as-is.
    """

    return _tags[oid][0] if oid in _tags else oid


"""Multi-valued RDNs are joined with '+', the way openssl prints them
in its legacy one-line form: /DC=org/CN=Host+UID=abcd
"""


def dn_to_str(DN: x509.Name) -> str:
    """Render a Name most-general RDN first as /ATTR=value/ATTR=value."""
    return "".join(
        "/"
        + "+".join(
            "{}={}".format(tag_to_text(x.oid.dotted_string), x.value) for x in y
        )
        for y in DN.rdns
    )


def normalize_dn(raw: str) -> str:
    """Returns the canonical slash-separated form of a subject string.

    Strings already in the slash form are returned untouched. Anything
    else is parsed as an RFC 2253 name (most specific RDN first) and
    rendered in reverse order.

    Raises:
        ParseError: the string is not a valid RFC 2253 name
    """

    if raw.startswith("/"):
        return raw

    try:
        name = x509.Name.from_rfc4514_string(raw, _name_overrides)
    except ValueError as exc:
        raise ParseError(
            f"cannot parse DN '{raw}': {exc or 'malformed name'}"
        ) from exc

    # from_rfc4514_string already stores the RDNs most general first
    return dn_to_str(name)
