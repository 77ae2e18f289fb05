from . import UNKNOWN


class CheckError(Exception):
    """Base for failures that end the run without a reconciliation verdict."""

    status = UNKNOWN


class AcquisitionError(CheckError):
    pass


class ParseError(CheckError):
    pass


class ProbeTimeout(CheckError):
    pass


class ConfigError(CheckError):
    pass
