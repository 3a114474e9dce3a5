"""Session-aborting scan failures."""

from __future__ import annotations

from tiiscan.util.exit_codes import ExitCode


class ScanError(Exception):
    """Base class for fatal scan errors."""

    exit_code = ExitCode.GENERAL_ERROR
    reason = "scan_error"


class InvalidConfiguration(ScanError):
    """Rejected before the scan starts (bad channel list, cycle limit, busy controller)."""

    exit_code = ExitCode.INVALID_ARGS
    reason = "invalid_configuration"


class TunerUnavailable(ScanError):
    """The tuner is owned by another consumer."""

    exit_code = ExitCode.TUNER_UNAVAILABLE
    reason = "tuner_unavailable"


class TunerFault(ScanError):
    """The tuner reported a device error mid-scan."""

    exit_code = ExitCode.TUNER_FAULT
    reason = "tuner_fault"
