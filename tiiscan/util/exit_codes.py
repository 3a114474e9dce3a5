"""Process exit codes of the tiiscan CLI.

0 and 1 are success and unspecified failure, 2 is a usage or scan
configuration error (argparse uses it too), 3-6 are tiiscan specific and
130 follows the SIGINT convention for a cancelled scan. Scripts can tell a
busy tuner from a missing capture file without parsing stderr.
"""

from __future__ import annotations


class ExitCode:
    SUCCESS: int = 0
    GENERAL_ERROR: int = 1
    INVALID_ARGS: int = 2
    CAPTURE_ERROR: int = 3
    TUNER_UNAVAILABLE: int = 4
    DB_ERROR: int = 5
    TUNER_FAULT: int = 6
    CANCELLED: int = 130

    _MESSAGES = {
        0: "success",
        1: "general error",
        2: "invalid arguments or scan configuration",
        3: "replay capture missing or malformed",
        4: "tuner owned by another consumer",
        5: "transmitter database error",
        6: "tuner fault during scan",
        130: "scan cancelled",
    }

    @classmethod
    def message(cls, code: int) -> str:
        return cls._MESSAGES.get(int(code), f"unknown exit code {code}")
