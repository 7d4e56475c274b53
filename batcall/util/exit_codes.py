"""Documented exit codes for the batcall CLI.

Exit codes follow UNIX conventions:
- 0: Success
- 1: General/unspecified error
- 2: Invalid command-line arguments or usage
- 3-4: Application-specific errors

Usage:
    from batcall.util.exit_codes import ExitCode
    sys.exit(ExitCode.AUDIO_UNREADABLE)
"""

from __future__ import annotations


class ExitCode:
    """Exit code constants for batcall processes.

    Attributes:
        SUCCESS: Normal termination, calls may or may not have been found.
        GENERAL_ERROR: Unspecified runtime error.
        INVALID_ARGS: Command-line argument validation failed.
        AUDIO_UNREADABLE: The input file could not be decoded.
        NO_CALLS: --fail-on-empty was given and nothing was detected.
    """

    SUCCESS: int = 0
    GENERAL_ERROR: int = 1
    INVALID_ARGS: int = 2
    AUDIO_UNREADABLE: int = 3
    NO_CALLS: int = 4

    @classmethod
    def message(cls, code: int) -> str:
        """Return a human-readable message for an exit code."""
        messages = {
            cls.SUCCESS: "Success",
            cls.GENERAL_ERROR: "General error",
            cls.INVALID_ARGS: "Invalid arguments",
            cls.AUDIO_UNREADABLE: "Audio file unreadable",
            cls.NO_CALLS: "No calls detected",
        }
        return messages.get(code, f"Unknown exit code {code}")
