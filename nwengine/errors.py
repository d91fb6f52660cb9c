"""
errors.py
~~~~~~~~~

Error taxonomy for the network engine.

Every fallible engine operation raises :class:`NetworkError`, which carries
an :class:`ErrorCode` so callers can branch on the kind of failure without
parsing message text.
"""

from enum import IntEnum


class ErrorCode(IntEnum):
    """Failure kinds reported by the engine."""

    SUCCESS = 0
    NETWORK_ALREADY_OPEN = 1
    NO_NETWORK_OPEN = 2
    NO_FILE_OPEN = 3
    CREATE_FAILED = 4
    OPEN_FAILED = 5
    FILE_EXISTS = 6
    READ_FAILED = 7
    WRITE_FAILED = 8
    BAD_FILE = 9
    OUT_OF_MEMORY = 10
    RECURSIVE_CYCLE = 11
    BAD_PARAMETER = 12
    CONNECTION_EXISTS = 13
    SELF_CONNECTION = 14
    NOT_CONNECTED = 15
    ILLEGAL_IO_CONNECTION = 16
    NO_UNITS = 17
    NOT_INPUT_UNIT = 18
    NOT_OUTPUT_UNIT = 19


_MESSAGES = {
    ErrorCode.SUCCESS: "No error",
    ErrorCode.NETWORK_ALREADY_OPEN: "A network is open",
    ErrorCode.NO_NETWORK_OPEN: "No network is open",
    ErrorCode.NO_FILE_OPEN: "No network file is open",
    ErrorCode.CREATE_FAILED: "Error creating file",
    ErrorCode.OPEN_FAILED: "Error opening file",
    ErrorCode.FILE_EXISTS: "File already exists",
    ErrorCode.READ_FAILED: "Error reading file",
    ErrorCode.WRITE_FAILED: "Error writing file",
    ErrorCode.BAD_FILE: "Bad or corrupt file",
    ErrorCode.OUT_OF_MEMORY: "Not enough memory to complete operation",
    ErrorCode.RECURSIVE_CYCLE: "Network contains a recursive unit chain",
    ErrorCode.BAD_PARAMETER: "Bad parameter",
    ErrorCode.CONNECTION_EXISTS: "Connection already exists",
    ErrorCode.SELF_CONNECTION: "Cannot connect a unit to itself",
    ErrorCode.NOT_CONNECTED: "Units are not connected",
    ErrorCode.ILLEGAL_IO_CONNECTION: "Improper input/output unit interconnection",
    ErrorCode.NO_UNITS: "No units in network",
    ErrorCode.NOT_INPUT_UNIT: "Unit is not an input unit",
    ErrorCode.NOT_OUTPUT_UNIT: "Unit is not an output unit",
}


def error_message(code) -> str:
    """
    Return the message for an error code.

    Args:
        code: An ErrorCode member or its integer value

    Returns:
        str: Message without trailing punctuation, or "Unknown error"
    """
    try:
        return _MESSAGES[ErrorCode(code)]
    except ValueError:
        return "Unknown error"


class NetworkError(Exception):
    """
    Raised when an engine operation fails.

    Attributes:
        code: The ErrorCode describing the failure
        detail: Optional extra context appended to the message
    """

    def __init__(self, code: ErrorCode, detail: str = ''):
        self.code = ErrorCode(code)
        self.detail = detail
        message = error_message(self.code)
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
