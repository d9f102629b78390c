"""Error taxonomy for GEDCOM decoding, encoding and tree mutation."""


class GedcomError(Exception):
    """Base class for all errors raised by the record-tree engine."""


class StructuralError(GedcomError, ValueError):
    """
    Malformed input or a mutation that would break the tree's structure.

    Args:
        message: Description of the problem
        char: Offending code point, -1 for end of stream, or None
        line: 1-based source line, or None when not decoding
    """

    def __init__(self, message: str, char: int | None = None, line: int | None = None):
        self.reason = message
        self.char = char
        self.line = line
        super().__init__(self._format(message, char, line))

    @staticmethod
    def _format(message: str, char: int | None, line: int | None) -> str:
        if char is not None:
            if 0x20 <= char <= 0x7E:
                message += f" (got '{chr(char)}')"
            elif char < 0:
                message += " (got EOF)"
            else:
                message += f" (got 0x{char:x})"
        if line is not None:
            message += f" (line {line})"
        return message


class StateError(GedcomError, RuntimeError):
    """API misuse that would violate a record invariant; nothing is changed."""


class ConsistencyWarning(UserWarning):
    """A recoverable problem found while decoding. Decoding continues."""

    def __init__(self, message: str, line: int | None = None):
        self.line = line
        if line is not None:
            message = f"{message} (line {line})"
        super().__init__(message)
