from __future__ import annotations


class AddressError(ValueError):
    pass


class FormatError(AddressError):
    """Address text does not follow the grammar of its family."""


class SemanticError(AddressError):
    """Address parsed, but is not acceptable for its family."""


class FatalError(SystemExit):
    """Unrecoverable harness condition; terminates the process when unhandled."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message
