from __future__ import annotations


class ConsolidatorError(Exception):
    """Base class for every error raised by oc-consolidator."""


class UnreadableFileError(ConsolidatorError, ValueError):
    pass


class HeaderNotFoundError(ConsolidatorError, ValueError):
    pass


class MissingColumnsError(ConsolidatorError, ValueError):
    def __init__(self, missing: list[str]) -> None:
        super().__init__(f"required columns not found: {', '.join(missing)}")
        self.missing = list(missing)


class ConfigError(ConsolidatorError, ValueError):
    pass


class RecordValidationError(ConsolidatorError):
    """A consolidated record cannot be submitted; reported, never fatal."""


class TransportError(ConsolidatorError):
    """The order store could not be reached or answered with garbage."""


class ImportCancelledError(ConsolidatorError):
    pass


class NoOrdersError(ConsolidatorError, ValueError):
    """Neither spreadsheet produced an order worth importing."""
