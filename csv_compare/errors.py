"""Exceptions raised by the reader, the engine and the service boundary."""


class CsvCompareError(Exception):
    """Base class for every error the service maps to a client response."""

    status_code = 500


class ReconciliationInputError(CsvCompareError):
    """The request is missing a table, has no rules, or has a malformed rule."""

    status_code = 400


class EmptyRulesError(ReconciliationInputError):
    pass


class CsvParseError(CsvCompareError):
    """Raw text could not be tokenized as delimited data at all."""

    status_code = 422


class UnsupportedFileError(CsvCompareError):
    status_code = 422


class PayloadTooLargeError(CsvCompareError):
    status_code = 413
