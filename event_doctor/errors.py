"""Exception taxonomy shared by the import pipeline and the reconcilers."""

from __future__ import annotations

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_RECONCILE_ISSUES = 3
EXIT_PARTIAL = 6
EXIT_MAPPING_FAILED = 7
EXIT_COMMIT_FAILED = 8
EXIT_RECONCILE_FAILED = 9


class EventDoctorError(Exception):
    code = EXIT_COMMAND_ERROR


class EmptyInputError(EventDoctorError, ValueError):
    code = EXIT_PARSE_FAILED

    def __init__(self, message: str = "The CSV file is empty or malformed.") -> None:
        super().__init__(message)


class MappingSuggestionError(EventDoctorError):
    code = EXIT_MAPPING_FAILED


class CommitError(EventDoctorError):
    code = EXIT_COMMIT_FAILED


class ReconcileError(EventDoctorError):
    code = EXIT_RECONCILE_FAILED


class ConfigError(EventDoctorError):
    code = EXIT_COMMAND_ERROR
