class DatabaseInitError(RuntimeError):
    """Raised when the database cannot be opened or migrated."""


class ImportFailure(Exception):
    """An error that aborts a whole import before anything is written."""

    def __init__(self, message, errors=None):
        super().__init__(message)
        self.errors = list(errors or [])


class ImportFileError(ImportFailure):
    pass


class ImportModeError(ImportFailure):
    pass


class SettingsConflictError(RuntimeError):
    """Raised when the settings document changed between read and replace."""
