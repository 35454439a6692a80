from __future__ import annotations

from prodtrack.core.errors import InfraError, PersistenceError, TransientExternalError


class SheetsConfigError(InfraError):
    pass


class SheetsApiDisabledError(SheetsConfigError):
    pass


class SheetsPermissionError(SheetsConfigError):
    pass


class SheetsNotFoundError(SheetsConfigError):
    pass


class SheetsCredentialsError(SheetsConfigError):
    pass


class SheetsCellNotFoundError(PersistenceError):
    pass


class SheetsRateLimitError(TransientExternalError):
    pass
