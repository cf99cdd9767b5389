"""
Error taxonomy and import results.

Expected failures (empty upload, undecodable file, duplicate name) travel as
ImportFailed values; the HTTP layer turns any FlashcardError into a JSON body
with the class's status code.
"""
from dataclasses import dataclass
from typing import Optional, Union


class FlashcardError(Exception):
    status_code = 500
    code = "unknown_error"

    def __init__(self, message: str, detail: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail
        if code is not None:
            self.code = code

    def to_dict(self, include_detail: bool = False) -> dict:
        body = {'error': self.message, 'code': self.code}
        if include_detail and self.detail:
            body['detail'] = self.detail
        return body


class ValidationError(FlashcardError):
    status_code = 400
    code = "invalid_input"


class NotFoundError(FlashcardError):
    status_code = 404
    code = "not_found"


class ConflictError(FlashcardError):
    status_code = 409
    code = "duplicate_name"


class EncodingError(FlashcardError):
    status_code = 400
    code = "undecodable_encoding"


class PersistenceError(FlashcardError):
    status_code = 500
    code = "persistence_error"


class UnknownError(FlashcardError):
    pass


@dataclass(frozen=True)
class ImportSucceeded:
    set_id: int
    set_name: str
    character_count: int

    success = True

    @property
    def message(self) -> str:
        return f'字库 "{self.set_name}" 导入成功！'


@dataclass(frozen=True)
class ImportFailed:
    error: FlashcardError

    success = False

    @property
    def reason(self) -> str:
        return self.error.code

    @property
    def message(self) -> str:
        return self.error.message


ImportResult = Union[ImportSucceeded, ImportFailed]
