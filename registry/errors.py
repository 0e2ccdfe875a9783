from enum import StrEnum

from redis import RedisError
from sqlalchemy.exc import SQLAlchemyError


class ResultCode(StrEnum):
    ok = "200"
    invalid = "412"
    phone_invalid = "4121"
    not_found = "404"
    store_error = "500"
    create_failed = "501"


class RegistryError(Exception):
    code: ResultCode = ResultCode.store_error

    def __init__(self, msg: str) -> None:
        super().__init__(msg)
        self.msg: str = msg

    def __str__(self) -> str:
        return f"[{self.code}] {self.msg}"


class InvalidInputError(RegistryError):
    code = ResultCode.invalid


class InvalidPhoneError(RegistryError):
    code = ResultCode.phone_invalid

    def __init__(self, phone: str) -> None:
        super().__init__(f"invalid phone number {phone!r}")
        self.phone: str = phone


class NotFoundError(RegistryError):
    code = ResultCode.not_found


class CreateFailedError(RegistryError):
    code = ResultCode.create_failed


def result_code(exc: BaseException | None) -> ResultCode:
    """Map an outcome of a registry operation to its result code.

    Store failures are not wrapped by the registry, they surface as the
    driver's own exception and map to ``store_error``.
    """
    if exc is None:
        return ResultCode.ok
    if isinstance(exc, RegistryError):
        return exc.code
    if isinstance(exc, (SQLAlchemyError, RedisError)):
        return ResultCode.store_error
    raise TypeError(f"not a registry outcome: {exc!r}")
