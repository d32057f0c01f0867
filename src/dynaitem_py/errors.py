from __future__ import annotations


class DynaitemError(Exception):
    pass


class NotFoundError(DynaitemError):
    pass


class ValidationError(DynaitemError):
    pass


class ConditionFailedError(DynaitemError):
    def __init__(self, message: str, *, reason_codes: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.reason_codes = reason_codes


class DuplicateItemError(DynaitemError):
    def __init__(self, pk: str, sk: str | None = None) -> None:
        super().__init__(f"{pk}:{sk}" if sk is not None else pk)
        self.pk = pk
        self.sk = sk


class BatchRetryExceededError(DynaitemError):
    def __init__(self, *, operation: str, unprocessed_count: int) -> None:
        super().__init__(f"{operation}: retry limit exceeded (unprocessed={unprocessed_count})")
        self.operation = operation
        self.unprocessed_count = unprocessed_count
