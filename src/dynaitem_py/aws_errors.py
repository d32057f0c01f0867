from __future__ import annotations

from collections.abc import Sequence

from botocore.exceptions import ClientError

from .errors import ConditionFailedError, DuplicateItemError


def error_code(err: ClientError) -> str:
    return str(err.response.get("Error", {}).get("Code", ""))


def error_message(err: ClientError) -> str:
    return str(err.response.get("Error", {}).get("Message", ""))


def is_condition_failure(err: ClientError) -> bool:
    return error_code(err) == "ConditionalCheckFailedException"


def cancellation_reasons(err: ClientError) -> tuple[str, ...]:
    reasons_raw = err.response.get("CancellationReasons") or []
    return tuple(
        str(reason.get("Code") or "None") if isinstance(reason, dict) else "None" for reason in reasons_raw
    )


def map_transaction_error(
    err: ClientError,
    guards: Sequence[tuple[str, str | None] | None] = (),
) -> Exception | None:
    """Translate a canceled transaction caused by a failed condition.

    ``guards`` is aligned with the transaction entries; a non-None element is
    the key of a put that must not overwrite an existing item. Returns None
    when the error should propagate unchanged.
    """
    code = error_code(err)
    message = error_message(err)

    if code != "TransactionCanceledException":
        return None

    reason_codes = cancellation_reasons(err)
    for i, reason in enumerate(reason_codes):
        guard = guards[i] if i < len(guards) else None
        if reason == "ConditionalCheckFailed" and guard is not None:
            return DuplicateItemError(*guard)

    if any(rc == "ConditionalCheckFailed" for rc in reason_codes) or "ConditionalCheckFailed" in message:
        return ConditionFailedError(
            message or "transaction canceled: ConditionalCheckFailed",
            reason_codes=reason_codes,
        )

    return None
