# optimistic.py
import logging
import time
from typing import Any, Callable

from errors import RaceFailed
from store import TRANSIENT_ERRORS, Store, StoredRecord

logger = logging.getLogger(__name__)


def compare_and_retry(
    store: Store,
    key: str,
    *,
    check: Callable[[StoredRecord | None], None],
    mutate: Callable[[StoredRecord], dict[str, Any]],
    confirm: Callable[[StoredRecord, dict[str, Any]], bool],
    attempts: int = 4,
    write_backoff: float = 0.1,
    race_backoff: float = 0.08,
    sleep: Callable[[float], None] = time.sleep,
) -> StoredRecord:
    """Read, validate, write conditionally, re-read and confirm; retry on loss.

    ``check`` raises to abort (its exception propagates untouched), ``mutate``
    returns the fields to patch, ``confirm`` decides from the re-read document
    whether this caller's write is the one that landed. A failed write and a
    failed confirmation are both retried from a fresh read until ``attempts``
    rounds are spent, then ``RaceFailed`` is raised.
    """
    for attempt in range(1, attempts + 1):
        current = store.get(key)
        check(current)
        fields = mutate(current)

        try:
            store.patch(key, fields, expected_revision=current.revision)
        except TRANSIENT_ERRORS as exc:
            logger.info("write to %s failed on attempt %d/%d: %s", key, attempt, attempts, exc)
            if attempt < attempts:
                sleep(write_backoff)
            continue

        after = store.get(key)
        if after is not None and confirm(after, fields):
            return after

        logger.info("lost race on %s at attempt %d/%d", key, attempt, attempts)
        if attempt < attempts:
            sleep(race_backoff)

    logger.warning("giving up on %s after %d attempts", key, attempts)
    raise RaceFailed()
