# Library of functions shared across the decode scripts

"""
Copyright © 2025 Merck & Co., Inc., Rahway, NJ, USA and its affiliates. All rights reserved.
This file is part of bcdecode.

This source code is licensed under the MIT License found in the
LICENSE file in the root directory of this source tree.
"""

import functools
import logging
import uuid

NO_CALLS = frozenset("Nn.")


class FormatError(ValueError):
    """Malformed barcode file or header. Fatal before any record is processed."""


class DataError(ValueError):
    """Inconsistent data on a single read."""


class RecordStreamError(OSError):
    pass


def wrap_exception(
    catch_exc: type[BaseException] | tuple[type[BaseException], ...],
    wrap_exc: type[BaseException],
    message: str,
):
    """
    Re-raise exceptions of type catch_exc as wrap_exc.
    The message is formatted with the arguments of the wrapped call, so
    "{0}" refers to the first positional argument.
    """

    def wrapper(func):
        @functools.wraps(func)
        def inner(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except catch_exc as e:
                raise wrap_exc(f"{message.format(*args, **kwargs)}: {e}") from e

        return inner

    return wrapper


def logs_runtime(func):
    """
    Logs start and finish times for the wrapped process.
    Will create a logger with a unique ID for each call to the wrapped function
    Pass a logger via the `logger` kwarg to the wrapped function to use that instead
    """
    logger = logging.getLogger(f"{func.__name__}:{uuid.uuid4().int % 1_000_000_000}")

    @functools.wraps(func)
    def inner(*args, **kwargs):
        my_logger: logging.Logger = kwargs.pop("logger", logger)
        my_logger.info("Begin")
        ret = func(*args, **kwargs)
        my_logger.info("Finish")
        return ret

    return inner


def is_no_call(base: str) -> bool:
    return base in NO_CALLS


def count_no_calls(seq: str) -> int:
    return sum(c in NO_CALLS for c in seq)


def count_mismatches(tag: str, barcode: str) -> int:
    """
    Counts the substitutions between a catalogue tag and an observed barcode.
    Positions where either side is a no-call are not counted, nor are
    positions past the end of the shorter sequence.
    """
    return sum(
        t != b and t not in NO_CALLS and b not in NO_CALLS
        for t, b in zip(tag, barcode)
    )
