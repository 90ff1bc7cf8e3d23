"""
Utility functions for exception logging in the relay, including exception groups
raised from Starlette/anyio task groups and explicit ``raise ... from`` chains.
"""

import logging


def _safe_str(obj) -> str:
    """
    Safely convert an object to string, handling cases where __str__ or __repr__ might fail.
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def _safe_get_exceptions(exception_group) -> list:
    try:
        return list(getattr(exception_group, "exceptions", None) or [])
    except Exception:
        return []


def _describe(exception: BaseException) -> str:
    text = _safe_str(exception)
    name = type(exception).__name__
    return f"{name}: {text}" if text else name


def _cause_chain(exception: BaseException, limit: int = 5) -> list:
    """Return the explicit ``__cause__`` chain below ``exception``, innermost last."""
    chain = []
    current = getattr(exception, "__cause__", None)
    while current is not None and len(chain) < limit:
        chain.append(current)
        current = getattr(current, "__cause__", None)
    return chain


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: BaseException,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception with its cause chain and, for exception groups, each sub-exception.

    Never raises: a broken exception object must not take the error path down with it.
    """
    try:
        sub_exceptions = _safe_get_exceptions(exception)
        if sub_exceptions:
            logger.log(
                level,
                f"{prefix} Exception with {len(sub_exceptions)} sub-exceptions: {_safe_str(exception)}",
            )
            for i, sub_exc in enumerate(sub_exceptions):
                logger.log(
                    level,
                    f"{prefix} Sub-exception {i+1}: {_describe(sub_exc)}",
                    exc_info=sub_exc,
                )
            return

        causes = _cause_chain(exception)
        message = f"{prefix} Exception: {_describe(exception)}"
        if causes:
            message += " (caused by " + " <- ".join(_describe(c) for c in causes) + ")"
        logger.log(level, message, exc_info=exception)
    except Exception:
        try:
            logger.log(logging.ERROR, f"{prefix} Exception (logging failed)")
        except Exception:
            pass


def format_exception_message(exception: BaseException) -> str:
    """
    Format an exception for a client-facing diagnostic, folding in sub-exceptions
    of exception groups. Never raises.
    """
    try:
        if exception is None:
            return "None"

        sub_exceptions = _safe_get_exceptions(exception)
        if sub_exceptions:
            joined = "; ".join(_describe(sub_exc) for sub_exc in sub_exceptions)
            return f"{_safe_str(exception)} (Sub-exceptions: {joined})"

        return _safe_str(exception)
    except Exception:
        return f"<{type(exception).__name__} (formatting failed)>"
