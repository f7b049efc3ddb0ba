from typing import Callable
import functools
import logging


def log_exceptions(func: Callable) -> Callable:
    """
    Decorator that logs exceptions with full traceback and re-raises them.

    The error goes to the instance's `logger` attribute when the decorated
    function is a method of an object that has one (the motor's injected
    logger sink), otherwise to the logger of the function's module.

    Example:
    >>> from appliedmotion.tools import log_exceptions
    >>>
    >>> class Motor:
    ...
    ...     @log_exceptions
    ...     def go_for(self, rpm, revolutions):
    ...         ...
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            logger = getattr(args[0], "logger", None) if args else None
            if not isinstance(logger, (logging.Logger, logging.LoggerAdapter)):
                logger = logging.getLogger(func.__module__)
            logger.error(
                "Exception in %s: %s", func.__qualname__, e,
                exc_info=True
            )
            raise

    return wrapper
