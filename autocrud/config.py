# Configuration settings should be set in app.config
# The class defaults in autocrud.AUTOCRUD and the environment are used as fallback
import os
import logging
from flask import current_app
import autocrud
from typing import Any, Optional


def get_config(option: str) -> Optional[Any]:
    """Retrieve a configuration parameter from the app
    :param option: configuration parameter
    :return: configuration value
    """
    try:
        result = current_app.config[option]
    except (KeyError, RuntimeError):
        # not set in the app or working outside of the app context
        result = getattr(autocrud.AUTOCRUD, option, os.environ.get(option, None))
    return result


def get_int_config(option: str) -> int:
    """
    :param option: configuration parameter holding an integer
    :return: the configuration value converted to int
    """
    value = get_config(option)
    try:
        return int(value)
    except (TypeError, ValueError):
        autocrud.log.warning(f"Invalid integer configuration {option}={value!r}, using the default")
        return int(getattr(autocrud.AUTOCRUD, option))


def is_debug() -> bool:
    """
    We use the loglevel to check whether we're running in debug mode
    :return: whether the app is in debug mode
    """
    return autocrud.log.getEffectiveLevel() < logging.INFO
