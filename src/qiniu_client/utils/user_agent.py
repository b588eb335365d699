"""Default User-Agent for outgoing requests.

The default identifies the client library, the platform and the
application using it::

    QiniuPython/7.2.0 (linux; x86_64; my-app) CPython/3.12.1

The application name is process-wide and set with :func:`set_app_name`.
"""

import logging
import platform

from .. import __version__
from ..config.settings import APP_NAME_PATTERN
from ..exceptions import ValidationError

logger = logging.getLogger(__name__)

PRODUCT = "QiniuPython"


def _runtime_version() -> str:
    return f"{platform.python_implementation()}/{platform.python_version()}"


def build_user_agent(app_name: str = "") -> str:
    """Format the User-Agent for ``app_name``.

    :param app_name: Application name, ``[A-Za-z0-9_ -.]*``
    :type app_name: str
    :return: User-Agent header value
    :rtype: str
    :raises ValidationError: If the name contains other characters
    """
    if not APP_NAME_PATTERN.match(app_name):
        raise ValidationError(
            "Application name may only contain letters, digits, '_', ' ', '-' and '.'",
            field="app_name",
            value=app_name,
        )
    system = platform.system().lower() or "unknown"
    machine = platform.machine().lower() or "unknown"
    return f"{PRODUCT}/{__version__} ({system}; {machine}; {app_name}) {_runtime_version()}"


_user_agent = build_user_agent()


def set_app_name(app_name: str) -> str:
    """Rebuild the default User-Agent with ``app_name``.

    :param app_name: Application name, ``[A-Za-z0-9_ -.]*``
    :type app_name: str
    :return: The new default User-Agent
    :rtype: str
    :raises ValidationError: If the name contains other characters
    """
    global _user_agent
    _user_agent = build_user_agent(app_name)
    logger.debug(f"Default User-Agent set to {_user_agent}")
    return _user_agent


def get_user_agent() -> str:
    return _user_agent
