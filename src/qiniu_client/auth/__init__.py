"""Authentication interfaces for the Qiniu HTTP client.

The signing scheme itself lives with the credential implementations;
this package only defines the contract the HTTP layer relies on.

:var __all__: List of public exports from this module
:type __all__: List[str]
"""

from .base import BaseCredentials, TokenCredentials

__all__ = [
    "BaseCredentials",
    "TokenCredentials",
]
