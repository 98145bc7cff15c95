"""Shelf OS package

This package contains the metadata fusion, pattern learning, preference
and suggestion services behind an audiobook library assistant, plus the
engine facade that owns their state and a command-line interface.

Public classes are re-exported here for convenience, so that callers may
import ``shelf_os.ShelfOSEngine`` without needing to know the internal
layout.
"""

from .engine import ShelfOSEngine  # noqa: F401
from .config_service import ConfigService  # noqa: F401
from .state_service import StateService  # noqa: F401
from .tag_service import TagService  # noqa: F401
from .models import InvalidRequestError, MetadataEstimate, FileDescriptor  # noqa: F401

__all__ = [
    "ShelfOSEngine",
    "ConfigService",
    "StateService",
    "TagService",
    "InvalidRequestError",
    "MetadataEstimate",
    "FileDescriptor",
]
