"""Shared pytest fixtures and helpers."""

from .backend import *  # noqa: F401,F403
from .core import *  # noqa: F401,F403
from .realtime import *  # noqa: F401,F403
