"""Nero Party backend: party lifecycle and scoring engine."""
from nero_party.version import APP_VERSION

__version__ = APP_VERSION
