"""Case sharing service: shares, invitations and access codes."""

from .main import create_app
from .settings import CaseShareSettings

__all__ = ["create_app", "CaseShareSettings"]
