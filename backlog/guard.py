"""Redirect gate for pages that need, or must not have, a signed-in user."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .models import AuthUser

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthState:
    user: Optional[AuthUser] = None
    is_loading: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None


class AuthGuard:
    """Decides once whether a page load should be redirected.

    The first check made after the auth state resolves latches the guard;
    every later check is a no-op so a page never bounces between redirects.
    """

    def __init__(self, require_auth: bool = True, redirect_to: Optional[str] = None) -> None:
        self.require_auth = require_auth
        self.redirect_to = redirect_to or ("/login" if require_auth else "/")
        self._decided = False

    def check(self, state: AuthState) -> Optional[str]:
        """Return the path to redirect to, or ``None`` to render the page."""
        if self._decided or state.is_loading:
            return None
        self._decided = True
        if self.require_auth != state.is_authenticated:
            logger.info("[Auth Guard] Redirecting to %s", self.redirect_to)
            return self.redirect_to
        return None
