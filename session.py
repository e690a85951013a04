"""
Owner session for Collectibles application.

Authentication itself is handled elsewhere; this module only tracks which
owner is signed in and tells listeners (the collection store) when that
changes.
"""

import logging

logger = logging.getLogger(__name__)


class AuthSession:
    """Current owner identity with sign-in/sign-out notifications."""

    def __init__(self):
        self.owner_id = None
        self._listeners = []

    @property
    def is_authenticated(self) -> bool:
        return self.owner_id is not None

    def add_listener(self, callback):
        """
        Register callback(owner_id) for session transitions.

        owner_id is None on sign-out. Returns a function that removes the
        listener again.
        """
        self._listeners.append(callback)

        def remove():
            if callback in self._listeners:
                self._listeners.remove(callback)
        return remove

    def sign_in(self, owner_id: str) -> None:
        """
        Switch to owner_id and notify listeners.

        If a listener raises, the previous owner is restored and the error
        propagates, so the same sign-in can be retried.
        """
        if not owner_id or not str(owner_id).strip():
            raise ValueError("Owner id is required")
        owner_id = str(owner_id).strip()
        if owner_id == self.owner_id:
            return
        previous = self.owner_id
        self.owner_id = owner_id
        try:
            self._notify()
        except Exception as e:
            # Listeners keep their previous state on failure
            logger.error(f"Sign-in for {owner_id} failed, keeping {previous}: {e}")
            self.owner_id = previous
            raise
        logger.info(f"Signed in: {owner_id}")

    def sign_out(self) -> None:
        if self.owner_id is None:
            return
        logger.info(f"Signed out: {self.owner_id}")
        self.owner_id = None
        self._notify()

    def _notify(self) -> None:
        for callback in list(self._listeners):
            callback(self.owner_id)
