"""Member sign-in and admin authorization."""
import logging
from typing import Callable, Iterable, List, Optional, Tuple

import httpx

from bookclub.errors import BookClubError, ConfigurationError, TransportError
from bookclub.models import Identity

logger = logging.getLogger(__name__)

IdentityListener = Callable[[Optional[Identity]], None]

_PROVIDER_MESSAGES = {
    "EMAIL_NOT_FOUND": "No member with that email.",
    "INVALID_PASSWORD": "Wrong password.",
    "INVALID_LOGIN_CREDENTIALS": "Wrong email or password.",
    "INVALID_EMAIL": "That email address is not valid.",
    "USER_DISABLED": "This account has been disabled.",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "Too many attempts. Please try again later.",
}


class FirebaseAuthClient:
    """Email/password sign-in against the Firebase Identity Toolkit REST API."""

    BASE_URL = "https://identitytoolkit.googleapis.com/v1/accounts:signInWithPassword"

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def sign_in(self, email: str, password: str) -> Identity:
        """
        Exchange credentials for an identity.

        Raises:
            ConfigurationError: No API key is configured
            BookClubError: The provider rejected the credentials
            TransportError: Network or HTTP failure
        """
        if not self.api_key:
            raise ConfigurationError("Sign-in is not configured (FIREBASE_API_KEY).")

        try:
            response = await self.client.post(
                self.BASE_URL,
                params={"key": self.api_key},
                json={"email": email, "password": password, "returnSecureToken": True},
            )
        except httpx.HTTPError as e:
            raise TransportError(str(e)) from e

        if response.status_code == 400:
            try:
                code = (response.json().get("error") or {}).get("message", "")
            except (ValueError, AttributeError):
                code = ""
            # Codes may carry a detail suffix, e.g. "TOO_MANY_ATTEMPTS_TRY_LATER : ..."
            code = code.split(" ")[0]
            raise BookClubError(_PROVIDER_MESSAGES.get(code, code or "Sign-in rejected."))
        if not response.is_success:
            raise TransportError(f"API Error: {response.status_code} {response.reason_phrase}")

        try:
            data = response.json()
            return Identity(uid=data["localId"], email=data["email"], id_token=data.get("idToken"))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise TransportError(f"Malformed sign-in response: {e!r}") from e

    async def close(self):
        await self.client.aclose()


class SessionGate:
    """
    Tracks who is signed in and which members may curate the lists.

    Listeners registered with ``subscribe`` are called with the current
    identity right away and again whenever it changes.
    """

    def __init__(self, provider: FirebaseAuthClient, admin_emails: Iterable[str] = ()):
        self.provider = provider
        self.admin_emails = {email.lower() for email in admin_emails}
        self._current: Optional[Identity] = None
        self._listeners: List[IdentityListener] = []

    @property
    def current(self) -> Optional[Identity]:
        return self._current

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)
        listener(self._current)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_current(self, identity: Optional[Identity]):
        self._current = identity
        for listener in list(self._listeners):
            listener(identity)

    def is_admin(self, identity: Optional[Identity]) -> bool:
        """Case-insensitive membership in the admin allow-list."""
        if identity is None or not identity.email:
            return False
        return identity.email.lower() in self.admin_emails

    async def sign_in(self, email: str, password: str) -> Tuple[bool, str]:
        """
        Sign a member in.

        Returns:
            (succeeded, message for the member)
        """
        try:
            identity = await self.provider.sign_in(email, password)
        except BookClubError as e:
            logger.warning(f"Sign-in failed for {email}: {e}")
            return False, f"Login failed: {e}"

        logger.info(f"Signed in: {identity.email}")
        self._set_current(identity)
        return True, f"Logged in as {identity.email}"

    async def sign_out(self):
        if self._current is not None:
            logger.info(f"Signed out: {self._current.email}")
        self._set_current(None)

    async def close(self):
        await self.provider.close()
