"""
Profile directory — usernames <-> user ids, prefix search and identity
resolution.
"""

from typing import Any, Callable, Mapping, Optional

from atme.backend.base import Backend
from atme.constants import REGISTERED_USERNAMES_PATH, RESULTS_COUNT, USER_INFORMATION_PATH
from atme.errors import AtMeError, ProfileError, StoreUnavailable, Unauthenticated
from atme.models.profile import Identity, UserProfile

# Profile fields editable through update_profile(); usernames go through register_username().
EDITABLE_PROFILE_FIELDS = frozenset({"firstName", "lastName", "email", "displayPicture", "notificationID"})


class ProfileDirectory:
    def __init__(self, backend: Backend):
        self._backend = backend

    async def create_profile(
        self,
        uid: str,
        email: str,
        first_name: str,
        last_name: str,
        notification_token: Optional[str] = None,
    ) -> None:
        """Write the profile record for a freshly created account."""
        record: dict[str, Any] = {"email": email, "firstName": first_name, "lastName": last_name}
        if notification_token:
            record["notificationID"] = notification_token
        await self._set(f"{USER_INFORMATION_PATH}/{uid}", record)

    async def username_exists(self, username: str) -> bool:
        return await self._get(f"{REGISTERED_USERNAMES_PATH}/{username}") is not None

    async def register_username(self, uid: str, username: str) -> None:
        """Claim ``username`` for ``uid``, releasing any name ``uid`` held before.

        The claim is a transaction on ``registeredUsernames/{username}`` so two
        users racing for the same name cannot both win.
        """
        if not username:
            raise ProfileError("Username must not be empty", code="invalid_username")

        def claim(current: Any) -> Any:
            return uid if current is None else current

        owner = await self._transaction(f"{REGISTERED_USERNAMES_PATH}/{username}", claim)
        if owner != uid:
            raise ProfileError(f"Username {username!r} is taken", code="username_taken")

        previous = await self._get(f"{USER_INFORMATION_PATH}/{uid}/username")
        await self._set(f"{USER_INFORMATION_PATH}/{uid}/username", username)
        if isinstance(previous, str) and previous and previous != username:

            def release(current: Any) -> Any:
                return None if current == uid else current

            await self._transaction(f"{REGISTERED_USERNAMES_PATH}/{previous}", release)

    async def search(
        self, term: str, exclude_username: Optional[str] = None, limit: int = RESULTS_COUNT,
    ) -> dict[str, str]:
        """Usernames starting with ``term`` mapped to their uid, without the caller."""
        if not term:
            return {}
        try:
            found = await self._backend.query_prefix(REGISTERED_USERNAMES_PATH, term, limit)
        except AtMeError as e:
            raise StoreUnavailable(f"User search failed: {e}")
        return {
            username: uid for username, uid in found.items()
            if username != exclude_username and isinstance(uid, str)
        }

    async def find_details(self, results: Mapping[str, str]) -> list[UserProfile]:
        profiles = []
        for username, uid in results.items():
            info = await self._get(f"{USER_INFORMATION_PATH}/{uid}") or {}
            name = f"{info.get('firstName', '')} {info.get('lastName', '')}".strip()
            profiles.append(UserProfile(uid=uid, username=username, name=name))
        return profiles

    async def establish_identity(
        self, uid: str, email: Optional[str] = None, notification_token: Optional[str] = None,
    ) -> Identity:
        """Resolve the local identity. Every profile field must be present."""
        if not uid:
            raise Unauthenticated()
        info = await self._get(f"{USER_INFORMATION_PATH}/{uid}")
        if not isinstance(info, dict):
            raise Unauthenticated(f"No profile for user {uid}")
        username = info.get("username")
        first = info.get("firstName")
        last = info.get("lastName")
        email = email or info.get("email")
        if not (username and first and last and email):
            raise Unauthenticated(f"Profile for user {uid} is incomplete")

        token = notification_token or info.get("notificationID")
        if notification_token and notification_token != info.get("notificationID"):
            await self._set(f"{USER_INFORMATION_PATH}/{uid}/notificationID", notification_token)

        return Identity(
            uid=uid,
            username=username,
            display_name=f"{first} {last}",
            email=email,
            notification_token=token,
            display_picture=info.get("displayPicture") or f"{uid}/{uid}.JPG",
        )

    async def set_display_picture(self, uid: str, path: str) -> None:
        await self._set(f"{USER_INFORMATION_PATH}/{uid}/displayPicture", path)

    async def clear_notification_token(self, uid: str) -> None:
        await self._set(f"{USER_INFORMATION_PATH}/{uid}/notificationID", None)

    async def update_email(self, uid: str, email: str) -> None:
        """Record a changed email address. The auth provider change happens elsewhere."""
        if not email or "@" not in email:
            raise ProfileError(f"Not an email address: {email!r}", code="invalid_email")
        await self._set(f"{USER_INFORMATION_PATH}/{uid}/email", email)

    async def update_profile(self, uid: str, attribute: str, value: str) -> None:
        if attribute not in EDITABLE_PROFILE_FIELDS:
            raise ProfileError(f"Profile field {attribute!r} cannot be changed", code="invalid_attribute")
        if attribute == "email":
            await self.update_email(uid, value)
            return
        if not value:
            raise ProfileError(f"{attribute} must not be empty", code="invalid_value")
        await self._set(f"{USER_INFORMATION_PATH}/{uid}/{attribute}", value)

    async def _get(self, path: str) -> Any:
        try:
            return await self._backend.get(path)
        except AtMeError as e:
            raise StoreUnavailable(f"Read of {path} failed: {e}")

    async def _set(self, path: str, value: Any) -> None:
        try:
            await self._backend.set(path, value)
        except AtMeError as e:
            raise StoreUnavailable(f"Write to {path} failed: {e}")

    async def _transaction(self, path: str, update: Callable[[Any], Any]) -> Any:
        try:
            return await self._backend.transaction(path, update)
        except AtMeError as e:
            raise StoreUnavailable(f"Transaction on {path} failed: {e}")
