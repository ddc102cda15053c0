"""ProfileDirectory: usernames, prefix search, identity resolution."""

import asyncio

import pytest

from atme.directory import ProfileDirectory
from atme.errors import ProfileError, StoreUnavailable, Unauthenticated
from atme.models.profile import UserProfile


@pytest.fixture
def directory(backend):
    return ProfileDirectory(backend)


async def register(directory, uid, username, first="First", last="Last", token=None):
    await directory.create_profile(uid, f"{username}@example.com", first, last, token)
    await directory.register_username(uid, username)


class TestUsernames:

    @pytest.mark.asyncio
    async def test_register_and_exists(self, directory, backend):
        await register(directory, "u1", "joel")
        assert await directory.username_exists("joel")
        assert not await directory.username_exists("nobody")
        assert await backend.get("userInformation/u1/username") == "joel"

    @pytest.mark.asyncio
    async def test_username_taken(self, directory):
        await register(directory, "u1", "joel")
        with pytest.raises(ProfileError) as exc:
            await directory.register_username("u2", "joel")
        assert exc.value.code == "username_taken"

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(self, directory, backend):
        await directory.create_profile("u1", "a@example.com", "A", "One")
        await directory.create_profile("u2", "b@example.com", "B", "Two")
        results = await asyncio.gather(
            directory.register_username("u1", "joel"),
            directory.register_username("u2", "joel"),
            return_exceptions=True,
        )
        assert results[0] is None
        assert isinstance(results[1], ProfileError)
        assert await backend.get("registeredUsernames/joel") == "u1"
        assert await backend.get("userInformation/u2/username") is None

    @pytest.mark.asyncio
    async def test_rename_releases_old_name(self, directory, backend):
        await register(directory, "u1", "joel")
        await directory.register_username("u1", "joel")
        await directory.register_username("u1", "jrorseth")
        assert await backend.get("registeredUsernames") == {"jrorseth": "u1"}
        assert await backend.get("userInformation/u1/username") == "jrorseth"
        await directory.register_username("u2", "joel")
        assert await directory.username_exists("joel")

    @pytest.mark.asyncio
    async def test_empty_username(self, directory):
        with pytest.raises(ProfileError):
            await directory.register_username("u1", "")


class TestSearch:

    @pytest.mark.asyncio
    async def test_prefix_search_excludes_self(self, directory):
        for uid, name in [("u1", "joel"), ("u2", "joelle"), ("u3", "john"), ("u4", "amy")]:
            await register(directory, uid, name)
        assert await directory.search("jo", exclude_username="joel") == {"joelle": "u2", "john": "u3"}
        assert await directory.search("joel") == {"joel": "u1", "joelle": "u2"}
        assert await directory.search("zz") == {}
        assert await directory.search("") == {}

    @pytest.mark.asyncio
    async def test_limit(self, directory):
        for i in range(5):
            await register(directory, f"u{i}", f"user{i}")
        assert list(await directory.search("user", limit=2)) == ["user0", "user1"]

    @pytest.mark.asyncio
    async def test_find_details(self, directory):
        await register(directory, "u2", "joelle", "Joelle", "R")
        profiles = await directory.find_details({"joelle": "u2"})
        assert profiles == [UserProfile(uid="u2", username="joelle", name="Joelle R")]

    @pytest.mark.asyncio
    async def test_unreachable(self, directory, backend):
        backend.offline = True
        with pytest.raises(StoreUnavailable):
            await directory.search("jo")


class TestIdentity:

    @pytest.mark.asyncio
    async def test_establish(self, directory):
        await register(directory, "u1", "joel", "Joel", "Rorseth", token="old-token")
        identity = await directory.establish_identity("u1")
        assert identity.uid == "u1"
        assert identity.username == "joel"
        assert identity.display_name == "Joel Rorseth"
        assert identity.email == "joel@example.com"
        assert identity.notification_token == "old-token"
        assert identity.display_picture == "u1/u1.JPG"

    @pytest.mark.asyncio
    async def test_fresh_token_is_stored(self, directory, backend):
        await register(directory, "u1", "joel")
        identity = await directory.establish_identity("u1", notification_token="new-token")
        assert identity.notification_token == "new-token"
        assert await backend.get("userInformation/u1/notificationID") == "new-token"

    @pytest.mark.asyncio
    async def test_unauthenticated(self, directory):
        with pytest.raises(Unauthenticated):
            await directory.establish_identity("")
        with pytest.raises(Unauthenticated):
            await directory.establish_identity("missing")

    @pytest.mark.asyncio
    async def test_incomplete_profile(self, directory):
        await directory.create_profile("u1", "joel@example.com", "Joel", "Rorseth")
        with pytest.raises(Unauthenticated):
            await directory.establish_identity("u1")

    @pytest.mark.asyncio
    async def test_clear_token_and_display_picture(self, directory, backend):
        await register(directory, "u1", "joel", token="tok")
        await directory.set_display_picture("u1", "u1/custom.JPG")
        await directory.clear_notification_token("u1")
        info = await backend.get("userInformation/u1")
        assert "notificationID" not in info
        assert info["displayPicture"] == "u1/custom.JPG"


class TestProfileUpdates:

    @pytest.mark.asyncio
    async def test_update_email(self, directory, backend):
        await register(directory, "u1", "joel", "Joel", "Rorseth")
        await directory.update_email("u1", "new@example.com")
        assert await backend.get("userInformation/u1/email") == "new@example.com"
        identity = await directory.establish_identity("u1")
        assert identity.email == "new@example.com"

    @pytest.mark.asyncio
    async def test_update_email_rejects_garbage(self, directory, backend):
        await register(directory, "u1", "joel")
        with pytest.raises(ProfileError) as exc:
            await directory.update_email("u1", "not-an-address")
        assert exc.value.code == "invalid_email"
        assert await backend.get("userInformation/u1/email") == "joel@example.com"

    @pytest.mark.asyncio
    async def test_update_profile_fields(self, directory):
        await register(directory, "u1", "joel", "Joel", "Rorseth")
        await directory.update_profile("u1", "firstName", "Joe")
        await directory.update_profile("u1", "email", "joe@example.com")
        identity = await directory.establish_identity("u1")
        assert identity.display_name == "Joe Rorseth"
        assert identity.email == "joe@example.com"

    @pytest.mark.asyncio
    async def test_update_profile_restricted(self, directory, backend):
        await register(directory, "u1", "joel")
        with pytest.raises(ProfileError) as exc:
            await directory.update_profile("u1", "username", "hijack")
        assert exc.value.code == "invalid_attribute"
        with pytest.raises(ProfileError) as exc:
            await directory.update_profile("u1", "lastName", "")
        assert exc.value.code == "invalid_value"
        assert await backend.get("userInformation/u1/username") == "joel"
