from io import BytesIO

import pytest
from werkzeug.datastructures import FileStorage

from errors import AuthRequiresBackend, ConfigurationError, InvalidCredentials, ValidationError
from identity import IdentityFacade
from local_store import USER_KEY, LocalStore

PROFILES = "user_profiles_auth_2024"


def _png(name="me.png", size=16):
    return FileStorage(stream=BytesIO(b"\x89PNG" + b"0" * size), filename=name, content_type="image/png")


def test_local_register_creates_and_persists_profile(local_app):
    with local_app.app_context():
        identity = local_app.config["IDENTITY_FACADE"]
        profile = identity.register("ana@example.com", "secret1", {"name": "Ana", "location": "Leeds"})

        assert profile.id
        assert identity.is_authenticated
        assert not identity.is_remote_backed
        assert LocalStore().get(USER_KEY)["email"] == "ana@example.com"
        assert identity.register("bo@example.com", "pw", {"name": "Bo"}).id != profile.id


def test_local_register_takes_any_password(local_app):
    with local_app.app_context():
        identity = local_app.config["IDENTITY_FACADE"]
        profile = identity.register("a@b.com", "pw", {"name": "A"})

        assert profile.id
        assert identity.is_authenticated
        assert identity.profile == profile


@pytest.mark.parametrize(
    "email,password,fields,message",
    [
        ("not-an-email", "secret1", {"name": "Ana"}, "valid email"),
        ("ana@example.com", "secret1", {"name": "  "}, "your name"),
    ],
)
def test_register_rejects_bad_input(local_app, email, password, fields, message):
    with local_app.app_context():
        identity = local_app.config["IDENTITY_FACADE"]
        with pytest.raises(ValidationError) as excinfo:
            identity.register(email, password, fields)
        assert message in excinfo.value.message
        assert identity.profile is None


def test_login_without_backend_is_refused(local_app):
    with local_app.app_context():
        identity = local_app.config["IDENTITY_FACADE"]
        before = identity.register("ana@example.com", "secret1", {"name": "Ana"})

        with pytest.raises(AuthRequiresBackend):
            identity.login("ana@example.com", "secret1")
        assert identity.profile == before


def test_update_profile_merges_and_survives_reload(make_app):
    app = make_app()
    with app.app_context():
        identity = app.config["IDENTITY_FACADE"]
        identity.register("ana@example.com", "secret1", {"name": "Ana", "location": "Leeds"})
        updated = identity.update_profile({"name": "Ana B", "bio": "Shoots film"})

        assert updated.location == "Leeds"
        assert updated.bio == "Shoots film"

    reloaded = make_app()
    with reloaded.app_context():
        profile = reloaded.config["IDENTITY_FACADE"].profile
        assert profile.name == "Ana B"
        assert profile.location == "Leeds"


def test_update_profile_requires_a_profile(local_app):
    with local_app.app_context():
        with pytest.raises(ValidationError):
            local_app.config["IDENTITY_FACADE"].update_profile({"name": "Nobody"})


def test_subscribers_see_each_profile_change_once(local_app):
    with local_app.app_context():
        identity = local_app.config["IDENTITY_FACADE"]
        seen = []
        unsubscribe = identity.subscribe(seen.append)

        profile = identity.register("ana@example.com", "secret1", {"name": "Ana"})
        identity.update_profile({})
        identity.logout()
        unsubscribe()
        identity.register("bo@example.com", "secret1", {"name": "Bo"})

        assert seen == [profile, None]


def test_local_avatar_becomes_data_url(local_app):
    with local_app.app_context():
        identity = local_app.config["IDENTITY_FACADE"]
        identity.register("ana@example.com", "secret1", {"name": "Ana"})
        url = identity.upload_avatar(_png())

        assert url.startswith("data:image/png;base64,")


def test_remote_register_provisions_profile_row(remote_app, fake_supabase):
    with remote_app.app_context():
        identity = remote_app.config["IDENTITY_FACADE"]
        profile = identity.register("ana@example.com", "secret1", {"name": "Ana", "bio": "Hi"})

        assert identity.is_remote_backed
        assert identity.remote_user_id == profile.id
        rows = fake_supabase.tables[PROFILES]
        assert [row["name"] for row in rows] == ["Ana"]
        assert rows[0]["bio"] == "Hi"


def test_remote_login_loads_stored_profile(remote_app, fake_supabase):
    user = fake_supabase.auth.add_user("ana@example.com", "secret1", name="From metadata")
    fake_supabase.tables[PROFILES] = [
        {"id": user.id, "email": "ana@example.com", "name": "Stored Ana", "location": "York"}
    ]

    with remote_app.app_context():
        identity = remote_app.config["IDENTITY_FACADE"]
        provisional = identity.login("ana@example.com", "secret1")

        assert provisional.name == "From metadata"
        assert identity.profile.name == "Stored Ana"
        assert identity.profile.location == "York"


def test_remote_login_with_wrong_password(remote_app, fake_supabase):
    fake_supabase.auth.add_user("ana@example.com", "secret1", name="Ana")

    with remote_app.app_context():
        identity = remote_app.config["IDENTITY_FACADE"]
        with pytest.raises(InvalidCredentials) as excinfo:
            identity.login("ana@example.com", "wrong-password")
        assert excinfo.value.status_code == 401
        assert identity.profile is None


def test_logout_clears_session_even_when_remote_sign_out_fails(remote_app, fake_supabase):
    with remote_app.app_context():
        identity = remote_app.config["IDENTITY_FACADE"]
        identity.register("ana@example.com", "secret1", {"name": "Ana"})
        fake_supabase.auth.sign_out_error = Exception("network unreachable")

        identity.logout()

        assert identity.profile is None
        assert not identity.is_remote_backed


def test_update_creates_missing_remote_profile_row(remote_app, fake_supabase):
    with remote_app.app_context():
        identity = remote_app.config["IDENTITY_FACADE"]
        profile = identity.register("ana@example.com", "secret1", {"name": "Ana"})
        fake_supabase.tables[PROFILES] = []

        identity.update_profile({"bio": "New bio"})

        rows = fake_supabase.tables[PROFILES]
        assert len(rows) == 1
        assert rows[0]["id"] == profile.id
        assert rows[0]["bio"] == "New bio"
        operations = [op for table, op, _, _ in fake_supabase.calls if table == PROFILES]
        assert operations[-2:] == ["update", "insert"]


def test_password_reset_passes_redirect(remote_app, fake_supabase):
    with remote_app.app_context():
        remote_app.config["IDENTITY_FACADE"].send_password_reset("ana@example.com")

    assert fake_supabase.auth.reset_requests == [
        ("ana@example.com", {"redirect_to": "https://hub.example.com/reset-password"})
    ]


def test_password_reset_needs_backend(local_app):
    with local_app.app_context():
        with pytest.raises(AuthRequiresBackend):
            local_app.config["IDENTITY_FACADE"].send_password_reset("ana@example.com")


def test_remote_avatar_upload_and_removal(remote_app, fake_supabase):
    with remote_app.app_context():
        identity = remote_app.config["IDENTITY_FACADE"]
        profile = identity.register("ana@example.com", "secret1", {"name": "Ana"})

        url = identity.upload_avatar(_png())
        identity.update_profile({"avatar": url})

        assert f"/object/public/avatars/{profile.id}/profiles/" in url
        assert len(fake_supabase.objects) == 1

        cleared = identity.remove_avatar()

        assert cleared.avatar is None
        assert fake_supabase.objects == {}
        assert fake_supabase.tables[PROFILES][0]["avatar_url"] is None


def test_facade_without_client_reports_no_backend(local_app):
    with local_app.app_context():
        identity = IdentityFacade(None, LocalStore())
        assert not identity.backend_configured
        assert identity.initialize() is None
        assert identity.loading is False


def test_unbuildable_backend_fails_auth_with_configuration_error(make_app):
    app = make_app(
        USE_SUPABASE=True,
        SUPABASE_URL="https://real-project.supabase.co",
        SUPABASE_KEY="anon-key",
        SUPABASE_CLIENT_FACTORY=lambda: None,
    )
    with app.app_context():
        identity = app.config["IDENTITY_FACADE"]
        assert not identity.backend_configured

        with pytest.raises(ConfigurationError):
            identity.register("ana@example.com", "secret1", {"name": "Ana"})
        with pytest.raises(ConfigurationError):
            identity.login("ana@example.com", "secret1")
        assert identity.profile is None
