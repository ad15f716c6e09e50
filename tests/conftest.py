import uuid
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from app import create_app

FAKE_SUPABASE_URL = "https://fake-project.supabase.co"


class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    """Chainable stand-in for the postgrest request builder."""

    def __init__(self, backend, table):
        self._backend = backend
        self._table = table
        self._op = "select"
        self._columns = "*"
        self._payload = None
        self._filters = []
        self._order = None
        self._limit = None

    def select(self, columns="*", *_args, **_kwargs):
        self._columns = columns
        return self

    def insert(self, payload, *_args, **_kwargs):
        self._op, self._payload = "insert", payload
        return self

    def upsert(self, payload, *_args, **_kwargs):
        self._op, self._payload = "upsert", payload
        return self

    def update(self, payload, *_args, **_kwargs):
        self._op, self._payload = "update", payload
        return self

    def eq(self, column, value):
        self._filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self._order = (column, desc)
        return self

    def limit(self, count):
        self._limit = count
        return self

    def execute(self):
        self._backend.calls.append((self._table, self._op, dict(self._filters), self._payload))
        hook = self._backend.hooks.get((self._table, self._op))
        if hook is not None:
            hook()
        failure = self._backend.failures.get((self._table, self._op))
        if failure is not None:
            raise failure

        rows = self._backend.tables.setdefault(self._table, [])
        if self._op == "insert":
            payloads = self._payload if isinstance(self._payload, list) else [self._payload]
            return FakeResponse([dict(self._backend.insert_row(self._table, payload)) for payload in payloads])
        if self._op == "upsert":
            existing = [row for row in rows if row.get("id") == self._payload.get("id")]
            if existing:
                existing[0].update(self._payload)
                return FakeResponse([dict(existing[0])])
            return FakeResponse([dict(self._backend.insert_row(self._table, self._payload))])

        matched = [row for row in rows if self._matches(row)]
        if self._op == "update":
            for row in matched:
                row.update(self._payload)
            return FakeResponse([dict(row) for row in matched])

        if self._order:
            column, desc = self._order
            matched = sorted(matched, key=lambda row: row.get(column) or "", reverse=desc)
        if self._limit is not None:
            matched = matched[: self._limit]
        return FakeResponse([self._backend.expand(self._table, row, self._columns) for row in matched])

    def _matches(self, row):
        return all(str(row.get(column)) == str(value) for column, value in self._filters)


class FakeRpc:
    def __init__(self, backend, name, params):
        self._backend = backend
        self._name = name
        self._params = params

    def execute(self):
        self._backend.calls.append(("rpc", self._name, dict(self._params), None))
        failure = self._backend.failures.get(("rpc", self._name))
        if failure is not None:
            raise failure
        return FakeResponse(self._backend.cast_vote(**self._params))


class FakeAuth:
    def __init__(self, users=None, reset_requests=None):
        self.users = {} if users is None else users
        self.session = None
        self.listeners = []
        self.sign_out_error = None
        self.reset_requests = [] if reset_requests is None else reset_requests

    def on_auth_state_change(self, callback):
        self.listeners.append(callback)
        return SimpleNamespace(unsubscribe=lambda: self.listeners.remove(callback))

    def _emit(self, event, session):
        for callback in list(self.listeners):
            callback(event, session)

    def add_user(self, email, password, **metadata):
        user = SimpleNamespace(
            id=str(uuid.uuid4()),
            email=email,
            user_metadata=metadata,
            created_at=datetime.now(timezone.utc),
        )
        self.users[email] = (password, user)
        return user

    def sign_up(self, credentials):
        email = credentials["email"]
        if email in self.users:
            raise Exception("User already registered")
        metadata = credentials.get("options", {}).get("data", {})
        user = self.add_user(email, credentials["password"], **metadata)
        self.session = SimpleNamespace(user=user, access_token="token")
        self._emit("SIGNED_IN", self.session)
        return SimpleNamespace(user=user, session=self.session)

    def sign_in_with_password(self, credentials):
        record = self.users.get(credentials["email"])
        if record is None or record[0] != credentials["password"]:
            raise Exception("Invalid login credentials")
        self.session = SimpleNamespace(user=record[1], access_token="token")
        self._emit("SIGNED_IN", self.session)
        return SimpleNamespace(user=record[1], session=self.session)

    def sign_out(self):
        if self.sign_out_error is not None:
            raise self.sign_out_error
        self.session = None
        self._emit("SIGNED_OUT", None)

    def get_session(self):
        return self.session

    def reset_password_for_email(self, email, options=None):
        self.reset_requests.append((email, options))


class FakeBucket:
    def __init__(self, backend, name):
        self._backend = backend
        self._name = name

    def upload(self, path, data, file_options=None):
        self._backend.objects[(self._name, path)] = data
        return SimpleNamespace(path=path, full_path=f"{self._name}/{path}")

    def get_public_url(self, path):
        return f"{FAKE_SUPABASE_URL}/storage/v1/object/public/{self._name}/{path}"

    def remove(self, paths):
        for path in paths:
            self._backend.objects.pop((self._name, path), None)
        return []


class FakeSupabase:
    """In-process Supabase double: tables, auth, storage and the vote RPC."""

    UNIQUE = {
        "competition_entries_auth_2024": [("competition_id", "user_id")],
        "votes_auth_2024": [("competition_id", "entry_id", "user_id")],
    }

    def __init__(self, root=None):
        if root is None:
            self.tables = {}
            self.failures = {}
            self.hooks = {}
            self.calls = []
            self.objects = {}
            self.clients = []
            self.auth = FakeAuth()
        else:
            # Another browser session: same project data, its own auth session.
            self.tables = root.tables
            self.failures = root.failures
            self.hooks = root.hooks
            self.calls = root.calls
            self.objects = root.objects
            self.clients = root.clients
            self.auth = FakeAuth(root.auth.users, root.auth.reset_requests)
        self.storage = SimpleNamespace(from_=lambda bucket: FakeBucket(self, bucket))

    def new_client(self):
        client = FakeSupabase(root=self)
        self.clients.append(client)
        return client

    def table(self, name):
        return FakeQuery(self, name)

    def rpc(self, name, params):
        return FakeRpc(self, name, params)

    def insert_row(self, table, payload):
        rows = self.tables.setdefault(table, [])
        for columns in self.UNIQUE.get(table, []):
            if any(all(str(row.get(c)) == str(payload.get(c)) for c in columns) for row in rows):
                raise Exception('duplicate key value violates unique constraint "%s_key"' % table)
        row = dict(payload)
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        rows.append(row)
        return row

    def expand(self, table, row, columns):
        data = dict(row)
        if table == "competitions_auth_2024" and "competition_entries_auth_2024" in (columns or ""):
            entries = []
            for entry in self.tables.get("competition_entries_auth_2024", []):
                if entry.get("competition_id") != row.get("id"):
                    continue
                nested = dict(entry)
                author = self._find("user_profiles_auth_2024", entry.get("user_id")) or {}
                media = self._find("media_files_auth_2024", entry.get("media_file_id")) or {}
                nested["user_profiles_auth_2024"] = {"name": author.get("name")}
                nested["media_files_auth_2024"] = {
                    "name": media.get("name"),
                    "file_url": media.get("file_url"),
                    "file_type": media.get("file_type"),
                }
                entries.append(nested)
            data["competition_entries_auth_2024"] = entries
        return data

    def cast_vote(self, p_competition_id, p_entry_id, p_user_id):
        try:
            self.insert_row(
                "votes_auth_2024",
                {"competition_id": p_competition_id, "entry_id": p_entry_id, "user_id": p_user_id},
            )
        except Exception:
            return False
        entry = self._find("competition_entries_auth_2024", p_entry_id)
        if entry is not None:
            entry["votes"] = entry.get("votes", 0) + 1
        return True

    def _find(self, table, row_id):
        for row in self.tables.get(table, []):
            if row.get("id") == row_id:
                return row
        return None


@pytest.fixture()
def make_app(tmp_path):
    """Build apps sharing one SQLite file, so a second app simulates a reload."""
    database_url = f"sqlite:///{tmp_path / 'hub.db'}"

    def _make(supabase_client=None, **overrides):
        config = {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": database_url,
            "USE_SUPABASE": supabase_client is not None,
            "SUPABASE_URL": FAKE_SUPABASE_URL if supabase_client is not None else None,
            "SUPABASE_KEY": "fake-key" if supabase_client is not None else None,
            "SUPABASE_CLIENT": supabase_client,
            "SUPABASE_CLIENT_FACTORY": supabase_client.new_client if supabase_client is not None else None,
            "PASSWORD_RESET_REDIRECT_URL": "https://hub.example.com/reset-password",
        }
        config.update(overrides)
        return create_app(config)

    return _make


@pytest.fixture()
def local_app(make_app):
    return make_app()


@pytest.fixture()
def fake_supabase():
    return FakeSupabase()


@pytest.fixture()
def remote_app(make_app, fake_supabase):
    return make_app(fake_supabase)


@pytest.fixture()
def local_client(local_app):
    return local_app.test_client()


@pytest.fixture()
def remote_client(remote_app):
    return remote_app.test_client()
