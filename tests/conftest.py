from datetime import datetime, timedelta, timezone

import pytest

from sprintify.app import create_app
from sprintify.auth import AuthUser
from sprintify.config import TestingConfig
from sprintify.data import format_datetime
from sprintify.db import LocalCache
from sprintify.errors import AuthError
from sprintify.models import db

NOW = datetime(2024, 1, 5, 12, 0, tzinfo=timezone.utc)
API = 'http://backend.test/api'


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeBackend:
    """Stands in for the requests session the API client talks through."""

    def __init__(self, base=API):
        self.base = base
        self.routes = {}
        self.calls = []

    def add(self, method, path, data=None, status=200, payload=None):
        if payload is None:
            payload = {'success': status < 400}
            if data is not None:
                payload['data'] = data
        self.routes[(method, path)] = (payload, status)

    def request(self, method, url, params=None, json=None, headers=None, timeout=None):
        path = url[len(self.base):]
        self.calls.append({'method': method, 'path': path, 'params': params, 'json': json, 'headers': headers})
        payload, status = self.routes.get((method, path), ({'success': False, 'error': 'Not found'}, 404))
        return FakeResponse(payload, status)

    def called(self, method, path):
        return [call for call in self.calls if call['method'] == method and call['path'] == path]


class FakeAuth:
    """In-memory replacement for FirebaseAuth."""

    def __init__(self, accounts):
        self.accounts = accounts
        self.current_user = None
        self.settled = False
        self.reset_requests = []

    def wait_for_auth_state(self, timeout=None):
        return self.settled

    def mark_signed_out(self):
        self.current_user = None
        self.settled = True

    def sign_out(self):
        self.mark_signed_out()

    def restore(self, uid, email, refresh_token, display_name=None):
        self.settled = True
        self.current_user = AuthUser(uid=uid, email=email, refresh_token=refresh_token,
                                     display_name=display_name) if refresh_token else None

    def get_id_token(self, force_refresh=False):
        if self.current_user is None:
            raise AuthError('NO_USER', 'No user is signed in')
        return f'token-{self.current_user.uid}'

    def sign_in_with_password(self, email, password):
        account = self.accounts.get(email)
        if account is None or account['password'] != password:
            raise AuthError('INVALID_LOGIN_CREDENTIALS')
        self.current_user = AuthUser(uid=account['uid'], email=email, refresh_token=f"refresh-{account['uid']}",
                                     display_name=account.get('display_name'))
        self.settled = True
        return self.current_user

    def sign_up(self, email, password, display_name=None):
        if email in self.accounts:
            raise AuthError('EMAIL_EXISTS')
        uid = f'uid-{len(self.accounts) + 1}'
        self.accounts[email] = {'uid': uid, 'password': password, 'display_name': display_name}
        return self.sign_in_with_password(email, password)

    def send_password_reset(self, email):
        if email not in self.accounts:
            raise AuthError('EMAIL_NOT_FOUND')
        self.reset_requests.append(email)


def sprint_doc(sprint_id='s1', status='active', start=NOW - timedelta(days=4), end=NOW + timedelta(days=3),
               updated=NOW - timedelta(hours=1), **extra):
    doc = {
        'id': sprint_id,
        'userId': 'u1',
        'title': f'Sprint {sprint_id}',
        'description': '',
        'type': 'learning',
        'template': '7days',
        'difficulty': 'beginner',
        'status': status,
        'startDate': format_datetime(start),
        'endDate': format_datetime(end),
        'createdAt': format_datetime(start),
        'updatedAt': format_datetime(updated),
    }
    doc.update(extra)
    return doc


def task_doc(task_id, status='todo', dependencies=(), **extra):
    doc = {'id': task_id, 'sprintId': 's1', 'title': f'Task {task_id}', 'status': status,
           'dependencies': list(dependencies), 'estimatedTime': 30}
    doc.update(extra)
    return doc


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def accounts():
    return {'ada@example.com': {'uid': 'u1', 'password': 'Secret123', 'display_name': 'ada'}}


@pytest.fixture
def app(backend, accounts):
    app = create_app(TestingConfig, auth_factory=lambda: FakeAuth(accounts), http_session=backend,
                     clock=lambda: NOW)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def cache(app):
    return LocalCache()


def login_as(client, uid='u1', email='ada@example.com', user_type='normal'):
    LocalCache().upsert_user(uid, email, 'ada', refresh_token=f'refresh-{uid}', user_type=user_type)
    with client.session_transaction() as sess:
        sess['_user_id'] = uid
        sess['_fresh'] = True


@pytest.fixture
def user_client(client):
    login_as(client)
    return client


@pytest.fixture
def admin_client(client):
    login_as(client, user_type='admin')
    return client
