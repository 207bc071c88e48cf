import pytest
import requests

from sprintify.api import ApiClient, handle_api_error
from sprintify.auth import AuthUser
from sprintify.errors import ApiError, AuthError, AuthenticationError

from conftest import API, FakeBackend


class SlowAuth:
    """Reports no user for the first ``misses`` reads of current_user."""

    def __init__(self, misses=0, token='tok'):
        self.misses = misses
        self.token = token
        self.reads = 0

    def wait_for_auth_state(self, timeout=None):
        return True

    @property
    def current_user(self):
        self.reads += 1
        if self.reads <= self.misses:
            return None
        return AuthUser(uid='u1', email='ada@example.com', refresh_token='r')

    def get_id_token(self, force_refresh=False):
        if isinstance(self.token, Exception):
            raise self.token
        return self.token


def client_for(auth, backend=None, **kwargs):
    sleeps = []
    client = ApiClient(API, auth, session=backend or FakeBackend(), sleep=sleeps.append, retry_delay=1, **kwargs)
    return client, sleeps


def test_waits_for_a_user_before_sending_a_token():
    auth = SlowAuth(misses=2)
    client, sleeps = client_for(auth)
    assert client.get_auth_headers() == {'Authorization': 'Bearer tok'}
    assert sleeps == [1, 1]


def test_gives_up_after_the_retry_budget():
    client, sleeps = client_for(SlowAuth(misses=5), token_retries=3)
    with pytest.raises(AuthenticationError):
        client.get_auth_headers()
    assert len(sleeps) == 2


def test_token_failure_becomes_authentication_error():
    client, _ = client_for(SlowAuth(token=AuthError('TOKEN_EXPIRED')))
    with pytest.raises(AuthenticationError) as excinfo:
        client.get_auth_headers()
    assert 'expired' in excinfo.value.message


def test_successful_request_returns_envelope_and_drops_empty_params():
    backend = FakeBackend()
    backend.add('GET', '/sprints', data=[])
    client, _ = client_for(SlowAuth(), backend)
    assert client.get('/sprints', params={'status': 'active', 'type': None}) == {'success': True, 'data': []}
    call = backend.calls[0]
    assert call['params'] == {'status': 'active'}
    assert call['headers'] == {'Authorization': 'Bearer tok'}


def test_http_error_carries_server_message_and_status():
    backend = FakeBackend()
    backend.add('DELETE', '/sprints/s1', status=403, payload={'success': False, 'error': 'Not yours'})
    client, _ = client_for(SlowAuth(), backend)
    with pytest.raises(ApiError) as excinfo:
        client.delete('/sprints/s1')
    assert excinfo.value.message == 'Not yours'
    assert excinfo.value.status_code == 403


def test_unsuccessful_envelope_uses_fallback():
    backend = FakeBackend()
    backend.add('POST', '/sprints', payload={'success': False})
    client, _ = client_for(SlowAuth(), backend)
    with pytest.raises(ApiError) as excinfo:
        client.post('/sprints', fallback='Failed to create sprint')
    assert excinfo.value.message == 'Failed to create sprint'
    assert backend.calls[0]['json'] == {}


def test_non_json_body_is_an_error():
    backend = FakeBackend()
    backend.routes[('GET', '/x')] = (ValueError('no json'), 200)
    client, _ = client_for(SlowAuth(), backend)
    with pytest.raises(ApiError):
        client.get('/x', fallback='Broken')


class ExplodingSession:
    def __init__(self, exc):
        self.exc = exc

    def request(self, *args, **kwargs):
        raise self.exc


def test_transport_errors():
    client, _ = client_for(SlowAuth(), ExplodingSession(requests.Timeout()))
    with pytest.raises(ApiError, match='timed out'):
        client.get('/sprints')
    client, _ = client_for(SlowAuth(), ExplodingSession(requests.ConnectionError('refused')))
    with pytest.raises(ApiError, match='Network connection failed'):
        client.get('/sprints')


def test_handle_api_error_messages():
    assert handle_api_error('HTTP 429') == 'Too many requests, please try again later'
    assert handle_api_error('') == 'Unknown error'
    assert handle_api_error('weird') == 'weird'


def test_unsettled_auth_state_still_sends_the_request():
    class UnsettledAuth(SlowAuth):
        def wait_for_auth_state(self, timeout=None):
            return False

    backend = FakeBackend()
    backend.add('GET', '/sprints', data=[])
    client, sleeps = client_for(UnsettledAuth(), backend)
    assert client.get('/sprints')['success']
    assert backend.calls[0]['headers'] == {'Authorization': 'Bearer tok'}
    assert sleeps == []
