from datetime import timedelta
from urllib.parse import parse_qs, urlparse

from sprintify.data import Sprint
from sprintify.db import LocalCache

from conftest import NOW, sprint_doc, task_doc


def seed(**extra):
    return LocalCache().store_sprint('u1', Sprint.from_dict(sprint_doc('s1', **extra)))


def test_anonymous_users_are_sent_to_login(client):
    response = client.get('/dashboard')
    assert response.status_code == 302
    assert '/auth/login' in response.headers['Location']


def test_login_mirrors_the_account_and_its_role(client, backend):
    backend.add('GET', '/auth/profile', data={'id': 'u1', 'email': 'ada@example.com', 'userType': 'premium'})
    response = client.post('/auth/login', data={'email': 'ada@example.com', 'password': 'Secret123'})
    assert response.status_code == 302
    assert response.headers['Location'].endswith('/dashboard')
    user = LocalCache().get_user('u1')
    assert user.user_type == 'premium'
    assert user.refresh_token == 'refresh-u1'
    assert backend.called('GET', '/auth/profile')[0]['headers'] == {'Authorization': 'Bearer token-u1'}


def test_login_only_follows_local_next(client, backend):
    response = client.post('/auth/login?next=//evil.example/x',
                           data={'email': 'ada@example.com', 'password': 'Secret123'})
    assert response.headers['Location'].endswith('/dashboard')


def test_bad_password_is_reported(client):
    response = client.post('/auth/login', data={'email': 'ada@example.com', 'password': 'nope'})
    assert response.status_code == 200
    assert b'Invalid email or password' in response.data


def test_signup_rejects_weak_passwords(client, accounts):
    response = client.post('/auth/signup', data={'display_name': 'grace', 'email': 'grace@example.com',
                                                  'password': 'short', 'password_confirm': 'short'})
    assert response.status_code == 200
    assert 'grace@example.com' not in accounts


def test_signup_creates_the_account(client, accounts):
    response = client.post('/auth/signup', data={'display_name': 'grace', 'email': 'grace@example.com',
                                                  'password': 'Secret123', 'password_confirm': 'Secret123'})
    assert response.status_code == 302
    assert LocalCache().get_user(accounts['grace@example.com']['uid']).display_name == 'grace'


def test_password_reset_does_not_reveal_accounts(client):
    for email in ('ada@example.com', 'nobody@example.com'):
        response = client.post('/auth/reset', data={'email': email}, follow_redirects=True)
        assert b'If an account exists for that address' in response.data


def test_logout_forgets_the_refresh_token(user_client):
    user_client.get('/auth/logout')
    assert LocalCache().get_user('u1').refresh_token is None


def test_dashboard_shows_backend_sprints(user_client, backend):
    backend.add('GET', '/sprints', data=[sprint_doc('s1', title='Learn Go')])
    backend.add('GET', '/sprints/s1/tasks', data=[])
    response = user_client.get('/dashboard')
    assert response.status_code == 200
    assert b'Learn Go' in response.data
    # ends in three days
    assert b'Sprint deadline approaching' in response.data


def test_dashboard_counts_tasks_it_has_not_seen_before(user_client, backend):
    backend.add('GET', '/sprints', data=[sprint_doc('s1')])
    backend.add('GET', '/sprints/s1/tasks', data=[
        task_doc('a', status='completed', completedAt='2024-01-05T10:00:00Z', actualTime=45)])
    response = user_client.get('/dashboard')
    assert response.status_code == 200
    assert backend.called('GET', '/sprints/s1/tasks')
    assert [t.id for t in LocalCache().fetch_sprint('u1', 's1').tasks] == ['a']
    assert b'1 tasks completed in the last year' in response.data
    assert b'Showing saved data' not in response.data


def test_today_lists_tasks_of_active_sprints(user_client, backend):
    backend.add('GET', '/sprints', data=[sprint_doc('s1')])
    backend.add('GET', '/sprints/s1/tasks', data=[task_doc('a', title='Write the parser', status='in-progress')])
    response = user_client.get('/today')
    assert b'Write the parser' in response.data


def test_dashboard_falls_back_to_saved_sprints(user_client, backend):
    seed(title='Saved sprint')
    backend.add('GET', '/sprints', status=500, payload={'success': False, 'error': 'Server error'})
    response = user_client.get('/dashboard')
    assert b'Showing saved data: Server error' in response.data
    assert b'Saved sprint' in response.data


def test_expired_session_goes_back_to_login(client):
    LocalCache().upsert_user('u1', 'ada@example.com')
    with client.session_transaction() as sess:
        sess['_user_id'] = 'u1'
    response = client.get('/dashboard')
    assert response.status_code == 302
    location = urlparse(response.headers['Location'])
    assert location.path == '/auth/login'
    assert parse_qs(location.query) == {'next': ['/dashboard']}


def test_create_sprint(user_client, backend):
    backend.add('POST', '/sprints', data=sprint_doc('new', status='draft'))
    response = user_client.post('/sprints/create', data={
        'title': 'Learn Rust', 'type': 'learning', 'template': '21days', 'difficulty': 'intermediate',
        'start_date': '2024-01-06', 'tags': 'rust',
    })
    assert response.status_code == 302
    assert response.headers['Location'].endswith('/sprints/new')
    body = backend.called('POST', '/sprints')[0]['json']
    assert body['endDate'] == '2024-01-27T00:00:00Z'
    assert body['tags'] == ['rust']


def test_create_form_preselects_a_template(user_client):
    response = user_client.get('/sprints/create?template=90days')
    assert b'90-day career shift' in response.data
    assert user_client.get('/sprints/create?template=bogus').status_code == 200


def test_sprint_detail(user_client, backend):
    backend.add('GET', '/sprints/s1', data=sprint_doc('s1', title='Learn Go', tasks=[
        task_doc('a', title='Tour of Go'), task_doc('b', title='Write a CLI', dependencies=['a'])],
        milestones=[{'id': 'm1', 'title': 'Halfway', 'targetDate': '2024-01-04T00:00:00Z'}]))
    response = user_client.get('/sprints/s1')
    assert response.status_code == 200
    assert b'Tour of Go' in response.data
    assert b'blocked' in response.data
    assert b'missed' in response.data


def test_sprint_pages_poll_the_countdown_every_second(user_client, backend):
    backend.add('GET', '/sprints/s1', data=sprint_doc('s1'))
    backend.add('GET', '/sprints', data=[sprint_doc('s1')])
    backend.add('GET', '/sprints/s1/tasks', data=[])
    for page in ('/sprints/s1', '/dashboard'):
        html = user_client.get(page).get_data(as_text=True)
        assert 'data-countdown-url="/sprints/s1/countdown.json"' in html
        assert '}, 1000);' in html
        assert "addEventListener('pagehide', function () { clearInterval(timer); })" in html
    assert user_client.get('/sprints/s1/countdown.json').get_json()['success']


def test_missing_sprint_is_a_404(user_client, backend):
    backend.add('GET', '/sprints/nope', status=404, payload={'success': False, 'error': 'Sprint not found'})
    assert user_client.get('/sprints/nope').status_code == 404


def test_sprint_actions(user_client, backend):
    seed(status='draft')
    backend.add('POST', '/sprints/s1/start')
    response = user_client.post('/sprints/s1/start', follow_redirects=False)
    assert response.status_code == 302
    assert LocalCache().fetch_sprint('u1', 's1').status.value == 'active'

    response = user_client.post('/sprints/s1/start')
    with user_client.session_transaction() as sess:
        messages = [message for _, message in sess['_flashes']]
    assert 'Cannot move a active sprint to active' in messages
    assert user_client.post('/sprints/s1/explode').status_code == 404


def test_batch_delete(user_client, backend):
    seed()
    backend.add('DELETE', '/sprints')
    response = user_client.post('/sprints', data={'sprint_ids': ['s1']})
    assert response.status_code == 302
    assert LocalCache().fetch_sprints('u1') == []


def test_toggle_task_returns_to_next(user_client, backend):
    seed(tasks=[task_doc('a')])
    backend.add('PUT', '/sprints/s1/tasks/a')
    response = user_client.post('/sprints/s1/tasks/a/toggle', data={'next': '/today'})
    assert response.headers['Location'].endswith('/today')
    assert LocalCache().fetch_sprint('u1', 's1').tasks[0].status.value == 'completed'


def test_toggle_ignores_off_site_next(user_client, backend):
    seed(tasks=[task_doc('a')])
    backend.add('PUT', '/sprints/s1/tasks/a')
    response = user_client.post('/sprints/s1/tasks/a/toggle', data={'next': 'https://evil.example/phish'})
    assert response.headers['Location'].endswith('/dashboard')


def test_timer_logs_minutes(app, user_client, backend):
    seed(tasks=[task_doc('a', actualTime=5)])
    backend.add('PUT', '/sprints/s1/tasks/a')
    user_client.post('/sprints/s1/tasks/a/timer', data={'action': 'start'})
    app.extensions['sprintify']['clock'] = lambda: NOW + timedelta(seconds=125)
    user_client.post('/sprints/s1/tasks/a/timer', data={'action': 'stop'})
    assert backend.called('PUT', '/sprints/s1/tasks/a')[0]['json'] == {'actualTime': 7}


def test_countdown_json(user_client):
    seed()
    data = user_client.get('/sprints/s1/countdown.json').get_json()
    assert data['success']
    assert data['data']['days'] == 3
    assert data['data']['urgency'] == 'warning'
    assert data['data']['daysRemaining'] == 3
    assert data['data']['timeProgress'] == 57


def test_template_recommendations_json(client):
    data = client.get('/templates/7days/recommendations.json?duration=14').get_json()
    assert data['data']['recommendedTasks'] == 10
    assert data['data']['recommendedMilestones'] == 4
    assert data['data']['name'] == '7-day quick sprint'
    assert client.get('/templates/14days/recommendations.json').status_code == 404


def test_admin_pages_are_guarded(user_client):
    response = user_client.get('/admin/users')
    assert response.status_code == 403
    assert b'Administrator' in response.data


def test_admin_can_list_users(admin_client, backend):
    backend.add('GET', '/users', data={'users': [{'id': 'u2', 'email': 'grace@example.com'}],
                                       'pagination': {'page': 1, 'totalPages': 1, 'total': 1}})
    response = admin_client.get('/admin/users')
    assert response.status_code == 200
    assert b'grace@example.com' in response.data


def test_admin_cannot_demote_themselves(admin_client, backend):
    admin_client.post('/admin/users/u1', data={'user_type': 'normal'})
    assert backend.calls == []


def test_review_upgrade_request(admin_client, backend):
    backend.add('POST', '/upgrade-requests/r1/review')
    admin_client.post('/admin/upgrade-requests/r1/review', data={'action': 'reject', 'comment': 'Not yet'})
    assert backend.calls[0]['json'] == {'action': 'reject', 'status': 'rejected', 'comment': 'Not yet'}


def test_upgrade_request_flow(user_client, backend):
    backend.add('GET', '/upgrade-requests/my-status', data={'latestRequest': None, 'canApply': True})
    backend.add('POST', '/upgrade-requests', data={'id': 'r1', 'userId': 'u1', 'userEmail': 'ada@example.com',
                                                   'reason': 'I want the statistics'})
    response = user_client.post('/upgrade-request', data={'reason': 'I want the statistics'})
    assert response.status_code == 302
    assert backend.called('POST', '/upgrade-requests')[0]['json'] == {'reason': 'I want the statistics'}


def test_setup_admin_promotes_the_local_user(user_client, backend):
    backend.add('POST', '/auth/setup-first-admin', data={'message': 'You are now the administrator.'})
    user_client.post('/setup-admin')
    assert LocalCache().get_user('u1').user_type == 'admin'


def test_settings_are_saved_locally_even_if_the_backend_fails(user_client, backend):
    response = user_client.post('/settings/notifications', data={
        'email': 'y', 'daily_reminder': 'y', 'reminder_time': '07:30', 'theme': 'dark', 'language': 'en-US',
        'timezone': 'Europe/Berlin', 'time_format': '24h',
    }, follow_redirects=True)
    assert b'Saved on this device only' in response.data
    settings = LocalCache().get_settings('u1')
    assert settings.reminder_time == '07:30'
    assert settings.theme == 'dark'
    assert settings.deadline_reminder is False


def test_notification_options_json(user_client):
    data = user_client.post('/notifications/options', json={
        'notification': {'title': 'Done!'}, 'data': {'type': 'sprint_completed', 'sprintId': 's1'},
    }).get_json()
    assert data['url'] == 'http://localhost:5000/sprints/s1/summary'
    assert [a['action'] for a in data['actions']] == ['view', 'dismiss']


def test_snoozed_notifications_reach_the_dashboard(app, user_client, backend):
    backend.add('GET', '/sprints', data=[])
    scheduler = app.extensions['sprintify']['scheduler']
    scheduler.delay = 60
    data = user_client.post('/notifications/snooze', json={'notification': {'title': 'Study', 'body': 'Now'}}).get_json()
    assert data['success']
    assert scheduler.pending == 1
    # deliver without waiting for the timer
    timer = scheduler._timers[data['id']]
    scheduler.cancel(data['id'])
    scheduler._fire(data['id'], timer.args[1])
    response = user_client.get('/dashboard')
    assert b'Study: Now' in response.data


PLAN = {'conversationId': 'c1', 'plan': {
    'sprintInfo': {'title': 'Rust in a month', 'duration': 30, 'type': 'learning', 'description': 'Systems basics'},
    'phases': [{'title': 'Setup', 'duration': 3, 'tasks': ['Install rustup']}],
    'milestones': [{'title': 'First crate', 'targetDate': 10}],
    'tips': ['Read the book'],
}}
PLAN_FORM = {'prompt': 'Learn Rust for systems work', 'type': 'learning', 'template': '30days',
             'difficulty': 'beginner'}


def test_plan_generation_needs_a_login(client):
    response = client.get('/sprints/generate')
    assert response.status_code == 302
    assert urlparse(response.headers['Location']).path == '/auth/login'


def test_generate_plan_under_the_limit(user_client, backend):
    backend.add('GET', '/ai/usage', data={'today': {'count': 1, 'limit': 5}, 'userType': 'normal'})
    backend.add('POST', '/ai/generate-plan', data=PLAN)
    response = user_client.post('/sprints/generate', data=PLAN_FORM)
    assert response.status_code == 200
    assert b'Rust in a month' in response.data
    assert b'Install rustup' in response.data
    assert b'2 of 5 plans used today' in response.data
    assert backend.called('POST', '/ai/generate-plan')[0]['json']['preferences'] == {'difficulty': 'beginner'}
    assert b'/sprints/create?' in response.data


def test_generate_plan_refused_at_the_limit(user_client, backend):
    backend.add('GET', '/ai/usage', data={'today': {'count': 5, 'limit': 5}, 'userType': 'normal'})
    response = user_client.post('/sprints/generate', data=PLAN_FORM)
    assert b"You have used today&#39;s AI plans" in response.data
    assert b'Daily AI limit reached' in response.data
    assert not backend.called('POST', '/ai/generate-plan')


def test_admins_generate_past_the_count(admin_client, backend):
    backend.add('GET', '/ai/usage', data={'today': {'count': 40, 'limit': 5}, 'userType': 'admin'})
    backend.add('POST', '/ai/generate-plan', data=PLAN)
    response = admin_client.post('/sprints/generate', data=PLAN_FORM)
    assert b'Rust in a month' in response.data
    assert backend.called('POST', '/ai/generate-plan')


def test_create_form_takes_a_generated_plan(user_client):
    response = user_client.get('/sprints/create?template=30days&type=project&title=Rust+in+a+month')
    assert b'value="Rust in a month"' in response.data
