import logging
from datetime import timedelta

from sprintify.data import Sprint

from conftest import NOW, sprint_doc, task_doc


def sprint(updated, **extra):
    return Sprint.from_dict(sprint_doc('s1', updated=updated, **extra))


def test_older_server_copy_is_ignored(cache, caplog):
    cache.store_sprint('u1', sprint(NOW, title='Newer'))
    with caplog.at_level(logging.WARNING, logger='sprintify.db'):
        kept = cache.store_sprint('u1', sprint(NOW - timedelta(hours=1), title='Older'))
    assert kept.title == 'Newer'
    assert cache.fetch_sprint('u1', 's1').title == 'Newer'
    assert 'StaleWriteWarning' in caplog.text


def test_newer_server_copy_replaces_cache(cache):
    cache.store_sprint('u1', sprint(NOW - timedelta(hours=1), title='Old'))
    cache.store_sprint('u1', sprint(NOW, title='New'))
    assert cache.fetch_sprint('u1', 's1').title == 'New'


def test_list_documents_keep_cached_children(cache):
    cache.store_sprint('u1', sprint(NOW - timedelta(hours=1), tasks=[task_doc('t1')]))
    kept = cache.store_sprint('u1', sprint(NOW, title='Renamed'), partial=True)
    assert kept.title == 'Renamed'
    assert [t.id for t in cache.fetch_sprint('u1', 's1').tasks] == ['t1']


def test_local_edits_keep_the_server_timestamp(cache):
    cache.store_sprint('u1', sprint(NOW - timedelta(hours=2)))
    cache.store_sprint('u1', sprint(NOW + timedelta(hours=1), title='Edited here'), local=True)
    # newer than the last server copy, even though older than the local edit
    cache.store_sprint('u1', sprint(NOW - timedelta(hours=1), title='From server'))
    assert cache.fetch_sprint('u1', 's1').title == 'From server'


def test_sprints_are_scoped_and_sorted(cache):
    cache.store_sprint('u1', Sprint.from_dict(sprint_doc('early', start=NOW - timedelta(days=20))))
    cache.store_sprint('u1', Sprint.from_dict(sprint_doc('late', start=NOW - timedelta(days=2))))
    cache.store_sprint('u2', Sprint.from_dict(sprint_doc('other')))
    assert [s.id for s in cache.fetch_sprints('u1')] == ['late', 'early']
    assert cache.fetch_sprint('u1', 'other') is None


def test_remove_and_prune(cache):
    for sprint_id in ('a', 'b', 'c'):
        cache.store_sprint('u1', Sprint.from_dict(sprint_doc(sprint_id)))
    assert cache.remove_sprint('u1', 'a')
    assert not cache.remove_sprint('u1', 'a')
    assert cache.prune_sprints('u1', ['b']) == 1
    assert [s.id for s in cache.fetch_sprints('u1')] == ['b']


def test_users_and_sessions(cache):
    user = cache.upsert_user('u1', 'ada@example.com', 'ada', refresh_token='r1')
    assert user.user_type == 'normal'
    cache.upsert_user('u1', 'ada@example.com', user_type='premium')
    assert cache.get_user('u1').display_name == 'ada'
    assert cache.get_user('u1').user_type == 'premium'
    cache.forget_session('u1')
    assert cache.get_user('u1').refresh_token is None


def test_settings_defaults_and_reset(cache):
    settings = cache.get_settings('u1')
    assert settings.reminder_time == '09:00'
    assert settings.push_notifications is False
    cache.save_settings('u1', {'theme': 'dark'})
    assert cache.get_settings('u1').theme == 'dark'
    cache.reset_settings('u1')
    assert cache.get_settings('u1').theme == 'system'
