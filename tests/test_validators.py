from datetime import datetime, timezone

from sprintify.validators import (is_future_date, is_valid_date_range, is_valid_description, is_valid_email,
                                  is_valid_password, is_valid_sprint_title, is_valid_tag, is_valid_task_title,
                                  is_valid_time_estimate, is_valid_url, is_valid_username, parse_tags, validate_form,
                                  validate_tags)


def test_email():
    assert is_valid_email('ada@example.com')
    assert not is_valid_email('ada@example')
    assert not is_valid_email('')


def test_password_reports_every_missing_rule():
    result = is_valid_password('abc')
    assert not result
    assert len(result.errors) == 3
    assert is_valid_password('Secret123')


def test_username():
    assert is_valid_username('ada_l-1')
    assert not is_valid_username('ad')
    assert not is_valid_username('has space')


def test_titles():
    assert not is_valid_sprint_title('   ')
    assert not is_valid_sprint_title('x' * 101)
    assert is_valid_sprint_title('x' * 100)
    assert is_valid_task_title('x' * 200)
    assert not is_valid_task_title('x' * 201)


def test_description_length():
    assert is_valid_description(None)
    assert is_valid_description('x' * 1000)
    assert is_valid_description('x' * 1001).errors == ['Description cannot be longer than 1000 characters']


def test_date_range_requires_end_after_start():
    assert is_valid_date_range('2024-01-01', '2024-01-08')
    assert not is_valid_date_range('2024-01-08', '2024-01-08')
    assert is_valid_date_range('not a date', '2024-01-08').errors == ['Start date is not a valid date']


def test_future_date():
    now = datetime(2024, 1, 5, tzinfo=timezone.utc)
    assert is_future_date('2024-01-06', now)
    assert not is_future_date('2024-01-04', now)


def test_time_estimate_bounds():
    assert is_valid_time_estimate(0)
    assert is_valid_time_estimate(1440)
    assert not is_valid_time_estimate(1441)
    assert not is_valid_time_estimate(-1)


def test_tags():
    assert is_valid_tag('python')
    assert is_valid_tag('学习')
    assert not is_valid_tag('two words')
    assert not is_valid_tag('x' * 21)
    assert not validate_tags(['a', 'a'])
    assert not validate_tags([str(i) for i in range(11)])
    assert parse_tags(' a, ,b ,') == ['a', 'b']


def test_url():
    assert is_valid_url('https://example.com/x')
    assert not is_valid_url('example.com')


def test_validate_form_collects_field_errors():
    result = validate_form({'title': '', 'email': 'ada@example.com'}, {'title': is_valid_sprint_title})
    assert result.has_errors
    assert list(result.errors) == ['title']
