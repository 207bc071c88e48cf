import atexit
from collections import defaultdict
from datetime import timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import Blueprint, Flask, abort, current_app, flash, g, jsonify, redirect, render_template, request, session, url_for
from flask_login import LoginManager, login_user, logout_user, login_required, current_user
from flask_wtf.csrf import CSRFProtect

from sprintify.analytics import (HEATMAP_DAYS, achievements, build_activity_heatmap, category_breakdown,
                                 completion_trend, daily_progress, group_by_weeks, heatmap_summary,
                                 sprint_statistics, time_distribution)
from sprintify.api import ApiClient
from sprintify.auth import FirebaseAuth
from sprintify.config import Config, api_base_url, auth_emulator_host
from sprintify.countdown import (calculate_time_remaining, format_relative_time, format_time, get_days_remaining,
                                 status_message, time_progress, urgency_level)
from sprintify.data import SprintStatus, TaskStatus, parse_datetime, utcnow
from sprintify.db import LocalCache, ensure_db
from sprintify.dependencies import available_dependencies, blocked_tasks
from sprintify.errors import (ApiError, AuthError, AuthenticationError, DependencyError, InvalidTransitionError,
                              ValidationError)
from sprintify.forms import (AiPlanForm, DependencyForm, LoginForm, MilestoneForm, NotificationSettingsForm,
                             PasswordResetForm, ReviewForm, SignupForm, SprintEditForm, SprintForm, TaskForm,
                             UpgradeRequestForm, UserUpdateForm)
from sprintify.models import db, User
from sprintify.notifications import (SnoozeScheduler, build_notification_options, deadline_reminders,
                                     overdue_tasks, parse_push_payload)
from sprintify.permissions import (UserType, can_generate_plan, can_use_feature, feature_required, is_admin,
                                   is_premium, permission_required, user_type_display_name)
from sprintify.services import (AI_DAILY_LIMITS, AiUsage, Backend, UpgradeRequestService, UpgradeRequestStats,
                                UpgradeStatus, UserPage, UserStats)
from sprintify.sprint_templates import SPRINT_TEMPLATES, calculate_template_recommendations, get_template_info
from sprintify.stores import SettingsStore, SprintStore
from sprintify.timer import TimeTracker
from sprintify.validators import parse_tags

# failures shown to the user as a flash message; AuthenticationError has its own handler
USER_ERRORS = (ApiError, AuthError, ValidationError, InvalidTransitionError, DependencyError)

HEATMAP_WINDOW = timedelta(days=HEATMAP_DAYS)

SPRINT_ACTIONS = {
    'start': ('start_sprint', SprintStatus.ACTIVE, 'Sprint started. Good luck!'),
    'pause': ('pause_sprint', SprintStatus.PAUSED, 'Sprint paused.'),
    'complete': ('complete_sprint', SprintStatus.COMPLETED, 'Sprint completed. Well done!'),
    'cancel': ('cancel_sprint', SprintStatus.CANCELLED, 'Sprint cancelled.'),
}

csrf = CSRFProtect()
login_manager = LoginManager()
login_manager.login_view = 'main.login'
login_manager.login_message_category = 'info'

main = Blueprint('main', __name__)


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, user_id)


def create_app(config_object=Config, auth_factory=None, http_session=None, clock=utcnow):
    """Build the app.

    ``auth_factory`` returns a fresh auth session per request and
    ``http_session`` is the requests session the backend client uses; tests
    pass fakes for both.
    """
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    db.init_app(app)
    login_manager.init_app(app)
    csrf.init_app(app)

    if auth_factory is None:
        def auth_factory():
            return FirebaseAuth(app.config['FIREBASE_API_KEY'], session=http_session,
                                emulator_host=auth_emulator_host(app.config), timeout=app.config['API_TIMEOUT'])

    inbox = defaultdict(list)
    scheduler = SnoozeScheduler(lambda message: inbox[message.data.get('userId')].append(message))
    atexit.register(scheduler.cancel_all)
    app.extensions['sprintify'] = {
        'auth_factory': auth_factory,
        'http_session': http_session,
        'clock': clock,
        'scheduler': scheduler,
        'inbox': inbox,
    }

    app.register_blueprint(main)
    app.jinja_env.filters['relative_time'] = lambda value: format_relative_time(value, clock())
    app.jinja_env.filters['clock'] = format_time
    app.jinja_env.filters['day'] = lambda value: value.strftime('%Y-%m-%d') if value else ''

    ensure_db(app)
    return app


def _ext():
    return current_app.extensions['sprintify']


def _now():
    return _ext()['clock']()


def get_auth():
    """The auth session for this request, restored from the stored refresh token."""
    if 'auth' not in g:
        auth = _ext()['auth_factory']()
        if current_user.is_authenticated:
            auth.restore(current_user.id, current_user.email, current_user.refresh_token, current_user.display_name)
        else:
            auth.mark_signed_out()
        g.auth = auth
    return g.auth


def get_backend():
    if 'backend' not in g:
        config = current_app.config
        client = ApiClient(
            api_base_url(config),
            get_auth(),
            timeout=config['API_TIMEOUT'],
            session=_ext()['http_session'],
            auth_wait_timeout=config['AUTH_WAIT_TIMEOUT'],
            token_retries=config['TOKEN_RETRIES'],
            retry_delay=config['TOKEN_RETRY_DELAY'],
        )
        g.backend = Backend.from_client(client)
    return g.backend


def sprint_store():
    if 'sprint_store' not in g:
        backend = get_backend()
        g.sprint_store = SprintStore(backend.sprints, backend.tasks, backend.milestones, LocalCache(),
                                     current_user.id, clock=_ext()['clock'])
    return g.sprint_store


def settings_store():
    return SettingsStore(LocalCache(), current_user.id)


def _user_tz():
    name = settings_store().load_settings()['preferences']['timezone']
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def _safe_next(target):
    if target and target.startswith('/') and not target.startswith('//'):
        return target
    return url_for('main.dashboard')


def _flash_form_errors(form):
    for field, errors in form.errors.items():
        label = getattr(form, field).label.text if hasattr(form, field) else field
        for error in errors:
            flash(f'{label}: {error}', 'danger')


def _sign_in(auth_user, remember=False):
    """Mirror the Firebase account locally and log it in with Flask-Login."""
    user_type = None
    try:
        user_type = get_backend().users.profile().user_type
    except USER_ERRORS as exc:
        current_app.logger.warning('Could not load profile for %s: %s', auth_user.uid, exc.message)
    user = LocalCache().upsert_user(auth_user.uid, auth_user.email, auth_user.display_name,
                                    refresh_token=auth_user.refresh_token, user_type=user_type)
    login_user(user, remember=remember)
    return user


@main.after_app_request
def remember_refresh_token(response):
    auth = g.get('auth')
    if auth is not None and current_user.is_authenticated and auth.current_user is not None:
        token = auth.current_user.refresh_token
        if token and token != current_user.refresh_token:
            LocalCache().upsert_user(current_user.id, current_user.email, refresh_token=token)
    return response


@main.app_context_processor
def inject_helpers():
    return {
        'UserType': UserType,
        'is_admin': is_admin,
        'is_premium': is_premium,
        'can_use_feature': can_use_feature,
        'user_type_display_name': user_type_display_name,
        'app_name': current_app.config.get('APP_NAME', 'Sprintify'),
    }


@main.app_errorhandler(AuthenticationError)
def handle_authentication_error(exc):
    current_app.logger.warning('Backend rejected the session: %s', exc.message)
    if current_user.is_authenticated:
        LocalCache().forget_session(current_user.id)
        logout_user()
    flash(exc.message, 'warning')
    return redirect(url_for('main.login', next=request.path))


@main.app_errorhandler(404)
def not_found(exc):
    return render_template('error.html', code=404, message='Page not found'), 404


# auth

@main.route('/auth/login', methods=['GET', 'POST'])
def login():
    if current_user.is_authenticated:
        return redirect(url_for('main.dashboard'))
    form = LoginForm()
    if form.validate_on_submit():
        try:
            auth_user = get_auth().sign_in_with_password(form.email.data.strip(), form.password.data)
        except AuthError as exc:
            flash(exc.message, 'danger')
        else:
            user = _sign_in(auth_user, remember=form.remember_me.data)
            flash(f'Welcome back, {user.display_name or user.email}!', 'success')
            return redirect(_safe_next(request.args.get('next')))
    return render_template('login.html', form=form)


@main.route('/auth/signup', methods=['GET', 'POST'])
def signup():
    if current_user.is_authenticated:
        return redirect(url_for('main.dashboard'))
    form = SignupForm()
    if form.validate_on_submit():
        try:
            auth_user = get_auth().sign_up(form.email.data.strip(), form.password.data, form.display_name.data)
        except AuthError as exc:
            flash(exc.message, 'danger')
        else:
            _sign_in(auth_user)
            flash('Account created successfully! Welcome to Sprintify.', 'success')
            return redirect(url_for('main.dashboard'))
    return render_template('signup.html', form=form)


@main.route('/auth/reset', methods=['GET', 'POST'])
def reset_password():
    form = PasswordResetForm()
    if form.validate_on_submit():
        try:
            get_auth().send_password_reset(form.email.data.strip())
        except AuthError as exc:
            # do not reveal whether the address is registered
            current_app.logger.info('Password reset not sent: %s', exc.code)
        flash('If an account exists for that address, a reset link is on its way.', 'info')
        return redirect(url_for('main.login'))
    return render_template('reset.html', form=form)


@main.route('/auth/logout')
@login_required
def logout():
    get_auth().sign_out()
    LocalCache().forget_session(current_user.id)
    logout_user()
    flash('You have been logged out.', 'info')
    return redirect(url_for('main.login'))


# dashboard

@main.route('/')
def index():
    return redirect(url_for('main.dashboard') if current_user.is_authenticated else url_for('main.login'))


@main.route('/dashboard')
@login_required
def dashboard():
    store = sprint_store()
    now = _now()
    try:
        store.load_sprints()
        # charts count task completions inside the heatmap window
        store.refresh_tasks(s for s in store.all_sprints() if s.end_date >= now - HEATMAP_WINDOW)
    except USER_ERRORS as exc:
        flash(f'Showing saved data: {exc.message}', 'warning')
    for message in _ext()['inbox'].pop(current_user.id, []):
        flash(f'{message.title}: {message.body}', 'info')

    tz = _user_tz()
    today = now.astimezone(tz).date()
    sprints = store.all_sprints()
    tasks = [task for sprint in sprints for task in sprint.tasks]
    active = [s for s in sprints if s.status == SprintStatus.ACTIVE]

    heatmap = build_activity_heatmap(sprints, tasks, today, tz)
    countdowns = []
    for sprint in active:
        remaining = calculate_time_remaining(sprint.end_date, now)
        countdowns.append({
            'sprint': sprint,
            'remaining': remaining,
            'urgency': urgency_level(remaining),
            'message': status_message(sprint, remaining),
            'time_progress': time_progress(sprint.start_date, sprint.end_date, now),
        })

    return render_template(
        'dashboard.html',
        stats=sprint_statistics(sprints),
        summary=heatmap_summary(heatmap),
        weeks=group_by_weeks(heatmap),
        countdowns=countdowns,
        reminders=deadline_reminders(active, now),
        daily=daily_progress(sprints, tasks, today, tz=tz),
        categories=category_breakdown(sprints),
        distribution=time_distribution(tasks, tz),
        trend=completion_trend(tasks, today, tz=tz),
        show_advanced=can_use_feature(current_user, 'advanced_stats'),
        recent=sprints[:5],
    )


@main.route('/today')
@login_required
def today():
    store = sprint_store()
    try:
        store.load_sprints(status=SprintStatus.ACTIVE.value)
        store.refresh_tasks(store.active_sprints())
    except USER_ERRORS as exc:
        flash(f'Showing saved data: {exc.message}', 'warning')
    now = _now()
    tz = _user_tz()
    day = now.astimezone(tz).date()

    focus, done = [], []
    active = store.active_sprints()
    for sprint in active:
        for task in sprint.tasks:
            if task.is_done:
                if task.completed_at and task.completed_at.astimezone(tz).date() == day:
                    done.append((sprint, task))
            elif task.status == TaskStatus.IN_PROGRESS or (task.due_date and task.due_date.astimezone(tz).date() == day):
                focus.append((sprint, task))
    overdue = overdue_tasks([t for s in active for t in s.tasks], now)
    return render_template('today.html', sprints=active, focus=focus, done=done, overdue=overdue, day=day,
                           days_left={s.id: get_days_remaining(s.end_date, now) for s in active})


# sprints

@main.route('/sprints', methods=['GET', 'POST'])
@login_required
def sprints():
    store = sprint_store()
    if request.method == 'POST':
        ids = request.form.getlist('sprint_ids')
        if not ids:
            flash('Select at least one sprint.', 'info')
        else:
            try:
                store.delete_sprints(ids)
                flash(f'Deleted {len(ids)} sprint(s).', 'success')
            except USER_ERRORS as exc:
                flash(exc.message, 'danger')
        return redirect(url_for('main.sprints', **request.args))

    try:
        store.load_sprints()
    except USER_ERRORS as exc:
        flash(f'Showing saved data: {exc.message}', 'warning')
    status = request.args.get('status') or ''
    sprint_type = request.args.get('type') or ''
    query = (request.args.get('q') or '').strip().lower()
    items = store.all_sprints()
    if status:
        items = [s for s in items if s.status.value == status]
    if sprint_type:
        items = [s for s in items if s.type.value == sprint_type]
    if query:
        items = [s for s in items if query in s.title.lower() or query in s.description.lower()]
    return render_template('sprints.html', sprints=items, status=status, sprint_type=sprint_type, query=query,
                           statuses=list(SprintStatus))


@main.route('/sprints/create', methods=['GET', 'POST'])
@login_required
def create_sprint():
    form = SprintForm()
    if request.method == 'GET':
        requested = request.args.get('template')
        if requested in {key.value for key in SPRINT_TEMPLATES}:
            form.template.data = requested
        if request.args.get('type') in {value for value, _ in form.type.choices}:
            form.type.data = request.args['type']
        form.title.data = form.title.data or request.args.get('title')
        form.description.data = form.description.data or request.args.get('description')
        form.start_date.data = form.start_date.data or _now().date()
    if form.validate_on_submit():
        try:
            sprint = sprint_store().create_sprint(form.to_store_form())
        except USER_ERRORS as exc:
            flash(exc.message, 'danger')
        else:
            flash(f'Sprint "{sprint.title}" created!', 'success')
            return redirect(url_for('main.sprint_detail', sprint_id=sprint.id))
    try:
        template = get_template_info(form.template.data or 'custom')
    except ValueError:
        template = get_template_info('custom')
    recommendations = calculate_template_recommendations(template.id, form.duration.data or None)
    return render_template('sprint_form.html', form=form, title='Create Sprint', template=template,
                           recommendations=recommendations, templates=SPRINT_TEMPLATES)


@main.route('/sprints/generate', methods=['GET', 'POST'])
@feature_required('ai_generation')
def generate_plan():
    backend = get_backend()
    form = AiPlanForm()
    try:
        usage = backend.ai.usage()
    except USER_ERRORS as exc:
        flash(exc.message, 'warning')
        usage = AiUsage(limit=AI_DAILY_LIMITS.get(current_user.user_type, AI_DAILY_LIMITS['normal']),
                        user_type=current_user.user_type)
    plan = None
    if form.validate_on_submit():
        if not can_generate_plan(current_user, usage):
            flash("You have used today's AI plans. The allowance resets tomorrow.", 'warning')
        else:
            try:
                plan = backend.ai.generate_plan(form.prompt.data.strip(), form.type.data, form.template.data,
                                                preferences={'difficulty': form.difficulty.data})
            except USER_ERRORS as exc:
                flash(exc.message, 'danger')
            else:
                usage.count += 1
                current_app.logger.info('Generated plan %s for %s', plan.conversation_id, current_user.id)
    return render_template('generate_plan.html', form=form, usage=usage, plan=plan,
                           allowed=can_generate_plan(current_user, usage))


def _load_or_cached(sprint_id):
    store = sprint_store()
    try:
        return store.load_sprint(sprint_id)
    except USER_ERRORS as exc:
        if getattr(exc, 'status_code', None) == 404:
            abort(404)
        sprint = store.cache.fetch_sprint(current_user.id, sprint_id)
        if sprint is None:
            raise
        flash(f'Showing saved data: {exc.message}', 'warning')
        return sprint


@main.route('/sprints/<sprint_id>')
@login_required
def sprint_detail(sprint_id):
    try:
        sprint = _load_or_cached(sprint_id)
    except USER_ERRORS as exc:
        flash(exc.message, 'danger')
        return redirect(url_for('main.sprints'))
    now = _now()
    remaining = calculate_time_remaining(sprint.end_date, now)
    tasks = sprint.tasks
    names = {t.id: t.title for t in tasks}
    return render_template(
        'sprint_detail.html',
        sprint=sprint,
        remaining=remaining,
        urgency=urgency_level(remaining),
        message=status_message(sprint, remaining),
        time_progress=time_progress(sprint.start_date, sprint.end_date, now),
        blocked={t.id for t in blocked_tasks(tasks)},
        options={t.id: available_dependencies(tasks, t.id) for t in tasks},
        names=names,
        milestones=[(m, m.effective_status(now)) for m in sprint.milestones],
        timers=session.get('timers', {}),
        task_form=TaskForm(formdata=None),
        milestone_form=MilestoneForm(formdata=None),
        actions=[action for action, (_, target, _) in SPRINT_ACTIONS.items() if sprint.can_transition(target)],
    )


@main.route('/sprints/<sprint_id>/summary')
@login_required
def sprint_summary(sprint_id):
    try:
        sprint = _load_or_cached(sprint_id)
    except USER_ERRORS as exc:
        flash(exc.message, 'danger')
        return redirect(url_for('main.sprints'))
    sprint.recalculate_progress()
    now = _now()
    achieved = sum(1 for m in sprint.milestones if m.effective_status(now).value == 'achieved')
    return render_template('sprint_summary.html', sprint=sprint, achieved=achieved,
                           distribution=time_distribution(sprint.tasks, _user_tz()))


@main.route('/sprints/<sprint_id>/edit', methods=['GET', 'POST'])
@login_required
def edit_sprint(sprint_id):
    store = sprint_store()
    try:
        sprint = store.get_sprint(sprint_id)
    except USER_ERRORS as exc:
        flash(exc.message, 'danger')
        return redirect(url_for('main.sprints'))
    form = SprintEditForm(data={
        'title': sprint.title,
        'description': sprint.description,
        'difficulty': sprint.difficulty.value,
        'start_date': sprint.start_date.date(),
        'end_date': sprint.end_date.date(),
        'tags': ', '.join(sprint.tags),
    })
    if form.validate_on_submit():
        fields = {
            'title': form.title.data.strip(),
            'description': form.description.data or '',
            'difficulty': form.difficulty.data,
            'startDate': parse_datetime(form.start_date.data),
            'endDate': parse_datetime(form.end_date.data),
            'tags': parse_tags(form.tags.data),
        }
        try:
            store.update_sprint(sprint_id, fields)
        except USER_ERRORS as exc:
            flash(exc.message, 'danger')
        else:
            flash('Sprint updated!', 'success')
            return redirect(url_for('main.sprint_detail', sprint_id=sprint_id))
    return render_template('sprint_edit.html', form=form, sprint=sprint)


@main.route('/sprints/<sprint_id>/<action>', methods=['POST'])
@login_required
def sprint_action(sprint_id, action):
    if action not in SPRINT_ACTIONS:
        abort(404)
    method, _, message = SPRINT_ACTIONS[action]
    try:
        getattr(sprint_store(), method)(sprint_id)
    except USER_ERRORS as exc:
        flash(exc.message, 'danger')
    else:
        flash(message, 'success')
    return redirect(url_for('main.sprint_detail', sprint_id=sprint_id))


@main.route('/sprints/<sprint_id>/delete', methods=['POST'])
@login_required
def delete_sprint(sprint_id):
    try:
        sprint_store().delete_sprint(sprint_id)
    except USER_ERRORS as exc:
        flash(exc.message, 'danger')
        return redirect(url_for('main.sprint_detail', sprint_id=sprint_id))
    flash('Sprint deleted.', 'success')
    return redirect(url_for('main.sprints'))


@main.route('/sprints/<sprint_id>/countdown.json')
@login_required
def sprint_countdown(sprint_id):
    store = sprint_store()
    try:
        sprint = store.get_sprint(sprint_id)
    except USER_ERRORS as exc:
        return jsonify({'success': False, 'error': exc.message}), getattr(exc, 'status_code', None) or 400
    now = _now()
    remaining = calculate_time_remaining(sprint.end_date, now)
    return jsonify({
        'success': True,
        'data': {
            'days': remaining.days,
            'hours': remaining.hours,
            'minutes': remaining.minutes,
            'seconds': remaining.seconds,
            'totalSeconds': remaining.total_seconds,
            'isExpired': remaining.is_expired,
            'urgency': urgency_level(remaining),
            'message': status_message(sprint, remaining),
            'daysRemaining': get_days_remaining(sprint.end_date, now),
            'timeProgress': time_progress(sprint.start_date, sprint.end_date, now),
        },
    })


@main.route('/templates/<template_id>/recommendations.json')
def template_recommendations(template_id):
    try:
        template = get_template_info(template_id)
    except ValueError:
        abort(404)
    duration = request.args.get('duration', type=int)
    recommendations = calculate_template_recommendations(template.id, duration)
    return jsonify({
        'success': True,
        'data': dict(recommendations.to_dict(), template=template.id.value, name=template.name,
                     difficulty=template.difficulty.value),
    })


# tasks

@main.route('/sprints/<sprint_id>/tasks', methods=['POST'])
@login_required
def add_task(sprint_id):
    form = TaskForm()
    if form.validate_on_submit():
        fields = {
            'title': form.title.data.strip(),
            'description': form.description.data or None,
            'status': form.status.data,
            'priority': form.priority.data,
            'estimatedTime': form.estimated_time.data,
            'dueDate': parse_datetime(form.due_date.data),
            'tags': parse_tags(form.tags.data),
        }
        try:
            sprint_store().add_task(sprint_id, fields)
            flash('Task added!', 'success')
        except USER_ERRORS as exc:
            flash(exc.message, 'danger')
    else:
        _flash_form_errors(form)
    return redirect(url_for('main.sprint_detail', sprint_id=sprint_id))


@main.route('/sprints/<sprint_id>/tasks/<task_id>/toggle', methods=['POST'])
@login_required
def toggle_task(sprint_id, task_id):
    try:
        sprint_store().toggle_task_status(sprint_id, task_id)
    except USER_ERRORS as exc:
        flash(exc.message, 'danger')
    if request.form.get('next'):
        return redirect(_safe_next(request.form['next']))
    return redirect(url_for('main.sprint_detail', sprint_id=sprint_id))


@main.route('/sprints/<sprint_id>/tasks/<task_id>/delete', methods=['POST'])
@login_required
def delete_task(sprint_id, task_id):
    try:
        sprint_store().delete_task(sprint_id, task_id)
        flash('Task deleted.', 'success')
    except USER_ERRORS as exc:
        flash(exc.message, 'danger')
    return redirect(url_for('main.sprint_detail', sprint_id=sprint_id))


@main.route('/sprints/<sprint_id>/tasks/<task_id>/dependencies', methods=['POST'])
@login_required
def task_dependencies(sprint_id, task_id):
    form = DependencyForm()
    if not form.validate_on_submit():
        flash('Please choose a task.', 'danger')
        return redirect(url_for('main.sprint_detail', sprint_id=sprint_id))
    store = sprint_store()
    try:
        if request.form.get('action') == 'remove':
            store.remove_dependency(sprint_id, task_id, form.dependency_id.data)
            flash('Dependency removed.', 'success')
        else:
            store.add_dependency(sprint_id, task_id, form.dependency_id.data)
            flash('Dependency added.', 'success')
    except USER_ERRORS as exc:
        flash(exc.message, 'danger')
    return redirect(url_for('main.sprint_detail', sprint_id=sprint_id))


@main.route('/sprints/<sprint_id>/tasks/<task_id>/timer', methods=['POST'])
@login_required
def task_timer(sprint_id, task_id):
    timers = session.setdefault('timers', {})
    if request.form.get('action') == 'start':
        timers[task_id] = _now().timestamp()
        session.modified = True
        flash('Timer started.', 'info')
        return redirect(url_for('main.sprint_detail', sprint_id=sprint_id))

    started = timers.pop(task_id, None)
    session.modified = True
    if started is None:
        flash('No timer is running for that task.', 'info')
        return redirect(url_for('main.sprint_detail', sprint_id=sprint_id))
    tracker = TimeTracker()
    tracker.add_time(max(0.0, _now().timestamp() - started))
    minutes = tracker.stop()
    store = sprint_store()
    try:
        task = next(t for t in store.get_sprint(sprint_id).tasks if t.id == task_id)
        store.update_task(sprint_id, task_id, {'actualTime': task.actual_time + minutes})
        flash(f'Logged {minutes} minute(s).', 'success')
    except StopIteration:
        flash('Task not found.', 'danger')
    except USER_ERRORS as exc:
        flash(exc.message, 'danger')
    return redirect(url_for('main.sprint_detail', sprint_id=sprint_id))


# milestones

@main.route('/sprints/<sprint_id>/milestones', methods=['POST'])
@login_required
def add_milestone(sprint_id):
    form = MilestoneForm()
    if form.validate_on_submit():
        fields = {
            'title': form.title.data.strip(),
            'description': form.description.data or None,
            'targetDate': parse_datetime(form.target_date.data),
            'reward': form.reward.data or None,
        }
        try:
            sprint_store().add_milestone(sprint_id, fields)
            flash('Milestone added!', 'success')
        except USER_ERRORS as exc:
            flash(exc.message, 'danger')
    else:
        _flash_form_errors(form)
    return redirect(url_for('main.sprint_detail', sprint_id=sprint_id, _anchor='milestones'))


@main.route('/sprints/<sprint_id>/milestones/<milestone_id>/achieve', methods=['POST'])
@login_required
def achieve_milestone(sprint_id, milestone_id):
    try:
        sprint_store().achieve_milestone(sprint_id, milestone_id)
        flash('Milestone achieved!', 'success')
    except USER_ERRORS as exc:
        flash(exc.message, 'danger')
    return redirect(url_for('main.sprint_detail', sprint_id=sprint_id, _anchor='milestones'))


@main.route('/sprints/<sprint_id>/milestones/<milestone_id>/delete', methods=['POST'])
@login_required
def delete_milestone(sprint_id, milestone_id):
    try:
        sprint_store().delete_milestone(sprint_id, milestone_id)
        flash('Milestone deleted.', 'success')
    except USER_ERRORS as exc:
        flash(exc.message, 'danger')
    return redirect(url_for('main.sprint_detail', sprint_id=sprint_id, _anchor='milestones'))


# account

def _profile_context():
    sprints = sprint_store().all_sprints()
    tasks = [t for s in sprints for t in s.tasks]
    tz = _user_tz()
    heatmap = build_activity_heatmap(sprints, tasks, _now().astimezone(tz).date(), tz)
    stats = sprint_statistics(sprints)
    summary = heatmap_summary(heatmap)
    return {'stats': stats, 'summary': summary, 'achievements': achievements(stats, summary)}


@main.route('/profile')
@main.route('/profile/achievements', endpoint='achievements')
@login_required
def profile():
    backend = get_backend()
    try:
        remote = backend.users.profile()
        LocalCache().upsert_user(current_user.id, remote.email or current_user.email, remote.display_name,
                                 user_type=remote.user_type)
    except USER_ERRORS as exc:
        flash(f'Could not refresh your profile: {exc.message}', 'warning')
    upgrade = None
    if not is_premium(current_user):
        try:
            upgrade = backend.upgrade_requests.my_status()
        except USER_ERRORS as exc:
            current_app.logger.warning('Upgrade status unavailable: %s', exc.message)
    return render_template('profile.html', upgrade=upgrade, **_profile_context())


@main.route('/settings/notifications', methods=['GET', 'POST'])
@login_required
def notification_settings():
    store = settings_store()
    current = store.load_settings()
    notifications, preferences = current['notifications'], current['preferences']
    form = NotificationSettingsForm(data={
        'email': notifications['email'],
        'push': notifications['push'],
        'daily_reminder': notifications['dailyReminder'],
        'deadline_reminder': notifications['deadlineReminder'],
        'milestone_reminder': notifications['milestoneReminder'],
        'reminder_time': notifications['reminderTime'],
        'theme': preferences['theme'],
        'language': preferences['language'],
        'timezone': preferences['timezone'],
        'time_format': preferences['timeFormat'],
    })
    if form.validate_on_submit():
        try:
            saved = store.update_notification_settings(form.notification_fields())
            store.update_preferences(form.preference_fields())
        except ValidationError as exc:
            flash(exc.message, 'danger')
        else:
            try:
                get_backend().notifications.update_settings(saved['notifications'])
            except USER_ERRORS as exc:
                flash(f'Saved on this device only: {exc.message}', 'warning')
            flash('Settings saved.', 'success')
            return redirect(url_for('main.notification_settings'))
    return render_template('settings.html', form=form)


@main.route('/settings/notifications/reset', methods=['POST'])
@login_required
def reset_settings():
    settings_store().reset_settings()
    flash('Settings restored to their defaults.', 'info')
    return redirect(url_for('main.notification_settings'))


@main.route('/settings/notifications/test', methods=['POST'])
@login_required
def test_notification():
    try:
        get_backend().notifications.send_test()
        flash('Test notification sent.', 'success')
    except USER_ERRORS as exc:
        flash(exc.message, 'danger')
    return redirect(url_for('main.notification_settings'))


@main.route('/notifications/subscribe', methods=['POST'])
@login_required
def subscribe_notifications():
    token = (request.get_json(silent=True) or {}).get('token')
    if not token:
        return jsonify({'success': False, 'error': 'Missing token'}), 400
    try:
        get_backend().notifications.subscribe(token)
    except USER_ERRORS as exc:
        return jsonify({'success': False, 'error': exc.message}), 502
    settings_store().update_notification_settings({'push': True})
    return jsonify({'success': True})


@main.route('/notifications/options', methods=['POST'])
@login_required
def notification_options():
    message = parse_push_payload(request.get_json(silent=True) or {})
    return jsonify(build_notification_options(message, current_app.config['APP_URL'], _now()))


@main.route('/notifications/snooze', methods=['POST'])
@login_required
def snooze_notification():
    message = parse_push_payload(request.get_json(silent=True) or {})
    message.data['userId'] = current_user.id
    scheduler = _ext()['scheduler']
    timer_id = scheduler.snooze(message)
    return jsonify({'success': True, 'id': timer_id, 'delay': scheduler.delay})


# upgrades and administration

@main.route('/upgrade-request', methods=['GET', 'POST'])
@login_required
def upgrade_request():
    if is_premium(current_user):
        flash('Your account already has premium access.', 'info')
        return redirect(url_for('main.profile'))
    backend = get_backend()
    form = UpgradeRequestForm()
    try:
        status = backend.upgrade_requests.my_status()
    except USER_ERRORS as exc:
        flash(exc.message, 'warning')
        status = UpgradeStatus(latest_request=None, can_apply=False)
    if form.validate_on_submit():
        if not status.can_apply:
            flash('You already have a request waiting for review.', 'warning')
        else:
            try:
                backend.upgrade_requests.create(form.reason.data.strip())
            except USER_ERRORS as exc:
                flash(exc.message, 'danger')
            else:
                flash('Request submitted. An administrator will review it soon.', 'success')
                return redirect(url_for('main.upgrade_request'))
    return render_template('upgrade_request.html', form=form, status=status)


@main.route('/upgrade-request/<request_id>/cancel', methods=['POST'])
@login_required
def cancel_upgrade_request(request_id):
    try:
        get_backend().upgrade_requests.cancel(request_id)
        flash('Request withdrawn.', 'info')
    except USER_ERRORS as exc:
        flash(exc.message, 'danger')
    return redirect(url_for('main.upgrade_request'))


@main.route('/admin/upgrade-requests')
@permission_required(UserType.ADMIN)
def admin_upgrade_requests():
    status = request.args.get('status', 'pending')
    try:
        items, stats = get_backend().upgrade_requests.list(status=status)
    except USER_ERRORS as exc:
        flash(exc.message, 'danger')
        items, stats = [], UpgradeRequestStats()
    return render_template('admin_requests.html', requests=items, stats=stats, status=status, form=ReviewForm(formdata=None))


@main.route('/admin/upgrade-requests/<request_id>/review', methods=['POST'])
@permission_required(UserType.ADMIN)
def review_upgrade_request(request_id):
    form = ReviewForm()
    if form.validate_on_submit():
        try:
            get_backend().upgrade_requests.review(request_id, form.action.data, form.comment.data or None)
            flash(f'Request {UpgradeRequestService.REVIEW_STATUS[form.action.data]}.', 'success')
        except USER_ERRORS as exc:
            flash(exc.message, 'danger')
    else:
        _flash_form_errors(form)
    return redirect(url_for('main.admin_upgrade_requests'))


@main.route('/admin/users')
@feature_required('user_management')
def admin_users():
    users = get_backend().users
    search = request.args.get('search') or None
    user_type = request.args.get('type') or None
    page = request.args.get('page', 1, type=int)
    try:
        result = users.list(user_type=user_type, limit=20, page=page, search=search)
        stats = users.stats(_now())
    except USER_ERRORS as exc:
        flash(exc.message, 'danger')
        result, stats = UserPage(), UserStats()
    return render_template('admin_users.html', result=result, stats=stats, search=search or '', user_type=user_type or '',
                           form=UserUpdateForm(formdata=None))


@main.route('/admin/users/<user_id>', methods=['POST'])
@feature_required('user_management')
def update_user(user_id):
    form = UserUpdateForm()
    if form.validate_on_submit():
        if user_id == current_user.id and form.user_type.data != UserType.ADMIN.value:
            flash('You cannot remove your own administrator role.', 'danger')
            return redirect(url_for('main.admin_users'))
        try:
            get_backend().users.update(user_id, user_type=form.user_type.data, disabled=form.disabled.data)
            flash('User updated.', 'success')
        except USER_ERRORS as exc:
            flash(exc.message, 'danger')
    return redirect(url_for('main.admin_users'))


@main.route('/admin/users/<user_id>/delete', methods=['POST'])
@feature_required('user_management')
def delete_user(user_id):
    if user_id == current_user.id:
        flash('You cannot delete your own account here.', 'danger')
        return redirect(url_for('main.admin_users'))
    try:
        get_backend().users.delete(user_id)
        flash('User deleted.', 'success')
    except USER_ERRORS as exc:
        flash(exc.message, 'danger')
    return redirect(url_for('main.admin_users'))


@main.route('/setup-admin', methods=['GET', 'POST'])
@login_required
def setup_admin():
    if request.method == 'POST':
        try:
            result = get_backend().users.setup_first_admin()
        except USER_ERRORS as exc:
            flash(exc.message, 'danger')
        else:
            LocalCache().upsert_user(current_user.id, current_user.email, user_type=UserType.ADMIN.value)
            flash(result.get('message') or 'You are now the administrator.', 'success')
            return redirect(url_for('main.admin_users'))
    return render_template('setup_admin.html')


if __name__ == '__main__':
    create_app().run(debug=True)
