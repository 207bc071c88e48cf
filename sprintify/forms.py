# forms.py
from flask_wtf import FlaskForm
from wtforms import (BooleanField, DateField, IntegerField, PasswordField, SelectField, StringField,
                     TextAreaField)
from wtforms.validators import DataRequired, EqualTo, Length, NumberRange, Optional, ValidationError

from sprintify.data import SprintDifficulty, SprintTemplate, SprintType, TaskPriority, TaskStatus
from sprintify.sprint_templates import SPRINT_TEMPLATES
from sprintify.validators import (MAX_DESCRIPTION, is_valid_date_range, is_valid_email, is_valid_password,
                                  is_valid_sprint_title, is_valid_task_title, is_valid_username, parse_tags,
                                  validate_tags)


def _choices(enum_cls, labels=None):
    labels = labels or {}
    return [(member.value, labels.get(member.value, member.value.replace('-', ' ').title())) for member in enum_cls]


def _check(result):
    if not result:
        raise ValidationError(result.errors[0])


class LoginForm(FlaskForm):
    email = StringField('Email', validators=[DataRequired()])
    password = PasswordField('Password', validators=[DataRequired()])
    remember_me = BooleanField('Remember Me')

    def validate_email(self, email):
        if not is_valid_email(email.data):
            raise ValidationError('Please enter a valid email address.')


class SignupForm(FlaskForm):
    display_name = StringField('Username', validators=[DataRequired()])
    email = StringField('Email', validators=[DataRequired()])
    password = PasswordField('Password', validators=[DataRequired()])
    password_confirm = PasswordField('Confirm Password', validators=[DataRequired(), EqualTo('password', message='Passwords do not match.')])

    def validate_display_name(self, display_name):
        _check(is_valid_username(display_name.data))

    def validate_email(self, email):
        if not is_valid_email(email.data):
            raise ValidationError('Please enter a valid email address.')

    def validate_password(self, password):
        _check(is_valid_password(password.data))


class PasswordResetForm(FlaskForm):
    email = StringField('Email', validators=[DataRequired()])

    def validate_email(self, email):
        if not is_valid_email(email.data):
            raise ValidationError('Please enter a valid email address.')


class SprintForm(FlaskForm):
    title = StringField('Sprint Title', validators=[DataRequired()])
    description = TextAreaField('Description', validators=[Optional(), Length(max=MAX_DESCRIPTION)])
    type = SelectField('Type', choices=_choices(SprintType))
    template = SelectField('Template', choices=[(key.value, t.name) for key, t in SPRINT_TEMPLATES.items()],
                           default=SprintTemplate.SEVEN_DAYS.value)
    difficulty = SelectField('Difficulty', choices=_choices(SprintDifficulty), default=SprintDifficulty.INTERMEDIATE.value)
    start_date = DateField('Start Date', format='%Y-%m-%d', validators=[DataRequired()])
    end_date = DateField('End Date', format='%Y-%m-%d', validators=[Optional()])
    duration = IntegerField('Duration (days)', validators=[Optional(), NumberRange(min=1, max=365)])
    tags = StringField('Tags', description='Comma separated')
    category = StringField('Category', validators=[Optional(), Length(max=50)])

    def validate_title(self, title):
        _check(is_valid_sprint_title(title.data))

    def validate_tags(self, tags):
        _check(validate_tags(parse_tags(tags.data)))

    def validate_end_date(self, end_date):
        if end_date.data and self.start_date.data:
            _check(is_valid_date_range(self.start_date.data, end_date.data))

    def validate_duration(self, duration):
        if self.template.data == SprintTemplate.CUSTOM.value and not self.end_date.data and not duration.data:
            raise ValidationError('A custom sprint needs a duration or an end date.')

    def to_store_form(self):
        return {
            'title': self.title.data,
            'description': self.description.data,
            'type': self.type.data,
            'template': self.template.data,
            'difficulty': self.difficulty.data,
            'start_date': self.start_date.data,
            'end_date': self.end_date.data,
            'duration': self.duration.data,
            'tags': parse_tags(self.tags.data),
            'category': self.category.data,
        }


class SprintEditForm(FlaskForm):
    title = StringField('Sprint Title', validators=[DataRequired()])
    description = TextAreaField('Description', validators=[Optional(), Length(max=MAX_DESCRIPTION)])
    difficulty = SelectField('Difficulty', choices=_choices(SprintDifficulty))
    start_date = DateField('Start Date', format='%Y-%m-%d', validators=[DataRequired()])
    end_date = DateField('End Date', format='%Y-%m-%d', validators=[DataRequired()])
    tags = StringField('Tags', description='Comma separated')

    def validate_title(self, title):
        _check(is_valid_sprint_title(title.data))

    def validate_tags(self, tags):
        _check(validate_tags(parse_tags(tags.data)))

    def validate_end_date(self, end_date):
        if self.start_date.data:
            _check(is_valid_date_range(self.start_date.data, end_date.data))


class TaskForm(FlaskForm):
    title = StringField('Task Title', validators=[DataRequired()])
    description = TextAreaField('Description')
    status = SelectField('Status', choices=_choices(TaskStatus, {'todo': 'To Do'}), default=TaskStatus.TODO.value)
    priority = SelectField('Priority', choices=_choices(TaskPriority), default=TaskPriority.MEDIUM.value)
    estimated_time = IntegerField('Estimated Time (minutes)', validators=[Optional(), NumberRange(min=0, max=1440)])
    due_date = DateField('Due Date', format='%Y-%m-%d', validators=[Optional()])
    tags = StringField('Tags', description='Comma separated')

    def validate_title(self, title):
        _check(is_valid_task_title(title.data))

    def validate_tags(self, tags):
        _check(validate_tags(parse_tags(tags.data)))


class DependencyForm(FlaskForm):
    dependency_id = SelectField('Depends on', choices=[], validate_choice=False, validators=[DataRequired()])


class MilestoneForm(FlaskForm):
    title = StringField('Milestone', validators=[DataRequired(), Length(max=100)])
    description = TextAreaField('Description')
    target_date = DateField('Target Date', format='%Y-%m-%d', validators=[DataRequired()])
    reward = StringField('Reward', validators=[Optional(), Length(max=100)])


class AiPlanForm(FlaskForm):
    prompt = TextAreaField('What do you want to achieve?',
                           validators=[DataRequired(), Length(min=10, max=MAX_DESCRIPTION)])
    type = SelectField('Type', choices=_choices(SprintType))
    # generation needs a fixed length, so no custom template here
    template = SelectField('Template', choices=[(key.value, t.name) for key, t in SPRINT_TEMPLATES.items()
                                                if key != SprintTemplate.CUSTOM],
                           default=SprintTemplate.THIRTY_DAYS.value)
    difficulty = SelectField('Difficulty', choices=_choices(SprintDifficulty), default=SprintDifficulty.INTERMEDIATE.value)


class UpgradeRequestForm(FlaskForm):
    reason = TextAreaField('Why do you need premium access?', validators=[DataRequired(), Length(min=10, max=500)])


class ReviewForm(FlaskForm):
    action = SelectField('Decision', choices=[('approve', 'Approve'), ('reject', 'Reject')])
    comment = TextAreaField('Comment', validators=[Optional(), Length(max=500)])


class NotificationSettingsForm(FlaskForm):
    email = BooleanField('Email notifications')
    push = BooleanField('Push notifications')
    daily_reminder = BooleanField('Daily reminder')
    deadline_reminder = BooleanField('Deadline reminders')
    milestone_reminder = BooleanField('Milestone reminders')
    reminder_time = StringField('Reminder time', validators=[DataRequired(), Length(min=5, max=5)])
    theme = SelectField('Theme', choices=[('system', 'System'), ('light', 'Light'), ('dark', 'Dark')])
    language = SelectField('Language', choices=[('en-US', 'English'), ('zh-CN', 'Chinese')])
    timezone = StringField('Timezone', validators=[DataRequired()])
    time_format = SelectField('Time format', choices=[('24h', '24 hour'), ('12h', '12 hour')])

    def notification_fields(self):
        return {
            'email': self.email.data,
            'push': self.push.data,
            'dailyReminder': self.daily_reminder.data,
            'deadlineReminder': self.deadline_reminder.data,
            'milestoneReminder': self.milestone_reminder.data,
            'reminderTime': self.reminder_time.data,
        }

    def preference_fields(self):
        return {
            'theme': self.theme.data,
            'language': self.language.data,
            'timezone': self.timezone.data,
            'timeFormat': self.time_format.data,
        }


class UserUpdateForm(FlaskForm):
    user_type = SelectField('User type', choices=[('normal', 'Normal user'), ('premium', 'Premium user'), ('admin', 'Administrator')])
    disabled = BooleanField('Disabled')
