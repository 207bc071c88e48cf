"""Exception types raised across the app.

Validators never raise; they return ValidationResult. Everything below is for
failures the caller has to handle.
"""


class SprintifyError(Exception):
    """Base class for errors surfaced to the user as a flash message."""

    default_message = "Something went wrong, please try again"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class AuthenticationError(SprintifyError):
    default_message = "You need to sign in first"


class AuthError(SprintifyError):
    """Error reported by the Firebase identity toolkit."""

    MESSAGES = {
        "EMAIL_NOT_FOUND": "No account exists for that email address",
        "INVALID_PASSWORD": "Incorrect password",
        "INVALID_LOGIN_CREDENTIALS": "Invalid email or password",
        "USER_DISABLED": "This account has been disabled",
        "EMAIL_EXISTS": "Email already registered",
        "WEAK_PASSWORD": "Password is too weak",
        "TOO_MANY_ATTEMPTS_TRY_LATER": "Too many attempts, please try again later",
        "TOKEN_EXPIRED": "Your session has expired, please sign in again",
        "INVALID_REFRESH_TOKEN": "Your session has expired, please sign in again",
    }

    def __init__(self, code, message=None):
        # identity toolkit codes may carry a suffix: "WEAK_PASSWORD : Password should be..."
        self.code = (code or "UNKNOWN").split(":")[0].strip()
        super().__init__(message or self.MESSAGES.get(self.code, "Authentication failed"))


class ApiError(SprintifyError):
    default_message = "Request failed"

    def __init__(self, message=None, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class InvalidTransitionError(SprintifyError):
    def __init__(self, current, target):
        super().__init__(f"Cannot move a {current} sprint to {target}")
        self.current = current
        self.target = target


class DependencyError(SprintifyError):
    default_message = "Invalid task dependency"


class ValidationError(SprintifyError):
    """Input rejected before any request was sent."""

    default_message = "Please correct the highlighted fields"

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or None)
