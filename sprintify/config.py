import os

from dotenv import load_dotenv

load_dotenv()


def _flag(name, default="false"):
    return os.environ.get(name, default).lower() in ("1", "true", "yes", "on")


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', 'sqlite:///sprintify.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Cloud Functions backend
    SPRINTIFY_API_URL = os.environ.get('SPRINTIFY_API_URL', 'https://asia-east1-sprintify.cloudfunctions.net/api')
    API_TIMEOUT = float(os.environ.get('API_TIMEOUT', '10'))
    AUTH_WAIT_TIMEOUT = float(os.environ.get('AUTH_WAIT_TIMEOUT', '10'))
    TOKEN_RETRIES = int(os.environ.get('TOKEN_RETRIES', '3'))
    TOKEN_RETRY_DELAY = float(os.environ.get('TOKEN_RETRY_DELAY', '1'))

    # Firebase web credentials
    FIREBASE_API_KEY = os.environ.get('FIREBASE_API_KEY', '')
    FIREBASE_AUTH_DOMAIN = os.environ.get('FIREBASE_AUTH_DOMAIN', '')
    FIREBASE_PROJECT_ID = os.environ.get('FIREBASE_PROJECT_ID', '')
    FIREBASE_STORAGE_BUCKET = os.environ.get('FIREBASE_STORAGE_BUCKET', '')
    FIREBASE_MESSAGING_SENDER_ID = os.environ.get('FIREBASE_MESSAGING_SENDER_ID', '')
    FIREBASE_APP_ID = os.environ.get('FIREBASE_APP_ID', '')
    FIREBASE_VAPID_KEY = os.environ.get('FIREBASE_VAPID_KEY', '')

    USE_FIREBASE_EMULATOR = _flag('USE_FIREBASE_EMULATOR')
    FIREBASE_AUTH_EMULATOR_HOST = os.environ.get('FIREBASE_AUTH_EMULATOR_HOST', '127.0.0.1:9098')
    FUNCTIONS_EMULATOR_URL = os.environ.get('FUNCTIONS_EMULATOR_URL', 'http://127.0.0.1:5002/sprintify/asia-east1/api')

    APP_NAME = os.environ.get('APP_NAME', 'Sprintify')
    APP_URL = os.environ.get('APP_URL', 'http://localhost:5000')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class TestingConfig(Config):
    TESTING = True
    WTF_CSRF_ENABLED = False
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SECRET_KEY = 'testing'
    USE_FIREBASE_EMULATOR = False
    SPRINTIFY_API_URL = 'http://backend.test/api'
    TOKEN_RETRY_DELAY = 0
    AUTH_WAIT_TIMEOUT = 0


def api_base_url(config):
    if config.get("USE_FIREBASE_EMULATOR"):
        return config["FUNCTIONS_EMULATOR_URL"]
    return config["SPRINTIFY_API_URL"]


def auth_emulator_host(config):
    return config["FIREBASE_AUTH_EMULATOR_HOST"] if config.get("USE_FIREBASE_EMULATOR") else None
