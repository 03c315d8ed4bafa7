import os
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


def _flag(name, default="False"):
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "change-me-in-production")

    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "library.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # JSON API, no browser forms
    WTF_CSRF_ENABLED = _flag("WTF_CSRF_ENABLED")

    # Circulation rules
    LOAN_DAYS = int(os.getenv("LOAN_DAYS", "14"))
    RENEWAL_DAYS = int(os.getenv("RENEWAL_DAYS", "14"))
    FINE_PER_DAY = int(os.getenv("FINE_PER_DAY", "200"))
    ENFORCE_MEMBER_STATUS = _flag("ENFORCE_MEMBER_STATUS")

    # Signing up with this email yields the admin role
    ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@librarian-pro.test")

    FRAPPE_API_URL = os.getenv(
        "FRAPPE_API_URL", "https://frappe.io/api/method/frappe-library"
    )
    IMPORT_TIMEOUT = float(os.getenv("IMPORT_TIMEOUT", "10"))

    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
