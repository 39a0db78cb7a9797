import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as meseret.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "meseret.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Session cookie issued by the auth service
    AUTH_COOKIE_NAME = "meseret_session"

    # 8 hours session lifetime
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60

    # Idle timeout: 20 minutes
    IDLE_TIMEOUT_SECONDS = 20 * 60

    # Unpaid pending bookings hold their room this long
    BOOKING_HOLD_MINUTES = int(os.getenv("BOOKING_HOLD_MINUTES", "30"))

    # Cancellation policy
    CANCELLATION_FEE_PERCENT = int(os.getenv("CANCELLATION_FEE_PERCENT", "5"))
    CHECK_IN_HOUR = int(os.getenv("CHECK_IN_HOUR", "14"))

    # Payments (Stripe Checkout)
    PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "ETB")
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    PAYMENT_SUCCESS_URL = os.getenv("PAYMENT_SUCCESS_URL", "http://localhost:5002/pay/success")
    PAYMENT_CANCEL_URL = os.getenv("PAYMENT_CANCEL_URL", "http://localhost:5002/pay/cancel")
    PAYMENT_TIMEOUT_SECONDS = int(os.getenv("PAYMENT_TIMEOUT_SECONDS", "10"))

    # Background sweeper period
    SWEEP_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", "60"))

    # Customer app (links on payment result pages)
    FRONTEND_BASE_URL = os.getenv("FRONTEND_BASE_URL", "http://localhost:3000")

    # create tables on start-up instead of running migrations (tests, demos)
    CREATE_TABLES = os.getenv("CREATE_TABLES", "false").lower() == "true"

    # Basic app settings
    DEBUG = False
