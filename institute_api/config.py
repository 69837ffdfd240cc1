# institute_api/config.py
import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./institute.db")

JWT_SECRET = os.getenv("JWT_SECRET", "change-me-institute-api-signing-secret")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "INR")

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "./uploads")
MAX_PHOTO_BYTES = int(os.getenv("MAX_PHOTO_BYTES", str(5 * 1024 * 1024)))

RABBITMQ_URL = os.getenv("RABBITMQ_URL", "")
EVENTS_EXCHANGE = os.getenv("EVENTS_EXCHANGE", "institute_events")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
