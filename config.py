import os

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

PORT = int(os.getenv("PORT", 8000))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

VAT_RATE = float(os.getenv("VAT_RATE", "0.15"))
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "MUR")
INVOICE_DUE_DAYS = int(os.getenv("INVOICE_DUE_DAYS", 30))
QUOTATION_EXPIRY_DAYS = int(os.getenv("QUOTATION_EXPIRY_DAYS", 30))

# Sessions idle longer than this are dropped by the auth dependency
SESSION_IDLE_MINUTES = int(os.getenv("SESSION_IDLE_MINUTES", 10))

BOOTSTRAP_ADMIN_EMAIL = os.getenv("BOOTSTRAP_ADMIN_EMAIL")
BOOTSTRAP_ADMIN_PASSWORD = os.getenv("BOOTSTRAP_ADMIN_PASSWORD")
BOOTSTRAP_ADMIN_NAME = os.getenv("BOOTSTRAP_ADMIN_NAME", "Administrator")

# A Won -> Invoice claim with no invoice after this long is treated as abandoned
INVOICE_CLAIM_TIMEOUT_SECONDS = int(os.getenv("INVOICE_CLAIM_TIMEOUT_SECONDS", 300))
