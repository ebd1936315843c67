import os

from utils import get_env, get_env_bool, get_env_int

SERVICE_NAME = "PDF / Excel Report & Support API"
SERVICE_TITLE = "GPT PDF / Excel Email & Support API"
SERVICE_VERSION = "2.1.0"

# SMTP relay
SMTP_HOST = get_env('SMTP_HOST', 'avocarbon-com.mail.protection.outlook.com')
SMTP_PORT = get_env_int('SMTP_PORT', 25)
SMTP_USE_TLS = get_env_bool('SMTP_USE_TLS', True)
SMTP_USERNAME = get_env('SMTP_USERNAME')
SMTP_PASSWORD = get_env('SMTP_PASSWORD')
SMTP_TIMEOUT = get_env_int('SMTP_TIMEOUT', 30)

EMAIL_FROM_NAME = get_env('EMAIL_FROM_NAME', 'Administration STS')
EMAIL_FROM = get_env('EMAIL_FROM', 'administration.STS@avocarbon.com')

# Fixed destination for support tickets
SUPPORT_EMAIL = get_env('SUPPORT_EMAIL', 'chaima.benyahia@avocarbon.com')

# Files
ASSETS_DIR = get_env('ASSETS_DIR', os.path.join(os.getcwd(), 'assets'))
LOGO_PATH = get_env('LOGO_PATH', os.path.join(ASSETS_DIR, 'logo_avocarbon.jpg'))
TEMP_DIR = get_env('TEMP_DIR', 'temp')
STAGING_TTL_SECONDS = get_env_int('STAGING_TTL_SECONDS', 3600)
STAGING_SWEEP_INTERVAL_SECONDS = get_env_int('STAGING_SWEEP_INTERVAL_SECONDS', 600)

# HTTP
MAX_BODY_BYTES = get_env_int('MAX_BODY_BYTES', 50 * 1024 * 1024)
IMAGE_FETCH_TIMEOUT = get_env_int('IMAGE_FETCH_TIMEOUT', 15)
PORT = get_env_int('PORT', 3000)

CORS_ALLOWED_HEADERS = [
    "Content-Type",
    "Authorization",
    "openai-conversation-id",
    "openai-ephemeral-user-id",
]
