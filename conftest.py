import os

from dotenv import load_dotenv

# Load .env.test for local overrides (database URL, bot token, carrier secret)
env_test_path = os.path.join(os.path.dirname(__file__), ".env.test")
if os.path.exists(env_test_path):
    load_dotenv(env_test_path, override=True)

# Outbound integrations stay off unless a test opts in
os.environ.setdefault("TELEGRAM_FILE_ADMIN_BOT_TOKEN", "")
os.environ.setdefault("CARRIER_WEBHOOK_SECRET", "")
os.environ.setdefault("CARRIER_AUTO_CREATE", "false")

from libs.common.config import get_settings  # noqa: E402

# Clear cached settings to reload with new env vars
get_settings.cache_clear()
