from dotenv import load_dotenv
import os

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    def __init__(self):
        self.mongodb_url = os.getenv('MONGODB_URL')
        self.database_name = os.getenv('DATABASE_NAME', 'barber_db')
        # Multi-document transactions need a replica set
        self.use_transactions = _env_bool('MONGODB_TRANSACTIONS', False)

        self.default_shop_id = os.getenv('DEFAULT_SHOP_ID', 'main')
        self.busy_query_limit = int(os.getenv('BUSY_QUERY_LIMIT', '250'))

        self.ai_coach_url = os.getenv('AI_COACH_URL')
        self.ai_coach_token = os.getenv('AI_COACH_TOKEN')
        self.ai_coach_timeout = float(os.getenv('AI_COACH_TIMEOUT', '30'))
        self.currency = os.getenv('CURRENCY', 'TRY')

        self.log_level = os.getenv('LOG_LEVEL', 'INFO').upper()
        self.log_file = os.getenv('LOG_FILE')
        self.port = int(os.getenv('PORT', '10000'))


settings = Settings()


def get_settings() -> Settings:
    return settings
