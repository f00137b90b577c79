import logging
import os
from dotenv import load_dotenv

load_dotenv()

TG_BOT_TOKEN = os.getenv('TELEGRAM_BOT_TOKEN')
PROXY_URL = os.getenv('PROXY_URL')

# The only Telegram user allowed to use the bot. Unset = anyone who finds it.
OWNER_ID = int(os.getenv('OWNER_ID')) if os.getenv('OWNER_ID') else None

_HERE = os.path.dirname(os.path.abspath(__file__))
DB_PATH = os.getenv('DB_PATH') or os.path.join(_HERE, 'flashcards.db')
BACKUP_DIR = os.getenv('BACKUP_DIR') or os.path.join(_HERE, 'backups')

logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=logging.INFO
)
