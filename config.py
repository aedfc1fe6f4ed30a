import os

from dotenv import load_dotenv

load_dotenv()

SMT_BASE_URL = os.getenv("SMT_BASE_URL", "https://smt.aethernagames.com/unity.php")
SMT_ACCOUNT_ID = os.getenv("SMT_ACCOUNT_ID", "")
SMT_SESSION_TOKEN = os.getenv("SMT_SESSION_TOKEN", "")
SMT_TIMEOUT_SECONDS = float(os.getenv("SMT_TIMEOUT_SECONDS", "10"))

REFRESH_INTERVAL_SECONDS = float(os.getenv("REFRESH_INTERVAL_SECONDS", "60"))

AGENT_API_KEY = os.getenv("AGENT_API_KEY")

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
ANALYST_MODEL = os.getenv("ANALYST_MODEL", "claude-sonnet-4-20250514")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")
ANALYST_TIMEOUT_SECONDS = float(os.getenv("ANALYST_TIMEOUT_SECONDS", "60"))
