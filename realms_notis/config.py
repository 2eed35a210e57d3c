"""
Configuration for the Realms Notification System.
Centralizes realm accounts, RPC, notification channel, scheduling and logging settings.
"""

import os
from datetime import timedelta
from typing import Dict, List

from dotenv import load_dotenv

from .exceptions import ConfigurationError
from .models import RealmConfig

# Load environment variables from .env in the working directory
load_dotenv()

GOVERNANCE_PROGRAM_ID = "GovER5Lthms3bLBqWub97yVrMmEogzX7xNjdXpPPCVZw"

ENV_TEMPLATE = """\
# Solana RPC
RPC_URL=https://api.mainnet-beta.solana.com
RPC_TIMEOUT=30
RPC_MAX_RETRIES=3
GOVERNANCE_PROGRAM_ID={program_id}

# Realm accounts (base58)
REALM_KEY=
COUNCIL_MINT_KEY=
COMMUNITY_MINT_KEY=
GOVERNANCE_KEY=

# Notification channel (Apprise URL, e.g. discord://webhook_id/webhook_token)
NOTIFICATION_URL=
NOTIFICATION_TIMEOUT=15
UI_BASE_URL=https://app.realms.today/dao/

# Scheduling
POLL_INTERVAL=600
REMINDER_SWEEP_INTERVAL=600
NOTIFICATION_FREQUENCY_HOURS=6

# Storage and logging
STATE_FILE_PATH=data/realms-notis.json
DEBUG_LOG=false
LOG_LEVEL=INFO
LOG_FILE=realms_notis.log
"""


def _env_bool(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Config:
    """Main configuration class for the notifier."""

    # RPC Settings
    RPC_URL: str = os.getenv("RPC_URL", "https://api.mainnet-beta.solana.com")
    RPC_TIMEOUT: int = int(os.getenv("RPC_TIMEOUT", "30"))
    RPC_MAX_RETRIES: int = int(os.getenv("RPC_MAX_RETRIES", "3"))
    GOVERNANCE_PROGRAM_ID: str = os.getenv("GOVERNANCE_PROGRAM_ID", GOVERNANCE_PROGRAM_ID)

    # Realm accounts
    REALM_KEY: str = os.getenv("REALM_KEY", "")
    COUNCIL_MINT_KEY: str = os.getenv("COUNCIL_MINT_KEY", "")
    COMMUNITY_MINT_KEY: str = os.getenv("COMMUNITY_MINT_KEY", "")
    GOVERNANCE_KEY: str = os.getenv("GOVERNANCE_KEY", "")

    # Notification channel (Apprise URL format)
    # See https://github.com/caronc/apprise for Discord/Slack URL formats
    NOTIFICATION_URL: str = os.getenv("NOTIFICATION_URL", "")
    NOTIFICATION_TIMEOUT: int = int(os.getenv("NOTIFICATION_TIMEOUT", "15"))
    UI_BASE_URL: str = os.getenv("UI_BASE_URL", "https://app.realms.today/dao/")

    # Scheduling
    POLL_INTERVAL: int = int(os.getenv("POLL_INTERVAL", "600"))  # seconds
    REMINDER_SWEEP_INTERVAL: int = int(os.getenv("REMINDER_SWEEP_INTERVAL", "600"))  # seconds
    NOTIFICATION_FREQUENCY_HOURS: int = int(os.getenv("NOTIFICATION_FREQUENCY_HOURS", "6"))

    # State file path
    STATE_FILE_PATH: str = os.getenv("STATE_FILE_PATH", "data/realms-notis.json")

    # Logging settings
    DEBUG_LOG: bool = _env_bool("DEBUG_LOG")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    LOG_FILE: str = os.getenv("LOG_FILE", "realms_notis.log")
    LOG_MAX_BYTES: int = int(os.getenv("LOG_MAX_BYTES", "10485760"))  # 10MB
    LOG_BACKUP_COUNT: int = int(os.getenv("LOG_BACKUP_COUNT", "5"))

    REALM_FIELDS = {
        "REALM_KEY": "realm_key",
        "COUNCIL_MINT_KEY": "council_mint_key",
        "COMMUNITY_MINT_KEY": "community_mint_key",
        "GOVERNANCE_KEY": "governance_key",
    }

    @property
    def notification_frequency(self) -> timedelta:
        return timedelta(hours=self.NOTIFICATION_FREQUENCY_HOURS)

    def validate(self) -> List[str]:
        """
        Check the configuration for problems.

        Returns:
            List of human readable problems, empty when the config is usable
        """
        problems = []

        for env_name in self.REALM_FIELDS:
            if not getattr(self, env_name):
                problems.append(f"{env_name} is not set")

        if not self.RPC_URL.startswith(("http://", "https://")):
            problems.append(f"RPC_URL must be an http(s) URL, got '{self.RPC_URL}'")

        for env_name in ("POLL_INTERVAL", "REMINDER_SWEEP_INTERVAL", "NOTIFICATION_FREQUENCY_HOURS", "RPC_TIMEOUT"):
            if getattr(self, env_name) <= 0:
                problems.append(f"{env_name} must be positive")

        return problems

    def realm_config(self) -> RealmConfig:
        """
        Build the realm scope from the configured account keys.

        Raises:
            ConfigurationError: If any realm account is missing
        """
        missing = [name for name in self.REALM_FIELDS if not getattr(self, name)]
        if missing:
            raise ConfigurationError(f"Missing realm configuration: {', '.join(missing)}")

        return RealmConfig(**{field: getattr(self, name) for name, field in self.REALM_FIELDS.items()})

    def describe(self) -> Dict[str, str]:
        """Effective settings for display, with the channel URL redacted."""
        settings = {}
        for name in dir(self):
            if not name.isupper() or name == "REALM_FIELDS":
                continue
            value = getattr(self, name)
            if name == "NOTIFICATION_URL" and value:
                scheme = value.split("://", 1)[0]
                value = f"{scheme}://***"
            settings[name] = str(value)
        return settings


# Create singleton instance
config = Config()
