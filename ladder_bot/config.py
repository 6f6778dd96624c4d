import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Bot configuration settings"""

    # Discord settings
    DISCORD_TOKEN = os.getenv('DISCORD_TOKEN')
    DISCORD_GUILD_ID = int(os.getenv('DISCORD_GUILD_ID', 0))
    DISCORD_GUILD_IDS = os.getenv('DISCORD_GUILD_IDS', '')  # Comma-separated for multi-guild support
    COMMAND_PREFIX = os.getenv('COMMAND_PREFIX', '!')
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')  # Empty string disables file logging

    # Channel and roles
    CHALLENGE_CHANNEL_ID = int(os.getenv('CHALLENGE_CHANNEL_ID', 0))
    ADMIN_ROLE_NAME = os.getenv('ADMIN_ROLE_NAME', 'NvD Admin')
    MEMBER_ROLE_NAME = os.getenv('MEMBER_ROLE_NAME', 'NvD')

    # Ladder spreadsheet
    SPREADSHEET_ID = os.getenv('SPREADSHEET_ID')
    LADDER_SHEET_NAME = os.getenv('LADDER_SHEET_NAME', 'NvD Ladder')
    METRICS_SHEET_NAME = os.getenv('METRICS_SHEET_NAME', 'Metrics')
    VACATION_SHEET_NAME = os.getenv('VACATION_SHEET_NAME', 'Extended Vacation')
    GOOGLE_CLIENT_EMAIL = os.getenv('GOOGLE_CLIENT_EMAIL')
    GOOGLE_PRIVATE_KEY = os.getenv('GOOGLE_PRIVATE_KEY')

    # Fast store
    REDIS_URL = os.getenv('REDIS_URL') or os.getenv('REDISCLOUD_URL')
    ENABLE_EXPIRY_EVENTS = os.getenv('ENABLE_EXPIRY_EVENTS', 'True').lower() == 'true'
    EXPIRY_SETTLE_SECONDS = float(os.getenv('EXPIRY_SETTLE_SECONDS', 2))

    # Ladder time zone; challenge dates are displayed and parsed here
    LADDER_TIMEZONE = os.getenv('LADDER_TIMEZONE', 'America/New_York')

    # Sweep scheduling
    SWEEP_INTERVAL_MINUTES = int(os.getenv('SWEEP_INTERVAL_MINUTES', 5))
    SCHEDULED_SWEEP_HOURS = int(os.getenv('SCHEDULED_SWEEP_HOURS', 6))

    @classmethod
    def get_guild_ids(cls):
        """Get list of guild IDs for command syncing"""
        if cls.DISCORD_GUILD_IDS:
            # Multi-guild support: comma-separated IDs
            try:
                return [int(guild_id.strip()) for guild_id in cls.DISCORD_GUILD_IDS.split(',') if guild_id.strip()]
            except ValueError:
                raise ValueError("DISCORD_GUILD_IDS must be comma-separated integers")
        elif cls.DISCORD_GUILD_ID:
            return [cls.DISCORD_GUILD_ID]
        else:
            # Global sync
            return []

    @classmethod
    def get_google_private_key(cls):
        """Private key with escaped newlines restored"""
        if not cls.GOOGLE_PRIVATE_KEY:
            return None
        return cls.GOOGLE_PRIVATE_KEY.replace('\\n', '\n')

    @classmethod
    def validate(cls):
        """Validate that required configuration is present"""
        if not cls.DISCORD_TOKEN:
            raise ValueError("DISCORD_TOKEN is required")
        if not cls.SPREADSHEET_ID:
            raise ValueError("SPREADSHEET_ID is required")
        if not cls.CHALLENGE_CHANNEL_ID:
            raise ValueError("CHALLENGE_CHANNEL_ID is required")
        if not cls.GOOGLE_CLIENT_EMAIL or not cls.GOOGLE_PRIVATE_KEY:
            raise ValueError("GOOGLE_CLIENT_EMAIL and GOOGLE_PRIVATE_KEY are required")
