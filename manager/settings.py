SETTINGS_TEMPLATE = {
    "default": {"debug": False},
    "telegram": {
        "token": "",  # telegram robot token
        "channel": "",  # monitored chat id
    },
    "captcha": {
        "timeout": 120,  # seconds before an unanswered challenge expires
        "sweep_interval": 60,  # seconds between registry sweeps
        "min_account_age_days": 30,
        "keywords": "bot,police,telegram,remove,deleted",  # comma-separated denylist
    },
}

# environment variable => (section, option)
ENVIRONMENT_OVERRIDES = {
    "BOT_TOKEN": ("telegram", "token"),
    "CHANNEL_ID": ("telegram", "channel"),
    "ADMIN_ID": ("telegram", "admin"),
    "DEBUG": ("default", "debug"),
}
