import os

os.environ.setdefault("BOT_TOKEN", "123456:test-token")
