"""
Root pytest configuration.

Settings are read once at import time, so the environment they need is set
here before any ``app`` module is collected. Values already exported in the
shell take precedence.
"""

import os

TEST_ENVIRONMENT = {
    "DATABASE_HOST": "localhost",
    "DATABASE_PORT": "5432",
    "DATABASE_NAME": "identity_test",
    "DATABASE_USER": "identity",
    "DATABASE_PASSWORD": "identity",
    "JWT_SECRET_KEY": "test-secret-key-not-for-production",
    "AES_ENCRYPTION_KEY": "0123456789abcdef" * 4,
    "BCRYPT_SALT_ROUNDS": "4",
    "DEBUG": "true",
}

for key, value in TEST_ENVIRONMENT.items():
    os.environ.setdefault(key, value)
