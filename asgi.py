"""
asgi.py -- Application assembly for Keyward.

This is the ONLY module that reads process configuration. It loads Settings
(which raises ConfigurationError on a missing SECRET_KEY, stopping startup)
and hands them to the factory.

Run with:  uvicorn asgi:app --reload
"""

from api.main import create_app
from core.config import get_settings

app = create_app(get_settings())
