"""Switchboard

Routes chat-completion and embedding requests across interchangeable LLM
providers with key rotation, caching, admission control, retries and fallback.
"""

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("switchboard")
except PackageNotFoundError:
    # Fallback for source checkouts
    __version__ = "1.0.0"
__author__ = "Switchboard"
