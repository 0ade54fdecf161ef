#!/usr/bin/env python3
"""
Run script for the reimbursement claim service.

Usage:
    python run_server.py

Settings come from the environment or a .env file (DATABASE_PATH,
LOCAL_TIMEZONE, SMTP_HOST, ADMIN_EMAIL, ...). The service expects a gateway
in front of it that verifies tokens and forwards X-User-Id / X-User-Roles.
"""

import logging
import os
import sys

# Configure logging early, before any other imports that might use it
logging.getLogger("python_multipart").setLevel(logging.WARNING)
logging.getLogger("python_multipart.multipart").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def main():
    """Run the claim service."""
    from src.api.app import main as run_app
    from src.utils.config import get_settings

    settings = get_settings()

    print("=" * 60)
    print("Reimbursement Claims")
    print("=" * 60)
    print(f"Server:   http://{settings.host}:{settings.port}")
    print(f"Database: {settings.database_path}")
    print(f"Timezone: {settings.local_timezone}")
    print(f"Mail:     {'SMTP ' + settings.smtp_host if settings.smtp_host else 'logged only'}")
    print("=" * 60)
    print()
    print("Endpoints:")
    print(f"  - Health: http://{settings.host}:{settings.port}/health")
    print(f"  - Docs:   http://{settings.host}:{settings.port}/docs")
    print()

    run_app()


if __name__ == "__main__":
    main()
