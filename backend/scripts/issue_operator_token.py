"""Mint a signed operator token for the admin endpoints.

Usage: python scripts/issue_operator_token.py [subject]
"""
import sys

from raffledesk.config import settings
from raffledesk.core.security import create_operator_token


def main() -> None:
    subject = sys.argv[1] if len(sys.argv) > 1 else "operator"
    if settings.APP_ENV == "production" and settings.OPERATOR_SECRET_KEY == "change-me-in-production":
        print("ERROR: OPERATOR_SECRET_KEY is still the default value.")
        sys.exit(1)
    token = create_operator_token(subject)
    hours = settings.OPERATOR_TOKEN_MAX_AGE_SECONDS // 3600
    print(f"Operator token for '{subject}' (valid {hours}h):")
    print(token)


if __name__ == "__main__":
    main()
