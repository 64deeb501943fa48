"""Issue a bearer token for an operator (admin scope) or for the cron caller."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Ensure project root is on PYTHONPATH when running as a script.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.core.security import ADMIN_SCOPE, CRON_SCOPE, create_access_token


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("subject", help="Quien usa el token, ej. 'ops@example.com' o 'scheduler'")
    parser.add_argument("--scope", choices=[ADMIN_SCOPE, CRON_SCOPE], action="append", required=True)
    parser.add_argument("--minutes", type=int, default=None, help="Vigencia; por defecto ACCESS_TOKEN_EXPIRE_MINUTES")
    args = parser.parse_args(argv)

    print(create_access_token(args.subject, args.scope, expires_minutes=args.minutes))


if __name__ == "__main__":
    main()
