"""Print a bearer token for local development.

Usage:
    python scripts/issue_dev_token.py <user_code> <company_id> [role]
"""

import sys, pathlib
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from audience.core.config import settings
from audience.core.security import create_access_token


def main(argv: list[str]) -> int:
    if len(argv) < 2:
        print(__doc__)
        return 1
    if settings.ENV == "prod":
        print("Refusing to issue a development token with ENV=prod")
        return 1
    user_code, company_id = argv[0], argv[1]
    role = argv[2] if len(argv) > 2 else "operator"
    print(create_access_token({"sub": user_code, "company_id": company_id, "role": role}))
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
