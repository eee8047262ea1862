#!/usr/bin/env python3
"""
Generate the key that signs the ClinicDesk browser cookie.

    python scripts/generate_secret_key.py          # print the key
    python scripts/generate_secret_key.py --write  # store it in .env

The web app will not start until CLINICDESK_SECRET_KEY is set.
"""

import secrets
import sys
from pathlib import Path

from dotenv import set_key

from clinicdesk.config import SECRET_KEY_ENV


def generate_secret_key() -> str:
    return secrets.token_hex(32)


def write_key(env_path, key: str) -> Path:
    """Set the key in *env_path*, creating the file or replacing an old key."""
    path = Path(env_path)
    path.touch(exist_ok=True)
    set_key(str(path), SECRET_KEY_ENV, key, quote_mode="never")
    return path


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    print("=" * 60)
    print("ClinicDesk Secret Key Generator")
    print("=" * 60)

    secret_key = generate_secret_key()

    if "--write" in argv:
        path = write_key(".env", secret_key)
        print(f"\n[init] {SECRET_KEY_ENV} written to {path.resolve()}")
    else:
        print(f"\n{SECRET_KEY_ENV}={secret_key}")
        print("\nCopy the line above to your .env file, or rerun with --write")
    print("=" * 60)


if __name__ == "__main__":
    main()
