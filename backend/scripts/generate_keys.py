"""
Generate the RSA key pair used to sign access and refresh tokens.
Run once per environment: python scripts/generate_keys.py keys/

Then point the service at the files:

  JWT_PRIVATE_KEY_FILE=keys/jwt_private.pem
  JWT_PUBLIC_KEY_FILE=keys/jwt_public.pem
  JWT_ALLOW_EPHEMERAL_KEYS=false
"""

import os
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from tokenkeeper.core.keys import generate_rsa_key_pair


def main():
    target = Path(sys.argv[1] if len(sys.argv) > 1 else "keys")
    private_path = target / "jwt_private.pem"
    public_path = target / "jwt_public.pem"
    if private_path.exists() or public_path.exists():
        print(f"Refusing to overwrite existing keys in {target}")
        sys.exit(1)

    target.mkdir(parents=True, exist_ok=True)
    keys = generate_rsa_key_pair()
    private_path.write_text(keys.private_key, encoding="utf-8")
    os.chmod(private_path, 0o600)
    public_path.write_text(keys.public_key, encoding="utf-8")
    print(f"Wrote {private_path} and {public_path}")


if __name__ == "__main__":
    main()
