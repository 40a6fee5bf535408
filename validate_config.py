#!/usr/bin/env python3
"""
Check the bridge configuration and dry-run a load of the auth portal config
"""

import os
import sys

from dotenv import load_dotenv

from errors import ConfigError
from projector import load_snapshot

# Load environment variables
load_dotenv()


def validate_config():
    """Validate that the required configuration is set"""
    if not os.getenv("AUTHPORTAL_CONFIG_FILE"):
        print("❌ Missing required configuration variable:")
        print("   - AUTHPORTAL_CONFIG_FILE")
        return False

    if not os.getenv("LDAP_LISTEN") and not os.getenv("LDAPS_LISTEN"):
        print("❌ Neither LDAP_LISTEN nor LDAPS_LISTEN is set")
        return False

    if os.getenv("LDAPS_LISTEN") and not (os.getenv("LDAPS_CERT") and os.getenv("LDAPS_KEY")):
        print("❌ LDAPS_LISTEN is set but LDAPS_CERT or LDAPS_KEY is missing")
        return False

    print("✅ All required configuration variables are set")
    return True


def display_config():
    """Display current configuration"""
    print("\n📋 Current Configuration:")
    print(f"   Config file: {os.getenv('AUTHPORTAL_CONFIG_FILE')}")
    print(f"   Base DN: {os.getenv('LDAP_BASE_DN', 'dc=glauth,dc=local')}")
    print(f"   LDAP listen: {os.getenv('LDAP_LISTEN', '(disabled)')}")
    print(f"   LDAPS listen: {os.getenv('LDAPS_LISTEN', '(disabled)')}")
    print(f"   Debug: {os.getenv('LDAP_DEBUG', 'false')}")
    print()


def dry_run():
    """Load and project the auth portal config without serving it"""
    path = os.getenv("AUTHPORTAL_CONFIG_FILE")
    try:
        snapshot = load_snapshot(path)
    except ConfigError as e:
        print(f"❌ {path} cannot be served: {e}")
        return False

    names = snapshot.group_names()
    print(f"✅ Revision {snapshot.revision}: {len(snapshot.users)} users, {len(snapshot.groups)} groups")
    for user in snapshot.users:
        groups = ", ".join(names[gid] for gid in user.other_gids) or "-"
        print(f"   - {user.name} (uid {user.uid}): {groups}")
    return True


if __name__ == "__main__":
    print("🔍 Auth portal LDAP bridge - Configuration Validator\n")

    if validate_config():
        display_config()
        if not dry_run():
            sys.exit(1)
        print("\n✅ Configuration is valid. You can now run:")
        print("   python bridge.py")
    else:
        print("\n❌ Please update your .env file with the missing configuration")
        print("   See .env.example for reference")
        sys.exit(1)
