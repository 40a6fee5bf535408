#!/usr/bin/env python3
"""
Check a running bridge: bind as a user and list the served users and groups
"""

import os
import sys
import logging

import ldap
from dotenv import load_dotenv

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

load_dotenv()


def _first(attrs, name):
    values = attrs.get(name) or [b""]
    value = values[0]
    if isinstance(value, bytes):
        value = value.decode('utf-8')
    return value


def check_ldap_connection():
    """Bind to the bridge and search its directory"""
    print("\n🔍 Testing LDAP Connection...")

    server = os.getenv("LDAP_SERVER")
    bind_dn = os.getenv("LDAP_BIND_DN")
    bind_password = os.getenv("LDAP_BIND_PASSWORD")
    base_dn = os.getenv("LDAP_BASE_DN", "dc=glauth,dc=local")

    try:
        conn = ldap.initialize(server)
        conn.protocol_version = ldap.VERSION3
        conn.simple_bind_s(bind_dn, bind_password)
        print(f"✅ Bound to {server} as {bind_dn}")

        users = conn.search_s(base_dn, ldap.SCOPE_SUBTREE, "(objectClass=posixAccount)",
                              ['uid', 'uidNumber', 'mail'])
        users = [(dn, attrs) for dn, attrs in users if dn]
        print(f"✅ Found {len(users)} users")
        for dn, attrs in users[:5]:
            print(f"   - {_first(attrs, 'uid')} ({_first(attrs, 'uidNumber')}) {_first(attrs, 'mail')}")

        groups = conn.search_s(base_dn, ldap.SCOPE_SUBTREE, "(objectClass=posixGroup)",
                               ['cn', 'gidNumber'])
        groups = [(dn, attrs) for dn, attrs in groups if dn]
        print(f"✅ Found {len(groups)} groups")
        for dn, attrs in groups[:5]:
            print(f"   - {_first(attrs, 'cn')} ({_first(attrs, 'gidNumber')})")

        conn.unbind_s()
        return True

    except ldap.INVALID_CREDENTIALS:
        print(f"❌ Invalid credentials for {bind_dn}")
        return False
    except ldap.LDAPError as e:
        print(f"❌ LDAP connection failed: {e}")
        return False


def main():
    print("🧪 Connection Check")
    print("=" * 60)

    ok = check_ldap_connection()

    print("\n" + "=" * 60)
    print(f"   LDAP: {'✅ PASS' if ok else '❌ FAIL'}")
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
