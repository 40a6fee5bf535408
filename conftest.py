"""
Shared fixtures for the bridge tests
"""

import json
import logging
import time

import pytest


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


def _user(name, roles=(), passwords=None, emails=(), user_id=None):
    if passwords is None:
        passwords = [("bcrypt", f"hash-of-{name}")]
    return {
        "Username": name,
        "Id": user_id or f"id-{name}",
        "email_addresses": [{"Address": address, "Domain": address.split("@")[-1]} for address in emails],
        "Passwords": [{"Algorithm": algorithm, "Hash": value} for algorithm, value in passwords],
        "Roles": [{"Name": role} for role in roles],
    }


@pytest.fixture
def make_user():
    """Build one auth portal user entry."""
    return _user


@pytest.fixture
def make_document():
    """Build an auth portal document from user entries."""
    def _document(*users, revision=1):
        return {"revision": revision, "users": list(users)}
    return _document


@pytest.fixture
def write_config(tmp_path):
    """Write a document (dict or raw text) to users.json and return its path."""
    path = tmp_path / "users.json"

    def _write(document, target=None):
        target = target or path
        content = document if isinstance(document, str) else json.dumps(document)
        target.write_text(content)
        return str(target)

    return _write


@pytest.fixture
def wait_for_revision():
    """Wait until a publisher serves the given source revision."""
    def _wait(publisher, revision, timeout=10):
        deadline = time.monotonic() + timeout
        while True:
            generation = publisher.generation
            if publisher.ready and publisher.current().revision == revision:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            publisher.wait_for(generation + 1, timeout=min(remaining, 0.5))
    return _wait
