"""
Loader for the JSON user database written by the auth portal
"""

import json
import logging
from typing import Any, List

from pydantic import BaseModel, ValidationError, model_validator

from errors import ConfigMalformed, ConfigUnreadable


logger = logging.getLogger(__name__)


class PortalModel(BaseModel):
    """
    Base model for auth portal documents.
    Keys are matched case-insensitively ("Username" and "username" are the same
    field) and null values are treated as missing. Unknown keys are ignored.
    """

    @model_validator(mode="before")
    @classmethod
    def normalize_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        normalized = {}
        for key, value in data.items():
            if value is None or not isinstance(key, str):
                continue
            normalized.setdefault(key.lower(), value)
        return normalized


class EmailAddress(PortalModel):
    address: str = ""
    domain: str = ""


class Password(PortalModel):
    algorithm: str = ""
    hash: str = ""


class Role(PortalModel):
    name: str = ""


class SourceUser(PortalModel):
    username: str = ""
    id: str = ""
    email_addresses: List[EmailAddress] = []
    passwords: List[Password] = []
    roles: List[Role] = []


class SourceDocument(PortalModel):
    revision: int = 0
    users: List[SourceUser] = []


def parse(raw: bytes, source: str = "<bytes>") -> SourceDocument:
    """Parse raw file contents into a SourceDocument."""
    if not raw.strip():
        raise ConfigMalformed(f"Config file {source} is empty")

    try:
        data = json.loads(raw)
    except ValueError as e:
        raise ConfigMalformed(f"Config file {source} is not valid JSON: {e}") from e
    except RecursionError as e:
        raise ConfigMalformed(f"Config file {source} is nested too deeply") from e

    try:
        return SourceDocument.model_validate(data)
    except ValidationError as e:
        raise ConfigMalformed(f"Config file {source} does not match the auth portal schema: {e}") from e


def load(path: str) -> SourceDocument:
    """
    Read and parse the auth portal config at `path`.
    Raises ConfigUnreadable on I/O errors and ConfigMalformed on bad content.
    """
    try:
        with open(path, "rb") as f:
            raw = f.read()
    except OSError as e:
        raise ConfigUnreadable(f"Could not read config file {path}: {e}") from e

    document = parse(raw, source=path)
    logger.debug(f"Parsed {path}: revision {document.revision}, {len(document.users)} users")
    return document
