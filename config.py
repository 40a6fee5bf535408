"""
Configuration handed to the LDAP serving layer

Settings come from the environment (a .env file is loaded if present) and can
be overridden on the command line.
"""

import argparse
import logging
import os
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import ldap.dn
from dotenv import load_dotenv

from errors import ConfigAbsent, ConfigMalformed, ListenerMisconfigured
from models import DirectorySnapshot
from publisher import Publisher


logger = logging.getLogger(__name__)

PROGRAM_NAME = "authportal-ldap"
VERSION = "0.1.0"
DEFAULT_BASE_DN = "dc=glauth,dc=local"


@dataclass
class Config:
    """
    Everything the serving layer needs: where the users come from, how DNs are
    formed and which listeners to open. The directory itself is read through
    current(), which returns the snapshot held by the publisher.
    """

    config_file: str = ""
    base_dn: str = DEFAULT_BASE_DN
    ldap_listen: str = ""
    ldaps_listen: str = ""
    ldaps_cert: str = ""
    ldaps_key: str = ""
    debug: bool = False
    name_format: str = "cn"
    group_format: str = "ou"
    ssh_key_attr: str = "sshPublicKey"
    datastore: str = "config"
    publisher: Optional[Publisher] = None

    @property
    def ldap_enabled(self) -> bool:
        return len(self.ldap_listen) != 0

    @property
    def ldaps_enabled(self) -> bool:
        return len(self.ldaps_listen) != 0

    def current(self) -> DirectorySnapshot:
        """Snapshot currently served."""
        if self.publisher is None:
            raise ConfigAbsent("no publisher attached to the configuration")
        return self.publisher.current()

    def validate(self):
        """Check the settings required before anything is loaded or served."""
        if not self.config_file:
            raise ConfigAbsent("configuration file not specified")
        if not os.path.exists(self.config_file):
            raise ConfigAbsent(f"configuration file {self.config_file} does not exist")
        if not self.ldap_enabled and not self.ldaps_enabled:
            raise ListenerMisconfigured(
                "no server configuration found: please provide either LDAP or LDAPS configuration"
            )
        if self.ldaps_enabled and not (self.ldaps_cert and self.ldaps_key):
            raise ListenerMisconfigured("LDAPS needs both a certificate and a key")
        if not ldap.dn.is_dn(self.base_dn):
            raise ConfigMalformed(f"invalid base DN: {self.base_dn}")


def parse_listen(address: str) -> Tuple[str, int]:
    """Split a 'host:port' (or ':port') bind address into interface and port."""
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ListenerMisconfigured(f"invalid bind address {address}, expected host:port")
    try:
        port_number = int(port)
    except ValueError as e:
        raise ListenerMisconfigured(f"invalid port in bind address {address}") from e
    return host.strip("[]"), port_number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROGRAM_NAME,
        description="expose an auth portal user database over LDAP"
    )
    parser.add_argument("-c", dest="config_file", default=os.getenv("AUTHPORTAL_CONFIG_FILE", ""),
                        help="Config file.")
    parser.add_argument("-basedn", "--basedn", dest="base_dn",
                        default=os.getenv("LDAP_BASE_DN", DEFAULT_BASE_DN),
                        help="LDAP Base domain")
    parser.add_argument("-ldap", "--ldap", dest="ldap_listen", default=os.getenv("LDAP_LISTEN", ""),
                        help="ldap bind address")
    parser.add_argument("-ldaps", "--ldaps", dest="ldaps_listen", default=os.getenv("LDAPS_LISTEN", ""),
                        help="ldaps bind address")
    parser.add_argument("-ldaps-cert", "--ldaps-cert", dest="ldaps_cert", default=os.getenv("LDAPS_CERT", ""),
                        help="ldaps certificate")
    parser.add_argument("-ldaps-key", "--ldaps-key", dest="ldaps_key", default=os.getenv("LDAPS_KEY", ""),
                        help="ldaps key")
    parser.add_argument("-v", dest="debug", action="store_true",
                        default=os.getenv("LDAP_DEBUG", "false").lower() == "true",
                        help="Debug logging")
    parser.add_argument("-version", "--version", dest="version", action="store_true",
                        help="print version information and exit")
    return parser


def load_config(argv: Optional[Sequence[str]] = None) -> Tuple[Config, argparse.Namespace]:
    """Load .env, parse the command line and build a Config."""
    load_dotenv()
    args = build_parser().parse_args(argv)

    config = Config(
        config_file=args.config_file,
        base_dn=args.base_dn,
        ldap_listen=args.ldap_listen,
        ldaps_listen=args.ldaps_listen,
        ldaps_cert=args.ldaps_cert,
        ldaps_key=args.ldaps_key,
        debug=args.debug
    )
    return config, args
