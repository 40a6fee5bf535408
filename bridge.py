#!/usr/bin/env python3
"""
Auth portal to LDAP bridge

Serves the users of an auth portal JSON config over LDAP and/or LDAPS and
reloads them whenever the file changes.
"""

import logging
import sys

from twisted.internet import reactor, ssl
from twisted.python import log as twisted_log

from config import PROGRAM_NAME, VERSION, Config, load_config, parse_listen
from directory import DirectoryFactory
from errors import ConfigError
from projector import load_snapshot
from publisher import Publisher
from watcher import watch


logger = logging.getLogger(__name__)


def get_version_string() -> str:
    return f"{PROGRAM_NAME} {VERSION}\nLDAP bridge for auth portal user databases\n"


def init_logging(debug: bool):
    """Configure logging to stderr and route Twisted's log into it."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    twisted_log.PythonLoggingObserver(loggerName="twisted").start()
    if debug:
        logger.debug("Debugging enabled")


def start_listeners(config: Config, factory: DirectoryFactory):
    """Open the LDAP and LDAPS listeners that are enabled."""
    if config.ldap_enabled:
        host, port = parse_listen(config.ldap_listen)
        reactor.listenTCP(port, factory, interface=host)
        logger.info(f"LDAP listening on {config.ldap_listen}")

    if config.ldaps_enabled:
        host, port = parse_listen(config.ldaps_listen)
        context = ssl.DefaultOpenSSLContextFactory(config.ldaps_key, config.ldaps_cert)
        reactor.listenSSL(port, factory, context, interface=host)
        logger.info(f"LDAPS listening on {config.ldaps_listen}")


def main(argv=None) -> int:
    config, args = load_config(argv)

    if args.version:
        print(get_version_string(), file=sys.stderr)
        return 0

    init_logging(config.debug)
    logger.info(f"Starting {PROGRAM_NAME}")

    try:
        config.validate()

        # The first load must succeed before any listener is opened
        config.publisher = Publisher()
        config.publisher.install(load_snapshot(config.config_file))
        logger.info("Loaded users and groups from config")

        factory = DirectoryFactory(config)
        start_listeners(config, factory)

    except ConfigError as e:
        logger.error(f"Configuration file error: {e}")
        return 1
    except Exception as e:
        logger.error(f"Could not start server: {e}", exc_info=True)
        return 1

    watcher = watch(config.config_file, config.publisher)
    reactor.addSystemEventTrigger("before", "shutdown", watcher.stop)

    reactor.run()
    logger.info(f"{PROGRAM_NAME} exit")
    return 0


if __name__ == "__main__":
    sys.exit(main())
