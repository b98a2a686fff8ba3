"""Wake-on-LAN / Sleep-on-LAN dispatch service."""

__version__ = "0.4.0"
