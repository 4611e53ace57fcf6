"""Decoding of MySQL and MariaDB binary log events, and protocol packet framing."""

__version__ = "0.1.0"