"""scriptdeck - discover, classify and run shell scripts."""

__version__ = "0.1.0"
