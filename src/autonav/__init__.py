"""autonav - grounded question answering over navigator knowledge bases."""

from autonav.constants import VERSION

__version__ = VERSION
