"""Template pack access: local directories and cached remote archives."""

from archgen.pack.cache import PackCache
from archgen.pack.loader import load_pack_directory
from archgen.pack.repository import TemplateRepository, archive_url

__all__ = [
    "PackCache",
    "TemplateRepository",
    "archive_url",
    "load_pack_directory",
]
