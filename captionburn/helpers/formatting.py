import colorama
from colorama import Fore, Style

colorama.init(autoreset=True)


def sanitize_filename(title: str) -> str:
    """Return a filesystem-safe version of ``title``."""
    return ''.join(char if char.isalnum() or char in '._-' else '_' for char in title)


def srt_download_name(language: str | None) -> str:
    """Return the attachment name used when the edited captions are downloaded."""
    lang = sanitize_filename((language or "").strip()) or "en"
    return f"captions_{lang}.srt"


__all__ = ["Fore", "Style", "sanitize_filename", "srt_download_name"]
