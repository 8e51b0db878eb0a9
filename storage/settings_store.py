"""Settings store backed by environment variables."""
import logging
import os

from processor.models import Settings

logger = logging.getLogger(__name__)

NAMING_STYLES = ('technical', 'descriptive')


class EnvSettingsStore:
    """Reads importer settings from the process environment."""

    def __init__(self, environ=None):
        self.environ = os.environ if environ is None else environ

    def get_settings(self) -> Settings:
        style = self.environ.get('CLASS_NAMING_STYLE', 'technical').strip().lower()
        if style not in NAMING_STYLES:
            logger.warning(f"Unknown CLASS_NAMING_STYLE '{style}', using 'technical'")
            style = 'technical'
        return Settings(class_naming_style=style)
