"""
Root module for the report package.
"""

import logging

from .base import Exporter
from .builder import build
from .slack import SlackExporter
from .text import TextExporter


logger = logging.getLogger(__name__)


#: The available exporters, indexed by format name
EXPORTERS = {
    TextExporter.name: TextExporter,
    SlackExporter.name: SlackExporter,
}


def exporter_from_settings(settings):
    """
    Returns an exporter for the given ``ExporterSettings``.

    An unknown format falls back to the text exporter rather than failing the run.
    """
    exporter_cls = EXPORTERS.get(settings.format)
    if exporter_cls is SlackExporter:
        return SlackExporter(settings.slack_token.get_secret_value(), settings.slack_channel_id)
    if exporter_cls is None:
        available = ', '.join(EXPORTERS)
        logger.warning(f'Unknown report format "{settings.format}", using text (available: {available})')
    return TextExporter()
