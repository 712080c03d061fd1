"""
Module containing the base class for report exporters.
"""

import abc

from ..models import Severity


#: The order in which severity counts are listed in a report summary
SUMMARY_SEVERITIES = [s.value for s in Severity]

#: Format used for the report date (RFC 1123 with numeric zone)
DATE_FORMAT = '%a, %d %b %Y %H:%M:%S %z'

#: Shown for an image whose scan finished without producing any results
NO_RESULTS_TEXT = "No scan results available"


class Exporter(abc.ABC):
    """
    Base class for all report exporters.
    """
    #: The name used to select the exporter in the configuration
    name = None

    @abc.abstractmethod
    async def export(self, report):
        """
        Export the given ``AggregateReport``.

        If the report cannot be exported, an ``ExportError`` should be raised.
        """
