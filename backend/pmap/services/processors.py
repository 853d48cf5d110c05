"""
Processors shipped with the service.

Processors that talk to inventory or catalog backends live with their
clients; this module only carries the ones with no external dependency.
"""

import logging

from pmap.models.resource_mapping import ResourceMapping
from pmap.services.event_handler import ProcessMetadata, Processor

logger = logging.getLogger(__name__)


class LoggingProcessor(Processor):
    """Logs every mapping that reaches it.  Place it after writers in the chain."""

    def __init__(self, level: int = logging.INFO):
        self._level = level

    def process(self, mapping: ResourceMapping, metadata: ProcessMetadata) -> None:
        logger.log(
            self._level,
            "Resource mapping %r (provider=%r, contacts=%d) from gs://%s/%s",
            mapping.resource.name,
            mapping.resource.provider,
            len(mapping.contacts.email),
            metadata.bucket_id,
            metadata.object_id,
        )
