"""Transcript publisher module for pub/sub event publishing."""

import logging
from pubsub import pub
from ..models.events import TranscriptEvent

logger = logging.getLogger(__name__)

INTERIM_TOPIC = "transcript.interim"
FINAL_TOPIC = "transcript.final"


class TranscriptPublisher:
    """Publishes transcript events using pubsub.pub.

    Every update goes to the interim topic (it is the newest "current"
    transcript); finalized segments additionally go to the final topic.
    """

    def __init__(self, interim_topic: str = INTERIM_TOPIC, final_topic: str = FINAL_TOPIC):
        """Initialize transcript publisher.

        Args:
            interim_topic: Topic receiving every transcript update
            final_topic: Topic receiving finalized segments only
        """
        self.interim_topic = interim_topic
        self.final_topic = final_topic
        logger.info(f"TranscriptPublisher initialized with topics: {interim_topic}, {final_topic}")

    def publish(self, event: TranscriptEvent) -> None:
        """Publish a transcript event.

        Args:
            event: TranscriptEvent to publish
        """
        pub.sendMessage(self.interim_topic, event=event)
        if event.is_final:
            pub.sendMessage(self.final_topic, event=event)
            logger.debug(f"Published final transcript: '{event.text}'")
