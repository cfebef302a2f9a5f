import logging

logger = logging.getLogger(__name__)

DEMO_MESSAGE = "DemoService.log invoked"


class DemoService:
    """Writes one INFO line. Whatever handler ships it to Loki is configured elsewhere."""

    def log(self) -> None:
        logger.info(DEMO_MESSAGE)
