import logging

logger = logging.getLogger(__name__)


class UsageRecorder:
    """Counts engine operations; one event per call, logged with its context."""

    def __init__(self) -> None:
        self.count = 0
        self.by_context: dict[str, int] = {}

    def record(self, context: str) -> None:
        self.count += 1
        self.by_context[context] = self.by_context.get(context, 0) + 1
        logger.info("Usage recorded. Counter: %d | Context: %s", self.count, context)
