import logging


class PrivacyFilter(logging.Filter):
    """Drop transcript-bearing fields from structured logs."""

    BLOCKED_KEYS = {"stt", "stt_text", "combined_text", "transcript"}

    def filter(self, record: logging.LogRecord) -> bool:
        for key in self.BLOCKED_KEYS:
            if hasattr(record, key):
                setattr(record, key, "[REDACTED]")
        return True


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    root = logging.getLogger()
    root.addFilter(PrivacyFilter())
    # Filters on the root logger do not see records propagated from child loggers.
    for handler in root.handlers:
        handler.addFilter(PrivacyFilter())
