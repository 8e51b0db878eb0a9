"""AWS Lambda handler for Canvas Calendar Sync."""
import json
import logging
import os
import time
from typing import Any, Dict

from fetcher.feed_fetcher import FeedFetcher
from fetcher.url_security import mask_sensitive_url
from storage.dynamodb_stores import DynamoDBClassStore, DynamoDBTaskStore
from storage.settings_store import EnvSettingsStore
from sync.orchestrator import SyncOrchestrator

# Context fields copied from ``extra=`` into the JSON log line
LOG_CONTEXT_FIELDS = (
    'feed_url', 'user_id', 'force_update', 'error_type', 'event_uid',
    'added', 'existing', 'skipped', 'duration_seconds', 'tasks_table', 'classes_table'
)


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for field_name in LOG_CONTEXT_FIELDS:
            if hasattr(record, field_name):
                log_data[field_name] = getattr(record, field_name)

        if record.exc_info:
            log_data['exception'] = mask_sensitive_url(self.formatException(record.exc_info))

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for Canvas Calendar Sync.

    Args:
        event: EventBridge or API payload; may carry ``feed_url``,
            ``user_id`` and ``force_update``
        context: Lambda context object

    Returns:
        Response dict with statusCode and the sync result
    """
    event = event or {}

    # Read configuration from environment variables
    tasks_table = os.environ.get('TASKS_TABLE_NAME', 'canvas-tasks')
    classes_table = os.environ.get('CLASSES_TABLE_NAME', 'canvas-classes')
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    proxy_timeout = int(os.environ.get('PROXY_TIMEOUT_SECONDS', '15'))
    direct_timeout = int(os.environ.get('DIRECT_TIMEOUT_SECONDS', '10'))

    feed_url = event.get('feed_url') or os.environ.get('CANVAS_FEED_URL', '')
    user_id = event.get('user_id') or os.environ.get('CANVAS_USER_ID') or None
    force_update = _as_bool(event.get('force_update', os.environ.get('FORCE_UPDATE', 'false')))

    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    logger.info(
        "Lambda execution started",
        extra={
            'tasks_table': tasks_table,
            'classes_table': classes_table,
            'user_id': user_id,
            'force_update': force_update
        }
    )

    try:
        orchestrator = SyncOrchestrator(
            task_store=DynamoDBTaskStore(table_name=tasks_table),
            class_store=DynamoDBClassStore(table_name=classes_table),
            settings_store=EnvSettingsStore(),
            fetcher=FeedFetcher(proxy_timeout=proxy_timeout, direct_timeout=direct_timeout)
        )

        logger.info("Syncing Canvas calendar feed")
        result = orchestrator.sync(feed_url, identity=user_id, force_update=force_update)

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Lambda execution failed: {mask_sensitive_url(str(e))}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return {
            'statusCode': 500,
            'body': json.dumps({
                'success': False,
                'message': 'Sync failed',
                'error': type(e).__name__,
                'duration_seconds': round(duration, 2)
            })
        }

    duration = time.time() - start_time
    body = result.to_dict()
    body['duration_seconds'] = round(duration, 2)

    if result.success:
        status_code = 200
        logger.info(
            "Lambda execution completed successfully",
            extra={
                'duration_seconds': round(duration, 2),
                'added': result.added,
                'existing': result.existing,
                'skipped': result.skipped
            }
        )
    else:
        status_code = 400 if result.error == 'InvalidUrl' else 500
        logger.error(
            f"Canvas sync failed: {result.message}",
            extra={'duration_seconds': round(duration, 2), 'error_type': result.error}
        )

    return {
        'statusCode': status_code,
        'body': json.dumps(body)
    }
