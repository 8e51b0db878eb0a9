"""DynamoDB-backed task and class stores for imported Canvas data."""
import hashlib
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from processor.models import ClassRef, Task, TaskDraft, TaskType

logger = logging.getLogger(__name__)

DEFAULT_USER_ID = 'local-user'

DEFAULT_TASK_TYPES = [
    TaskType(id='assignment', name='Assignment'),
    TaskType(id='homework', name='Homework'),
    TaskType(id='exam', name='Exam'),
    TaskType(id='quiz', name='Quiz'),
    TaskType(id='lab', name='Lab'),
    TaskType(id='project', name='Project'),
    TaskType(id='discussion', name='Discussion'),
    TaskType(id='reading', name='Reading'),
    TaskType(id='presentation', name='Presentation'),
    TaskType(id='paper', name='Paper'),
    TaskType(id='research', name='Research'),
]


def _is_conditional_failure(error: ClientError) -> bool:
    return error.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException'


class DynamoDBTaskStore:
    """Task store keyed so that a user has at most one task per canvas_uid."""

    def __init__(
        self,
        table_name: str,
        task_types: Optional[List[TaskType]] = None,
        region_name: Optional[str] = None
    ):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the tasks table (hash key ``task_id``)
            task_types: Task types offered to the importer
            region_name: AWS region, defaults to the environment's
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.table = self.dynamodb.Table(table_name)
        self.task_types = list(task_types) if task_types else list(DEFAULT_TASK_TYPES)
        logger.info(f"Initialized DynamoDBTaskStore for table: {table_name}")

    @staticmethod
    def generate_task_id(user_id: str, canvas_uid: str) -> str:
        """
        Derive a stable task id from the owner and the ICS UID.

        Args:
            user_id: Owner of the task
            canvas_uid: ICS UID of the Canvas event

        Returns:
            SHA256 hex digest
        """
        composite = f"{user_id}|{canvas_uid}"
        return hashlib.sha256(composite.encode('utf-8')).hexdigest()

    def get_tasks(self, identity: Optional[str]) -> List[Task]:
        """
        Retrieve all tasks of a user using a Scan operation.

        Args:
            identity: User id

        Returns:
            List of Task objects
        """
        user_id = identity or DEFAULT_USER_ID
        scan_kwargs = {'FilterExpression': Attr('user_id').eq(user_id)}

        try:
            response = self.table.scan(**scan_kwargs)
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **scan_kwargs
                )
                items.extend(response.get('Items', []))
        except ClientError as e:
            logger.error(f"Error scanning tasks table: {e}")
            raise

        tasks = [task for task in (self._item_to_task(item) for item in items) if task]
        logger.info(f"Retrieved {len(tasks)} tasks for user {user_id}")
        return tasks

    def add_task(self, draft: TaskDraft, identity: Optional[str]) -> Optional[Task]:
        """
        Store a task, or return the stored one when its canvas_uid already exists.

        Args:
            draft: Task to store
            identity: User id

        Returns:
            Stored Task with ``was_created`` set
        """
        user_id = identity or DEFAULT_USER_ID
        if draft.canvas_uid:
            task_id = self.generate_task_id(user_id, draft.canvas_uid)
        else:
            task_id = str(uuid.uuid4())

        item = self._draft_to_item(draft, task_id, user_id)

        try:
            self.table.put_item(
                Item=item,
                ConditionExpression='attribute_not_exists(task_id)'
            )
        except ClientError as e:
            if not _is_conditional_failure(e):
                logger.error(f"Error writing task '{draft.title}': {e}")
                raise
            existing = self.table.get_item(Key={'task_id': task_id}).get('Item')
            logger.debug(f"Task for canvas_uid '{draft.canvas_uid}' already stored")
            task = self._item_to_task(existing) if existing else None
            if task:
                task.was_created = False
            return task

        task = self._item_to_task(item)
        task.was_created = True
        return task

    def delete_task(self, task_id: str, identity: Optional[str]) -> bool:
        """
        Delete one of the user's tasks.

        Args:
            task_id: Task id
            identity: User id

        Returns:
            True if the task was deleted, False if it did not exist for this user
        """
        user_id = identity or DEFAULT_USER_ID
        try:
            self.table.delete_item(
                Key={'task_id': task_id},
                ConditionExpression=Attr('user_id').eq(user_id)
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                logger.warning(f"Task {task_id} not found for user {user_id}")
                return False
            logger.error(f"Error deleting task {task_id}: {e}")
            raise
        return True

    def get_task_types(self, identity: Optional[str]) -> List[TaskType]:
        return list(self.task_types)

    def _draft_to_item(self, draft: TaskDraft, task_id: str, user_id: str) -> dict:
        """
        Convert a TaskDraft to a DynamoDB item.

        Args:
            draft: TaskDraft object
            task_id: Item key
            user_id: Owner

        Returns:
            DynamoDB item dictionary
        """
        item = draft.to_item()
        item.update({
            'task_id': task_id,
            'user_id': user_id,
            'created_at': datetime.now(timezone.utc).isoformat()
        })

        if not draft.canvas_uid:
            del item['canvas_uid']

        return item

    def _item_to_task(self, item: dict) -> Optional[Task]:
        """
        Convert DynamoDB item to Task object.

        Args:
            item: DynamoDB item dictionary

        Returns:
            Task object or None if conversion fails
        """
        try:
            return Task(
                id=item['task_id'],
                title=item['title'],
                type=item['type'],
                canvas_uid=item.get('canvas_uid'),
                due_date=item['dueDate'],
                due_time=item['dueTime'],
                class_id=item['class'],
                is_duration=bool(item.get('isDuration', False)),
                completed=bool(item.get('completed', False)),
                created_at=item.get('created_at')
            )
        except KeyError as e:
            logger.warning(f"Failed to convert item to Task: missing {e}")
            return None


class DynamoDBClassStore:
    """Class store with one item per (user_id, class_id)."""

    def __init__(self, table_name: str, region_name: Optional[str] = None):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the classes table (hash ``user_id``, range ``class_id``)
            region_name: AWS region, defaults to the environment's
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBClassStore for table: {table_name}")

    def get_classes(self, identity: Optional[str]) -> List[ClassRef]:
        user_id = identity or DEFAULT_USER_ID
        query_kwargs = {'KeyConditionExpression': Key('user_id').eq(user_id)}

        try:
            response = self.table.query(**query_kwargs)
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.query(
                    ExclusiveStartKey=response['LastEvaluatedKey'],
                    **query_kwargs
                )
                items.extend(response.get('Items', []))
        except ClientError as e:
            logger.error(f"Error querying classes table: {e}")
            raise

        return [self._item_to_class(item) for item in items]

    def add_class(self, class_ref: ClassRef, identity: Optional[str]) -> ClassRef:
        """
        Store a class unless the user already has one with the same id.

        Args:
            class_ref: Class to store
            identity: User id

        Returns:
            The stored class (the existing one on conflict)
        """
        user_id = identity or class_ref.user_id or DEFAULT_USER_ID
        item = {
            'user_id': user_id,
            'class_id': class_ref.id,
            'name': class_ref.name,
            'is_task_class': class_ref.is_task_class,
            'created_at': class_ref.created_at or datetime.now(timezone.utc).isoformat()
        }

        try:
            self.table.put_item(
                Item=item,
                ConditionExpression='attribute_not_exists(class_id)'
            )
        except ClientError as e:
            if not _is_conditional_failure(e):
                logger.error(f"Error writing class '{class_ref.id}': {e}")
                raise
            existing = self.table.get_item(Key={'user_id': user_id, 'class_id': class_ref.id})
            logger.debug(f"Class '{class_ref.id}' already exists for user {user_id}")
            return self._item_to_class(existing.get('Item', item))

        return self._item_to_class(item)

    @staticmethod
    def _item_to_class(item: dict) -> ClassRef:
        return ClassRef(
            id=item['class_id'],
            name=item['name'],
            user_id=item['user_id'],
            is_task_class=bool(item.get('is_task_class', False)),
            created_at=item.get('created_at')
        )
