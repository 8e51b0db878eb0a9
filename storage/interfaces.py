"""Interfaces of the stores the Canvas importer depends on."""
from typing import List, Optional, Protocol

from processor.models import ClassRef, Settings, Task, TaskDraft, TaskType


class TaskStore(Protocol):
    def get_tasks(self, identity: Optional[str]) -> List[Task]:
        ...

    def add_task(self, draft: TaskDraft, identity: Optional[str]) -> Optional[Task]:
        """Store a task; at most one task may exist per non-empty canvas_uid."""
        ...

    def delete_task(self, task_id: str, identity: Optional[str]) -> bool:
        ...

    def get_task_types(self, identity: Optional[str]) -> List[TaskType]:
        ...


class ClassStore(Protocol):
    def get_classes(self, identity: Optional[str]) -> List[ClassRef]:
        ...

    def add_class(self, class_ref: ClassRef, identity: Optional[str]) -> ClassRef:
        ...


class SettingsStore(Protocol):
    def get_settings(self) -> Settings:
        ...
