from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from app.db.models import NotificationType, Priority, Todo, TodoStatus
from app.services.notifications import NotificationService
from app.utils.datetime_utils import naive_utc_now, to_naive_utc
from app.utils.errors import BrokerPublishError, BusinessLogicError, NotFoundError
from app.utils.logging import get_logger

logger = get_logger()


class TodoService:
    """
    Todo persistence at the seams where the notification pipeline is involved.

    Creating, updating and completing a todo each emit a notification. The
    overdue and due-soon queries back the scheduled scans.
    """

    def __init__(
        self,
        db_session: Session,
        notification_service: Optional[NotificationService] = None,
    ):
        self.db = db_session
        self.notification_service = notification_service or NotificationService(
            db_session
        )

    async def get_todo(self, todo_id: str, user_id: str) -> Todo:
        todo = self.db.execute(
            select(Todo).where(
                and_(
                    Todo.id == todo_id,
                    Todo.user_id == user_id,
                    Todo.is_deleted == False,
                )
            )
        ).scalar_one_or_none()
        if not todo:
            raise NotFoundError(f"Todo {todo_id} not found")
        return todo

    async def create_todo(
        self,
        user_id: str,
        title: str,
        description: Optional[str] = None,
        priority: Priority = Priority.MEDIUM,
        due_date: Optional[datetime] = None,
    ) -> Todo:
        if not title or not title.strip() or len(title) > 200:
            raise BusinessLogicError("Todo title must be between 1 and 200 characters")

        todo = Todo(
            user_id=user_id,
            title=title,
            description=description,
            priority=priority,
            status=TodoStatus.PENDING,
            due_date=to_naive_utc(due_date) if due_date else None,
        )
        self.db.add(todo)
        self.db.commit()
        logger.info(f"Created todo {todo.id} for user {user_id}")

        await self._notify(
            todo,
            "New Todo Created",
            f"You have created a new todo: {todo.title}",
            NotificationType.TODO_CREATED,
        )
        return todo

    async def update_todo(
        self, todo_id: str, user_id: str, changes: Dict[str, Any]
    ) -> Todo:
        todo = await self.get_todo(todo_id, user_id)
        was_completed = todo.is_completed

        for field in ("title", "description", "priority", "status"):
            if field in changes:
                setattr(todo, field, changes[field])
        if "due_date" in changes:
            due_date = changes["due_date"]
            todo.due_date = to_naive_utc(due_date) if due_date else None

        completed_now = todo.is_completed and not was_completed
        if completed_now:
            todo.mark_as_completed()
        self.db.commit()

        if completed_now:
            await self._notify(
                todo,
                "Todo Completed",
                f"Congratulations! You have completed: {todo.title}",
                NotificationType.TODO_COMPLETED,
            )
        else:
            await self._notify(
                todo,
                "Todo Updated",
                f"Your todo has been updated: {todo.title}",
                NotificationType.TODO_UPDATED,
            )
        return todo

    async def mark_as_completed(self, todo_id: str, user_id: str) -> Todo:
        todo = await self.get_todo(todo_id, user_id)
        todo.mark_as_completed()
        self.db.commit()

        await self._notify(
            todo,
            "Todo Completed",
            f"Congratulations! You have completed: {todo.title}",
            NotificationType.TODO_COMPLETED,
        )
        return todo

    async def _notify(
        self, todo: Todo, title: str, message: str, notification_type: NotificationType
    ) -> None:
        # The todo change stands even when its notification cannot be enqueued
        try:
            await self.notification_service.create(
                user_id=todo.user_id,
                title=title,
                message=message,
                type=notification_type,
                todo_id=todo.id,
            )
        except BrokerPublishError as e:
            logger.error(
                f"{notification_type.value} notification for todo {todo.id} failed: {e.message}"
            )

    # Scan queries

    def _open_todos(self, user_id: str):
        return select(Todo).where(
            and_(
                Todo.user_id == user_id,
                Todo.is_deleted == False,
                Todo.status != TodoStatus.COMPLETED,
                Todo.due_date != None,
            )
        )

    async def find_overdue_todos(self, user_id: str) -> List[Todo]:
        query = self._open_todos(user_id).where(Todo.due_date < naive_utc_now())
        return list(self.db.execute(query.order_by(Todo.due_date)).scalars().all())

    async def find_todos_due_soon(self, user_id: str, hours: int) -> List[Todo]:
        now = naive_utc_now()
        query = self._open_todos(user_id).where(
            Todo.due_date.between(now, now + timedelta(hours=hours))
        )
        return list(self.db.execute(query.order_by(Todo.due_date)).scalars().all())

    async def check_and_notify_overdue_todos(self, user_id: str) -> int:
        """
        Emit one TODO_OVERDUE notification per overdue todo.

        Runs are not de-duplicated: scanning again notifies the same todos again.
        """
        overdue = await self.find_overdue_todos(user_id)
        return await self._notify_each(
            overdue,
            "Todo Overdue",
            "Your todo is overdue: {title}",
            NotificationType.TODO_OVERDUE,
        )

    async def check_and_notify_due_soon_todos(self, user_id: str, hours: int) -> int:
        """Emit one TODO_DUE_SOON notification per todo due within ``hours``."""
        due_soon = await self.find_todos_due_soon(user_id, hours)
        return await self._notify_each(
            due_soon,
            "Todo Due Soon",
            "Your todo is due soon: {title}",
            NotificationType.TODO_DUE_SOON,
        )

    async def _notify_each(
        self,
        todos: List[Todo],
        title: str,
        message_template: str,
        notification_type: NotificationType,
    ) -> int:
        """
        Create one notification per todo and return how many were enqueued.

        A publish failure leaves that todo's record FAILED and the loop moves
        on to the next todo.
        """
        enqueued = 0
        for todo in todos:
            try:
                await self.notification_service.create(
                    user_id=todo.user_id,
                    title=title,
                    message=message_template.format(title=todo.title),
                    type=notification_type,
                    todo_id=todo.id,
                )
                enqueued += 1
            except BrokerPublishError as e:
                logger.error(
                    f"{notification_type.value} notification for todo {todo.id} "
                    f"not enqueued: {e.message}"
                )
        return enqueued
