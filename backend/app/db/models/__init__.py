"""ORM models exposed for metadata discovery."""
from app.db.models.goal import Goal, GoalMilestone
from app.db.models.schedule_action_log import ScheduleActionLog
from app.db.models.task import Task
from app.db.models.time_block import TimeBlock
from app.db.models.user import User

__all__ = [
    "Goal",
    "GoalMilestone",
    "ScheduleActionLog",
    "Task",
    "TimeBlock",
    "User",
]
