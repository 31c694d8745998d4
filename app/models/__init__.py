from .user import User
from .goal import Goal
from .goal_template import GoalTemplate
from .progress_history import ProgressHistory
from .activity import ActivityLog
from .setting import Setting
