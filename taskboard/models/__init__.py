from taskboard.models.user import User
from taskboard.models.board import Board, board_members, BoardUserRole
from taskboard.models.task_list import TaskList
from taskboard.models.task import Task
