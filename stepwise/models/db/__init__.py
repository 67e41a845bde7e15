# Import all models to ensure SQLAlchemy can resolve relationships
from .users import User
from .workflows import Workflow, WorkflowStep
from .executions import Execution, ExecutionRecord
from .reviews import Review
from .attachments import Attachment

# Export all models
__all__ = [
    'User',
    'Workflow',
    'WorkflowStep',
    'Execution',
    'ExecutionRecord',
    'Review',
    'Attachment',
]
