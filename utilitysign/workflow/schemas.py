import enum


class WorkflowStep(str, enum.Enum):
    upload = "upload"
    preview = "preview"
    signing = "signing"
    status = "status"
    completed = "completed"
