from pydantic import BaseModel, Field


class WorkflowOutputs(BaseModel):
    skillsheet: str | None = None
    lor: str | None = None
    work_content: list[str] = Field(default_factory=list)
    skills: str | None = None
    hope: str | None = None
