import json
import logging
import re

import openai
from openai import OpenAI

from app.core.config import get_settings
from app.schemas.extraction import WorkflowOutputs
from app.services.audio.errors import WorkflowError
from app.services.external import call_with_retry, categorize_error

logger = logging.getLogger(__name__)

CODE_FENCE_RE = re.compile(r"```(?:json)?\s*|\s*```")

SYSTEM_PROMPT = (
    "You read transcripts of interviews with staff members and extract their career history. "
    "Use only facts stated in the transcript. Do not invent employers, dates or skills."
)
DEVELOPER_PROMPT = (
    "Return JSON only with these keys: "
    "skillsheet: object keyed career_1, career_2, ... each {company:str, period:str, role:str, summary:str}; "
    "lor: str (a letter of recommendation written from the interview); "
    "skills: str (comma separated skills); "
    "hope: str (the candidate's stated preferences for their next position, empty if none)."
)


def execute_main_workflow(job_id: str, combined_text: str) -> dict:
    settings = get_settings()
    if not settings.openai_api_key:
        raise WorkflowError("OPENAI_API_KEY is not configured.")
    client = OpenAI(api_key=settings.openai_api_key, timeout=settings.external_timeout_seconds, max_retries=0)
    logger.info("workflow_started", extra={"job_id": job_id, "text_length": len(combined_text)})

    def _request() -> dict:
        completion = client.chat.completions.create(
            model=settings.openai_model,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "system", "content": DEVELOPER_PROMPT},
                {"role": "user", "content": combined_text},
            ],
        )
        content = completion.choices[0].message.content or "{}"
        return json.loads(content)

    try:
        outputs = call_with_retry(_request, job_id=job_id, operation="workflow", label="extraction")
    except openai.OpenAIError as exc:
        code = categorize_error(exc, "workflow")
        raise WorkflowError(f"{code}: Main workflow failed - {exc}", code=code) from exc
    except json.JSONDecodeError as exc:
        raise WorkflowError(f"WORKFLOW_FAILED: workflow returned invalid JSON - {exc}") from exc

    logger.info("workflow_completed", extra={"job_id": job_id})
    return {"outputs": outputs}


def _as_text(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False) if value else None
    text = str(value).strip()
    return text or None


def _work_content(job_id: str, skillsheet: object) -> list[str]:
    if not skillsheet:
        return []
    try:
        data = json.loads(CODE_FENCE_RE.sub("", skillsheet).strip()) if isinstance(skillsheet, str) else skillsheet
    except json.JSONDecodeError as exc:
        logger.warning("skillsheet_parse_failed", extra={"job_id": job_id, "error": str(exc)})
        return []
    if isinstance(data, dict):
        careers = list(data.values())
    elif isinstance(data, list):
        careers = data
    else:
        return []
    return [str(career.get("summary") or "") if isinstance(career, dict) else "" for career in careers]


def parse_outputs(job_id: str, raw_result: object) -> WorkflowOutputs:
    """Normalize workflow output. Missing or malformed fields become None/empty."""
    outputs = raw_result.get("outputs") if isinstance(raw_result, dict) else None
    if not isinstance(outputs, dict):
        logger.warning("workflow_outputs_missing", extra={"job_id": job_id})
        outputs = {}

    skillsheet = outputs.get("skillsheet")
    parsed = WorkflowOutputs(
        skillsheet=_as_text(CODE_FENCE_RE.sub("", skillsheet).strip() if isinstance(skillsheet, str) else skillsheet),
        lor=_as_text(outputs.get("lor")),
        work_content=_work_content(job_id, skillsheet),
        skills=_as_text(outputs.get("skills")),
        hope=_as_text(outputs.get("hope")),
    )
    logger.debug(
        "workflow_outputs_parsed",
        extra={
            "job_id": job_id,
            "has_skillsheet": parsed.skillsheet is not None,
            "has_lor": parsed.lor is not None,
            "work_content_items": len(parsed.work_content),
        },
    )
    return parsed
