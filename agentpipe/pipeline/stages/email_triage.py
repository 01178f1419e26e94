"""email.triage stage: sort emails into reply / action / FYI buckets.

Deterministic rules by default:

    - subject contains "urgent" or "action required"   -> needs_action
    - labelled UNREAD and not from a no-reply address  -> needs_reply
    - everything else                                  -> fyi

With ``llm`` set and a transport configured, categorization and reply drafts
come from ``llm_task.invoke`` (resolved through the context's registry) under
a fixed output schema, so its caching and run-state semantics apply.
"""

import json
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

from ...config import parse_flag, parse_optional_number
from ...errors import ConfigurationError
from ..base import StageResult, TransformStage
from ..context import ExecutionContext
from ..stream import collect, stream_of

logger = logging.getLogger(__name__)

CATEGORIES = ("needs_reply", "needs_action", "fyi")
TRIAGE_SCHEMA_VERSION = "email_triage.v1"
DEFAULT_LIMIT = 20

NO_REPLY_MARKERS = ("no-reply", "noreply", "do-not-reply", "donotreply")
ACTION_MARKERS = ("action required", "urgent")

TRIAGE_OUTPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "decisions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "category": {"type": "string", "enum": list(CATEGORIES)},
                    "rationale": {"type": "string"},
                    "reply": {
                        "type": "object",
                        "properties": {
                            "subject": {"type": "string"},
                            "body": {"type": "string"},
                        },
                        "required": ["body"],
                        "additionalProperties": False,
                    },
                },
                "required": ["id", "category"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["decisions"],
    "additionalProperties": False,
}

_ANGLE_ADDRESS = re.compile(r"<([^>]+)>")
_BARE_ADDRESS = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
_RE_PREFIX = re.compile(r"^re:\s*", re.IGNORECASE)


# ============================================================================
# Email helpers
# ============================================================================


@dataclass
class Email:
    id: str
    thread_id: str
    sender: str
    subject: str
    date: str
    snippet: str
    labels: List[str] = field(default_factory=list)

    @property
    def unread(self) -> bool:
        return any(label.upper() == "UNREAD" for label in self.labels)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "threadId": self.thread_id,
            "from": self.sender,
            "subject": self.subject,
            "date": self.date,
            "snippet": self.snippet,
            "labels": list(self.labels),
        }


def _text(raw: Dict[str, Any], *names: str) -> str:
    for name in names:
        value = raw.get(name)
        if value is not None:
            return str(value).strip()
    return ""


def normalize_email(raw: Any) -> Email:
    """Coerce a mail-provider record into an Email, tolerating field aliases."""
    raw = raw if isinstance(raw, dict) else {}
    email_id = _text(raw, "id", "messageId")
    labels = raw.get("labels")
    return Email(
        id=email_id,
        thread_id=_text(raw, "threadId", "thread_id") or email_id,
        sender=_text(raw, "from", "sender"),
        subject=_text(raw, "subject"),
        date=_text(raw, "date", "internalDate", "timestamp"),
        snippet=_text(raw, "snippet", "bodyPreview"),
        labels=[str(x) for x in labels] if isinstance(labels, list) else [],
    )


def is_no_reply(sender: str) -> bool:
    lowered = sender.lower()
    return any(marker in lowered for marker in NO_REPLY_MARKERS)


def extract_email_address(sender: str) -> str:
    """
    Pull the address out of a From header.

    Example:
        >>> extract_email_address("Ann <ann@example.com>")
        'ann@example.com'
    """
    match = _ANGLE_ADDRESS.search(sender or "")
    if match and match.group(1).strip():
        return match.group(1).strip()
    match = _BARE_ADDRESS.search(sender or "")
    return match.group(0).strip() if match else ""


def ensure_re(subject: str) -> str:
    subject = (subject or "").strip()
    if not subject:
        return "Re:"
    return subject if _RE_PREFIX.match(subject) else f"Re: {subject}"


def classify(email: Email) -> str:
    subject = email.subject.lower()
    if any(marker in subject for marker in ACTION_MARKERS):
        return "needs_action"
    if email.unread and not is_no_reply(email.sender):
        return "needs_reply"
    return "fyi"


def summarize(buckets: Dict[str, List[str]]) -> str:
    return (
        f"{len(buckets['needsReply'])} need replies, "
        f"{len(buckets['needsAction'])} need action, "
        f"{len(buckets['fyi'])} FYI"
    )


_BUCKET_NAMES = {"needs_reply": "needsReply", "needs_action": "needsAction", "fyi": "fyi"}


def _empty_buckets() -> Dict[str, List[str]]:
    return {"needsReply": [], "needsAction": [], "fyi": []}


def build_deterministic_report(emails: List[Email]) -> Dict[str, Any]:
    buckets = _empty_buckets()
    for email in emails:
        buckets[_BUCKET_NAMES[classify(email)]].append(email.id)
    return {
        "summary": summarize(buckets),
        "buckets": buckets,
        "emails": [e.to_dict() for e in emails],
        "mode": "deterministic",
    }


def triage_prompt(emails: List[Email]) -> str:
    listing = json.dumps(
        [
            {
                "id": e.id,
                "from": e.sender,
                "subject": e.subject,
                "date": e.date,
                "snippet": e.snippet,
                "labels": e.labels,
            }
            for e in emails
        ],
        indent=2,
    )
    return (
        "You are an email triage assistant.\n"
        "Given the following emails, return JSON that categorizes each email and "
        "(when category is needs_reply) drafts a short reply.\n"
        "Guidelines:\n"
        "- Keep replies concise, friendly, and professional.\n"
        "- If sender appears to be automated (no-reply), do not draft a reply; "
        "categorize as fyi unless it is clearly urgent/actionable.\n"
        "- Use one of categories: needs_reply, needs_action, fyi.\n"
        "- The reply body should be plain text, no markdown.\n\n"
        f"Emails (JSON):\n{listing}"
    )


# ============================================================================
# LLM decisions
# ============================================================================


@dataclass
class TriageDecision:
    id: str
    category: str
    rationale: Optional[str] = None
    reply: Optional[Dict[str, Any]] = None


def parse_decisions(data: Any) -> List[TriageDecision]:
    raw = data.get("decisions") if isinstance(data, dict) else None
    decisions = []
    for entry in raw if isinstance(raw, list) else []:
        if not isinstance(entry, dict):
            continue
        decision_id = str(entry.get("id") or "").strip()
        if not decision_id:
            continue
        reply = entry.get("reply")
        decisions.append(
            TriageDecision(
                id=decision_id,
                category=str(entry.get("category") or "fyi"),
                rationale=str(entry["rationale"]) if entry.get("rationale") else None,
                reply={"subject": reply.get("subject"), "body": str(reply.get("body") or "")}
                if isinstance(reply, dict)
                else None,
            )
        )
    return decisions


def build_llm_report(emails: List[Email], decisions: List[TriageDecision]) -> Dict[str, Any]:
    by_id = {e.id: e for e in emails}
    buckets = _empty_buckets()
    drafts = []

    for decision in decisions:
        buckets[_BUCKET_NAMES.get(decision.category, "fyi")].append(decision.id)

        if decision.category != "needs_reply" or not decision.reply or not decision.reply.get("body"):
            continue
        email = by_id.get(decision.id)
        if email is None or is_no_reply(email.sender):
            continue
        to = extract_email_address(email.sender)
        if not to:
            continue
        subject = decision.reply.get("subject")
        drafts.append(
            {
                "to": to,
                "subject": str(subject) if subject else ensure_re(email.subject),
                "body": decision.reply["body"],
                "emailId": decision.id,
            }
        )

    return {
        "summary": summarize(buckets),
        "buckets": buckets,
        "emails": [e.to_dict() for e in emails],
        "decisions": [{k: v for k, v in asdict(d).items() if v is not None} for d in decisions],
        "drafts": drafts,
        "mode": "llm",
    }


def _parse_limit(raw: Any) -> int:
    """Maximum number of input items to consume (default 20, 0 consumes nothing)."""
    if raw is None or raw == "":
        return DEFAULT_LIMIT
    number = parse_optional_number(raw)
    if number is None or number < 0 or number != int(number):
        raise ConfigurationError(f"email.triage limit must be a non-negative integer, got {raw!r}")
    return int(number)


class EmailTriageStage(TransformStage):
    """Categorize emails and optionally draft replies."""

    description = "Email triage (deterministic by default, optionally LLM-assisted via llm_task.invoke)"

    @property
    def name(self) -> str:
        return "email.triage"

    async def run(
        self, input: AsyncIterator[Any], args: Dict[str, Any], ctx: ExecutionContext
    ) -> StageResult:
        limit = _parse_limit(args.get("limit"))
        emit = str(args.get("emit") or "report").strip() or "report"

        emails: List[Email] = []
        if limit > 0:
            async for item in input:
                emails.append(normalize_email(item))
                if len(emails) >= limit:
                    break

        has_transport = any(
            str(value or "").strip()
            for value in (args.get("url"), ctx.get_env("LLM_TASK_URL"), ctx.get_env("TOOL_ROUTER_URL"))
        )
        if not parse_flag(args.get("llm")) or not has_transport:
            report = build_deterministic_report(emails)
            logger.info(f"Triaged {len(emails)} email(s): {report['summary']}")
            if emit == "drafts":
                return StageResult(output=stream_of([]))
            return StageResult(output=stream_of([report]))

        report = await self._triage_with_llm(emails, args, ctx)
        logger.info(f"Triaged {len(emails)} email(s) with llm-task: {report['summary']}")
        if emit == "drafts":
            return StageResult(output=stream_of(report["drafts"]))
        return StageResult(output=stream_of([report]))

    async def _triage_with_llm(
        self, emails: List[Email], args: Dict[str, Any], ctx: ExecutionContext
    ) -> Dict[str, Any]:
        if ctx.registry is None:
            raise ConfigurationError("email.triage (LLM mode) requires a stage registry on the context")
        invoke = ctx.registry.require("llm_task.invoke")

        invoke_args: Dict[str, Any] = {
            "prompt": triage_prompt(emails),
            "output-schema": TRIAGE_OUTPUT_SCHEMA,
            "schema-version": TRIAGE_SCHEMA_VERSION,
        }
        for name in ("url", "token", "model", "temperature", "max-output-tokens", "state-key"):
            if args.get(name) is not None:
                invoke_args[name] = args[name]

        result = await invoke.run(stream_of([e.to_dict() for e in emails]), invoke_args, ctx)
        items = await collect(result.output)
        data = items[0].get("output", {}).get("data") if items and isinstance(items[0], dict) else None
        return build_llm_report(emails, parse_decisions(data))
