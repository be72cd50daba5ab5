"""People actions: invitations and enrollment roles."""

import re
from datetime import datetime
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    List,
    Mapping,
    Optional,
)

from coursepilot.actions import (
    ActionHandler,
    CreatedIndex,
    is_blank,
    lookup_id,
    register_action,
)
from coursepilot.common import (
    new_id,
    to_local_timestamp,
)
from coursepilot.core.schema import Operation
from coursepilot.core.snapshot import (
    CourseSnapshot,
    ReferenceIndex,
)

if TYPE_CHECKING:
    from coursepilot.core.session import Session

ROLES = ("student", "ta", "instructor")
DEFAULT_ROLE = "student"

_EMAIL_SPLIT = re.compile(r"[,;\s]+")


def split_emails(value: Any) -> List[str]:
    if is_blank(value):
        return []
    if isinstance(value, str):
        value = _EMAIL_SPLIT.split(value)
    return [str(e).strip().lower() for e in value if str(e).strip()]


def _check_role(role: Any) -> Optional[str]:
    if role not in ROLES:
        return f"Unknown role '{role}'. Use one of: {', '.join(ROLES)}."
    return None


def _enrolled_user_id(snapshot: CourseSnapshot, ref: Any, name: Any = None) -> Optional[str]:
    """Id of an enrolled user given an id, a display name or an email."""
    enrolled = {e.get("userId") for e in snapshot.enrollments()}
    if isinstance(ref, str) and ref in enrolled:
        return ref
    for candidate in (ref, name):
        if not isinstance(candidate, str) or not candidate.strip():
            continue
        wanted = candidate.strip().casefold()
        for user in snapshot.records("users"):
            if wanted in (str(user.get("name") or "").casefold(), str(user.get("email") or "").casefold()):
                return user.get("id")
    return None


@register_action(
    "create_invite",
    "Invite one or more people to the course by email with a role (student, ta or instructor).",
    required=("emails",),
    optional=("role", "notes"),
    group="people",
)
class CreateInvite(ActionHandler):
    synonyms = {"emails": ("email", "emailAddresses", "addresses")}

    def defaults(self, data: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
        return {"role": DEFAULT_ROLE}

    def apply_policy(self, data: Dict[str, Any]) -> None:
        data["emails"] = split_emails(data.get("emails"))
        if isinstance(data.get("role"), str):
            data["role"] = data["role"].strip().lower()

    def check(self, data: Mapping[str, Any], refs: ReferenceIndex) -> Optional[str]:
        emails = split_emails(data.get("emails"))
        if not emails:
            return "No email address was given."
        bad = [e for e in emails if "@" not in e]
        if bad:
            return f"Not a valid email address: {', '.join(bad)}."
        role = data.get("role")
        if isinstance(role, str):
            role = role.strip().lower()
        return _check_role(role or DEFAULT_ROLE)

    async def execute(self, op: Operation, session: "Session") -> Any:
        # Emails that already have a pending invite in the course are not invited again.
        pending = {
            str(invite.get("email") or "").lower(): invite
            for invite in session.snapshot.invites()
            if invite.get("status") == "pending"
        }
        saved = []
        for email in split_emails(op.data.get("emails")):
            if email in pending:
                saved.append(pending[email])
                continue
            record = {
                "id": new_id(),
                "courseId": session.course_id,
                "email": email,
                "role": op.data.get("role") or DEFAULT_ROLE,
                "status": "pending",
                "invitedBy": session.user_id,
                "createdAt": to_local_timestamp(datetime.now()),
            }
            result = await session.persistence.create_invite(record)
            if not result:
                return None
            pending[email] = result
            saved.append(result)
        return saved

    def success_message(self, op: Operation) -> str:
        count = len(split_emails(op.data.get("emails")))
        return f"{count} invitation{'s' if count != 1 else ''} sent!"

    def summary(self, data: Mapping[str, Any]) -> str:
        return f"{self.name} {', '.join(data.get('emails') or [])}"


@register_action(
    "revoke_invite",
    "Cancel a pending invitation.",
    required=("inviteId",),
    optional=("email",),
    dangerous=True,
    group="people",
    alternates={"inviteId": ("email",)},
)
class RevokeInvite(ActionHandler):
    target_collection = "invites"
    target_key = "inviteId"
    synonyms = {"inviteId": ("id",)}

    def check(self, data: Mapping[str, Any], refs: ReferenceIndex) -> Optional[str]:
        if refs.exists("invites", data.get("inviteId"), data.get("inviteId")):
            return None
        if refs.snapshot.find_by_title("invites", data.get("email")) is not None:
            return None
        return f"No invite '{data.get('inviteId') or data.get('email')}' exists. Look it up with list_invites first."

    def resolve(
        self, data: Mapping[str, Any], snapshot: CourseSnapshot, created: CreatedIndex | None = None
    ) -> Dict[str, Any]:
        return {
            "inviteId": lookup_id(snapshot, created, "invites", data.get("inviteId"), data.get("email"))
        }

    async def execute(self, op: Operation, session: "Session") -> Any:
        if not op.resolved.get("inviteId"):
            return None
        return await session.persistence.delete_invite(op.resolved["inviteId"])

    def success_message(self, op: Operation) -> str:
        return "Invite revoked."


class _EnrollmentTarget(ActionHandler):
    synonyms = {"userId": ("user", "studentId", "memberId")}

    def check(self, data: Mapping[str, Any], refs: ReferenceIndex) -> Optional[str]:
        ref = data.get("userId")
        name = data.get("userName") or data.get("email")
        if _enrolled_user_id(refs.snapshot, ref, name):
            return None
        return f"No enrolled user '{ref or name}' in this course. Look them up with list_people first."

    def resolve(
        self, data: Mapping[str, Any], snapshot: CourseSnapshot, created: CreatedIndex | None = None
    ) -> Dict[str, Any]:
        return {
            "userId": _enrolled_user_id(
                snapshot, data.get("userId"), data.get("userName") or data.get("email")
            )
        }


@register_action(
    "update_enrollment_role",
    "Change an enrolled person's role (student, ta or instructor).",
    required=("userId", "role"),
    optional=("userName", "email", "notes"),
    group="people",
    alternates={"userId": ("userName", "email")},
)
class UpdateEnrollmentRole(_EnrollmentTarget):
    def apply_policy(self, data: Dict[str, Any]) -> None:
        if isinstance(data.get("role"), str):
            data["role"] = data["role"].strip().lower()

    def check(self, data: Mapping[str, Any], refs: ReferenceIndex) -> Optional[str]:
        return super().check(data, refs) or _check_role(data.get("role"))

    async def execute(self, op: Operation, session: "Session") -> Any:
        user_id = op.resolved.get("userId")
        if not user_id:
            return None
        return await session.persistence.update_enrollment(user_id, session.course_id, op.data["role"])

    def success_message(self, op: Operation) -> str:
        return f"Role changed to {op.data.get('role')}."


@register_action(
    "remove_enrollment",
    "Remove a person from the course.",
    required=("userId",),
    optional=("userName", "email", "notes"),
    dangerous=True,
    group="people",
    alternates={"userId": ("userName", "email")},
)
class RemoveEnrollment(_EnrollmentTarget):
    async def execute(self, op: Operation, session: "Session") -> Any:
        user_id = op.resolved.get("userId")
        if not user_id:
            return None
        return await session.persistence.delete_enrollment(user_id, session.course_id)

    def success_message(self, op: Operation) -> str:
        return "Removed from the course."
