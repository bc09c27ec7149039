from __future__ import annotations
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Dict, List, Mapping, Optional

from .deadlines import DeadlineSpec, deadline_spec_from_fields
from .timestamps import normalize_instant


class TaskState(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class UserStatus(StrEnum):
    ACTIVE = "active"
    DISABLED = "disabled"


class ReviewStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @classmethod
    def from_db(cls, raw: Optional[str]) -> "ReviewStatus":
        try:
            return cls(raw or cls.PENDING)
        except ValueError:
            return cls.PENDING


class VerificationPhase(StrEnum):
    INITIAL = "initial"
    FINAL = "final"

    @classmethod
    def from_db(cls, raw: Optional[str]) -> "VerificationPhase":
        try:
            return cls(raw or cls.INITIAL)
        except ValueError:
            return cls.INITIAL


class ProgressStatus(StrEnum):
    AVAILABLE = "available"
    PENDING = "pending"
    UNLOCKED = "unlocked"
    REJECTED = "rejected"
    REJECTED_RESUBMISSION = "rejected_resubmission"
    COMPLETE = "complete"

    @classmethod
    def from_db(cls, raw: Optional[str]) -> "ProgressStatus":
        if not raw:
            return cls.AVAILABLE
        if raw == "completed":
            return cls.COMPLETE
        try:
            return cls(raw)
        except ValueError:
            return cls.AVAILABLE


def _float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _opt_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _opt_int(value: Any) -> Optional[int]:
    number = _opt_float(value)
    return int(number) if number is not None else None


def _doc(obj: Any) -> Dict[str, Any]:
    data = asdict(obj)
    data.pop("id", None)
    return data


@dataclass
class Task:
    id: str
    title: str
    description: str = ""
    reward: float = 0.0
    status: TaskState = TaskState.ACTIVE
    difficulty: str = "medium"  # easy|medium|hard|expert
    banner: Optional[str] = None
    deadline: Optional[datetime] = None
    created_at: Optional[datetime] = None
    task_deadline_hours: Optional[float] = None
    user_time_limit_hours: Optional[float] = None
    max_completions: Optional[int] = None
    updated_at: Optional[datetime] = None

    @property
    def deadline_spec(self) -> DeadlineSpec:
        return deadline_spec_from_fields(self.deadline, self.created_at, self.task_deadline_hours)

    @property
    def is_active(self) -> bool:
        return self.status == TaskState.ACTIVE

    @classmethod
    def from_doc(cls, doc: Mapping[str, Any]) -> "Task":
        try:
            status = TaskState(doc.get("status") or TaskState.ACTIVE)
        except ValueError:
            status = TaskState.INACTIVE
        return cls(
            id=str(doc["id"]),
            title=doc.get("title") or "",
            description=doc.get("description") or "",
            reward=_float(doc.get("reward")),
            status=status,
            difficulty=doc.get("difficulty") or "medium",
            banner=doc.get("banner"),
            deadline=normalize_instant(doc.get("deadline")),
            created_at=normalize_instant(doc.get("created_at")),
            task_deadline_hours=_opt_float(doc.get("task_deadline_hours")),
            user_time_limit_hours=_opt_float(doc.get("user_time_limit_hours")),
            max_completions=_opt_int(doc.get("max_completions")),
            updated_at=normalize_instant(doc.get("updated_at")),
        )

    def to_doc(self) -> Dict[str, Any]:
        return _doc(self)


@dataclass
class User:
    id: str
    email: str
    wallet_balance: float = 0.0
    is_admin: bool = False
    status: UserStatus = UserStatus.ACTIVE
    created_at: Optional[datetime] = None

    @property
    def is_disabled(self) -> bool:
        return self.status == UserStatus.DISABLED

    @classmethod
    def from_doc(cls, doc: Mapping[str, Any]) -> "User":
        return cls(
            id=str(doc["id"]),
            email=doc.get("email") or "",
            wallet_balance=_float(doc.get("wallet_balance")),
            is_admin=bool(doc.get("is_admin")),
            status=UserStatus.DISABLED if doc.get("status") == "disabled" else UserStatus.ACTIVE,
            created_at=normalize_instant(doc.get("created_at")),
        )

    def to_doc(self) -> Dict[str, Any]:
        return _doc(self)


@dataclass
class Verification:
    id: str
    user_id: str
    task_id: str
    phase: VerificationPhase
    status: ReviewStatus = ReviewStatus.PENDING
    game_id: Optional[str] = None
    image_urls: List[str] = field(default_factory=list)
    reference_number: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: Mapping[str, Any]) -> "Verification":
        return cls(
            id=str(doc["id"]),
            user_id=doc.get("user_id") or "",
            task_id=doc.get("task_id") or "",
            phase=VerificationPhase.from_db(doc.get("phase")),
            status=ReviewStatus.from_db(doc.get("status")),
            game_id=doc.get("game_id"),
            image_urls=list(doc.get("image_urls") or []),
            reference_number=doc.get("reference_number"),
            rejection_reason=doc.get("rejection_reason"),
            created_at=normalize_instant(doc.get("created_at")),
            reviewed_at=normalize_instant(doc.get("reviewed_at")),
        )

    def to_doc(self) -> Dict[str, Any]:
        return _doc(self)


@dataclass
class Withdrawal:
    id: str
    user_id: str
    amount: float
    method: str             # gcash|paymaya|bank ...
    account: str
    status: ReviewStatus = ReviewStatus.PENDING
    reference_number: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: Mapping[str, Any]) -> "Withdrawal":
        return cls(
            id=str(doc["id"]),
            user_id=doc.get("user_id") or "",
            amount=_float(doc.get("amount")),
            method=doc.get("method") or "",
            account=doc.get("account") or "",
            status=ReviewStatus.from_db(doc.get("status")),
            reference_number=doc.get("reference_number"),
            rejection_reason=doc.get("rejection_reason"),
            created_at=normalize_instant(doc.get("created_at")),
            reviewed_at=normalize_instant(doc.get("reviewed_at")),
        )

    def to_doc(self) -> Dict[str, Any]:
        return _doc(self)


@dataclass
class Notification:
    id: str
    user_id: str
    type: str               # balance_change|verification_approved|withdrawal_rejected ...
    title: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    is_read: bool = False
    created_at: Optional[datetime] = None

    @classmethod
    def from_doc(cls, doc: Mapping[str, Any]) -> "Notification":
        return cls(
            id=str(doc["id"]),
            user_id=doc.get("user_id") or "",
            type=doc.get("type") or "",
            title=doc.get("title") or "",
            message=doc.get("message") or "",
            data=dict(doc.get("data") or {}),
            is_read=bool(doc.get("is_read")),
            created_at=normalize_instant(doc.get("created_at")),
        )

    def to_doc(self) -> Dict[str, Any]:
        return _doc(self)


@dataclass
class TaskProgress:
    user_id: str
    task_id: str
    status: ProgressStatus = ProgressStatus.AVAILABLE
    phase: Optional[str] = None
    verification_id: Optional[str] = None
    reference_number: Optional[str] = None
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_started(self) -> bool:
        return self.status not in (ProgressStatus.AVAILABLE, ProgressStatus.COMPLETE)

    @classmethod
    def from_doc(cls, doc: Mapping[str, Any]) -> "TaskProgress":
        return cls(
            user_id=doc.get("user_id") or "",
            task_id=doc.get("task_id") or "",
            status=ProgressStatus.from_db(doc.get("status")),
            phase=doc.get("phase"),
            verification_id=doc.get("verification_id"),
            reference_number=doc.get("reference_number"),
            started_at=normalize_instant(doc.get("started_at")),
            updated_at=normalize_instant(doc.get("updated_at")),
        )


@dataclass
class QuestCompletion:
    id: str
    user_id: str
    task_id: str
    reward: float
    verification_id: Optional[str] = None
    completion_type: str = "final_verification"
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None

    @classmethod
    def from_doc(cls, doc: Mapping[str, Any]) -> "QuestCompletion":
        return cls(
            id=str(doc["id"]),
            user_id=doc.get("user_id") or "",
            task_id=doc.get("task_id") or "",
            reward=_float(doc.get("reward")),
            verification_id=doc.get("verification_id"),
            completion_type=doc.get("completion_type") or "final_verification",
            completed_at=normalize_instant(doc.get("completed_at")),
            completed_by=doc.get("completed_by"),
        )


@dataclass
class AppSettings:
    support_email: str = "support@example.com"
    admin_email: str = "admin@example.com"
    site_name: str = "Questa"
    site_url: str = ""
    withdrawal_cooldown: int = 300     # seconds
    max_withdrawal: float = 10000.0

    @classmethod
    def from_doc(cls, doc: Optional[Mapping[str, Any]]) -> "AppSettings":
        if not doc:
            return cls()
        default = cls()
        cooldown = _opt_int(doc.get("withdrawal_cooldown"))
        return cls(
            support_email=doc.get("support_email") or default.support_email,
            admin_email=doc.get("admin_email") or default.admin_email,
            site_name=doc.get("site_name") or default.site_name,
            site_url=doc.get("site_url") or "",
            withdrawal_cooldown=default.withdrawal_cooldown if cooldown is None else cooldown,
            max_withdrawal=_float(doc.get("max_withdrawal"), default.max_withdrawal),
        )

    def to_doc(self) -> Dict[str, Any]:
        return asdict(self)
