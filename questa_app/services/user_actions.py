from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from ..deadlines import ResolvedStatus, resolve, resolve_user_timer
from ..errors import ActionRejected
from ..formatting import format_peso, new_reference_number
from ..models import (
    ProgressStatus, ReviewStatus, Task, TaskProgress, User, Verification, VerificationPhase, Withdrawal,
)
from ..repository import QuestaRepository
from .notifier import Notifier, notify_user
from .storage_client import StorageClient

logger = logging.getLogger(__name__)

STARTABLE = (ProgressStatus.AVAILABLE, ProgressStatus.COMPLETE, ProgressStatus.REJECTED)


@dataclass(frozen=True)
class TaskCard:
    task: Task
    deadline: ResolvedStatus
    progress: TaskProgress
    timer: ResolvedStatus
    completions: int
    user_completions: int

    @property
    def is_full(self) -> bool:
        limit = self.task.max_completions
        return limit is not None and self.completions >= limit

    @property
    def can_start(self) -> bool:
        return (
            self.task.is_active
            and not self.deadline.is_ended
            and not self.is_full
            and self.progress.status in STARTABLE
        )


class UserActions:
    def __init__(
        self,
        repo: QuestaRepository,
        storage: Optional[StorageClient] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.repo = repo
        self.storage = storage
        self.notifier = notifier

    def _now(self, now: Optional[datetime]) -> datetime:
        return now or self.repo.clock()

    def _active_user(self, user_id: str) -> User:
        user = self.repo.require_user(user_id)
        if user.is_disabled:
            raise ActionRejected("Your account is disabled.")
        return user

    def register(self, user_id: str, email: str) -> User:
        """Create the user document for a freshly signed-in account."""
        user_id = (user_id or "").strip()
        email = (email or "").strip()
        if not user_id:
            raise ActionRejected("Please enter a user ID.")
        if "@" not in email or email.startswith("@") or email.endswith("@"):
            raise ActionRejected("Please enter a valid email address.")
        if self.repo.get_user(user_id) is not None:
            raise ActionRejected("This user ID is already registered.")
        if self.repo.find_user_by_email(email) is not None:
            raise ActionRejected("This email is already registered.")
        user = self.repo.create_user(user_id, email)
        notify_user(
            self.repo, self.notifier, user_id,
            "welcome", "Welcome to Questa",
            "Your account is ready. Pick a quest to get started.",
            {},
        )
        return user

    def task_board(self, user_id: str, now: Optional[datetime] = None) -> List[TaskCard]:
        now = self._now(now)
        cards = []
        for task in self.repo.list_active_tasks():
            progress = self.repo.get_progress(user_id, task.id)
            spec = task.deadline_spec
            started_at = progress.started_at if progress.is_started else None
            cards.append(TaskCard(
                task=task,
                deadline=resolve(spec, now),
                progress=progress,
                timer=resolve_user_timer(spec, started_at, task.user_time_limit_hours, now),
                completions=self.repo.completion_count(task.id),
                user_completions=self.repo.user_completion_count(user_id, task.id),
            ))
        return cards

    def start_task(self, user_id: str, task_id: str, now: Optional[datetime] = None) -> TaskProgress:
        now = self._now(now)
        self._active_user(user_id)
        task = self.repo.require_task(task_id)
        if not task.is_active:
            raise ActionRejected("This task is not active.")
        if resolve(task.deadline_spec, now).is_ended:
            raise ActionRejected("This task has ended.")
        if task.max_completions is not None and self.repo.completion_count(task_id) >= task.max_completions:
            raise ActionRejected("This quest has reached its completion limit.")
        progress = self.repo.get_progress(user_id, task_id)
        if progress.status not in STARTABLE:
            raise ActionRejected("You already started this task.")

        ref = new_reference_number("QST", now)
        progress = self.repo.update_progress(
            user_id, task_id, ProgressStatus.PENDING,
            start=True, phase=VerificationPhase.INITIAL, reference_number=ref,
        )
        logger.info("task started uid=%s task=%s ref=%s", user_id, task_id, ref)
        return progress

    def submit_verification(
        self,
        user_id: str,
        task_id: str,
        phase: VerificationPhase,
        game_id: Optional[str] = None,
        image: Optional[bytes] = None,
        file_name: str = "screenshot.png",
        now: Optional[datetime] = None,
    ) -> Verification:
        now = self._now(now)
        self._active_user(user_id)
        task = self.repo.require_task(task_id)
        progress = self.repo.get_progress(user_id, task_id)

        allowed = {
            VerificationPhase.INITIAL: (ProgressStatus.PENDING,),
            VerificationPhase.FINAL: (ProgressStatus.UNLOCKED, ProgressStatus.REJECTED_RESUBMISSION),
        }[phase]
        if progress.status not in allowed:
            raise ActionRejected(f"A {phase} verification can't be submitted right now.")
        if self.repo.list_verifications(user_id=user_id, task_id=task_id, status=ReviewStatus.PENDING):
            raise ActionRejected("A verification for this task is already waiting for review.")

        timer = resolve_user_timer(task.deadline_spec, progress.started_at, task.user_time_limit_hours, now)
        if timer.is_ended:
            raise ActionRejected("Time is up for this task.")

        image_urls = []
        if image:
            if self.storage is None:
                raise ActionRejected("Image uploads are not configured.")
            image_urls.append(self.storage.upload_verification_image(image, file_name, user_id, task_id, phase))

        ver = self.repo.create_verification(
            user_id, task_id, phase,
            game_id=(game_id or "").strip() or None,
            image_urls=image_urls,
            reference_number=progress.reference_number,
        )
        self.repo.update_progress(user_id, task_id, ProgressStatus.PENDING, phase=phase, verification_id=ver.id)
        logger.info("verification submitted id=%s uid=%s task=%s phase=%s", ver.id, user_id, task_id, phase)
        return ver

    def request_withdrawal(
        self, user_id: str, amount: float, method: str, account: str, now: Optional[datetime] = None
    ) -> Withdrawal:
        now = self._now(now)
        user = self._active_user(user_id)
        if not amount or not method or not account:
            raise ActionRejected("Please fill in all fields.")
        if amount <= 0:
            raise ActionRejected("Amount must be greater than 0.")

        app = self.repo.load_settings()
        if amount > app.max_withdrawal:
            raise ActionRejected(f"Maximum withdrawal is {format_peso(app.max_withdrawal)}.")
        last = self.repo.last_withdrawal_at(user_id)
        if last is not None:
            waited = (now - last).total_seconds()
            if waited < app.withdrawal_cooldown:
                remaining = int(app.withdrawal_cooldown - waited + 0.999)
                raise ActionRejected(f"Please wait {remaining} seconds before the next withdrawal.")
        if user.wallet_balance < amount:
            raise ActionRejected("Insufficient balance.")

        # the snapshot above can be stale; the debit re-checks the balance under the row lock
        self.repo.adjust_wallet(user_id, -amount, floor=0)
        ref = new_reference_number("WDR", now)
        try:
            wd = self.repo.create_withdrawal(user_id, amount, method, account, reference_number=ref)
        except Exception:
            self.repo.adjust_wallet(user_id, amount)
            raise
        notify_user(
            self.repo, self.notifier, user_id,
            "withdrawal_submitted",
            "Withdrawal Request Submitted",
            f"Your withdrawal request of {format_peso(amount)} via {method} has been submitted "
            f"and is pending admin approval.",
            {"withdrawal_id": wd.id, "amount": amount, "method": method, "reference_number": ref},
        )
        logger.info("withdrawal requested id=%s uid=%s amount=%s", wd.id, user_id, amount)
        return wd
