from __future__ import annotations
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..deadlines import ResolvedStatus, cap_time_limit_hours, resolve_user_timer
from ..errors import ActionRejected
from ..formatting import format_peso
from ..models import (
    AppSettings, ProgressStatus, ReviewStatus, Task, TaskState, User, UserStatus,
    Verification, VerificationPhase, Withdrawal,
)
from ..repository import QuestaRepository
from .notifier import Notifier, notify_user

logger = logging.getLogger(__name__)

GAME_ID_MISMATCH = (
    "Game ID mismatch detected. The Game ID in your final verification "
    "does not match your initial verification."
)


@dataclass(frozen=True)
class UserTimer:
    task_id: str
    task_title: str
    status: ProgressStatus
    started_at: Optional[datetime]
    timer: ResolvedStatus
    time_limit_hours: Optional[float]


class AdminActions:
    def __init__(self, repo: QuestaRepository, notifier: Optional[Notifier] = None, admin_id: Optional[str] = None):
        self.repo = repo
        self.notifier = notifier
        self.admin_id = admin_id

    def _notify(self, user_id: str, type: str, title: str, message: str, data: Dict[str, Any]) -> None:
        notify_user(self.repo, self.notifier, user_id, type, title, message, data)

    @staticmethod
    def _require_pending(status: ReviewStatus, what: str) -> None:
        if status != ReviewStatus.PENDING:
            raise ActionRejected(f"This {what} was already {status}.")

    # ---- verifications ----

    def game_id_mismatch(self, ver: Verification) -> bool:
        """True when a final verification's game id differs from the approved initial one."""
        initial = next(
            (v for v in self.repo.list_verifications(user_id=ver.user_id, task_id=ver.task_id)
             if v.phase == VerificationPhase.INITIAL and v.status == ReviewStatus.APPROVED),
            None,
        )
        if initial is None:
            return False
        first = str(initial.game_id or "").strip()
        final = str(ver.game_id or "").strip()
        return bool(first and final and first != final)

    def approve_verification(self, verification_id: str) -> Verification:
        ver = self.repo.require_verification(verification_id)
        self._require_pending(ver.status, "verification")
        task = self.repo.require_task(ver.task_id)

        if ver.phase == VerificationPhase.FINAL and self.game_id_mismatch(ver):
            logger.info("auto-rejecting %s: game id mismatch", verification_id)
            return self.reject_verification(verification_id, GAME_ID_MISMATCH)

        now = self.repo.clock()
        self.repo.update_verification(verification_id, status=ReviewStatus.APPROVED, reviewed_at=now)

        if ver.phase == VerificationPhase.INITIAL:
            self.repo.update_progress(ver.user_id, ver.task_id, ProgressStatus.UNLOCKED,
                                      phase=ver.phase, verification_id=ver.id)
            self._notify(
                ver.user_id, "verification_approved", "Initial Verification Approved",
                f'Your initial verification for "{task.title}" has been approved! '
                f"You can now continue with the final step.",
                {"task_id": task.id, "task_title": task.title, "phase": ver.phase},
            )
        else:
            self.repo.adjust_wallet(ver.user_id, task.reward)
            self.repo.update_progress(ver.user_id, ver.task_id, ProgressStatus.COMPLETE,
                                      phase=ver.phase, verification_id=ver.id)
            self.repo.record_completion(ver.user_id, ver.task_id, task.reward,
                                        verification_id=ver.id, completed_by=self.admin_id)
            self._notify(
                ver.user_id, "verification_approved", "Task Completed!",
                f'Congratulations! Your final verification for "{task.title}" has been approved! '
                f"You've earned {format_peso(task.reward)}.",
                {"task_id": task.id, "task_title": task.title, "phase": ver.phase, "reward": task.reward},
            )
        logger.info("verification approved id=%s phase=%s", verification_id, ver.phase)
        return self.repo.require_verification(verification_id)

    def reject_verification(self, verification_id: str, reason: str = "") -> Verification:
        ver = self.repo.require_verification(verification_id)
        self._require_pending(ver.status, "verification")
        task = self.repo.get_task(ver.task_id)
        title = task.title if task else "Unknown Task"

        self.repo.update_verification(verification_id, status=ReviewStatus.REJECTED,
                                      reviewed_at=self.repo.clock(), rejection_reason=reason or None)
        if ver.phase == VerificationPhase.FINAL:
            self.repo.update_progress(ver.user_id, ver.task_id, ProgressStatus.REJECTED_RESUBMISSION,
                                      phase=ver.phase, verification_id=ver.id)
            message = (f'Your final verification for "{title}" has been rejected. '
                       f"You can resubmit your final verification.")
        else:
            self.repo.update_progress(ver.user_id, ver.task_id, ProgressStatus.REJECTED,
                                      phase=ver.phase, verification_id=ver.id)
            message = (f'Your initial verification for "{title}" has been rejected. '
                       f"Please review the requirements and restart the task.")
        if reason:
            message += f" Reason: {reason}"
        self._notify(
            ver.user_id, "verification_rejected", "Verification Rejected", message,
            {"task_id": ver.task_id, "task_title": title, "phase": ver.phase,
             "verification_id": ver.id, "reason": reason},
        )
        logger.info("verification rejected id=%s phase=%s", verification_id, ver.phase)
        return self.repo.require_verification(verification_id)

    # ---- withdrawals ----

    def approve_withdrawal(self, withdrawal_id: str) -> Withdrawal:
        wd = self.repo.require_withdrawal(withdrawal_id)
        self._require_pending(wd.status, "withdrawal")
        self.repo.update_withdrawal(withdrawal_id, status=ReviewStatus.APPROVED, reviewed_at=self.repo.clock())
        self._notify(
            wd.user_id, "withdrawal_approved", "Withdrawal Approved",
            f"Your withdrawal request of {format_peso(wd.amount)} has been approved and processed. "
            f"The payment has been sent to your {wd.method} account.",
            {"withdrawal_id": wd.id, "amount": wd.amount, "method": wd.method},
        )
        logger.info("withdrawal approved id=%s", withdrawal_id)
        return self.repo.require_withdrawal(withdrawal_id)

    def reject_withdrawal(self, withdrawal_id: str, reason: str) -> Withdrawal:
        reason = (reason or "").strip()
        if not reason:
            raise ActionRejected("Please provide a rejection reason.")
        wd = self.repo.require_withdrawal(withdrawal_id)
        self._require_pending(wd.status, "withdrawal")
        self.repo.update_withdrawal(withdrawal_id, status=ReviewStatus.REJECTED,
                                    reviewed_at=self.repo.clock(), rejection_reason=reason)
        self.repo.adjust_wallet(wd.user_id, wd.amount)
        self._notify(
            wd.user_id, "withdrawal_rejected", "Withdrawal Rejected",
            f"Your withdrawal request of {format_peso(wd.amount)} has been rejected. Reason: {reason}. "
            f"The amount has been refunded to your wallet.",
            {"withdrawal_id": wd.id, "amount": wd.amount, "reason": reason, "method": wd.method},
        )
        logger.info("withdrawal rejected id=%s refunded=%s", withdrawal_id, wd.amount)
        return self.repo.require_withdrawal(withdrawal_id)

    # ---- users ----

    def adjust_balance(self, user_id: str, action: str, amount: float, reason: str = "") -> float:
        if action not in ("add", "subtract", "set"):
            raise ActionRejected(f"Unknown balance action: {action}")
        if amount is None or amount < 0:
            raise ActionRejected("Amount must be 0 or greater.")
        self.repo.require_user(user_id)
        if action == "set":
            old = self.repo.set_wallet(user_id, amount)
            new_balance = amount
        else:
            delta = amount if action == "add" else -amount
            new_balance = self.repo.adjust_wallet(user_id, delta)
            old = new_balance - delta
        verb = {"add": "increased", "subtract": "decreased", "set": "set"}[action]
        self._notify(
            user_id, "balance_change", "Balance Updated",
            f"Your wallet balance has been {verb} by {format_peso(amount)}. "
            f"New balance: {format_peso(new_balance)}",
            {"action": action, "amount": amount, "old_balance": old, "new_balance": new_balance,
             "reason": reason, "admin_id": self.admin_id},
        )
        return new_balance

    def toggle_user_status(self, user_id: str) -> User:
        user = self.repo.require_user(user_id)
        new_status = UserStatus.ACTIVE if user.is_disabled else UserStatus.DISABLED
        self.repo.update_user_status(user_id, new_status)
        logger.info("user %s -> %s", user_id, new_status)
        return self.repo.require_user(user_id)

    def set_admin(self, user_id: str, is_admin: bool = True) -> User:
        self.repo.require_user(user_id)
        self.repo.set_admin(user_id, is_admin)
        logger.info("admin flag uid=%s -> %s by=%s", user_id, is_admin, self.admin_id)
        return self.repo.require_user(user_id)

    def user_timers(self, user_id: str, now: Optional[datetime] = None) -> List[UserTimer]:
        now = now or self.repo.clock()
        tasks = {t.id: t for t in self.repo.list_active_tasks()}
        timers = []
        for progress in self.repo.list_progress(user_id):
            task = tasks.get(progress.task_id)
            if task is None or not progress.is_started:
                continue
            timers.append(UserTimer(
                task_id=task.id,
                task_title=task.title,
                status=progress.status,
                started_at=progress.started_at,
                timer=resolve_user_timer(task.deadline_spec, progress.started_at,
                                         task.user_time_limit_hours, now),
                time_limit_hours=task.user_time_limit_hours,
            ))
        return timers

    def restart_task(self, user_id: str, task_id: str) -> None:
        """Put a user's task back to available and drop the verifications of the old attempt."""
        self.repo.require_user(user_id)
        self.repo.require_task(task_id)
        for ver in self.repo.list_verifications(user_id=user_id, task_id=task_id):
            self.repo.delete_verification(ver.id)
        self.repo.update_progress(user_id, task_id, ProgressStatus.AVAILABLE)
        self._notify(
            user_id, "task_restarted", "Task Restarted by Admin",
            "Your task has been restarted by an admin. You can now begin again.",
            {"task_id": task_id, "admin_id": self.admin_id},
        )
        logger.info("task restarted uid=%s task=%s by=%s", user_id, task_id, self.admin_id)

    # ---- tasks ----

    def save_task(self, task: Task, now: Optional[datetime] = None) -> Task:
        """Create or update a task; the deadline is required and caps the per-user time limit."""
        now = now or self.repo.clock()
        if not task.title.strip():
            raise ActionRejected("Please enter a task title.")
        if task.deadline is None:
            raise ActionRejected("Please set a task deadline.")
        if task.reward < 0:
            raise ActionRejected("Reward can't be negative.")
        task = replace(task, user_time_limit_hours=cap_time_limit_hours(task.user_time_limit_hours, task.deadline, now))
        saved = self.repo.upsert_task(task)
        logger.info("task saved id=%s deadline=%s limit_h=%s", saved.id, saved.deadline, saved.user_time_limit_hours)
        return saved

    def set_task_state(self, task_id: str, state: TaskState) -> Task:
        task = self.repo.require_task(task_id)
        return self.repo.upsert_task(replace(task, status=state))

    def delete_task(self, task_id: str) -> None:
        self.repo.require_task(task_id)
        self.repo.delete_task(task_id)
        logger.info("task deleted id=%s", task_id)

    def update_quest_limit(self, task_id: str, limit: Any) -> int:
        try:
            value = int(limit)
        except (TypeError, ValueError):
            raise ActionRejected("Please enter a valid limit (minimum 1).") from None
        if value < 1:
            raise ActionRejected("Please enter a valid limit (minimum 1).")
        self.repo.require_task(task_id)
        self.repo.update_task_max_completions(task_id, value)
        return value

    # ---- overview & settings ----

    def overview_stats(self) -> Dict[str, Any]:
        users = self.repo.list_users()
        tasks = self.repo.list_tasks()
        return {
            "users": len(users),
            "active_users": sum(1 for u in users if not u.is_disabled),
            "tasks": len(tasks),
            "active_tasks": sum(1 for t in tasks if t.is_active),
            "pending_verifications": len(self.repo.list_verifications(status=ReviewStatus.PENDING)),
            "pending_withdrawals": len(self.repo.list_withdrawals(status=ReviewStatus.PENDING)),
            "completions": len(self.repo.list_completions()),
            "wallet_total": sum(u.wallet_balance for u in users),
        }

    def save_settings(self, app_settings: AppSettings) -> None:
        if not app_settings.support_email or not app_settings.admin_email:
            raise ActionRejected("Please fill in all required email fields.")
        if app_settings.withdrawal_cooldown < 0:
            raise ActionRejected("Withdrawal cooldown must be 0 or greater.")
        if app_settings.max_withdrawal <= 0:
            raise ActionRejected("Max withdrawal amount must be greater than 0.")
        self.repo.save_settings(app_settings)
