"""
auth/audit.py -- Append-only login audit trail.

One row per login attempt, success or failure. The row keeps the specific
failure_reason even though the caller only ever sees "Invalid credentials."
Token refresh and authorization failures are not login attempts and are
never written here.

Each record is also emitted on the "tokenward.auth" logger: INFO for a
success, WARNING for a failure. Passwords and tokens never reach either.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import and_, func, select
from sqlalchemy.engine import Engine

from auth.db import from_db_time, login_audits, to_db_time, utcnow
from auth.models import FailureReason, LoginAudit, RequestMetadata, RoleType
from auth.store import normalize_email

logger = logging.getLogger("tokenward.auth")


class LoginAuditLogger:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def record(
        self,
        email: str,
        metadata: RequestMetadata,
        role: RoleType | None = None,
        user_id: str | None = None,
        failure_reason: FailureReason | None = None,
    ) -> LoginAudit:
        """Append one audit row. failure_reason=None means the attempt succeeded."""
        audit = LoginAudit(
            id=str(uuid.uuid4()),
            user_id=user_id,
            email_attempted=normalize_email(email),
            role_type=RoleType(role) if role is not None else None,
            is_successful=failure_reason is None,
            failure_reason=failure_reason,
            ip=metadata.ip,
            device=metadata.device,
            browser=metadata.browser,
            location=metadata.location,
            created_at=utcnow(),
        )
        with self.engine.begin() as conn:
            conn.execute(
                login_audits.insert().values(
                    id=audit.id,
                    user_id=audit.user_id,
                    email_attempted=audit.email_attempted,
                    role_type=audit.role_type.value if audit.role_type else None,
                    is_successful=1 if audit.is_successful else 0,
                    failure_reason=audit.failure_reason.value if audit.failure_reason else None,
                    ip=audit.ip,
                    device=audit.device,
                    browser=audit.browser,
                    location=audit.location,
                    created_at=to_db_time(audit.created_at),
                )
            )

        role_label = audit.role_type.value if audit.role_type else None
        if audit.is_successful:
            logger.info("Login succeeded user_id=%s role=%s ip=%s", user_id, role_label, metadata.ip)
        else:
            logger.warning(
                "Login failed email=%s role=%s reason=%s ip=%s",
                audit.email_attempted,
                role_label,
                failure_reason.value,
                metadata.ip,
            )
        return audit

    def history(
        self,
        user_id: str | None = None,
        email: str | None = None,
        only_failures: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[LoginAudit]:
        """Return audit rows newest first, filtered by user and/or email.

        limit and offset page through the result; ties on created_at are
        broken by id so pages never overlap.
        """
        conditions = []
        if user_id is not None:
            conditions.append(login_audits.c.user_id == user_id)
        if email is not None:
            conditions.append(login_audits.c.email_attempted == normalize_email(email))
        if only_failures:
            conditions.append(login_audits.c.is_successful == 0)
        query = select(login_audits)
        if conditions:
            query = query.where(and_(*conditions))
        query = (
            query.order_by(login_audits.c.created_at.desc(), login_audits.c.id.desc()).limit(limit).offset(offset)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_audit(r) for r in rows]

    def count_recent_failures(self, email: str, since: datetime) -> int:
        """Count failed attempts against email since the given instant."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(login_audits)
                .where(
                    and_(
                        login_audits.c.email_attempted == normalize_email(email),
                        login_audits.c.is_successful == 0,
                        login_audits.c.created_at >= to_db_time(since),
                    )
                )
            ).scalar()
        return result or 0


def _row_to_audit(row) -> LoginAudit:
    return LoginAudit(
        id=row.id,
        user_id=row.user_id,
        email_attempted=row.email_attempted,
        role_type=RoleType(row.role_type) if row.role_type else None,
        is_successful=bool(row.is_successful),
        failure_reason=FailureReason(row.failure_reason) if row.failure_reason else None,
        ip=row.ip,
        device=row.device,
        browser=row.browser,
        location=row.location,
        created_at=from_db_time(row.created_at),
    )
