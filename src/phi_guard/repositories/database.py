"""SQLAlchemy-backed repositories.

Connectivity failures are the only transient errors in this layer; they are
retried with exponential backoff before surfacing as PersistenceError.
"""

from datetime import datetime
from typing import Any, Callable, List, Optional, TypeVar

from sqlalchemy import create_engine, event, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from phi_guard.models import (
    Base,
    PermissionModel,
    RoleModel,
    RolePermissionModel,
    SessionUserLockModel,
    UserRoleModel,
    UserSessionModel,
)
from phi_guard.repositories.base import (
    RoleRepository,
    SessionRepository,
    mark_closed,
    plan_admission,
)
from phi_guard.schemas.rbac import Role, UserRole
from phi_guard.schemas.session import (
    CONCURRENT_LIMIT_REASON,
    SessionAdmission,
    SessionRecord,
    SessionState,
)
from phi_guard.utils.exceptions import PersistenceError
from phi_guard.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "database_operation_retry",
        attempt=retry_state.attempt_number,
        error_type=type(exc).__name__ if exc else None,
    )


retry_transient = retry(
    retry=retry_if_exception_type(OperationalError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, max=2),
    before_sleep=_log_retry,
    reraise=True,
)


def create_session_factory(database_url: str, echo: bool = False, **kwargs: Any) -> sessionmaker:
    """Create the engine and a session factory, creating missing tables."""
    engine: Engine = create_engine(database_url, echo=echo, future=True, **kwargs)
    if engine.dialect.name == "sqlite":
        _begin_immediate(engine)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


def _begin_immediate(engine: Engine) -> None:
    """Open SQLite transactions with BEGIN IMMEDIATE.

    Writers then queue on the database lock up front instead of failing
    when a read lock cannot be upgraded.
    """

    @event.listens_for(engine, "connect")
    def receive_connect(dbapi_connection: Any, _connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def receive_begin(connection: Any) -> None:
        connection.exec_driver_sql("BEGIN IMMEDIATE")


class _SQLAlchemyRepository:
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def _run(self, operation: str, fn: Callable[[Session], T]) -> T:
        try:
            return self._run_with_retry(fn)
        except SQLAlchemyError as e:
            raise self._failure(operation, e) from e

    @staticmethod
    def _failure(operation: str, error: SQLAlchemyError) -> PersistenceError:
        logger.error(
            "database_operation_failed",
            operation=operation,
            error_type=type(error).__name__,
            exc_info=True,
        )
        return PersistenceError(f"Failed to {operation}: {type(error).__name__}")

    @retry_transient
    def _run_with_retry(self, fn: Callable[[Session], T]) -> T:
        with self._session_factory() as db:
            with db.begin():
                return fn(db)


class SQLAlchemySessionRepository(_SQLAlchemyRepository, SessionRepository):
    """Session repository on the ``user_sessions`` table."""

    def get(self, session_id: str) -> Optional[SessionRecord]:
        """Get a session by id."""

        def op(db: Session) -> Optional[SessionRecord]:
            row = db.get(UserSessionModel, session_id)
            return row.to_record() if row else None

        return self._run("load session", op)

    def save(self, session: SessionRecord) -> None:
        """Insert or update a session row."""

        def op(db: Session) -> None:
            row = db.get(UserSessionModel, session.id)
            if row is None:
                row = UserSessionModel()
                db.add(row)
            row.apply(session)

        self._run("save session", op)

    def list_active_by_user(self, user_id: str) -> List[SessionRecord]:
        """List a user's active sessions, most recently active first."""

        def op(db: Session) -> List[SessionRecord]:
            rows = db.scalars(
                select(UserSessionModel)
                .where(
                    UserSessionModel.user_id == user_id,
                    UserSessionModel.is_active.is_(True),
                )
                .order_by(UserSessionModel.last_activity.desc())
            )
            return [row.to_record() for row in rows]

        return self._run("list sessions", op)

    def admit(self, session: SessionRecord, limit: int, now: datetime) -> SessionAdmission:
        """Admit a new session in one transaction under the user's lock row.

        The ``session_user_locks`` row is updated first, so concurrent logins
        for the same user queue on its row lock (or on the database write
        lock for SQLite) until this transaction commits.
        """
        user_id = session.user_id
        self._ensure_user_lock(user_id)

        def op(db: Session) -> SessionAdmission:
            db.execute(
                update(SessionUserLockModel)
                .where(SessionUserLockModel.user_id == user_id)
                .values(locked_at=now)
            )
            rows = db.scalars(
                select(UserSessionModel)
                .where(
                    UserSessionModel.user_id == user_id,
                    UserSessionModel.is_active.is_(True),
                )
                .order_by(UserSessionModel.last_activity.desc())
                .with_for_update()
            ).all()
            by_id = {row.id: row for row in rows}

            expired, evicted, retained = plan_admission(
                [row.to_record() for row in rows], limit, now
            )
            for old in expired:
                mark_closed(old, SessionState.HARD_EXPIRED, now)
                by_id[old.id].apply(old)
            for old in evicted:
                mark_closed(old, SessionState.EVICTED, now, CONCURRENT_LIMIT_REASON)
                by_id[old.id].apply(old)

            row = UserSessionModel()
            row.apply(session)
            db.add(row)
            return SessionAdmission(
                session=session,
                expired=expired,
                evicted=evicted,
                active_count=len(retained) + 1,
            )

        return self._run("admit session", op)

    def _ensure_user_lock(self, user_id: str) -> None:
        def op(db: Session) -> None:
            if db.get(SessionUserLockModel, user_id) is None:
                db.add(SessionUserLockModel(user_id=user_id))

        try:
            self._run_with_retry(op)
        except IntegrityError:
            # Inserted by a concurrent first login for the same user.
            logger.debug("session_user_lock_exists", user_id=user_id)
        except SQLAlchemyError as e:
            raise self._failure("create session lock", e) from e

    def update_active(
        self,
        session_id: str,
        last_activity: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
    ) -> bool:
        """Bump activity and/or expiry of an active session."""

        def op(db: Session) -> bool:
            row = self._lock_row(db, session_id)
            if row is None or not row.is_active:
                return False
            if last_activity is not None:
                row.last_activity = last_activity
            if expires_at is not None:
                row.expires_at = expires_at
            return True

        return self._run("update session", op)

    def deactivate(
        self, session_id: str, state: SessionState, at: datetime, reason: Optional[str] = None
    ) -> bool:
        """Deactivate a session if it is still active (row locked for update)."""

        def op(db: Session) -> bool:
            row = self._lock_row(db, session_id)
            if row is None or not row.is_active:
                return False
            row.is_active = False
            row.state = state.value
            row.termination_reason = reason or state.name
            row.terminated_at = at
            return True

        return self._run("deactivate session", op)

    @staticmethod
    def _lock_row(db: Session, session_id: str) -> Optional[UserSessionModel]:
        return db.scalars(
            select(UserSessionModel).where(UserSessionModel.id == session_id).with_for_update()
        ).first()


class SQLAlchemyRoleRepository(_SQLAlchemyRepository, RoleRepository):
    """Role repository on the ``roles``/``permissions``/``user_roles`` tables."""

    def get_role(self, role_id: str) -> Optional[Role]:
        """Get a role with its permission set."""

        def op(db: Session) -> Optional[Role]:
            row = db.get(RoleModel, role_id)
            return row.to_schema() if row else None

        return self._run("load role", op)

    def get_role_by_name(self, name: str) -> Optional[Role]:
        """Get a role by name."""

        def op(db: Session) -> Optional[Role]:
            row = db.scalars(select(RoleModel).where(RoleModel.name == name)).first()
            return row.to_schema() if row else None

        return self._run("load role", op)

    def save_role(self, role: Role) -> Role:
        """Insert or replace a role and its permission links."""

        def op(db: Session) -> Role:
            row = db.get(RoleModel, role.id)
            if row is None:
                row = RoleModel(id=role.id)
                db.add(row)
            row.name = role.name
            row.description = role.description
            row.category = role.category.value
            row.hipaa_access_level = role.hipaa_access_level.value
            row.emergency_override = role.emergency_override
            row.permission_links.clear()
            db.flush()

            for position, permission in enumerate(role.permissions):
                perm_row = db.get(PermissionModel, permission.id)
                if perm_row is None:
                    perm_row = PermissionModel(id=permission.id)
                    db.add(perm_row)
                perm_row.name = permission.name
                perm_row.resource = permission.resource
                perm_row.actions = list(permission.actions)
                perm_row.description = permission.description
                row.permission_links.append(
                    RolePermissionModel(
                        permission=perm_row,
                        position=position,
                        conditions=_dump(permission.conditions),
                        time_restrictions=_dump(permission.time_restrictions),
                        location_restrictions=_dump(permission.location_restrictions),
                    )
                )
            return role

        return self._run("save role", op)

    def list_user_roles(self, user_id: str, active_only: bool = True) -> List[UserRole]:
        """List a user's role assignments in assignment order."""

        def op(db: Session) -> List[UserRole]:
            query = select(UserRoleModel).where(UserRoleModel.user_id == user_id)
            if active_only:
                query = query.where(UserRoleModel.is_active.is_(True))
            rows = db.scalars(query.order_by(UserRoleModel.assigned_at))
            return [row.to_schema() for row in rows]

        return self._run("list user roles", op)

    def upsert_user_role(self, user_role: UserRole) -> UserRole:
        """Insert an assignment or replace the existing one for the same pair."""

        def op(db: Session) -> UserRole:
            row = db.get(UserRoleModel, (user_role.user_id, user_role.role_id))
            if row is None:
                row = UserRoleModel(user_id=user_role.user_id, role_id=user_role.role_id)
                db.add(row)
            row.assigned_by = user_role.assigned_by
            row.assigned_at = user_role.assigned_at
            row.expires_at = user_role.expires_at
            row.is_active = user_role.is_active
            return user_role

        return self._run("assign role", op)

    def deactivate_user_role(self, user_id: str, role_id: str) -> bool:
        """Mark an assignment inactive."""

        def op(db: Session) -> bool:
            row = db.get(UserRoleModel, (user_id, role_id))
            if row is None or not row.is_active:
                return False
            row.is_active = False
            return True

        return self._run("revoke role", op)


def _dump(model: Any) -> Any:
    return model.model_dump(mode="json") if model is not None else None
