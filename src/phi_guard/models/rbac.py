"""Role based access control models."""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from phi_guard.models.base import Base
from phi_guard.models.db_types import UTCDateTime
from phi_guard.schemas.rbac import (
    AccessCondition,
    LocationRestriction,
    Permission,
    Role,
    TimeRestriction,
    UserRole,
)


class RoleModel(Base):
    """Role row."""

    __tablename__ = "roles"

    id = Column(String(64), primary_key=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(String(500))
    category = Column(String(32), nullable=False)
    hipaa_access_level = Column(String(32), nullable=False)
    emergency_override = Column(Boolean, default=False, nullable=False)

    permission_links = relationship(
        "RolePermissionModel",
        order_by="RolePermissionModel.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<Role(id={self.id}, name={self.name})>"

    def to_schema(self) -> Role:
        """Materialize the role and its permission set as one snapshot."""
        return Role(
            id=self.id,
            name=self.name,
            description=self.description,
            category=self.category,
            hipaa_access_level=self.hipaa_access_level,
            emergency_override=self.emergency_override,
            permissions=tuple(link.to_schema() for link in self.permission_links),
        )


class PermissionModel(Base):
    """Permission row, shared between roles."""

    __tablename__ = "permissions"

    id = Column(String(64), primary_key=True)
    name = Column(String(100), unique=True, nullable=False)
    resource = Column(String(100), nullable=False)
    actions = Column(JSON, nullable=False)
    description = Column(String(500))


class RolePermissionModel(Base):
    """Link between a role and a permission, carrying the restrictions."""

    __tablename__ = "role_permissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    role_id = Column(String(64), ForeignKey("roles.id"), nullable=False)
    permission_id = Column(String(64), ForeignKey("permissions.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    conditions = Column(JSON, nullable=True)
    time_restrictions = Column(JSON, nullable=True)
    location_restrictions = Column(JSON, nullable=True)

    permission = relationship("PermissionModel", lazy="joined")

    __table_args__ = (
        UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),
    )

    def to_schema(self) -> Permission:
        """Convert the link and its permission to a permission snapshot."""
        return Permission(
            id=self.permission.id,
            name=self.permission.name,
            resource=self.permission.resource,
            actions=tuple(self.permission.actions),
            description=self.permission.description,
            conditions=(
                AccessCondition.model_validate(self.conditions) if self.conditions else None
            ),
            time_restrictions=(
                TimeRestriction.model_validate(self.time_restrictions)
                if self.time_restrictions
                else None
            ),
            location_restrictions=(
                LocationRestriction.model_validate(self.location_restrictions)
                if self.location_restrictions
                else None
            ),
        )


class UserRoleModel(Base):
    """Assignment of a role to a user."""

    __tablename__ = "user_roles"

    user_id = Column(String(64), primary_key=True)
    role_id = Column(String(64), ForeignKey("roles.id"), primary_key=True)
    assigned_by = Column(String(64), nullable=False)
    assigned_at = Column(UTCDateTime, nullable=False)
    expires_at = Column(UTCDateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (Index("idx_user_roles_user_active", "user_id", "is_active"),)

    def to_schema(self) -> UserRole:
        """Convert the row to a user role assignment."""
        return UserRole(
            user_id=self.user_id,
            role_id=self.role_id,
            assigned_by=self.assigned_by,
            assigned_at=self.assigned_at,
            expires_at=self.expires_at,
            is_active=self.is_active,
        )
