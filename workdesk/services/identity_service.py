from __future__ import annotations

import logging
from datetime import datetime

import jwt
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from workdesk.domain.access import Principal
from workdesk.domain.models import (
    PasswordChangeRequest,
    RegisterRequest,
    Tenant,
    User,
    UserCreate,
)
from workdesk.domain.permissions import ResourceKind, Role, can_assign_role
from workdesk.infra.auth import (
    create_session_token,
    decode_session_token,
    hash_password,
    seconds_until_expiry,
    verify_password,
)
from workdesk.infra.db import get_engine, store_call
from workdesk.infra.redis_state import is_session_revoked, revoke_session
from workdesk.services.scope_service import ResourceNotFoundError, ScopeService

logger = logging.getLogger(__name__)


class IdentityError(Exception):
    pass


class NotFoundError(IdentityError):
    pass


class ConflictError(IdentityError):
    pass


class AuthError(IdentityError):
    pass


class ForbiddenError(IdentityError):
    pass


class ValidationError(IdentityError):
    pass


def parse_role(raw_role: str | None) -> Role | None:
    try:
        return Role(raw_role) if raw_role else None
    except ValueError:
        return None


class IdentityService:
    def __init__(self, scope_service: ScopeService | None = None) -> None:
        self._scopes = scope_service if scope_service is not None else ScopeService()

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def resolve_principal(self, token: str | None) -> Principal | None:
        """Turn a session token into the acting principal, or None when unauthenticated.

        A data-store or Redis fault raises ``InfrastructureError`` instead of None.
        """
        if not token:
            return None
        try:
            claims = decode_session_token(token)
        except jwt.PyJWTError as exc:
            logger.info("identity.token_rejected error=%s", exc.__class__.__name__)
            return None

        if is_session_revoked(str(claims["jti"])):
            logger.info("identity.token_revoked sub=%s", claims.get("sub"))
            return None

        with store_call("resolve_principal"), self._session() as session:
            user = session.get(User, str(claims["sub"]))

        if user is None or not user.is_active:
            logger.info("identity.user_unavailable sub=%s", claims.get("sub"))
            return None
        return self._principal_from_user(user)

    def _principal_from_user(self, user: User) -> Principal | None:
        role = parse_role(user.role)
        if role is None:
            logger.warning("identity.unknown_role user_id=%s role=%s", user.id, user.role)
            return None
        if role == Role.TENANT_ADMIN and not user.tenant_id:
            logger.warning("identity.tenant_admin_without_tenant user_id=%s", user.id)
            return None
        if role == Role.CLIENT_ADMIN and not user.client_id:
            logger.warning("identity.client_admin_without_client user_id=%s", user.id)
            return None
        return Principal(
            id=user.id,
            role=role,
            tenant_id=user.tenant_id,
            client_id=user.client_id,
            is_active=user.is_active,
        )

    def login(self, email: str, password: str) -> tuple[str, datetime]:
        with store_call("login"), self._session() as session:
            user = session.exec(select(User).where(User.email == email.lower())).first()
        if user is None or not verify_password(password, user.password_hash):
            raise AuthError("invalid credentials")
        if not user.is_active:
            raise AuthError("user disabled")
        if self._principal_from_user(user) is None:
            raise AuthError("account is not usable")
        return create_session_token(user_id=user.id)

    def logout(self, token: str | None) -> None:
        if not token:
            return
        try:
            claims = decode_session_token(token)
        except jwt.PyJWTError:
            return
        revoke_session(str(claims["jti"]), seconds_until_expiry(claims))

    def register(self, payload: RegisterRequest) -> tuple[User, str, datetime]:
        with store_call("register"), self._session() as session:
            tenant = Tenant(name=payload.tenant_name.strip(), email=payload.email.lower())
            session.add(tenant)
            user = User(
                tenant_id=tenant.id,
                name=payload.name,
                email=payload.email.lower(),
                role=Role.TENANT_ADMIN.value,
                password_hash=hash_password(payload.password),
            )
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("tenant or email already registered") from exc
            session.refresh(user)
        token, expires_at = create_session_token(user_id=user.id)
        return user, token, expires_at

    def create_super_admin(self, email: str, password: str, name: str | None = None) -> User:
        with store_call("create_super_admin"), self._session() as session:
            user = User(
                name=name,
                email=email.lower(),
                role=Role.SUPER_ADMIN.value,
                password_hash=hash_password(password),
            )
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("email already exists") from exc
            session.refresh(user)
        logger.info("identity.super_admin_created user_id=%s", user.id)
        return user

    def resolve_user_ownership(self, actor: Principal, payload: UserCreate) -> tuple[Role, str | None, str | None]:
        """Work out the role and tenant/client a new user would be persisted with."""
        role = parse_role(payload.role)
        if role is None:
            raise ValidationError("unknown role")
        if not can_assign_role(actor.role, role):
            raise ForbiddenError("role cannot be assigned by caller")
        if role == Role.SUPER_ADMIN:
            return role, None, None

        tenant_id = payload.tenant_id
        client_id = payload.client_id if role != Role.TENANT_ADMIN else None
        if client_id is None and actor.role == Role.CLIENT_ADMIN:
            client_id = actor.client_id
        if client_id is not None:
            try:
                client_scope = self._scopes.resolve_scope(ResourceKind.CLIENT, client_id)
            except ResourceNotFoundError as exc:
                raise NotFoundError("client not found") from exc
            if tenant_id is not None and tenant_id != client_scope.owner_tenant_id:
                raise ValidationError("client does not belong to this tenant")
            tenant_id = client_scope.owner_tenant_id
        if tenant_id is None:
            tenant_id = actor.tenant_id
        if tenant_id is None:
            raise ValidationError("tenant_id is required")
        if role == Role.CLIENT_ADMIN and client_id is None:
            raise ValidationError("client_id is required for client_admin")
        return role, tenant_id, client_id

    def create_user(self, role: Role, tenant_id: str | None, client_id: str | None, payload: UserCreate) -> User:
        with store_call("create_user"), self._session() as session:
            if tenant_id is not None and session.get(Tenant, tenant_id) is None:
                raise NotFoundError("tenant not found")
            user = User(
                tenant_id=tenant_id,
                client_id=client_id,
                name=payload.name,
                email=payload.email.lower(),
                role=role.value,
                password_hash=hash_password(payload.password),
                is_active=payload.is_active,
            )
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("email already exists") from exc
            session.refresh(user)
            return user

    def ensure_manageable(self, actor: Principal, user_id: str) -> None:
        """Admins act only on users whose role they could have assigned; self is always fine."""
        if actor.id == user_id:
            return
        with store_call("ensure_manageable"), self._session() as session:
            user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("user not found")
        target_role = parse_role(user.role)
        if target_role is None or not can_assign_role(actor.role, target_role):
            raise ForbiddenError("user cannot be managed by caller")

    def change_password(self, actor: Principal, user_id: str, payload: PasswordChangeRequest) -> None:
        self.ensure_manageable(actor, user_id)
        with store_call("change_password"), self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found")
            if actor.id == user_id:
                if not payload.current_password or not verify_password(
                    payload.current_password, user.password_hash
                ):
                    raise ValidationError("current password is incorrect")
            user.password_hash = hash_password(payload.new_password)
            session.add(user)
            session.commit()
        logger.info("identity.password_changed user_id=%s by=%s", user_id, actor.id)
