"""
auth/services.py -- Object graph for the auth subsystem.

build_services() wires one Engine, the three stores, and the five services
from a single Settings instance. Entry points (api/main.py lifespan, the
main.py CLI, test fixtures) call it once and hold on to the result.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.engine import Engine

from auth.audit import LoginAuditLogger
from auth.db import create_db_engine
from auth.guard import AuthorizationGuard
from auth.login import CredentialVerifier
from auth.refresh import RefreshTokenRotator
from auth.registration import AccountRegistrar
from auth.sessions import SessionStore
from auth.store import AccountStore
from auth.tokens import TokenIssuer
from core.config import Settings


@dataclass
class AuthServices:
    settings: Settings
    engine: Engine
    accounts: AccountStore
    sessions: SessionStore
    audit: LoginAuditLogger
    issuer: TokenIssuer
    verifier: CredentialVerifier
    rotator: RefreshTokenRotator
    guard: AuthorizationGuard
    registrar: AccountRegistrar

    def close(self) -> None:
        self.engine.dispose()


def build_services(settings: Settings, engine: Engine | None = None) -> AuthServices:
    engine = engine if engine is not None else create_db_engine(settings.database_url)
    accounts = AccountStore(engine)
    sessions = SessionStore(engine, settings)
    audit = LoginAuditLogger(engine)
    issuer = TokenIssuer(settings)
    return AuthServices(
        settings=settings,
        engine=engine,
        accounts=accounts,
        sessions=sessions,
        audit=audit,
        issuer=issuer,
        verifier=CredentialVerifier(accounts, sessions, issuer, audit),
        rotator=RefreshTokenRotator(accounts, sessions, issuer, settings),
        guard=AuthorizationGuard(accounts, issuer),
        registrar=AccountRegistrar(accounts, sessions, issuer),
    )
