import hashlib
import secrets

from fastapi import HTTPException, Request, Response

from app.core.settings import Settings

AUTH_SALT = ":research"
PUBLIC_PATHS = {"/api/research/auth"}


def password_hash(password: str) -> str:
    return hashlib.sha256(f"{password}{AUTH_SALT}".encode("utf-8")).hexdigest()


def is_protected_path(path: str) -> bool:
    if path in PUBLIC_PATHS:
        return False
    return path.startswith("/api/research")


def enforce_research_auth_for_request(request: Request, settings: Settings) -> None:
    if not settings.auth_enabled:
        return
    if not is_protected_path(request.url.path):
        return

    cookie = request.cookies.get(settings.research_auth_cookie)
    if not cookie:
        raise HTTPException(status_code=401, detail="Authentication required")

    expected = password_hash(settings.research_password or "")
    if not secrets.compare_digest(cookie.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Invalid credentials")


def login(response: Response, password: str, settings: Settings) -> None:
    if not settings.research_password:
        raise HTTPException(status_code=500, detail="RESEARCH_PASSWORD not configured")
    if not secrets.compare_digest((password or "").encode("utf-8"), settings.research_password.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Incorrect password")
    response.set_cookie(
        key=settings.research_auth_cookie,
        value=password_hash(password),
        max_age=settings.research_auth_max_age_s,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )


def logout(response: Response, settings: Settings) -> None:
    response.delete_cookie(key=settings.research_auth_cookie, path="/")
