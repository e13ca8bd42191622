import json
import logging
from contextlib import asynccontextmanager
from html import escape
from typing import Annotated, Optional
from urllib.parse import urlencode

from fastapi import FastAPI, HTTPException, Path, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from config import Settings
from errors import ConfigurationError, SessionNotFound
from http_client import make_client
from providers import build_registry
from schemas import (
    WALLET_ID_MAX_LENGTH,
    WALLET_ID_PATTERN,
    Provider,
    SessionStatus,
    VerificationProof,
    WalletProofPayload,
    utcnow,
)
from sessions import SessionManager
from store import open_store

logger = logging.getLogger(__name__)

WalletId = Annotated[str, Path(max_length=WALLET_ID_MAX_LENGTH, pattern=WALLET_ID_PATTERN)]


def _init_logging(level):
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        root.addHandler(handler)
    root.setLevel(level)


def _wallet_proof(session_id, data):
    return session_id, VerificationProof(
        address=data.get("address"),
        signature=data.get("signature"),
        message=data.get("message"),
    )


def _oauth_proof(params):
    # PKCE providers send state as "<sessionId>:<codeVerifier>"
    state = params.get("state") or params.get("session") or ""
    session_id, _, verifier = state.partition(":")
    proof = VerificationProof(
        code=params.get("code"),
        codeVerifier=verifier or None,
        params=dict(params),
    )
    return session_id, proof


def _callback_page(settings, provider, message):
    payload = json.dumps(message).replace("</", "<\\/")
    target = json.dumps(settings.frontend_url)
    fallback = escape(f"{settings.frontend_url}/verify/callback?{urlencode({'provider': provider})}")
    title = "Verification complete" if message["type"] == "oauth-complete" else "Verification failed"
    return HTMLResponse(f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{title}</title></head>
<body>
<p>{title}. You can close this window.</p>
<p><a href="{fallback}">Return to the app</a></p>
<script>
  (function () {{
    var message = {payload};
    if (window.opener) {{
      window.opener.postMessage(message, {target});
      window.close();
    }}
  }})();
</script>
</body>
</html>""")


def _outcome_body(outcome):
    body = {
        "success": outcome.success,
        "sessionId": outcome.sessionId,
        "provider": outcome.provider,
        "status": outcome.status.value,
    }
    if outcome.result is not None:
        body["result"] = outcome.result.model_dump(mode="json", exclude_none=True)
    if outcome.errors:
        body["errors"] = outcome.errors
    return body


def _record_body(record):
    return {
        "provider": record.provider,
        "commitment": record.commitment,
        "score": record.score,
        "maxScore": record.maxScore,
        "status": record.status,
        "criteria": [c.model_dump(exclude_none=True) for c in record.criteria],
        "verifiedAt": record.verifiedAt.isoformat(),
        "expiresAt": record.expiresAt.isoformat() if record.expiresAt else None,
    }


def create_app(settings=None, store=None, transport=None):
    settings = settings or Settings.from_env()
    _init_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app):
        app.state.store = store or await open_store(settings)
        app.state.store.start_sweeper(settings.session_sweep_seconds)
        app.state.http = make_client(settings.http_timeout, transport)
        app.state.registry = build_registry(settings, app.state.http)
        app.state.sessions = SessionManager(app.state.store, app.state.registry, settings)
        try:
            yield
        finally:
            await app.state.http.aclose()
            await app.state.store.close()

    app = FastAPI(title="Identity Verification Server", lifespan=lifespan)
    app.state.settings = settings

    limiter = Limiter(key_func=get_remote_address)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url, "http://localhost:5173", "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(status_code=500, content={"success": False, "error": "Verification failed"})

    def frontend_error(provider, error):
        query = urlencode({"provider": provider.value, "error": error})
        return RedirectResponse(f"{settings.frontend_url}/verify/callback?{query}", status_code=302)

    @app.get("/health")
    def health(request: Request):
        return {"status": "ok", "store": request.app.state.store.name, "time": utcnow().isoformat()}

    @app.get("/config/status")
    def config_status():
        return {
            "providers": settings.provider_status(),
            "backendUrl": settings.backend_url,
            "frontendUrl": settings.frontend_url,
        }

    @app.get("/auth/{provider}/start")
    @limiter.limit(settings.rate_limit)
    async def start(
        provider: Provider,
        request: Request,
        walletId: str = Query(..., min_length=1, max_length=WALLET_ID_MAX_LENGTH, pattern=WALLET_ID_PATTERN),
    ):
        try:
            started = await request.app.state.sessions.start(provider, walletId)
        except ConfigurationError as exc:
            logger.warning("Refusing to start %s: %s", provider.value, exc)
            return JSONResponse(
                status_code=400,
                content={"success": False, "error": str(exc), "missing": exc.missing},
            )

        auth = started.authorization
        if auth.redirectTarget:
            return RedirectResponse(auth.redirectTarget, status_code=302)
        return {"success": True, "sessionId": started.sessionId, **(auth.descriptor or {})}

    @app.post("/auth/telegram/webhook")
    async def telegram_webhook(request: Request):
        try:
            update = await request.json()
        except ValueError:
            return {"ok": True}
        if isinstance(update, dict):
            await request.app.state.sessions.record_telegram_start(update)
        return {"ok": True}

    async def wallet_callback(request, provider, session_id, proof):
        if not session_id:
            return JSONResponse(status_code=400, content={"success": False, "error": "Session id is required"})
        try:
            outcome = await request.app.state.sessions.complete_callback(session_id, proof, provider)
        except SessionNotFound as exc:
            return JSONResponse(status_code=404, content={"success": False, "error": str(exc)})
        return JSONResponse(status_code=200 if outcome.success else 400, content=_outcome_body(outcome))

    @app.get("/auth/{provider}/callback")
    @limiter.limit(settings.rate_limit)
    async def callback(provider: Provider, request: Request):
        params = request.query_params
        if provider.is_wallet:
            session_id, proof = _wallet_proof(params.get("session") or params.get("sessionId"), params)
            return await wallet_callback(request, provider, session_id, proof)

        session_id, proof = _oauth_proof(params)
        if not session_id:
            return frontend_error(provider, "missing_session")

        if params.get("error"):
            # The user declined or the provider rejected the request upstream
            errors = [params.get("error_description") or params["error"]]
            try:
                outcome = await request.app.state.sessions.fail(session_id, errors, provider)
            except SessionNotFound:
                return frontend_error(provider, "invalid_session")
            return _callback_page(settings, provider.value, {
                "type": "oauth-error", "provider": provider.value, "errors": outcome.errors or errors,
            })

        try:
            outcome = await request.app.state.sessions.complete_callback(session_id, proof, provider)
        except SessionNotFound:
            return frontend_error(provider, "invalid_session")

        if outcome.success:
            message = {
                "type": "oauth-complete",
                "provider": provider.value,
                "sessionId": session_id,
                "result": outcome.result.model_dump(mode="json", exclude_none=True),
            }
        else:
            message = {"type": "oauth-error", "provider": provider.value, "errors": outcome.errors}
        return _callback_page(settings, provider.value, message)

    @app.post("/auth/{provider}/callback")
    @limiter.limit(settings.rate_limit)
    async def wallet_post_callback(
        provider: Provider,
        payload: WalletProofPayload,
        request: Request,
        session: Optional[str] = None,
    ):
        if not provider.is_wallet:
            raise HTTPException(status_code=405, detail=f"{provider.value} callbacks use GET")
        session_id, proof = _wallet_proof(
            payload.sessionId or payload.session or session, payload.model_dump()
        )
        return await wallet_callback(request, provider, session_id, proof)

    @app.get("/auth/{provider}/status")
    async def status(provider: Provider, request: Request, session: str = Query(..., min_length=1)):
        try:
            outcome = await request.app.state.sessions.status(session)
        except SessionNotFound as exc:
            return JSONResponse(status_code=404, content={"success": False, "error": str(exc)})
        if outcome.provider != provider.value:
            return JSONResponse(status_code=404, content={"success": False, "error": "Session not found"})
        return _outcome_body(outcome)

    @app.get("/user/{wallet_id}/verifications")
    async def user_verifications(wallet_id: WalletId, request: Request):
        records = await request.app.state.store.get_user_verifications(wallet_id)
        return {"walletId": wallet_id, "verifications": [_record_body(r) for r in records]}

    @app.get("/user/{wallet_id}/score")
    async def user_score(wallet_id: WalletId, request: Request):
        records = await request.app.state.store.get_user_verifications(wallet_id)
        now = utcnow()
        breakdown = {}
        for record in records:
            if record.status != SessionStatus.verified.value or record.is_expired(now):
                continue
            breakdown[record.provider] = {"score": record.score, "maxScore": record.maxScore}
        return {
            "walletId": wallet_id,
            "totalScore": round(sum(b["score"] for b in breakdown.values()), 2),
            "maxScore": round(sum(b["maxScore"] for b in breakdown.values()), 2),
            "breakdown": breakdown,
        }

    @app.delete("/user/{wallet_id}/verifications/{provider}")
    async def delete_verification(wallet_id: WalletId, provider: Provider, request: Request):
        removed = await request.app.state.store.delete_verification(wallet_id, provider.value)
        if not removed:
            raise HTTPException(status_code=404, detail="Verification not found")
        return {"success": True}

    return app


app = create_app()
