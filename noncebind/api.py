"""
HTTP surface for noncebind.

Exposes the validation contract to the submission-accept service plus a
few operator reads. Onboarding and rotation need the organization's
private key and therefore stay on the CLI.

A nonce is the organization's submission credential, so read endpoints
only ever return it masked. The ASGI application built from configuration
lives in noncebind.main.
"""

from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import config
from .engine import BindingEngine
from .errors import NonceBindingError
from .logging_config import set_request_id
from .models import NonceBinding, OrganizationIdentity, VerificationMethod
from .orchestrator import VerificationOrchestrator
from .util import mask_sensitive


class ValidateRequest(BaseModel):
    org_id: str = Field(min_length=1)
    nonce: str = Field(min_length=1)


class RevokeRequest(BaseModel):
    reason: str = Field(min_length=1)


def _public_binding(binding: NonceBinding) -> Dict[str, Any]:
    d = binding.to_dict()
    d["nonce"] = mask_sensitive(d["nonce"])
    if d["previous_nonce"]:
        d["previous_nonce"] = mask_sensitive(d["previous_nonce"])
    return d


def _public_identity(identity: OrganizationIdentity) -> Dict[str, Any]:
    d = identity.to_dict()
    d["nonce"] = mask_sensitive(d["nonce"]) if d["nonce"] else None
    d["bindings"] = [_public_binding(b) for b in identity.bindings]
    return d


def _error_status(e: NonceBindingError) -> int:
    if e.code == "STORE_UNAVAILABLE":
        return 503
    return 409


def create_app(engine: BindingEngine, orchestrator: VerificationOrchestrator) -> FastAPI:
    app = FastAPI(title="noncebind")

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = set_request_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"status": "ok", "env": config.ENV, "config": config.validate_config()}

    @app.post("/validate")
    def validate(req: ValidateRequest) -> Dict[str, Any]:
        return engine.validate(req.org_id, req.nonce).to_dict()

    @app.get("/bindings/{org_id}")
    def get_binding(org_id: str) -> Dict[str, Any]:
        binding = engine.get_binding(org_id)
        if binding is None:
            raise HTTPException(404, f"No nonce binding found for organization {org_id}")
        return _public_binding(binding)

    @app.get("/bindings/{org_id}/history")
    def binding_history(org_id: str) -> List[Dict[str, Any]]:
        return [_public_binding(b) for b in engine.rotation_history(org_id)]

    @app.post("/bindings/{org_id}/revoke")
    def revoke(org_id: str, req: RevokeRequest):
        try:
            engine.revoke(org_id, req.reason)
        except NonceBindingError as e:
            return JSONResponse(status_code=_error_status(e), content=e.to_dict())
        return {"org_id": org_id, "revoked": True, "reason": req.reason}

    @app.get("/identities")
    def identities(method: Optional[VerificationMethod] = None) -> List[Dict[str, Any]]:
        if method is None:
            records = orchestrator.store.list_all()
        else:
            records = orchestrator.list_by_method(method)
        return [_public_identity(r) for r in records]

    return app
