import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from passkeygate import __version__
from passkeygate.core.exceptions import PasskeyGateError, StoreError, ResCode
from passkeygate.core.models import RelyingParty
from passkeygate.helpers import get_relying_party, get_cors_headers
from passkeygate.integrations.fastapi_integration import get_passkey_service
from passkeygate.manager.asynchronous import PasskeyGateAsync

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Passkeys"])


# --- Pydantic Models ---
class PasskeyAction(str, Enum):
    GENERATE_REGISTRATION_OPTIONS = "generateRegistrationOptions"
    VERIFY_REGISTRATION = "verifyRegistration"
    GENERATE_AUTHENTICATION_OPTIONS = "generateAuthenticationOptions"
    VERIFY_AUTHENTICATION = "verifyAuthentication"
    GENERATE_MANAGEMENT_TOKEN = "generateManagementToken"
    LIST_CREDENTIALS = "listCredentials"
    DELETE_CREDENTIAL = "deleteCredential"


class PasskeyRequest(BaseModel):
    action: str
    data: Optional[Dict[str, Any]] = None


class PasskeyEnvelope(BaseModel):
    code: int
    message: Optional[str] = None
    data: Optional[Any] = None


Handler = Callable[[PasskeyGateAsync, RelyingParty, Dict[str, Any]], Awaitable[Any]]


# --- Action handlers ---
async def _generate_registration_options(service, rp, data):
    return await service.generate_registration_options(rp, data.get("username"), data.get("token"))


async def _verify_registration(service, rp, data):
    return await service.verify_registration(rp, data.get("challengeId"), data.get("response"))


async def _generate_authentication_options(service, rp, data):
    return await service.generate_authentication_options(rp, data.get("username"))


async def _verify_authentication(service, rp, data):
    return await service.verify_authentication(rp, data.get("challengeId"), data.get("response"))


async def _generate_management_token(service, rp, data):
    return await service.generate_management_token(rp, data.get("challengeId"), data.get("response"))


async def _list_credentials(service, rp, data):
    return await service.list_credentials(data.get("username"))


async def _delete_credential(service, rp, data):
    return await service.delete_credential(data.get("credentialId"), data.get("username"), data.get("managementToken"))


HANDLERS: Dict[PasskeyAction, Handler] = {
    PasskeyAction.GENERATE_REGISTRATION_OPTIONS: _generate_registration_options,
    PasskeyAction.VERIFY_REGISTRATION: _verify_registration,
    PasskeyAction.GENERATE_AUTHENTICATION_OPTIONS: _generate_authentication_options,
    PasskeyAction.VERIFY_AUTHENTICATION: _verify_authentication,
    PasskeyAction.GENERATE_MANAGEMENT_TOKEN: _generate_management_token,
    PasskeyAction.LIST_CREDENTIALS: _list_credentials,
    PasskeyAction.DELETE_CREDENTIAL: _delete_credential,
}


async def dispatch(service: PasskeyGateAsync, rp: RelyingParty, body: PasskeyRequest) -> PasskeyEnvelope:
    """
    Runs one action and turns its outcome into an envelope. Every failure,
    expected or not, ends up as an envelope with a readable message.
    """
    try:
        action = PasskeyAction(body.action)
    except ValueError:
        return PasskeyEnvelope(code=ResCode.FAIL, message="Unknown action")

    try:
        result = await HANDLERS[action](service, rp, body.data or {})
    except StoreError as e:
        logger.error(f"Store failure during {action.value}: {e}")
        return PasskeyEnvelope(code=ResCode.FAIL, message=f"Passkey Error: {e}")
    except PasskeyGateError as e:
        return PasskeyEnvelope(code=e.code, message=str(e))
    except Exception as e:
        logger.error(f"Passkey operation {action.value} failed: {e}", exc_info=True)
        return PasskeyEnvelope(code=ResCode.FAIL, message=f"Passkey Error: {e}")
    return PasskeyEnvelope(code=ResCode.SUCCESS, data=result)


def _respond(request: Request, envelope: PasskeyEnvelope) -> JSONResponse:
    return JSONResponse(content=envelope.model_dump(exclude_none=True), headers=get_cors_headers(request))


@router.options("", summary="CORS preflight for the passkey API")
async def passkey_preflight(request: Request):
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=get_cors_headers(request))


@router.get("", summary="Passkey API liveness and version")
async def passkey_status(request: Request):
    return JSONResponse(
        content={"code": ResCode.SUCCESS, "message": "Passkey API is running", "version": __version__},
        headers=get_cors_headers(request),
    )


@router.post("", summary="Run a passkey ceremony or credential action")
async def passkey_api(request: Request):
    """
    Single entry point: the JSON body `{action, data}` names one of the
    `PasskeyAction` operations. The relying party is derived from this request.
    """
    try:
        body = PasskeyRequest.model_validate(await request.json())
    except ValueError as e:
        logger.debug(f"Rejected malformed passkey request: {e}")
        return _respond(request, PasskeyEnvelope(code=ResCode.FAIL, message="Passkey Error: malformed request body"))

    try:
        service = get_passkey_service(request)
    except Exception as e:
        logger.error(f"Passkey store is not available: {e}", exc_info=True)
        return _respond(request, PasskeyEnvelope(code=ResCode.FAIL, message=f"Passkey Error: {e}"))

    envelope = await dispatch(service, get_relying_party(request), body)
    return _respond(request, envelope)


passkey_router = router
