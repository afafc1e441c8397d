"""Token, project and script endpoints."""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from token_manager.broker.schemas import SiteReply
from token_manager.errors import InvalidTaskError, SiteError, TokenManagerError, TokenNotFound
from token_manager.orchestration import OperationOrchestrator
from token_manager.schemas import ProjectQueryParams, TokenParams, TokensQueryParams

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["tokens"])


def get_orchestrator(request: Request) -> OperationOrchestrator:
    return request.app.state.orchestrator


def _error_response(exc: TokenManagerError) -> JSONResponse:
    if isinstance(exc, InvalidTaskError):
        status_code = 422
    elif isinstance(exc, TokenNotFound):
        status_code = 404
    else:
        status_code = 500
    logger.debug("Unhandled error: %r", exc)
    return JSONResponse(status_code=status_code, content={"message": str(exc)})


def _removal_response(reply: SiteReply, context: dict) -> Response:
    try:
        reply.raise_for_error()
    except SiteError as exc:
        logger.debug("Got error while removing %s: status_code=%s error=%s", context, exc.status_code, exc.message)
        status_code = exc.status_code if 400 <= exc.status_code <= 599 else 500
        return JSONResponse(status_code=status_code, content={"error": exc.message})
    return Response(status_code=200)


@router.post("/token")
async def create_token(
    params: TokenParams,
    orchestrator: OperationOrchestrator = Depends(get_orchestrator),
) -> Response:
    """Ask every bridgehead for a token; results are stored as they arrive."""
    try:
        await orchestrator.create_tokens(params)
    except TokenManagerError as exc:
        return _error_response(exc)
    return Response(status_code=200)


@router.put("/refreshToken")
async def refresh_token(
    params: TokenParams,
    orchestrator: OperationOrchestrator = Depends(get_orchestrator),
) -> Response:
    try:
        await orchestrator.refresh_tokens(params)
    except TokenManagerError as exc:
        return _error_response(exc)
    return Response(status_code=200)


@router.delete("/token")
async def remove_tokens(
    params: TokensQueryParams = Depends(),
    orchestrator: OperationOrchestrator = Depends(get_orchestrator),
) -> Response:
    try:
        reply = await orchestrator.remove_tokens(params)
    except TokenManagerError as exc:
        return _error_response(exc)
    return _removal_response(reply, params.model_dump())


@router.delete("/project")
async def remove_project_and_tokens(
    params: ProjectQueryParams = Depends(),
    orchestrator: OperationOrchestrator = Depends(get_orchestrator),
) -> Response:
    try:
        reply = await orchestrator.remove_project(params)
    except TokenManagerError as exc:
        return _error_response(exc)
    return _removal_response(reply, params.model_dump())


@router.get("/project-status")
async def check_project_status(
    params: ProjectQueryParams = Depends(),
    orchestrator: OperationOrchestrator = Depends(get_orchestrator),
):
    try:
        return await orchestrator.project_status(params)
    except TokenManagerError as exc:
        return _error_response(exc)


@router.get("/token-status")
async def check_token_status(
    params: TokensQueryParams = Depends(),
    orchestrator: OperationOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.token_status(params)


@router.post("/authentication-status")
async def check_script_status(
    params: TokenParams,
    orchestrator: OperationOrchestrator = Depends(get_orchestrator),
) -> PlainTextResponse:
    available = await orchestrator.authentication_status(params)
    return PlainTextResponse("true" if available else "false")


@router.post("/script")
async def generate_script(
    params: TokenParams,
    orchestrator: OperationOrchestrator = Depends(get_orchestrator),
) -> Response:
    try:
        script = await orchestrator.generate_script(params)
    except TokenManagerError as exc:
        logger.error("Error generating script: %s", exc)
        return _error_response(exc)
    return PlainTextResponse(script)
