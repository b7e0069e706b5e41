"""HTTP handlers.

Thin adapters: decode the request, call the coordinator, encode the
result. All error mapping happens in error_middleware.
"""

import json
from typing import Any, Optional

from aiohttp import web

from kypipeline.coordinator import Announcement, PipelineCoordinator
from kypipeline.core.errors import ValidationError
from kypipeline.core.safety.approval import ApprovalAction

from .schemas import ApprovalRequest, BroadcastRequest, VisionAnalyzeRequest, parse_body

COORDINATOR_KEY = web.AppKey("coordinator", PipelineCoordinator)

SIGNATURE_HEADER = "X-Line-Signature"
PUSH_SECRET_HEADER = "X-Line-Push-Secret"


async def read_json(request: web.Request, allow_empty: bool = False) -> Any:
    """Decode the request body as JSON.

    Raises:
        ValidationError: Malformed JSON (or empty body unless allowed)
    """
    raw = await request.read()
    if not raw.strip():
        if allow_empty:
            return {}
        raise ValidationError("request body required")
    try:
        return json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise ValidationError("malformed JSON body") from None


async def webhook_health(request: web.Request) -> web.Response:
    return web.json_response({"ok": True, "route": "/api/line/webhook"})


async def webhook(request: web.Request) -> web.Response:
    coordinator = request.app[COORDINATOR_KEY]
    raw_body = await request.read()
    accepted = await coordinator.ingest_webhook(raw_body, request.headers.get(SIGNATURE_HEADER))
    return web.json_response({"ok": True, "accepted": accepted})


async def _approval(request: web.Request, action: Optional[ApprovalAction]) -> web.Response:
    coordinator = request.app[COORDINATOR_KEY]
    identity = coordinator.authenticate(request.headers.get("Authorization"))
    body = parse_body(ApprovalRequest, await read_json(request))

    announcement = None
    if body.broadcast:
        announcement = Announcement(title=body.title or "", url=body.url, note=body.note)

    outcome = await coordinator.set_approval(
        identity,
        entry_id=body.ky_entry_id,
        project_id=body.project_id,
        action=action or body.action,
        actor_id=body.actor_id,
        note=body.note,
        announcement=announcement,
    )

    payload = {"ok": True, "isApproved": outcome.is_approved, "changed": outcome.changed}
    if outcome.broadcast is not None:
        payload["broadcast"] = outcome.broadcast
    return web.json_response(payload)


async def approvals(request: web.Request) -> web.Response:
    return await _approval(request, None)


async def approve(request: web.Request) -> web.Response:
    return await _approval(request, ApprovalAction.APPROVE)


async def unapprove(request: web.Request) -> web.Response:
    return await _approval(request, ApprovalAction.UNAPPROVE)


async def delete_ky(request: web.Request) -> web.Response:
    coordinator = request.app[COORDINATOR_KEY]
    identity = coordinator.authenticate(request.headers.get("Authorization"))
    await coordinator.delete_entry(identity, request.match_info["ky_id"])
    return web.json_response({"ok": True})


async def vision_analyze(request: web.Request) -> web.Response:
    coordinator = request.app[COORDINATOR_KEY]
    body = parse_body(VisionAnalyzeRequest, await read_json(request, allow_empty=True))
    analysis = await coordinator.analyze_photo(body.image_url)
    return web.json_response(analysis.model_dump(by_alias=True))


async def push_ky(request: web.Request) -> web.Response:
    coordinator = request.app[COORDINATOR_KEY]
    coordinator.check_broadcast_secret(request.headers.get(PUSH_SECRET_HEADER))
    body = parse_body(BroadcastRequest, await read_json(request))

    if "text" in body.model_fields_set:
        result = await coordinator.broadcast(text=body.text or "")
    else:
        result = await coordinator.broadcast(
            announcement=Announcement(
                title=body.title or "",
                url=body.url,
                note=body.note,
                work_detail=body.work_detail,
                workers=body.workers,
                third_party_level=body.third_party_level,
                weather_slots=body.weather_slots,
                ai_hazards=body.ai_hazards,
                ai_countermeasures=body.ai_countermeasures,
                ai_third_party=body.ai_third_party,
            )
        )
    return web.json_response({"ok": True, "status": result.status, "requestId": result.request_id})


def setup_routes(app: web.Application) -> None:
    app.router.add_get("/api/line/webhook", webhook_health)
    app.router.add_post("/api/line/webhook", webhook)
    app.router.add_post("/api/line/push-ky", push_ky)
    app.router.add_post("/api/ky-approvals", approvals)
    app.router.add_post("/api/ky-approve", approve)
    app.router.add_post("/api/ky-unapprove", unapprove)
    app.router.add_delete("/api/ky/{ky_id}", delete_ky)
    app.router.add_post("/api/ky-vision-analyze", vision_analyze)
