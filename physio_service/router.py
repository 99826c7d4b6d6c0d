"""
SMARTCARE+ Physio Service Router

Endpoints for the cones exercise: session setup, per-frame processing,
UI commands, countdown, zone editing and results. Landmark detection runs
on the client; frames arrive either as ready-made features or as raw
MediaPipe landmarks.
"""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, HTTPException
from pydantic import BaseModel, Field, ValidationError
from typing import Optional, List, Dict, Any

from shared.utils import setup_logger, handle_exceptions, get_now_iso

from .models import (
    ConesSessionHandler,
    ExerciseMode,
    FrameFeatures,
    HandToUse,
    NormalizedRect,
    get_session_handler
)

router = APIRouter()
logger = setup_logger("smartcare.physio")


# Service instance (singleton pattern)
_session_handler: Optional[ConesSessionHandler] = None


def get_services() -> ConesSessionHandler:
    """Get or initialize the session handler."""
    global _session_handler
    if _session_handler is None:
        _session_handler = get_session_handler()
    return _session_handler


def _ensure_found(result: Dict[str, Any], session_id: str) -> Dict[str, Any]:
    if result.get("error") == "Session not found":
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return result


# ============= Pydantic Models =============

class Zone(BaseModel):
    x1: float = Field(ge=0.0, le=1.0)
    y1: float = Field(ge=0.0, le=1.0)
    x2: float = Field(ge=0.0, le=1.0)
    y2: float = Field(ge=0.0, le=1.0)

    def to_rect(self) -> NormalizedRect:
        return NormalizedRect(x1=self.x1, y1=self.y1, x2=self.x2, y2=self.y2)


class StartSessionRequest(BaseModel):
    exercise_id: Optional[str] = None
    hand_to_use: HandToUse = HandToUse.RIGHT
    mode: ExerciseMode = ExerciseMode.TARGET_REPS
    duration_sec: Optional[float] = None
    target_reps: Optional[int] = None
    start_zone: Optional[Zone] = None
    end_zone: Optional[Zone] = None
    min_pose_confidence: Optional[float] = None
    min_hand_confidence: Optional[float] = None
    rep_cooldown_ms: Optional[float] = None
    hold_grip_threshold: Optional[float] = None
    release_grip_threshold: Optional[float] = None


class AnglesModel(BaseModel):
    elbow_angle_deg: float = 0.0
    shoulder_flexion_deg: float = 0.0
    shoulder_abduction_deg: float = 0.0
    wrist_extension_proxy: float = 0.0


class ConfidenceModel(BaseModel):
    pose: float = 0.0
    hand: float = 0.0


class FrameRequest(BaseModel):
    pose_ok: bool = False
    hand_ok: bool = False
    wrist_x: float = 0.5
    wrist_y: float = 0.5
    pinch_dist: float = 1.0
    grip: bool = False
    in_start_zone: bool = False
    in_end_zone: bool = False
    shoulder_center_x: Optional[float] = None
    shoulder_width: Optional[float] = None
    angles: AnglesModel = Field(default_factory=AnglesModel)
    confidence: ConfidenceModel = Field(default_factory=ConfidenceModel)


class LandmarkModel(BaseModel):
    x: float
    y: float
    z: float = 0.0
    visibility: float = 0.0


class HandednessModel(BaseModel):
    label: str
    score: Optional[float] = None


class LandmarksRequest(BaseModel):
    multi_hand_landmarks: Optional[List[List[LandmarkModel]]] = None
    multi_handedness: Optional[List[HandednessModel]] = None
    pose_landmarks: Optional[List[LandmarkModel]] = None


class CommandRequest(BaseModel):
    command: str


class ZonesRequest(BaseModel):
    start_zone: Optional[Zone] = None
    end_zone: Optional[Zone] = None


def _landmarks_args(request: LandmarksRequest) -> Dict[str, Any]:
    return {
        "multi_hand_landmarks": [
            [lm.model_dump() for lm in hand] for hand in request.multi_hand_landmarks
        ] if request.multi_hand_landmarks else None,
        "multi_handedness": [
            h.model_dump() for h in request.multi_handedness
        ] if request.multi_handedness else None,
        "pose_landmarks": [
            lm.model_dump() for lm in request.pose_landmarks
        ] if request.pose_landmarks else None,
    }


# ============= Session Endpoints =============

@router.post("/session/start")
@handle_exceptions
async def start_cones_session(request: StartSessionRequest):
    """
    Create a new cones session.

    Returns a session ID for use with the frame endpoints and WebSocket stream.
    """
    session_handler = get_services()

    session = session_handler.create_session(
        exercise_id=request.exercise_id,
        hand_to_use=request.hand_to_use,
        mode=request.mode,
        duration_sec=request.duration_sec,
        target_reps=request.target_reps,
        start_zone=request.start_zone.to_rect() if request.start_zone else None,
        end_zone=request.end_zone.to_rect() if request.end_zone else None,
        min_pose_confidence=request.min_pose_confidence,
        min_hand_confidence=request.min_hand_confidence,
        rep_cooldown_ms=request.rep_cooldown_ms,
        hold_grip_threshold=request.hold_grip_threshold,
        release_grip_threshold=request.release_grip_threshold,
    )

    return {
        "status": "created",
        "session_id": session.session_id,
        "exercise_id": session.exercise_id,
        "config": session.config.to_dict(),
        "state": session.machine.get_state().to_dict(),
        "prompt": session.prompt(),
        "websocket_url": f"/api/physio/cones/ws/session/{session.session_id}",
        "created_at": get_now_iso()
    }


@router.get("/session/{session_id}")
async def get_cones_session(session_id: str):
    """Current state snapshot, prompt and progress."""
    return _ensure_found(get_services().get_session_status(session_id), session_id)


@router.post("/session/{session_id}/frame")
async def push_frame(session_id: str, request: FrameRequest):
    """Process one frame of precomputed features."""
    features = FrameFeatures.from_dict(request.model_dump())
    return _ensure_found(get_services().process_frame(session_id, features), session_id)


@router.post("/session/{session_id}/landmarks")
@handle_exceptions
async def push_landmarks(session_id: str, request: LandmarksRequest):
    """Process one frame of raw MediaPipe hand/pose landmarks."""
    result = get_services().process_landmarks(session_id, **_landmarks_args(request))
    return _ensure_found(result, session_id)


@router.post("/session/{session_id}/command")
@handle_exceptions
async def send_command(session_id: str, request: CommandRequest):
    """
    Send a UI command.

    Valid commands: ALIGNMENT_OK, ZONES_CONFIRMED, REQUEST_READY_GATE,
    READY_PRESSED, PAUSE, RESUME, USER_STOP, TIME_UP. Commands that do not
    apply to the current state are ignored (`applied` is false).
    """
    result = get_services().send_command(session_id, request.command)
    return _ensure_found(result, session_id)


@router.post("/session/{session_id}/countdown/tick")
async def tick_countdown(session_id: str):
    """Advance the countdown by one second."""
    return _ensure_found(get_services().tick_countdown(session_id), session_id)


@router.put("/session/{session_id}/zones")
async def update_zones(session_id: str, request: ZonesRequest):
    """Edit the start/end zones; allowed in any state."""
    result = get_services().update_zones(
        session_id,
        start_zone=request.start_zone.to_rect() if request.start_zone else None,
        end_zone=request.end_zone.to_rect() if request.end_zone else None,
    )
    return _ensure_found(result, session_id)


@router.get("/session/{session_id}/summary")
async def get_summary(session_id: str, include_events: bool = False):
    """Session metrics summary."""
    return _ensure_found(get_services().get_summary(session_id, include_events), session_id)


@router.post("/session/{session_id}/complete")
async def complete_session(session_id: str):
    """Stop a cones session and get the practice result."""
    session_handler = get_services()

    session = session_handler.get_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")

    result = session_handler.complete_session(session_id)

    return {
        "status": "completed",
        "session_id": session_id,
        "result": result
    }


@router.delete("/session/{session_id}")
async def delete_session(session_id: str):
    """Tear down a session (the machine and its metrics go together)."""
    if not get_services().cleanup_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"status": "deleted", "session_id": session_id}


# ============= WebSocket Endpoints =============

def _handle_ws_message(
    session_handler: ConesSessionHandler,
    session_id: str,
    message: Any
) -> Dict[str, Any]:
    """Route one client message to the session handler."""
    if not isinstance(message, dict):
        raise ValueError("Message must be a JSON object")
    msg_type = message.get("type")

    if msg_type == "FRAME":
        features = FrameFeatures.from_dict(message.get("features"))
        return session_handler.process_frame(session_id, features)
    if msg_type == "LANDMARKS":
        request = LandmarksRequest(**{k: v for k, v in message.items() if k != "type"})
        return session_handler.process_landmarks(session_id, **_landmarks_args(request))
    if msg_type == "COMMAND":
        return session_handler.send_command(session_id, str(message.get("command")))
    if msg_type == "TICK":
        return session_handler.tick_countdown(session_id)
    if msg_type == "ZONES":
        zones = ZonesRequest(**{k: v for k, v in message.items() if k != "type"})
        return session_handler.update_zones(
            session_id,
            start_zone=zones.start_zone.to_rect() if zones.start_zone else None,
            end_zone=zones.end_zone.to_rect() if zones.end_zone else None,
        )
    raise ValueError(f"Unknown message type: {msg_type}")


@router.websocket("/ws/session/{session_id}")
async def cones_session_stream(websocket: WebSocket, session_id: str):
    """
    Real-time cones session stream.

    Client messages (JSON):
    - {"type": "FRAME", "features": {...}}
    - {"type": "LANDMARKS", "multi_hand_landmarks": [...], "multi_handedness": [...], "pose_landmarks": [...]}
    - {"type": "COMMAND", "command": "PAUSE"}
    - {"type": "TICK"}
    - {"type": "ZONES", "start_zone": {...}, "end_zone": {...}}

    Server messages: one FRAME_RESULT per client message, preceded by any
    STATE_CHANGED, REP_STARTED, REP_COUNTED or SESSION_COMPLETED events.
    """
    await websocket.accept()
    session_handler = get_services()

    session = session_handler.get_session(session_id)
    if not session:
        await websocket.send_json({
            "type": "ERROR",
            "message": f"Session {session_id} not found"
        })
        await websocket.close()
        return

    try:
        await websocket.send_json({
            "type": "SESSION_STARTED",
            "session_id": session_id,
            "exercise_id": session.exercise_id,
            "config": session.config.to_dict(),
            "state": session.machine.get_state().to_dict()
        })

        while True:
            try:
                # malformed JSON surfaces as JSONDecodeError, a ValueError
                message = await websocket.receive_json()
                result = _handle_ws_message(session_handler, session_id, message)
            except (ValueError, ValidationError) as e:
                await websocket.send_json({
                    "type": "ERROR",
                    "message": str(e)
                })
                continue

            if result.get("error"):
                await websocket.send_json({"type": "ERROR", "message": result["error"]})
                break

            for event in result.pop("events", []):
                await websocket.send_json(event)
            await websocket.send_json({"type": "FRAME_RESULT", **result})

    except WebSocketDisconnect:
        logger.info(f"Cones session {session_id} disconnected")
        # Mark session as paused
        if session_handler.get_session(session_id):
            session_handler.send_command(session_id, "PAUSE")
