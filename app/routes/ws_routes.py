from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query
from app.ws_manager.ws_manager import CLIENT_TYPES, manager
import json
from datetime import datetime
from app.utils.logger_config import setup_logger


logger = setup_logger()

router = APIRouter(prefix="/ws", tags=["websocket"])


@router.websocket("")
async def websocket_endpoint(
    websocket: WebSocket,
    user_id: str = Query(...),
    client_type: str = Query("customer"),
):
    """Live lifecycle events for one user; admins also get the admin channel."""
    if client_type not in CLIENT_TYPES:
        await websocket.close(code=1008)
        return

    await manager.connect(websocket, client_type, user_id)

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_text(
                    json.dumps({"type": "error", "message": "Invalid JSON"})
                )
                continue

            if message.get("type") == "subscribe":
                event = message.get("event")
                if event:
                    await manager.subscribe(websocket, event)
                    await websocket.send_text(
                        json.dumps(
                            {
                                "type": "subscription_confirmed",
                                "event": event,
                                "timestamp": datetime.now().isoformat(),
                            }
                        )
                    )

            elif message.get("type") == "unsubscribe":
                event = message.get("event")
                if event:
                    await manager.unsubscribe(websocket, event)
                    await websocket.send_text(
                        json.dumps(
                            {
                                "type": "unsubscription_confirmed",
                                "event": event,
                                "timestamp": datetime.now().isoformat(),
                            }
                        )
                    )

            elif message.get("type") == "ping":
                await websocket.send_text(
                    json.dumps({"type": "pong", "timestamp": datetime.now().isoformat()})
                )

    except WebSocketDisconnect:
        manager.disconnect(websocket, client_type, user_id)
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
        manager.disconnect(websocket, client_type, user_id)
