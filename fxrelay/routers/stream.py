from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from fxrelay.services.broadcast import ConnectionManager
from fxrelay.services.rates.cache_service import RateCache, build_payload

router = APIRouter(tags=["stream"])


@router.websocket("/ws/rates")
async def rates_stream(websocket: WebSocket):
    manager: ConnectionManager = websocket.app.state.broadcaster
    cache: RateCache = websocket.app.state.rate_cache
    clock = websocket.app.state.clock

    await manager.connect(websocket)
    try:
        # Send the latest data as soon as the client connects
        entry = cache.peek(clock())
        if entry is not None:
            await manager.send(websocket, build_payload(entry, cache.ttl_ms))
        while True:
            # inbound messages are ignored; receive only to notice disconnects
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket)
