import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from medbook.services.events import broker, topic_for

router = APIRouter(tags=['events'])

logger = logging.getLogger(__name__)


@router.websocket('/schedules/{doctor_id}')
async def schedule_events(websocket: WebSocket, doctor_id: int):
    await websocket.accept()
    topic = topic_for(doctor_id)
    queue = broker.subscribe(topic)
    logger.info('Subscriber joined %s', topic)

    # Reading keeps disconnects visible while the topic is quiet.
    receiver = asyncio.ensure_future(websocket.receive_text())
    getter = None
    try:
        while True:
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({receiver, getter}, return_when=asyncio.FIRST_COMPLETED)

            if getter in done:
                await websocket.send_json(getter.result().to_dict())
            else:
                getter.cancel()

            if receiver in done:
                # Raises WebSocketDisconnect once the client has gone; other messages are ignored.
                receiver.result()
                receiver = asyncio.ensure_future(websocket.receive_text())
    except WebSocketDisconnect:
        logger.info('Subscriber left %s', topic)
    finally:
        receiver.cancel()
        if getter is not None:
            getter.cancel()
        broker.unsubscribe(topic, queue)
