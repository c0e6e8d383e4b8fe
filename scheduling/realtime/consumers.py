import json

from channels.generic.websocket import AsyncWebsocketConsumer

from scheduling.services.notify import GROUP


class ScheduleConsumer(AsyncWebsocketConsumer):
    """Pushes ``schedule.changed`` events to authenticated dashboards."""

    async def connect(self):
        user = self.scope.get("user")
        if not (user and user.is_authenticated):
            await self.close(code=4401)
            return
        await self.channel_layer.group_add(GROUP, self.channel_name)
        await self.accept()
        await self.send(json.dumps({"type": "welcome", "message": "connected"}))

    async def disconnect(self, close_code):
        await self.channel_layer.group_discard(GROUP, self.channel_name)

    async def schedule_changed(self, event):
        # event: {"type": "schedule.changed", "kind": ..., "slotId": ..., "bookingId": ..., "ts": ...}
        await self.send(json.dumps(event))
