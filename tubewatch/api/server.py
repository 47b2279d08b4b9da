from fastapi import FastAPI
from tubewatch.api import deps
from tubewatch.api.routes import channels as channels_routes
from tubewatch.api.routes import events as events_routes
from tubewatch.api.routes import settings as settings_routes
from tubewatch.api.routes import system as system_routes
from tubewatch.api.routes import videos as videos_routes

app = FastAPI(title="tubewatch API", version="0.1.0")

app.include_router(settings_routes.router)
app.include_router(channels_routes.router)
app.include_router(videos_routes.router)
app.include_router(events_routes.router)
app.include_router(system_routes.router)

# Monitor injection proxy

def set_monitor(monitor, broadcaster=None):
    deps.set_monitor(monitor, broadcaster)
