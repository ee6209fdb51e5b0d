# luna_server/routers/deps.py
# -*- coding: utf-8 -*-
"""
Luna Companion Server — Router dependencies
-------------------------------------------
The Services container is attached to `app.state.services` by create_app().
Routers reach it through these FastAPI dependencies.
"""

from __future__ import annotations

from fastapi import Request, WebSocket

from luna_server.core.container import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_ws_services(websocket: WebSocket) -> Services:
    return websocket.app.state.services
