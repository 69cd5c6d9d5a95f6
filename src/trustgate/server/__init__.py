"""HTTP surface of the gateway: RPC dispatch, SSE event stream, health.

Public API: app.create_app, app.create_app_from_env, methods.RpcDispatcher,
    events.EventBroadcaster
Internal: models, routes, auth
"""
