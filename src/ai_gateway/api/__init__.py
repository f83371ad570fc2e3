"""
HTTP layer of the gateway.

    - dispatch.py: capability table and route installation
    - auth.py: API key dependency and RequestContext
    - openai_compat.py: speech, transcription, translation, image handlers
    - proxy.py: catch-all forwarding to the upstream completion service
    - routes.py: index, health, metrics and model listing
    - dependencies.py: service container and FastAPI providers
"""
