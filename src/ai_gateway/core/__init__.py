"""
Core infrastructure for ai-gateway.

    - config.py: Settings loading (YAML + environment) and validation
    - errors.py: Error taxonomy and the OpenAI-style error envelope
    - logging/: Structured logging with numeric levels
    - metrics.py: Prometheus metrics
    - process.py: External tool invocation
"""
