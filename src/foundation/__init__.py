"""Foundation utilities for shared infrastructure components.

This package provides shared utilities including:
- HTTP session with retry logic
- Structured JSON logging
- Retry and bounded polling helpers
- Circuit breaker patterns
"""
