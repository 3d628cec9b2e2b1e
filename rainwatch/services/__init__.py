"""Infrastructure services: clock, key/value store, cycle lease, LLM gateway, circuit breaker."""
