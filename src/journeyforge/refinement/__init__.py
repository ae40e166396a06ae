"""Self-healing loop: error analysis, circuit breaker, convergence, lessons."""
