"""Service layer: scheduling, rating, queues, caching and LLM access."""
