"""Cross-cutting helpers: clock, resilience, Redis connection."""
