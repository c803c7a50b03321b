"""External service clients (Stripe, Pipedrive)."""
