"""Job model, persistence, scheduler and runner loop."""
