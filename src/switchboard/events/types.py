"""Event type constants for Switchboard."""

# Catalog events
MODEL_DISCOVERED = "model_discovered"
MODEL_UPDATED = "model_updated"
MODEL_LOST = "model_lost"
CATALOG_CLEARED = "catalog_cleared"

# Dispatch lifecycle events
DISPATCH_STARTED = "dispatch_started"
DISPATCH_COMPLETED = "dispatch_completed"
DISPATCH_FAILED = "dispatch_failed"
DISPATCH_CANCELLED = "dispatch_cancelled"

# Health and tools
MODEL_HEALTH_CHANGED = "model_health_changed"
TOOL_EXECUTED = "tool_executed"
