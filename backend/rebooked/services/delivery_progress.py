from __future__ import annotations

DELIVERY_STEPS = (
    ("created", "Shipment created"),
    ("collected", "Collected from seller"),
    ("in_transit", "In transit"),
    ("out_for_delivery", "Out for delivery"),
    ("delivered", "Delivered"),
)

STEP_INDEX = {
    "created": 0,
    "collected": 1,
    "picked_up": 1,
    "in_transit": 2,
    "out_for_delivery": 3,
    "delivered": 4,
}

AWAITING_COMMIT_STATUSES = ("pending_commit", "paid")


def delivery_progress(status: str | None, delivery_status: str | None) -> dict:
    """Render the tracker for an order.

    Orders still waiting on the seller show every step pending. A failed
    collection marks the current step as failed instead of active.
    """
    status = (status or "").strip().lower()
    delivery_status = (delivery_status or "").strip().lower()

    if status in AWAITING_COMMIT_STATUSES:
        return {
            "steps": [{"key": key, "label": label, "state": "pending"} for key, label in DELIVERY_STEPS],
            "current_index": -1,
            "failed": False,
            "awaiting_commit": True,
        }

    failed = delivery_status == "pickup_failed"
    current = 0 if failed else STEP_INDEX.get(delivery_status, 0)
    steps = []
    for index, (key, label) in enumerate(DELIVERY_STEPS):
        if index < current:
            state = "complete"
        elif index == current:
            state = "failed" if failed else "active"
        else:
            state = "pending"
        steps.append({"key": key, "label": label, "state": state})
    return {"steps": steps, "current_index": current, "failed": failed, "awaiting_commit": False}
