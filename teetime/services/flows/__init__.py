from teetime.schemas.oracle import FlowName
from teetime.services.flows import (
    booking_new,
    booking_status,
    cancel_booking,
    modify_booking,
    onboarding,
    support,
)
from teetime.services.flows.common import FlowContext

FLOW_MODULES = {
    FlowName.BOOKING_NEW: booking_new,
    FlowName.BOOKING_STATUS: booking_status,
    FlowName.CANCEL_BOOKING: cancel_booking,
    FlowName.MODIFY_BOOKING: modify_booking,
    FlowName.ONBOARDING: onboarding,
    FlowName.SUPPORT: support,
}

__all__ = ["FLOW_MODULES", "FlowContext"]
