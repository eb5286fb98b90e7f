from teetime.services.booking_service import (
    create_booking_with_history,
    lookup_member_booking,
)
from teetime.services.flow_state import (
    clear_flow_state,
    get_flow_state,
    save_flow_state,
)
from teetime.services.state_machine import (
    BookingStatus,
    transition,
)
from teetime.services.status_service import (
    cancel_booking_with_history,
    set_booking_status_with_history,
)
