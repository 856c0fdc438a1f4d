from app.services.conversation_service import (
    get_or_create_conversation,
    list_conversations,
)
from app.services.dialog_engine import (
    DialogStep,
    StepResult,
    handle_step,
)
from app.services.message_service import (
    get_history,
    save_message,
)
from app.services.session_service import (
    cache_session,
    get_session,
    invalidate_session,
    save_session,
)
