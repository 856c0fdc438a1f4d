"""Step-driven dialog script: welcome menu -> service prompt -> generated result -> welcome."""

from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple, Optional, Union

from app.schemas.session import BotSessionState, ServiceKind, SessionPayload
from app.services.generation_service import GenerationService


class DialogStep(str, Enum):
    WELCOME = "welcome"
    MENU_SELECTION = "menu_selection"
    IMAGE_INPUT = "image_input"
    VIDEO_INPUT = "video_input"
    INFO_INPUT = "info_input"


WELCOME_HEADER = "Welcome! 👋"
WELCOME_BODY = "What would you like to do today?"
MENU_BUTTONS = ("Generate Image", "Generate Video", "Get Information")

MSG_IMAGE_PROMPT = "Great! Please describe the image you want me to generate."
MSG_VIDEO_PROMPT = "Awesome! Please describe the video you want me to create."
MSG_INFO_PROMPT = "What information would you like me to help you find?"
MSG_INVALID_OPTION = "Please select one of the options: Generate Image, Generate Video, or Get Information."


@dataclass(frozen=True)
class TextResponse:
    content: str
    kind: str = field(default="text", init=False)

    def record_content(self) -> str:
        return self.content


@dataclass(frozen=True)
class MediaResponse:
    url: str
    media_type: str  # image, video
    caption: Optional[str] = None
    kind: str = field(default="media", init=False)

    def record_content(self) -> Optional[str]:
        return self.caption


@dataclass(frozen=True)
class InteractiveResponse:
    header: str
    body: str
    buttons: tuple[str, ...]
    kind: str = field(default="interactive", init=False)

    def record_content(self) -> str:
        return self.body


ResponseDescriptor = Union[TextResponse, MediaResponse, InteractiveResponse]


@dataclass(frozen=True)
class StepResult:
    response: ResponseDescriptor
    next_step: DialogStep
    payload: SessionPayload


class MenuOption(NamedTuple):
    service: ServiceKind
    button_title: str
    keyword: str
    next_step: DialogStep
    prompt: str


# Checked in this order; the first match wins.
MENU_OPTIONS = (
    MenuOption(ServiceKind.IMAGE, "Generate Image", "image", DialogStep.IMAGE_INPUT, MSG_IMAGE_PROMPT),
    MenuOption(ServiceKind.VIDEO, "Generate Video", "video", DialogStep.VIDEO_INPUT, MSG_VIDEO_PROMPT),
    MenuOption(ServiceKind.INFO, "Get Information", "information", DialogStep.INFO_INPUT, MSG_INFO_PROMPT),
)


def parse_step(value: Optional[str]) -> Optional[DialogStep]:
    """Map a stored step name to DialogStep; unknown or empty names give None."""
    try:
        return DialogStep(value)
    except ValueError:
        return None


def match_menu_option(text: str) -> Optional[MenuOption]:
    """Exact button title (case-sensitive) or bare keyword (case-insensitive)."""
    lowered = text.lower()
    for option in MENU_OPTIONS:
        if option.button_title in text or option.keyword in lowered:
            return option
    return None


def welcome_result(payload: SessionPayload) -> StepResult:
    return StepResult(
        response=InteractiveResponse(header=WELCOME_HEADER, body=WELCOME_BODY, buttons=MENU_BUTTONS),
        next_step=DialogStep.MENU_SELECTION,
        payload=payload,
    )


def _handle_menu_selection(text: str, payload: SessionPayload) -> StepResult:
    option = match_menu_option(text)
    if option is None:
        return StepResult(
            response=TextResponse(MSG_INVALID_OPTION),
            next_step=DialogStep.MENU_SELECTION,
            payload=payload,
        )
    return StepResult(
        response=TextResponse(option.prompt),
        next_step=option.next_step,
        payload=payload.model_copy(update={"service": option.service}),
    )


def _handle_image_input(text: str, user_id: str, generation: GenerationService) -> StepResult:
    result = generation.invoke(ServiceKind.IMAGE, {"prompt": text, "user": user_id})
    return StepResult(
        response=MediaResponse(
            url=result.value,
            media_type="image",
            caption=f'Here\'s your generated image based on: "{text}"',
        ),
        next_step=DialogStep.WELCOME,
        payload=SessionPayload(),
    )


def _handle_video_input(text: str, user_id: str, generation: GenerationService) -> StepResult:
    result = generation.invoke(ServiceKind.VIDEO, {"prompt": text, "user": user_id})
    return StepResult(
        response=MediaResponse(
            url=result.value,
            media_type="video",
            caption=f'Here\'s your generated video: "{text}"',
        ),
        next_step=DialogStep.WELCOME,
        payload=SessionPayload(),
    )


def _handle_info_input(text: str, user_id: str, generation: GenerationService) -> StepResult:
    result = generation.invoke(ServiceKind.INFO, {"query": text, "user": user_id})
    return StepResult(
        response=TextResponse(result.value),
        next_step=DialogStep.WELCOME,
        payload=SessionPayload(),
    )


def handle_step(
    state: BotSessionState,
    inbound_text: str,
    user_id: str,
    generation: GenerationService,
) -> StepResult:
    """
    Compute the reply and the next session state for one inbound message.

    No persistence here. The only side effect is the generation call made
    from the *_input steps, which itself never raises.
    """
    text = inbound_text or ""
    step = parse_step(state.step)

    if step == DialogStep.MENU_SELECTION:
        return _handle_menu_selection(text, state.payload)
    if step == DialogStep.IMAGE_INPUT:
        return _handle_image_input(text, user_id, generation)
    if step == DialogStep.VIDEO_INPUT:
        return _handle_video_input(text, user_id, generation)
    if step == DialogStep.INFO_INPUT:
        return _handle_info_input(text, user_id, generation)

    # welcome, unknown or missing step
    return welcome_result(state.payload)
