import asyncio
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from core.session import SessionManager
from core.state import ConversationState, Message, Turn, TurnState
from dialog.base import DetectIntentRequest, DetectIntentResponse, IntentResolver
from dialog.quick_actions import get_quick_action
from speech.base import CaptureError, SpeechCapture, SpeechSynthesizer

FALLBACK_APOLOGY = (
    "I apologize, but I'm having trouble processing your request right now. "
    "Please try again or contact our branch directly at 1-800-BANK-HELP."
)
PROCESSING_ERROR = "Failed to process your request. Please try again."
EMPTY_FULFILLMENT = "I'm sorry, I didn't understand that. Could you please rephrase?"
CAPTURE_UNSUPPORTED = "Speech recognition not supported"

WELCOME_TEXT = (
    "Hello! Welcome to Retail Bank Branch Support. I'm your virtual assistant. "
    "How can I help you today? You can speak to me by pressing the microphone "
    "button or type your question below."
)
WELCOME_SPEECH = (
    "Hello! Welcome to Retail Bank Branch Support. I'm your virtual assistant. "
    "How can I help you today?"
)


# --- Events handled by the controller loop ---

@dataclass
class StartCapture:
    pass


@dataclass
class StopCapture:
    pass


@dataclass
class SubmitText:
    turn: Turn


@dataclass
class CapturePartial:
    generation: int
    text: str


@dataclass
class CaptureFinal:
    generation: int
    text: str


@dataclass
class CaptureFailed:
    generation: int
    reason: str


@dataclass
class ResolutionSettled:
    turn: Turn
    response: Optional[DetectIntentResponse] = None
    error: Optional[Exception] = None


@dataclass
class SpeechFinished:
    generation: int
    error: Optional[Exception] = None


@dataclass
class NewConversation:
    pass


@dataclass
class Greet:
    pass


_STOP = object()


class TurnController:
    """Sequences capture -> resolve -> speak for one conversation.

    Every state change happens inside a single consumer task that drains an
    event queue. Capture, resolution and synthesis run in their own tasks and
    only report back by posting events, so a failure in one of them can never
    leave the others half-updated.

    The synthesizer is the one shared output channel: each new turn cancels
    it before anything else happens, so at most one reply is audible.

    Resolutions are never cancelled. A reply that arrives after the customer
    has moved on is still recorded and spoken.
    """

    def __init__(
        self,
        resolver: IntentResolver,
        synthesizer: Optional[SpeechSynthesizer] = None,
        capture: Optional[SpeechCapture] = None,
        session: Optional[SessionManager] = None,
        state: Optional[ConversationState] = None,
        language_code: str = "en-US",
        resolve_timeout: Optional[float] = 15.0,
    ):
        self.resolver = resolver
        self.synthesizer = synthesizer
        self.capture = capture
        self.session = session or SessionManager()
        self.state = state or ConversationState()
        self.language_code = language_code
        self.resolve_timeout = resolve_timeout

        self._events: asyncio.Queue = asyncio.Queue()
        self._loop_task: Optional[asyncio.Task] = None
        self._idle = asyncio.Event()
        self._idle.set()

        self._listening = False
        self._capture_generation = 0
        self._capture_task: Optional[asyncio.Task] = None

        self._in_flight = 0
        self._resolve_tasks: set[asyncio.Task] = set()
        self._open_turns: list[Turn] = []

        self._speaking = False
        self._speech_generation = 0
        self._speech_task: Optional[asyncio.Task] = None

        self._handlers = {
            StartCapture: self._on_start_capture,
            StopCapture: self._on_stop_capture,
            SubmitText: self._on_submit_text,
            CapturePartial: self._on_capture_partial,
            CaptureFinal: self._on_capture_final,
            CaptureFailed: self._on_capture_failed,
            ResolutionSettled: self._on_resolution_settled,
            SpeechFinished: self._on_speech_finished,
            NewConversation: self._on_new_conversation,
            Greet: self._on_greet,
        }

    # --- Lifecycle ---

    async def start(self) -> None:
        if self._loop_task is None:
            self._loop_task = asyncio.create_task(self._run())
            logger.debug("Turn controller started.")

    async def shutdown(self) -> None:
        """Stop the loop and release capture and speech output."""
        if self._loop_task is None:
            return
        await self._events.put(_STOP)
        await self._loop_task
        self._loop_task = None

        if self._capture_task is not None and not self._capture_task.done():
            self._capture_task.cancel()
        self._listening = False
        for task in list(self._resolve_tasks):
            task.cancel()
        if self._resolve_tasks:
            await asyncio.wait(list(self._resolve_tasks))
        self._abandon_open_turns()
        await self._cancel_speech()
        self._refresh_state()
        logger.debug("Turn controller stopped.")

    def _abandon_open_turns(self) -> None:
        """Release waiters on turns that will never get a reply."""
        turns = self._open_turns
        self._open_turns = []
        # Events posted after the stop marker are never handled.
        while not self._events.empty():
            event = self._events.get_nowait()
            self._events.task_done()
            if isinstance(event, SubmitText):
                turns.append(event.turn)
        for turn in turns:
            if not turn.is_settled:
                turn.failed = True
                turn.settle()
        if turns:
            logger.debug("Abandoned {} unanswered turn(s).", len(turns))
        self._in_flight = 0

    async def __aenter__(self) -> "TurnController":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.shutdown()

    # --- Public actions (called by presentation) ---

    async def start_capture(self) -> None:
        await self._events.put(StartCapture())

    async def stop_capture(self) -> None:
        await self._events.put(StopCapture())

    async def submit_text(self, text: str) -> Optional[Turn]:
        """Queue typed text as a new turn.

        Returns None for empty or whitespace-only input, which is dropped
        without touching state.
        """
        cleaned = (text or "").strip()
        if not cleaned:
            logger.debug("Ignoring empty input.")
            return None
        turn = Turn(text=cleaned)
        turn.bind(asyncio.get_running_loop())
        await self._events.put(SubmitText(turn))
        return turn

    async def quick_action(self, action_id: str) -> Optional[Turn]:
        action = get_quick_action(action_id)
        if action is None:
            logger.warning("Unknown quick action: {}", action_id)
            return None
        return await self.submit_text(action.query)

    async def new_conversation(self) -> None:
        await self._events.put(NewConversation())

    async def greet(self) -> None:
        await self._events.put(Greet())

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        await self._events.join()

    async def wait_idle(self) -> None:
        await self.drain()
        await self._idle.wait()

    # --- Event loop ---

    async def _run(self) -> None:
        while True:
            event = await self._events.get()
            try:
                if event is _STOP:
                    return
                await self._handlers[type(event)](event)
            except Exception as e:
                logger.error("Error handling {}: {}", type(event).__name__, e)
            finally:
                self._refresh_state()
                self._events.task_done()

    def _refresh_state(self) -> None:
        if self._listening:
            new_state = TurnState.LISTENING
        elif self._in_flight:
            new_state = TurnState.RESOLVING
        elif self._speaking:
            new_state = TurnState.SPEAKING
        else:
            new_state = TurnState.IDLE

        if new_state != self.state.turn_state:
            logger.debug("State: {} -> {}", self.state.turn_state.value, new_state.value)
        self.state.set_state(new_state)

        if new_state == TurnState.IDLE:
            self._idle.set()
        else:
            self._idle.clear()

    # --- Capture ---

    async def _on_start_capture(self, event: StartCapture) -> None:
        await self._cancel_speech()

        if self.capture is None or not self.capture.available:
            logger.warning("Speech capture unavailable.")
            self.state.last_error = CAPTURE_UNSUPPORTED
            return
        if self._listening:
            logger.debug("Already listening.")
            return

        self.state.partial_transcript = ""
        self.state.last_error = None
        self._listening = True
        self._capture_generation += 1
        self._capture_task = asyncio.create_task(self._run_capture(self._capture_generation))
        logger.info("Listening...")

    async def _on_stop_capture(self, event: StopCapture) -> None:
        if self._listening and self.capture is not None:
            await self.capture.stop()

    async def _run_capture(self, generation: int) -> None:
        final_parts = []
        try:
            async for transcript in self.capture.listen():
                if transcript.is_final:
                    final_parts.append(transcript.text)
                else:
                    await self._events.put(CapturePartial(generation, transcript.text))
        except CaptureError as e:
            await self._events.put(CaptureFailed(generation, str(e) or "Speech recognition error"))
        except Exception as e:
            logger.error("Speech capture crashed: {}", e)
            await self._events.put(CaptureFailed(generation, "Failed to start speech recognition"))
        else:
            await self._events.put(CaptureFinal(generation, "".join(final_parts)))

    async def _on_capture_partial(self, event: CapturePartial) -> None:
        if self._listening and event.generation == self._capture_generation:
            self.state.partial_transcript = event.text

    async def _on_capture_final(self, event: CaptureFinal) -> None:
        if event.generation != self._capture_generation:
            return
        self._listening = False
        self._capture_task = None
        self.state.partial_transcript = ""

        text = event.text.strip()
        if not text:
            logger.debug("Empty utterance ignored.")
            return
        logger.debug("Customer said: '{}'", text[:80])
        turn = Turn(text=text)
        turn.bind(asyncio.get_running_loop())
        await self._begin_turn(turn)

    async def _on_capture_failed(self, event: CaptureFailed) -> None:
        if event.generation != self._capture_generation:
            return
        self._listening = False
        self._capture_task = None
        self.state.partial_transcript = ""
        self.state.last_error = event.reason
        logger.warning("Speech capture error: {}", event.reason)

    # --- Resolution ---

    async def _on_submit_text(self, event: SubmitText) -> None:
        await self._cancel_speech()
        await self._begin_turn(event.turn)

    async def _begin_turn(self, turn: Turn) -> None:
        # The user bubble goes in before the resolver is asked, so a reply
        # can never show up without its question.
        self.state.append(Message(text=turn.text, sender="user", timestamp=turn.timestamp))
        self.state.last_error = None

        request = DetectIntentRequest(
            session_id=self.session.current_session_id(),
            text=turn.text,
            language_code=self.language_code,
            agent_id=self.session.agent_id,
        )
        self._open_turns.append(turn)
        self._in_flight += 1
        task = asyncio.create_task(self._resolve(turn, request))
        self._resolve_tasks.add(task)
        task.add_done_callback(self._resolve_tasks.discard)

    async def _resolve(self, turn: Turn, request: DetectIntentRequest) -> None:
        try:
            call = self.resolver.detect_intent(request)
            if self.resolve_timeout:
                response = await asyncio.wait_for(call, self.resolve_timeout)
            else:
                response = await call
        except Exception as e:
            await self._events.put(ResolutionSettled(turn, error=e))
        else:
            await self._events.put(ResolutionSettled(turn, response=response))

    async def _on_resolution_settled(self, event: ResolutionSettled) -> None:
        self._in_flight -= 1
        turn = event.turn

        if event.error is not None:
            # Operators get the cause, the customer gets the canned apology.
            logger.error(
                "Intent resolution failed: {}: {}", type(event.error).__name__, event.error
            )
            self.state.last_error = PROCESSING_ERROR
            turn.failed = True
            turn.intent_name = "Error"
            turn.fulfillment_text = FALLBACK_APOLOGY
            message = Message(text=FALLBACK_APOLOGY, sender="agent", intent="Error")
        else:
            response = event.response
            turn.intent_name = response.intent.display_name
            turn.confidence = response.intent.confidence
            turn.fulfillment_text = response.fulfillment_text
            message = Message(
                text=response.fulfillment_text or EMPTY_FULFILLMENT,
                sender="agent",
                intent=response.intent.display_name,
                confidence=response.intent.confidence,
            )
            logger.info(
                "Intent: {} ({:.2f})", response.intent.display_name, response.intent.confidence
            )

        self.state.append(message)
        try:
            await self._speak(message.text)
        finally:
            self._open_turns = [t for t in self._open_turns if t is not turn]
            turn.settle()

    # --- Synthesis ---

    async def _speak(self, text: str) -> None:
        await self._cancel_speech()
        if self.synthesizer is None or not self.synthesizer.available or not text:
            return

        self._speech_generation += 1
        self._speaking = True
        self._speech_task = asyncio.create_task(
            self._run_speech(self._speech_generation, text)
        )

    async def _run_speech(self, generation: int, text: str) -> None:
        try:
            await self.synthesizer.speak(text)
        except Exception as e:
            await self._events.put(SpeechFinished(generation, error=e))
        else:
            await self._events.put(SpeechFinished(generation))

    async def _cancel_speech(self) -> None:
        """Silence the output channel. Runs on every new turn, playing or not."""
        if self.synthesizer is None:
            return
        try:
            await self.synthesizer.cancel()
        except Exception as e:
            logger.warning("Failed to cancel speech: {}", e)

        task = self._speech_task
        self._speech_task = None
        self._speaking = False
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])

    async def _on_speech_finished(self, event: SpeechFinished) -> None:
        if event.generation != self._speech_generation:
            return
        self._speaking = False
        self._speech_task = None
        if event.error is not None:
            # Reply text is already on screen, nothing to tell the customer.
            logger.warning("Speech synthesis error: {}", event.error)

    # --- Conversation ---

    async def _on_new_conversation(self, event: NewConversation) -> None:
        asked = self.state.user_message_count
        self.session.reset_session()
        self.state.clear()
        logger.info("New conversation started ({} question(s) in the previous one).", asked)

    async def _on_greet(self, event: Greet) -> None:
        self.state.append(Message(text=WELCOME_TEXT, sender="agent", intent="Welcome"))
        await self._speak(WELCOME_SPEECH)
